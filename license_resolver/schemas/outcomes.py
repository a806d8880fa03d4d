from pydantic import BaseModel

WAYBACK_PREFIX = "wayback_"
SEARCH_ALIAS_PREFIX = "search_alias_"
DOMAIN_CONSENSUS = "domain_consensus"


class MappedLicense(BaseModel):
    bc_id: int
    name: str | None = None
    source: str


class ResolutionOutcome(BaseModel):
    url_id: int
    url: str
    title: str | None = None
    status: int | None = None
    final_url: str | None = None
    archive_status: int | None = None
    archive_url: str | None = None
    alias_url: str | None = None
    mapped: MappedLicense | None = None
    reason: str | None = None

    @property
    def not_found(self) -> bool:
        return self.status == 404

    @property
    def mapped_via_alias(self) -> bool:
        return self.mapped is not None and self.mapped.source.startswith(SEARCH_ALIAS_PREFIX)

    @property
    def mapped_via_archive(self) -> bool:
        return self.mapped is not None and self.mapped.source.startswith(WAYBACK_PREFIX)
