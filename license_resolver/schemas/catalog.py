from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

ListingStatus = Literal["active", "dead", "unverified"]
LISTING_STATUSES: frozenset[str] = frozenset({"active", "dead", "unverified"})


def normalized_status(raw_status: Any) -> ListingStatus:
    if raw_status in LISTING_STATUSES:
        return raw_status
    return "active"


class ListingRecord(BaseModel):
    """One catalog listing; keys owned by other tools pass through untouched."""

    model_config = ConfigDict(extra="allow")

    url_id: int
    url: str
    title: str | None = None
    license: int | None = None
    tags: list[Any] = Field(default_factory=list)
    favorite: bool = False
    status: str | None = None
    health_checked_at: str | None = None
    health_reason: str | None = None

    @property
    def effective_status(self) -> ListingStatus:
        return normalized_status(self.status)


class LicenseCategory(BaseModel):
    name: str
    url: str | None = None
    bc_id: int
    count: int = 0


class TagCategory(BaseModel):
    model_config = ConfigDict(extra="allow")

    tag_id: int
    name: str | None = None
    count: int = 0
