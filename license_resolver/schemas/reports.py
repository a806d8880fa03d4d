from typing import Any

from pydantic import BaseModel, Field

from license_resolver.schemas.outcomes import ResolutionOutcome


class DatasetCounts(BaseModel):
    total_urls: int
    missing_before: int
    missing_after: int
    visible_active: int
    dead: int
    unverified: int


class RunSummary(BaseModel):
    processed: int = 0
    mapped: int = 0
    unresolved: int = 0
    mapped_by_source: dict[str, int] = Field(default_factory=dict)
    unresolved_reasons: dict[str, int] = Field(default_factory=dict)


class RunReport(BaseModel):
    run_type: str = "fix-missing-licenses-accelerated"
    generated_at: str
    options: dict[str, Any] = Field(default_factory=dict)
    dataset: DatasetCounts
    summary: RunSummary
    results: list[ResolutionOutcome] = Field(default_factory=list)

    @property
    def written(self) -> bool:
        return bool(self.options.get("write"))


class MergeChanges(BaseModel):
    rows_touched: int = 0
    status_updates: int = 0
    alias_url_rewrites: int = 0
    license_updates: int = 0


class StatusCounts(BaseModel):
    active: int = 0
    dead: int = 0
    unverified: int = 0


class ReconcileReport(BaseModel):
    run_type: str
    generated_at: str
    options: dict[str, Any] = Field(default_factory=dict)
    report_count: int
    url_rows: int
    changes: MergeChanges
    final_status_counts: StatusCounts
