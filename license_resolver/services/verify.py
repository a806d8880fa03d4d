from __future__ import annotations

from dataclasses import dataclass, field

from license_resolver.schemas.reports import StatusCounts
from license_resolver.services.catalog import Catalog

EXAMPLE_LIMIT = 10


@dataclass(slots=True)
class CountMismatch:
    category_id: int
    name: str | None
    expected: int
    actual: int


@dataclass(slots=True)
class VerificationResult:
    total_rows: int
    visible_active: int
    status_counts: StatusCounts
    invalid_active_ids: list[int] = field(default_factory=list)
    license_mismatches: list[CountMismatch] = field(default_factory=list)
    tag_mismatches: list[CountMismatch] = field(default_factory=list)
    unknown_tag_ids: list[int] = field(default_factory=list)
    duplicate_url_ids: list[int] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures()

    def failures(self) -> list[str]:
        failures: list[str] = []
        if self.invalid_active_ids:
            failures.append(f"Active rows with invalid/missing license: {len(self.invalid_active_ids)}")
        if self.license_mismatches:
            failures.append(f"License count mismatches: {len(self.license_mismatches)}")
        if self.tag_mismatches:
            failures.append(f"Tag count mismatches: {len(self.tag_mismatches)}")
        if self.unknown_tag_ids:
            failures.append(f"Unknown tag IDs found in visible URLs: {len(self.unknown_tag_ids)}")
        if self.duplicate_url_ids:
            failures.append(f"Duplicate url_id values: {len(self.duplicate_url_ids)}")
        return failures

    def details(self) -> list[str]:
        lines = [f"  active-invalid: {url_id}" for url_id in self.invalid_active_ids[:EXAMPLE_LIMIT]]
        lines.extend(
            f"  license-mismatch: {m.name} ({m.category_id}) expected={m.expected} actual={m.actual}"
            for m in self.license_mismatches[:EXAMPLE_LIMIT]
        )
        lines.extend(
            f"  tag-mismatch: {m.name} ({m.category_id}) expected={m.expected} actual={m.actual}"
            for m in self.tag_mismatches[:EXAMPLE_LIMIT]
        )
        if self.unknown_tag_ids:
            lines.append(f"  unknown-tag-ids: {', '.join(map(str, self.unknown_tag_ids[:20]))}")
        if self.duplicate_url_ids:
            lines.append(f"  duplicate-url-ids: {', '.join(map(str, self.duplicate_url_ids[:20]))}")
        return lines


def verify_catalog(catalog: Catalog) -> VerificationResult:
    """Check that every active row is visible and every cached count is exact."""
    visible = catalog.visible_records()
    result = VerificationResult(
        total_rows=len(catalog.records),
        visible_active=len(visible),
        status_counts=catalog.status_counts(),
    )

    result.invalid_active_ids = [
        record.url_id
        for record in catalog.records
        if record.effective_status == "active" and record.license not in catalog.valid_license_ids
    ]

    license_counts = catalog.visible_license_counts()
    tag_counts: dict[int, int] = {}
    for record in visible:
        for tag_id in record.tags:
            if isinstance(tag_id, int) and not isinstance(tag_id, bool):
                tag_counts[tag_id] = tag_counts.get(tag_id, 0) + 1

    for category in catalog.licenses:
        expected = license_counts.get(category.bc_id, 0)
        if category.count != expected:
            result.license_mismatches.append(
                CountMismatch(category.bc_id, category.name, expected=expected, actual=category.count)
            )

    if catalog.tags is not None:
        known_tag_ids = set()
        for tag in catalog.tags:
            known_tag_ids.add(tag.tag_id)
            expected = tag_counts.get(tag.tag_id, 0)
            if tag.count != expected:
                result.tag_mismatches.append(CountMismatch(tag.tag_id, tag.name, expected=expected, actual=tag.count))
        result.unknown_tag_ids = sorted(tag_id for tag_id in tag_counts if tag_id not in known_tag_ids)

    seen: set[int] = set()
    for record in catalog.records:
        if record.url_id in seen:
            result.duplicate_url_ids.append(record.url_id)
        seen.add(record.url_id)

    return result
