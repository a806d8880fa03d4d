from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from license_resolver.schemas.catalog import ListingRecord
from license_resolver.schemas.outcomes import ResolutionOutcome
from license_resolver.schemas.reports import MergeChanges
from license_resolver.services.catalog import Catalog

HTTP_404_REASON = "http_404"


@dataclass(slots=True)
class RecordChange:
    status_changed: bool = False
    url_rewritten: bool = False
    license_changed: bool = False


def health_for(outcome: ResolutionOutcome) -> tuple[str, str]:
    """Return the ``(status, health_reason)`` pair an outcome implies.

    A live 404 means dead unless a search alias supplied a working URL; an
    archive-sourced mapping keeps its provenance as the reason.
    """
    if outcome.mapped is not None:
        source = outcome.mapped.source or "mapped_unknown"
        if outcome.not_found and not outcome.mapped_via_alias:
            return "dead", source if outcome.mapped_via_archive else HTTP_404_REASON
        return "active", source

    if outcome.not_found:
        return "dead", HTTP_404_REASON
    return "unverified", outcome.reason or "unresolved"


def apply_outcome(record: ListingRecord, outcome: ResolutionOutcome, *, checked_at: str) -> RecordChange:
    change = RecordChange()
    before_status = record.effective_status
    record.health_checked_at = checked_at

    if outcome.mapped is not None and record.license != outcome.mapped.bc_id:
        record.license = outcome.mapped.bc_id
        change.license_changed = True

    if outcome.mapped_via_alias and isinstance(outcome.alias_url, str) and record.url != outcome.alias_url:
        record.url = outcome.alias_url
        change.url_rewritten = True

    status, reason = health_for(outcome)
    record.status = status
    record.health_reason = reason
    change.status_changed = before_status != status
    return change


def apply_outcomes(
    catalog: Catalog,
    outcomes: Iterable[ResolutionOutcome],
    *,
    checked_at: str,
    changes: MergeChanges | None = None,
    touched_ids: set[int] | None = None,
) -> MergeChanges:
    """Apply one batch of outcomes in catalog order, then refresh derived counts."""
    changes = changes if changes is not None else MergeChanges()
    touched = touched_ids if touched_ids is not None else set()
    by_id = {outcome.url_id: outcome for outcome in outcomes}

    for record in catalog.records:
        outcome = by_id.get(record.url_id)
        if outcome is None:
            continue
        _tally(changes, apply_outcome(record, outcome, checked_at=checked_at))
        touched.add(record.url_id)

    changes.rows_touched = len(touched)
    recompute_counts(catalog)
    return changes


def recompute_counts(catalog: Catalog) -> None:
    license_counts = catalog.visible_license_counts()
    tag_counts: dict[int, int] = {}
    for record in catalog.visible_records():
        for tag_id in record.tags:
            if isinstance(tag_id, int) and not isinstance(tag_id, bool):
                tag_counts[tag_id] = tag_counts.get(tag_id, 0) + 1

    for category in catalog.licenses:
        category.count = license_counts.get(category.bc_id, 0)
    for tag in catalog.tags or ():
        tag.count = tag_counts.get(tag.tag_id, 0)


def _tally(changes: MergeChanges, change: RecordChange) -> None:
    if change.status_changed:
        changes.status_updates += 1
    if change.url_rewritten:
        changes.alias_url_rewrites += 1
    if change.license_changed:
        changes.license_updates += 1
