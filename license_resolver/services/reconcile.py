from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel

from license_resolver.schemas.reports import MergeChanges, ReconcileReport, RunReport
from license_resolver.services.catalog import Catalog, CatalogStore
from license_resolver.services.merge import apply_outcomes
from license_resolver.services.reports import (
    RECONCILE_RUN_TYPE,
    list_report_paths,
    load_run_reports,
    utc_timestamp,
    write_report,
)

logger = logging.getLogger(__name__)


class ReconcileOptions(BaseModel):
    write: bool = False
    include_dry_runs: bool = False


@dataclass(slots=True)
class ReconcileResult:
    report: ReconcileReport
    json_path: Path
    markdown_path: Path


def replay_reports(catalog: Catalog, reports: Sequence[RunReport]) -> MergeChanges:
    """Re-apply report outcomes oldest-first so later outcomes win.

    Each report is merged with its own ``generated_at`` as the health-check
    time, which makes the replay match the merges that produced the reports.
    """
    changes = MergeChanges()
    touched: set[int] = set()
    for report in sorted(reports, key=lambda item: item.generated_at):
        apply_outcomes(
            catalog,
            report.results,
            checked_at=report.generated_at,
            changes=changes,
            touched_ids=touched,
        )
    return changes


def reconcile_from_reports(
    store: CatalogStore,
    reports_dir: Path,
    *,
    options: ReconcileOptions,
    now: datetime | None = None,
) -> ReconcileResult:
    catalog = store.load()
    reports = load_run_reports(list_report_paths(reports_dir))
    if not options.include_dry_runs:
        reports = [report for report in reports if report.written]
    logger.info("replaying %s pass reports onto %s rows", len(reports), len(catalog.records))

    changes = replay_reports(catalog, reports)
    generated_at = utc_timestamp(now)
    report = ReconcileReport(
        run_type=RECONCILE_RUN_TYPE,
        generated_at=generated_at,
        options=options.model_dump(mode="json"),
        report_count=len(reports),
        url_rows=len(catalog.records),
        changes=changes,
        final_status_counts=catalog.status_counts(),
    )
    json_path, markdown_path = write_report(
        reports_dir,
        run_type=RECONCILE_RUN_TYPE,
        generated_at=generated_at,
        payload=report,
        markdown=render_reconcile_markdown(report),
    )
    if options.write:
        store.save(catalog)
    return ReconcileResult(report=report, json_path=json_path, markdown_path=markdown_path)


def render_reconcile_markdown(report: ReconcileReport) -> str:
    write = bool(report.options.get("write"))
    return "\n".join(
        [
            "# Reconcile URL Health From Reports",
            "",
            f"Generated: {report.generated_at}",
            f"Write mode: {'yes' if write else 'no (dry-run)'}",
            "",
            "## Inputs",
            f"- Reports scanned: {report.report_count}",
            f"- URL rows: {report.url_rows}",
            "",
            "## Changes",
            f"- Rows touched: {report.changes.rows_touched}",
            f"- Status updates: {report.changes.status_updates}",
            f"- Alias URL rewrites: {report.changes.alias_url_rewrites}",
            f"- License updates: {report.changes.license_updates}",
            "",
            "## Final Status Counts",
            f"- active: {report.final_status_counts.active}",
            f"- dead: {report.final_status_counts.dead}",
            f"- unverified: {report.final_status_counts.unverified}",
            "",
        ]
    )
