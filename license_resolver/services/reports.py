from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ValidationError

from license_resolver.schemas.outcomes import ResolutionOutcome
from license_resolver.schemas.reports import DatasetCounts, RunReport, RunSummary
from license_resolver.services.catalog import Catalog, CatalogIntegrityError, dump_json, read_json

logger = logging.getLogger(__name__)

RESOLVE_RUN_TYPE = "fix-missing-licenses-accelerated"
RECONCILE_RUN_TYPE = "reconcile-url-health"
UNRESOLVED_EXAMPLE_LIMIT = 20


def utc_timestamp(now: datetime | None = None) -> str:
    current = now or datetime.now(timezone.utc)
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    return current.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def report_stamp(generated_at: str) -> str:
    return generated_at.replace(":", "-").replace(".", "-")


def summarize(outcomes: Iterable[ResolutionOutcome]) -> RunSummary:
    summary = RunSummary()
    for outcome in outcomes:
        summary.processed += 1
        if outcome.mapped is not None:
            summary.mapped += 1
            source = outcome.mapped.source
            summary.mapped_by_source[source] = summary.mapped_by_source.get(source, 0) + 1
        else:
            summary.unresolved += 1
            reason = outcome.reason or "unresolved"
            summary.unresolved_reasons[reason] = summary.unresolved_reasons.get(reason, 0) + 1
    return summary


def dataset_counts(catalog: Catalog, *, missing_before: int) -> DatasetCounts:
    statuses = catalog.status_counts()
    return DatasetCounts(
        total_urls=len(catalog.records),
        missing_before=missing_before,
        missing_after=len(catalog.missing_license()),
        visible_active=len(catalog.visible_records()),
        dead=statuses.dead,
        unverified=statuses.unverified,
    )


def build_run_report(
    *,
    generated_at: str,
    options: BaseModel,
    catalog_after: Catalog,
    missing_before: int,
    outcomes: Sequence[ResolutionOutcome],
    run_type: str = RESOLVE_RUN_TYPE,
) -> RunReport:
    return RunReport(
        run_type=run_type,
        generated_at=generated_at,
        options=options.model_dump(mode="json"),
        dataset=dataset_counts(catalog_after, missing_before=missing_before),
        summary=summarize(outcomes),
        results=list(outcomes),
    )


def render_markdown(report: RunReport) -> str:
    lines = [
        "# Missing License Accelerated Fix Report",
        "",
        f"Generated: {report.generated_at}",
        f"Write mode: {'yes' if report.written else 'no (dry-run)'}",
        "",
        "## Totals",
        f"- Missing before: {report.dataset.missing_before}",
        f"- Processed: {report.summary.processed}",
        f"- Mapped: {report.summary.mapped}",
        f"- Unresolved: {report.summary.unresolved}",
        f"- Missing after: {report.dataset.missing_after}",
        f"- Visible active rows: {report.dataset.visible_active}",
        f"- Dead rows: {report.dataset.dead}",
        f"- Unverified rows: {report.dataset.unverified}",
        "",
        "## Mapped by Source",
        *_count_lines(report.summary.mapped_by_source),
        "",
        "## Unresolved Reasons",
        *_count_lines(report.summary.unresolved_reasons),
        "",
        f"## Example Unresolved URLs (first {UNRESOLVED_EXAMPLE_LIMIT})",
    ]
    unresolved = [row for row in report.results if row.mapped is None][:UNRESOLVED_EXAMPLE_LIMIT]
    if not unresolved:
        lines.append("- none")
    lines.extend(f"- {row.url} ({row.reason})" for row in unresolved)
    lines.append("")
    return "\n".join(lines)


def write_report(
    reports_dir: Path,
    *,
    run_type: str,
    generated_at: str,
    payload: BaseModel,
    markdown: str,
) -> tuple[Path, Path]:
    """Write the JSON and Markdown artifacts; existing reports are never overwritten."""
    reports_dir.mkdir(parents=True, exist_ok=True)
    base = f"{run_type}-{report_stamp(generated_at)}"
    suffix = 0
    while True:
        name = base if suffix == 0 else f"{base}-{suffix}"
        json_path = reports_dir / f"{name}.json"
        md_path = reports_dir / f"{name}.md"
        try:
            with json_path.open("x", encoding="utf-8") as handle:
                handle.write(dump_json(payload.model_dump(mode="json")))
        except FileExistsError:
            suffix += 1
            continue
        md_path.write_text(markdown, encoding="utf-8")
        return json_path, md_path


def list_report_paths(reports_dir: Path, run_type: str = RESOLVE_RUN_TYPE) -> list[Path]:
    if not reports_dir.is_dir():
        return []
    return sorted(reports_dir.glob(f"{run_type}-*.json"))


def load_run_reports(paths: Iterable[Path]) -> list[RunReport]:
    """Load historical pass reports oldest-first, skipping unreadable ones."""
    reports: list[RunReport] = []
    for path in paths:
        try:
            reports.append(RunReport.model_validate(read_json(path)))
        except (CatalogIntegrityError, ValidationError) as exc:
            logger.warning("skipping malformed report %s: %s", path, exc)
    reports.sort(key=lambda report: report.generated_at)
    return reports


def _count_lines(counts: dict[str, int]) -> list[str]:
    if not counts:
        return ["- none"]
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [f"- {key}: {count}" for key, count in ranked]
