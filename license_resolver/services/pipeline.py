from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path

import httpx
from opentelemetry import trace

from license_resolver.core.config import ResolveOptions, Settings
from license_resolver.jobs.consensus import DomainConsensus, build_domain_consensus
from license_resolver.jobs.evidence import LicenseIndex
from license_resolver.jobs.fetcher import Sleeper
from license_resolver.jobs.pool import ProgressSnapshot, ProgressTracker, map_with_concurrency
from license_resolver.jobs.resolve import FallbackChainResolver
from license_resolver.schemas.catalog import ListingRecord
from license_resolver.schemas.outcomes import ResolutionOutcome
from license_resolver.schemas.reports import MergeChanges, RunReport
from license_resolver.services.catalog import CatalogStore
from license_resolver.services.merge import apply_outcomes
from license_resolver.services.reports import (
    RESOLVE_RUN_TYPE,
    build_run_report,
    render_markdown,
    utc_timestamp,
    write_report,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class RunStatus(str, Enum):
    COMPLETE = "complete"
    PARTIAL = "partial"


@dataclass(slots=True)
class PassResult:
    report: RunReport
    changes: MergeChanges
    json_path: Path
    markdown_path: Path

    @property
    def status(self) -> RunStatus:
        return RunStatus.COMPLETE if self.report.dataset.missing_after == 0 else RunStatus.PARTIAL


async def run_pass(
    store: CatalogStore,
    options: ResolveOptions,
    *,
    settings: Settings,
    reports_dir: Path,
    client: httpx.AsyncClient | None = None,
    sleep: Sleeper | None = None,
    now: Callable[[], datetime] | None = None,
    on_progress: Callable[[ProgressSnapshot], None] | None = None,
) -> PassResult:
    """Run one resolution pass and, in write mode, merge it into the dataset.

    The loaded catalog stays read-only while workers run; outcomes are merged
    afterwards in catalog order. Dry runs merge into a copy so the report
    still shows the would-be state.
    """
    with tracer.start_as_current_span("resolver.pass") as span:
        catalog = store.load()
        index = LicenseIndex.from_categories(catalog.licenses)
        missing = catalog.missing_license()
        to_process = missing if options.limit is None else missing[: options.limit]
        consensus = build_domain_consensus(catalog.records, valid_ids=index.valid_ids)
        span.set_attribute("pass.missing_before", len(missing))
        span.set_attribute("pass.to_process", len(to_process))

        logger.info(
            "Processing %s missing-license rows (from %s total)",
            len(to_process),
            len(missing),
        )
        logger.info(
            "Config: concurrency=%s, timeout=%ss, retries=%s, archive=%s, searchAlias=%s, domainConsensus=%s",
            options.concurrency,
            options.timeout_seconds,
            options.retries,
            options.use_archive,
            options.use_search_alias,
            options.use_domain_consensus,
        )

        tracker = ProgressTracker(every=options.progress_every, listener=on_progress)
        if client is not None:
            outcomes = await _resolve_all(client, to_process, options, settings, index, consensus, tracker, sleep)
        else:
            async with httpx.AsyncClient(
                timeout=options.timeout_seconds,
                follow_redirects=True,
                headers={"User-Agent": settings.user_agent},
            ) as owned_client:
                outcomes = await _resolve_all(
                    owned_client, to_process, options, settings, index, consensus, tracker, sleep
                )

        generated_at = utc_timestamp(now() if now is not None else None)
        working = catalog if options.write else catalog.copy()
        changes = apply_outcomes(working, outcomes, checked_at=generated_at)

        report = build_run_report(
            generated_at=generated_at,
            options=options,
            catalog_after=working,
            missing_before=len(missing),
            outcomes=outcomes,
        )
        json_path, markdown_path = write_report(
            reports_dir,
            run_type=RESOLVE_RUN_TYPE,
            generated_at=generated_at,
            payload=report,
            markdown=render_markdown(report),
        )
        if options.write:
            store.save(working)

        span.set_attribute("pass.mapped", report.summary.mapped)
        span.set_attribute("pass.missing_after", report.dataset.missing_after)
        return PassResult(report=report, changes=changes, json_path=json_path, markdown_path=markdown_path)


async def _resolve_all(
    client: httpx.AsyncClient,
    records: list[ListingRecord],
    options: ResolveOptions,
    settings: Settings,
    index: LicenseIndex,
    consensus: Mapping[str, DomainConsensus],
    tracker: ProgressTracker,
    sleep: Sleeper | None,
) -> list[ResolutionOutcome]:
    resolver = FallbackChainResolver(
        client,
        index=index,
        consensus=consensus,
        options=options,
        wayback_available_url=settings.wayback_available_url,
        wayback_cdx_url=settings.wayback_cdx_url,
        wayback_snapshot_base_url=settings.wayback_snapshot_base_url,
        search_url=settings.search_url,
        sleep=sleep,
    )
    return await map_with_concurrency(records, options.concurrency, resolver.resolve, tracker)
