from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence

import httpx
from opentelemetry import trace

from license_resolver.core.config import ResolveOptions
from license_resolver.jobs.alias import SEARCH_URL, AliasFinder
from license_resolver.jobs.archive import (
    WAYBACK_AVAILABLE_URL,
    WAYBACK_CDX_URL,
    WAYBACK_SNAPSHOT_BASE_URL,
    WaybackClient,
)
from license_resolver.jobs.consensus import DomainConsensus, consensus_for
from license_resolver.jobs.evidence import (
    DEFAULT_STRATEGIES,
    AMBIGUOUS_LICENSE_EVIDENCE,
    EvidenceDecision,
    EvidenceStrategy,
    LicenseIndex,
    inspect_page,
)
from license_resolver.jobs.fetcher import FetchResult, Sleeper, fetch_with_retries, retry_policy_for
from license_resolver.schemas.catalog import ListingRecord
from license_resolver.schemas.outcomes import (
    DOMAIN_CONSENSUS,
    SEARCH_ALIAS_PREFIX,
    WAYBACK_PREFIX,
    MappedLicense,
    ResolutionOutcome,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

NOT_FOUND = 404


class FallbackChainResolver:
    """Resolves one listing's license: live page, archive, search alias, domain consensus.

    The chain stops at the first unambiguous decision. Archive and alias
    lookups only run when the live page reported not-found.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        index: LicenseIndex,
        consensus: Mapping[str, DomainConsensus],
        options: ResolveOptions,
        strategies: Sequence[EvidenceStrategy] = DEFAULT_STRATEGIES,
        wayback_available_url: str = WAYBACK_AVAILABLE_URL,
        wayback_cdx_url: str = WAYBACK_CDX_URL,
        wayback_snapshot_base_url: str = WAYBACK_SNAPSHOT_BASE_URL,
        search_url: str = SEARCH_URL,
        sleep: Sleeper | None = None,
    ) -> None:
        self.client = client
        self.index = index
        self.consensus = consensus
        self.options = options
        self.strategies = strategies
        self.sleep = sleep or asyncio.sleep
        self.live_policy = retry_policy_for(
            timeout_seconds=options.timeout_seconds,
            max_retries=options.retries,
            retry_statuses=options.retry_statuses,
            backoff_base_seconds=options.backoff_base_seconds,
            backoff_max_seconds=options.backoff_max_seconds,
        )
        self.archive = WaybackClient(
            client,
            policy=self.live_policy.with_retries(options.archive_retries),
            available_url=wayback_available_url,
            cdx_url=wayback_cdx_url,
            snapshot_base_url=wayback_snapshot_base_url,
            sleep=self.sleep,
        )
        self.alias_finder = AliasFinder(client, policy=self.live_policy, search_url=search_url, sleep=self.sleep)

    async def resolve(self, record: ListingRecord) -> ResolutionOutcome:
        with tracer.start_as_current_span("resolver.record") as span:
            span.set_attribute("listing.url_id", record.url_id)
            outcome = await self._resolve(record)
            span.set_attribute("listing.mapped", outcome.mapped is not None)
            if outcome.mapped is not None:
                span.set_attribute("listing.source", outcome.mapped.source)
            return outcome

    async def _resolve(self, record: ListingRecord) -> ResolutionOutcome:
        outcome = ResolutionOutcome(url_id=record.url_id, url=record.url, title=record.title)

        live = await fetch_with_retries(self.client, record.url, policy=self.live_policy, sleep=self.sleep)
        outcome.status = live.status_code
        outcome.final_url = live.final_url

        live_decision = self._inspect(live)
        choice = live_decision.choice if live_decision is not None else None
        if choice is not None:
            return self._mapped(outcome, *choice)

        if self.options.use_archive and live.status_code == NOT_FOUND:
            choice = await self._try_archive(record, outcome)
            if choice is not None:
                bc_id, source = choice
                return self._mapped(outcome, bc_id, f"{WAYBACK_PREFIX}{source}")

        if self.options.use_search_alias and live.status_code == NOT_FOUND:
            alias_url, choice = await self._try_alias(record)
            if choice is not None:
                bc_id, source = choice
                outcome.alias_url = alias_url
                return self._mapped(outcome, bc_id, f"{SEARCH_ALIAS_PREFIX}{source}")

        if self.options.use_domain_consensus:
            consensus = consensus_for(
                self.consensus,
                record.url,
                min_known=self.options.domain_min_known,
                min_purity=self.options.domain_min_purity,
            )
            if consensus is not None:
                return self._mapped(outcome, consensus.top_bc_id, DOMAIN_CONSENSUS)

        outcome.reason = self._unresolved_reason(live, live_decision)
        return outcome

    async def _try_archive(self, record: ListingRecord, outcome: ResolutionOutcome) -> tuple[int, str] | None:
        snapshot_url = await self.archive.find_snapshot_url(record.url)
        if not snapshot_url:
            return None

        archived = await self.archive.fetch_snapshot(snapshot_url)
        outcome.archive_url = snapshot_url
        outcome.archive_status = archived.status_code
        decision = self._inspect(archived)
        return decision.choice if decision is not None else None

    async def _try_alias(self, record: ListingRecord) -> tuple[str | None, tuple[int, str] | None]:
        lookup = await self.alias_finder.find(record.url)
        if lookup.alias_url is None:
            logger.debug("no alias for url_id=%s reason=%s", record.url_id, lookup.reason)
            return None, None

        fetched = await fetch_with_retries(self.client, lookup.alias_url, policy=self.live_policy, sleep=self.sleep)
        decision = self._inspect(fetched)
        return lookup.alias_url, decision.choice if decision is not None else None

    def _inspect(self, fetched: FetchResult) -> EvidenceDecision | None:
        if not fetched.ok or not fetched.text:
            return None
        return inspect_page(fetched.text, self.index, self.strategies)

    def _mapped(self, outcome: ResolutionOutcome, bc_id: int, source: str) -> ResolutionOutcome:
        outcome.mapped = MappedLicense(bc_id=bc_id, name=self.index.name_of(bc_id), source=source)
        outcome.reason = None
        return outcome

    @staticmethod
    def _unresolved_reason(live: FetchResult, decision: EvidenceDecision | None) -> str:
        if not live.ok or live.status_code is None:
            return f"fetch_error:{live.error or 'unknown'}"
        if decision is not None and decision.ambiguous:
            return AMBIGUOUS_LICENSE_EVIDENCE
        return f"unresolved_status_{live.status_code}"
