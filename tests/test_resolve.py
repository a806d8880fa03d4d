from __future__ import annotations

import asyncio

import httpx

from license_resolver.core.config import ResolveOptions
from license_resolver.jobs.consensus import build_domain_consensus
from license_resolver.jobs.evidence import LicenseIndex
from license_resolver.jobs.resolve import FallbackChainResolver
from license_resolver.schemas.catalog import LicenseCategory, ListingRecord
from license_resolver.schemas.outcomes import ResolutionOutcome

INDEX = LicenseIndex.from_categories(
    [
        LicenseCategory(name="by-nc", bc_id=3),
        LicenseCategory(name="by", bc_id=4),
        LicenseCategory(name="by-nc-sa", bc_id=5),
    ]
)
GONE_URL = "https://artist.bandcamp.com/album/gone"
SNAPSHOT_URL = f"https://web.archive.org/web/20200101000000/{GONE_URL}"


def _resolve(handler, record: ListingRecord, *, consensus=None, **option_values) -> ResolutionOutcome:
    option_values.setdefault("retries", 0)
    option_values.setdefault("archive_retries", 0)
    options = ResolveOptions(**option_values)

    async def no_sleep(seconds: float) -> None:
        return None

    async def run() -> ResolutionOutcome:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            resolver = FallbackChainResolver(
                client,
                index=INDEX,
                consensus=consensus or {},
                options=options,
                sleep=no_sleep,
            )
            return await resolver.resolve(record)

    return asyncio.run(run())


def test_live_page_license_is_used_directly() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text='<script>{"license_type":5}</script>', request=request)

    outcome = _resolve(handler, ListingRecord(url_id=1, url="https://artist.bandcamp.com/album/live"))

    assert outcome.status == 200
    assert outcome.mapped is not None
    assert outcome.mapped.bc_id == 5
    assert outcome.mapped.name == "by-nc-sa"
    assert outcome.mapped.source == "license_type"
    assert outcome.reason is None


def test_not_found_page_resolves_from_archive_snapshot() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        if str(request.url) == GONE_URL:
            return httpx.Response(404, request=request)
        if request.url.path == "/wayback/available":
            payload = {"archived_snapshots": {"closest": {"available": True, "url": SNAPSHOT_URL}}}
            return httpx.Response(200, json=payload, request=request)
        if str(request.url) == SNAPSHOT_URL:
            return httpx.Response(200, text="license_type&quot;:4,", request=request)
        raise AssertionError(f"unexpected request {request.url}")

    outcome = _resolve(handler, ListingRecord(url_id=7, url=GONE_URL))

    assert outcome.status == 404
    assert outcome.mapped is not None
    assert outcome.mapped.bc_id == 4
    assert outcome.mapped.source == "wayback_license_type"
    assert outcome.archive_url == SNAPSHOT_URL
    assert outcome.archive_status == 200
    assert outcome.mapped_via_archive is True


def test_not_found_page_resolves_through_search_alias() -> None:
    alias_url = "https://renamed.bandcamp.com/album/gone"

    async def handler(request: httpx.Request) -> httpx.Response:
        if str(request.url) == GONE_URL:
            return httpx.Response(404, request=request)
        if request.url.path == "/wayback/available":
            return httpx.Response(200, json={"archived_snapshots": {}}, request=request)
        if request.url.path == "/cdx/search/cdx":
            return httpx.Response(200, json=[], request=request)
        if request.url.path == "/search":
            return httpx.Response(200, text=f'<a href="{alias_url}?from=search">hit</a>', request=request)
        if str(request.url) == alias_url:
            return httpx.Response(200, text='"license_name":"attribution_non_commercial"', request=request)
        raise AssertionError(f"unexpected request {request.url}")

    outcome = _resolve(handler, ListingRecord(url_id=8, url=GONE_URL))

    assert outcome.mapped is not None
    assert outcome.mapped.bc_id == 3
    assert outcome.mapped.source == "search_alias_combined_single"
    assert outcome.alias_url == alias_url
    assert outcome.mapped_via_alias is True


def test_domain_consensus_fills_in_when_page_has_no_evidence() -> None:
    known = [
        ListingRecord(url_id=100 + i, url=f"https://label.bandcamp.com/album/r{i}", license=4 if i < 23 else 3)
        for i in range(25)
    ]
    consensus = build_domain_consensus(known, valid_ids=INDEX.valid_ids)

    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>no license markers</html>", request=request)

    record = ListingRecord(url_id=1, url="https://label.bandcamp.com/album/unlabeled")
    outcome = _resolve(handler, record, consensus=consensus, domain_min_purity=0.9)

    assert outcome.mapped is not None
    assert outcome.mapped.bc_id == 4
    assert outcome.mapped.source == "domain_consensus"

    strict = _resolve(handler, record, consensus=consensus)
    assert strict.mapped is None
    assert strict.reason == "unresolved_status_200"


def test_conflicting_evidence_is_reported_as_ambiguous() -> None:
    page = (
        '<div id="license"><a href="https://creativecommons.org/licenses/by-nc/3.0/">cc</a></div>'
        '"license_name":"attribution_non_commercial_share_alike"'
    )

    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text=page, request=request)

    outcome = _resolve(handler, ListingRecord(url_id=2, url="https://artist.bandcamp.com/album/mixed"))

    assert outcome.mapped is None
    assert outcome.reason == "ambiguous_license_evidence"


def test_transport_failure_becomes_fetch_error_reason() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("name resolution failed", request=request)

    outcome = _resolve(handler, ListingRecord(url_id=3, url="https://artist.bandcamp.com/album/offline"))

    assert outcome.status is None
    assert outcome.reason == "fetch_error:name resolution failed"


def test_not_found_without_fallbacks_stays_unresolved() -> None:
    requested: list[str] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        requested.append(str(request.url))
        return httpx.Response(404, request=request)

    outcome = _resolve(
        handler,
        ListingRecord(url_id=4, url=GONE_URL),
        use_archive=False,
        use_search_alias=False,
        use_domain_consensus=False,
    )

    assert outcome.reason == "unresolved_status_404"
    assert outcome.not_found is True
    assert requested == [GONE_URL]


def test_archive_is_not_consulted_for_server_errors() -> None:
    requested: list[str] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        requested.append(request.url.host)
        return httpx.Response(500, request=request)

    outcome = _resolve(handler, ListingRecord(url_id=5, url="https://artist.bandcamp.com/album/flaky"))

    assert outcome.reason == "unresolved_status_500"
    assert requested == ["artist.bandcamp.com"]
