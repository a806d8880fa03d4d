from __future__ import annotations

import asyncio

import httpx

from license_resolver.jobs.alias import AliasFinder, AliasLookup, build_search_queries, extract_album_links
from license_resolver.jobs.fetcher import RetryPolicy


def _lookup(handler, url: str) -> AliasLookup:
    async def run() -> AliasLookup:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await AliasFinder(client, policy=RetryPolicy(max_retries=0)).find(url)

    return asyncio.run(run())


def test_build_search_queries_adds_variant_without_numeric_suffix() -> None:
    assert build_search_queries("https://artist.bandcamp.com/album/my-record-2") == [
        "artist my-record-2",
        "artist my record 2",
        "artist my record",
    ]
    assert build_search_queries("https://artist.bandcamp.com/track/song") == []


def test_extract_album_links_decodes_and_dedupes() -> None:
    html = (
        '<a href="https://new.bandcamp.com/album/my-record?from=search&amp;search_item_id=1">x</a>'
        '<a href="https://new.bandcamp.com/album/my-record">y</a>'
        '<a href="https://new.bandcamp.com/track/song">z</a>'
    )
    assert extract_album_links(html) == ["https://new.bandcamp.com/album/my-record"]


def test_finder_accepts_single_candidate_with_same_slug() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        html = (
            '<a href="https://renamed.bandcamp.com/album/my-record?from=search">match</a>'
            '<a href="https://renamed.bandcamp.com/album/other-record">other</a>'
        )
        return httpx.Response(200, text=html, request=request)

    lookup = _lookup(handler, "https://artist.bandcamp.com/album/my-record")

    assert lookup.reason == "alias_found"
    assert lookup.alias_url == "https://renamed.bandcamp.com/album/my-record"


def test_finder_rejects_multiple_candidates() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        html = (
            '<a href="https://one.bandcamp.com/album/my-record">1</a>'
            '<a href="https://two.bandcamp.com/album/my-record">2</a>'
        )
        return httpx.Response(200, text=html, request=request)

    lookup = _lookup(handler, "https://artist.bandcamp.com/album/my-record")

    assert lookup.alias_url is None
    assert lookup.reason == "ambiguous_alias"
    assert len(lookup.candidates) == 2


def test_finder_tries_each_query_before_giving_up() -> None:
    queries: list[str] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        queries.append(request.url.params["q"])
        return httpx.Response(200, text="<html>no results</html>", request=request)

    lookup = _lookup(handler, "https://artist.bandcamp.com/album/my-record")

    assert lookup.reason == "no_alias_candidate"
    assert queries == ["artist my-record", "artist my record"]


def test_finder_ignores_original_url() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            text='<a href="https://artist.bandcamp.com/album/my-record">same</a>',
            request=request,
        )

    lookup = _lookup(handler, "https://artist.bandcamp.com/album/my-record")

    assert lookup.alias_url is None
    assert lookup.reason == "alias_matches_original"


def test_finder_skips_non_album_urls() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("search should not run")

    assert _lookup(handler, "https://artist.bandcamp.com/").reason == "not_an_album_url"
