from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from urllib.parse import urlencode

import httpx

from license_resolver.core.urls import (
    account_of,
    album_slug_of,
    decode_html_entities,
    strip_numeric_suffix,
)
from license_resolver.jobs.fetcher import RetryPolicy, Sleeper, fetch_with_retries

logger = logging.getLogger(__name__)

SEARCH_URL = "https://bandcamp.com/search"
_ALBUM_LINK_RE = re.compile(r'href="(https://[^"]+bandcamp\.com/album/[^"?]+)[^"]*"', re.IGNORECASE)


@dataclass(slots=True)
class AliasLookup:
    alias_url: str | None
    reason: str
    candidates: tuple[str, ...] = ()


def build_search_queries(url: str) -> list[str]:
    account = account_of(url)
    slug = album_slug_of(url)
    if not account or not slug:
        return []

    queries = [f"{account} {slug}", f"{account} {slug.replace('-', ' ')}"]
    trimmed = strip_numeric_suffix(slug)
    if trimmed:
        queries.append(f"{account} {trimmed.replace('-', ' ')}")
    return queries


def extract_album_links(html: str) -> list[str]:
    links: list[str] = []
    seen: set[str] = set()
    for match in _ALBUM_LINK_RE.finditer(html):
        link = decode_html_entities(match.group(1))
        if link in seen:
            continue
        seen.add(link)
        links.append(link)
    return links


class AliasFinder:
    """Finds a listing's album under a different URL through platform search.

    A candidate is accepted only when exactly one distinct album link with the
    same slug turns up; two or more is treated as no alias at all.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        policy: RetryPolicy,
        search_url: str = SEARCH_URL,
        sleep: Sleeper | None = None,
    ) -> None:
        self.client = client
        self.policy = policy
        self.search_url = search_url
        self.sleep = sleep or asyncio.sleep

    async def find(self, url: str) -> AliasLookup:
        slug = album_slug_of(url)
        queries = build_search_queries(url)
        if not slug or not queries:
            return AliasLookup(alias_url=None, reason="not_an_album_url")

        candidates: list[str] = []
        for query in queries:
            searched = await fetch_with_retries(
                self.client,
                f"{self.search_url}?{urlencode({'q': query})}",
                policy=self.policy,
                sleep=self.sleep,
            )
            if not searched.ok or not searched.text:
                continue

            for link in extract_album_links(searched.text):
                if album_slug_of(link) == slug and link not in candidates:
                    candidates.append(link)

            if len(candidates) > 1:
                logger.debug("alias search ambiguous for url=%s candidates=%s", url, candidates)
                return AliasLookup(alias_url=None, reason="ambiguous_alias", candidates=tuple(candidates))
            if len(candidates) == 1:
                break

        if not candidates:
            return AliasLookup(alias_url=None, reason="no_alias_candidate")

        alias_url = candidates[0]
        if alias_url == url:
            return AliasLookup(alias_url=None, reason="alias_matches_original", candidates=tuple(candidates))
        return AliasLookup(alias_url=alias_url, reason="alias_found", candidates=tuple(candidates))
