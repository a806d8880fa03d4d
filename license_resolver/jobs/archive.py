from __future__ import annotations

import asyncio
import json
import logging
from typing import Any
from urllib.parse import urlencode

import httpx

from license_resolver.jobs.fetcher import FetchResult, RetryPolicy, Sleeper, fetch_with_retries

logger = logging.getLogger(__name__)

WAYBACK_AVAILABLE_URL = "https://archive.org/wayback/available"
WAYBACK_CDX_URL = "https://web.archive.org/cdx/search/cdx"
WAYBACK_SNAPSHOT_BASE_URL = "https://web.archive.org/web"


class WaybackClient:
    """Looks up the latest good snapshot of a URL in the Internet Archive."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        policy: RetryPolicy,
        available_url: str = WAYBACK_AVAILABLE_URL,
        cdx_url: str = WAYBACK_CDX_URL,
        snapshot_base_url: str = WAYBACK_SNAPSHOT_BASE_URL,
        sleep: Sleeper | None = None,
    ) -> None:
        self.client = client
        self.policy = policy
        self.available_url = available_url
        self.cdx_url = cdx_url
        self.snapshot_base_url = snapshot_base_url.rstrip("/")
        self.sleep = sleep or asyncio.sleep

    async def find_snapshot_url(self, url: str) -> str | None:
        available = await self._fetch(f"{self.available_url}?{urlencode({'url': url})}")
        snapshot_url = parse_available_payload(_decode_json(available))
        if snapshot_url:
            return snapshot_url

        query = urlencode(
            {
                "output": "json",
                "fl": "timestamp,original,statuscode",
                "mimetype": "text/html",
                "filter": "statuscode:200",
                "limit": 1,
                "url": url,
            }
        )
        cdx = await self._fetch(f"{self.cdx_url}?{query}")
        return parse_cdx_payload(_decode_json(cdx), snapshot_base_url=self.snapshot_base_url)

    async def fetch_snapshot(self, snapshot_url: str) -> FetchResult:
        return await self._fetch(snapshot_url)

    async def _fetch(self, url: str) -> FetchResult:
        return await fetch_with_retries(self.client, url, policy=self.policy, sleep=self.sleep)


def parse_available_payload(payload: Any) -> str | None:
    if not isinstance(payload, dict):
        return None
    snapshots = payload.get("archived_snapshots")
    closest = snapshots.get("closest") if isinstance(snapshots, dict) else None
    if not isinstance(closest, dict):
        return None
    if closest.get("available") is not True or not isinstance(closest.get("url"), str):
        return None
    return closest["url"]


def parse_cdx_payload(payload: Any, *, snapshot_base_url: str = WAYBACK_SNAPSHOT_BASE_URL) -> str | None:
    # First row is the CDX header.
    if not isinstance(payload, list) or len(payload) < 2 or not isinstance(payload[1], list):
        return None
    row = payload[1]
    if len(row) < 2:
        return None
    timestamp, original = row[0], row[1]
    if not timestamp or not original:
        return None
    return f"{snapshot_base_url.rstrip('/')}/{timestamp}/{original}"


def _decode_json(fetched: FetchResult) -> Any:
    if not fetched.ok or fetched.status_code != 200 or not fetched.text:
        return None
    try:
        return json.loads(fetched.text)
    except json.JSONDecodeError:
        logger.debug("ignoring undecodable archive payload from %s", fetched.url)
        return None
