from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field

import httpx

from license_resolver.core.config import DEFAULT_RETRY_STATUSES

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[None]]


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    timeout_seconds: float = 15.0
    max_retries: int = 2
    retry_statuses: frozenset[int] = field(default_factory=lambda: frozenset(DEFAULT_RETRY_STATUSES))
    backoff_base_seconds: float = 0.6
    backoff_max_seconds: float = 8.0

    def with_retries(self, max_retries: int) -> "RetryPolicy":
        return RetryPolicy(
            timeout_seconds=self.timeout_seconds,
            max_retries=max_retries,
            retry_statuses=self.retry_statuses,
            backoff_base_seconds=self.backoff_base_seconds,
            backoff_max_seconds=self.backoff_max_seconds,
        )


@dataclass(slots=True)
class FetchResult:
    """Outcome of one fetch; ``ok`` is False only for transport-level failures."""

    url: str
    ok: bool
    status_code: int | None
    final_url: str | None
    text: str | None
    error: str | None = None
    attempts: int = 1


def backoff_delay(attempt: int, *, base_seconds: float, max_seconds: float) -> float:
    if base_seconds <= 0:
        return 0.0
    return min(max_seconds, base_seconds * 2 ** max(0, attempt - 1))


def retry_policy_for(
    *,
    timeout_seconds: float,
    max_retries: int,
    retry_statuses: Iterable[int],
    backoff_base_seconds: float,
    backoff_max_seconds: float,
) -> RetryPolicy:
    return RetryPolicy(
        timeout_seconds=timeout_seconds,
        max_retries=max_retries,
        retry_statuses=frozenset(retry_statuses),
        backoff_base_seconds=backoff_base_seconds,
        backoff_max_seconds=backoff_max_seconds,
    )


async def fetch_text(client: httpx.AsyncClient, url: str, *, timeout_seconds: float) -> FetchResult:
    try:
        response = await asyncio.wait_for(client.get(url, timeout=timeout_seconds), timeout=timeout_seconds)
    except (httpx.HTTPError, httpx.InvalidURL, ValueError, asyncio.TimeoutError) as exc:
        # ValueError covers IDNA and urllib parse failures on malformed hosts.
        return FetchResult(
            url=url,
            ok=False,
            status_code=None,
            final_url=None,
            text=None,
            error=_describe_error(exc, timeout_seconds),
        )
    return FetchResult(
        url=url,
        ok=True,
        status_code=int(response.status_code),
        final_url=str(response.url),
        text=response.text,
    )


async def fetch_with_retries(
    client: httpx.AsyncClient,
    url: str,
    *,
    policy: RetryPolicy,
    sleep: Sleeper = asyncio.sleep,
) -> FetchResult:
    attempts = policy.max_retries + 1
    attempt = 1
    while True:
        fetched = await fetch_text(client, url, timeout_seconds=policy.timeout_seconds)
        fetched.attempts = attempt
        if (fetched.ok and fetched.status_code not in policy.retry_statuses) or attempt >= attempts:
            return fetched

        delay = backoff_delay(
            attempt,
            base_seconds=policy.backoff_base_seconds,
            max_seconds=policy.backoff_max_seconds,
        )
        logger.debug(
            "retrying fetch url=%s attempt=%s status=%s error=%s delay=%.2fs",
            url,
            attempt,
            fetched.status_code,
            fetched.error,
            delay,
        )
        if delay > 0:
            await sleep(delay)
        attempt += 1


def _describe_error(exc: BaseException, timeout_seconds: float) -> str:
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return f"timeout after {timeout_seconds:g}s"
    message = str(exc).strip()
    return message or type(exc).__name__
