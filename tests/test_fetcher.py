from __future__ import annotations

import asyncio

import httpx

from license_resolver.jobs.fetcher import FetchResult, RetryPolicy, backoff_delay, fetch_with_retries


def _recording_sleep(delays: list[float]):
    async def sleep(seconds: float) -> None:
        delays.append(seconds)

    return sleep


def _fetch(
    handler,
    policy: RetryPolicy,
    delays: list[float],
    *,
    url: str = "https://artist.bandcamp.com/album/record",
) -> FetchResult:
    async def run() -> FetchResult:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await fetch_with_retries(
                client,
                url,
                policy=policy,
                sleep=_recording_sleep(delays),
            )

    return asyncio.run(run())


def test_backoff_delay_doubles_and_caps() -> None:
    assert backoff_delay(1, base_seconds=0.6, max_seconds=8) == 0.6
    assert backoff_delay(2, base_seconds=0.6, max_seconds=8) == 1.2
    assert backoff_delay(3, base_seconds=0.6, max_seconds=8) == 2.4
    assert backoff_delay(6, base_seconds=0.6, max_seconds=8) == 8
    assert backoff_delay(3, base_seconds=0, max_seconds=8) == 0


def test_fetch_retries_retryable_status_then_succeeds() -> None:
    calls: list[str] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        calls.append(str(request.url))
        if len(calls) == 1:
            return httpx.Response(status_code=503, request=request)
        return httpx.Response(status_code=200, text="<html>ok</html>", request=request)

    delays: list[float] = []
    result = _fetch(handler, RetryPolicy(max_retries=2), delays)

    assert result.ok is True
    assert result.status_code == 200
    assert result.text == "<html>ok</html>"
    assert result.attempts == 2
    assert delays == [0.6]


def test_fetch_returns_last_retryable_response_when_attempts_run_out() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code=429, request=request)

    delays: list[float] = []
    result = _fetch(handler, RetryPolicy(max_retries=2, backoff_base_seconds=1, backoff_max_seconds=1.5), delays)

    assert result.ok is True
    assert result.status_code == 429
    assert result.attempts == 3
    assert delays == [1, 1.5]


def test_fetch_does_not_retry_not_found() -> None:
    calls: list[str] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        calls.append(str(request.url))
        return httpx.Response(status_code=404, request=request)

    delays: list[float] = []
    result = _fetch(handler, RetryPolicy(max_retries=2), delays)

    assert result.status_code == 404
    assert result.attempts == 1
    assert len(calls) == 1
    assert delays == []


def test_fetch_retries_transport_errors_and_reports_message() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    delays: list[float] = []
    result = _fetch(handler, RetryPolicy(max_retries=1), delays)

    assert result.ok is False
    assert result.status_code is None
    assert result.error == "connection refused"
    assert result.attempts == 2
    assert delays == [0.6]


def test_fetch_reports_timeouts() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("read timed out", request=request)

    delays: list[float] = []
    result = _fetch(handler, RetryPolicy(max_retries=0, timeout_seconds=2.5), delays)

    assert result.ok is False
    assert result.error == "timeout after 2.5s"
    assert delays == []


def test_with_retries_keeps_other_settings() -> None:
    policy = RetryPolicy(timeout_seconds=3, max_retries=2, retry_statuses=frozenset({500}))
    archive_policy = policy.with_retries(5)

    assert archive_policy.max_retries == 5
    assert archive_policy.timeout_seconds == 3
    assert archive_policy.retry_statuses == frozenset({500})


def test_fetch_applies_configured_timeout_to_the_request() -> None:
    timeouts: list[dict[str, float]] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        timeouts.append(request.extensions["timeout"])
        return httpx.Response(status_code=200, text="<html>ok</html>", request=request)

    delays: list[float] = []
    result = _fetch(handler, RetryPolicy(max_retries=0, timeout_seconds=15), delays)

    assert result.ok is True
    assert timeouts == [{"connect": 15, "read": 15, "write": 15, "pool": 15}]


def test_fetch_reports_malformed_urls_instead_of_raising() -> None:
    calls: list[str] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        calls.append(str(request.url))
        return httpx.Response(status_code=200, request=request)

    delays: list[float] = []
    for url in ("http://a\x00b.com/", "https://xn--a.bandcamp.com/album/x"):
        result = _fetch(handler, RetryPolicy(max_retries=1), delays, url=url)

        assert result.ok is False
        assert result.status_code is None
        assert result.error
        assert result.attempts == 2

    assert calls == []
