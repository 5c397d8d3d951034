from __future__ import annotations

import asyncio
import time

import httpx
import pytest

from ingestion.dispatcher import RequestDispatcher
from ingestion.errors import (
    DispatchTimeout,
    MalformedResponse,
    RateLimited,
    RetriesExhausted,
    UpstreamError,
)


def _dispatcher(handler, **kwargs) -> RequestDispatcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    kwargs.setdefault("min_interval", 0)
    kwargs.setdefault("retry_delay", 0)
    return RequestDispatcher(client, **kwargs)


def test_get_returns_decoded_json_with_user_agent():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[{"id": "1"}])

    async def scenario():
        dispatcher = _dispatcher(handler, user_agent="PolymarketTracker/1.0")
        return await dispatcher.get("https://gamma.test/events", params={"limit": "1"})

    assert asyncio.run(scenario()) == [{"id": "1"}]
    assert seen[0].headers["User-Agent"] == "PolymarketTracker/1.0"
    assert seen[0].url.params["limit"] == "1"


def test_dispatches_respect_minimum_spacing():
    stamps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        stamps.append(time.monotonic())
        return httpx.Response(200, json={})

    async def scenario():
        dispatcher = _dispatcher(handler, min_interval=0.05)
        await asyncio.gather(
            dispatcher.get("https://gamma.test/a"),
            dispatcher.get("https://gamma.test/b"),
            dispatcher.get("https://gamma.test/c"),
        )

    asyncio.run(scenario())
    assert len(stamps) == 3
    gaps = [later - earlier for earlier, later in zip(stamps, stamps[1:])]
    assert all(gap >= 0.045 for gap in gaps)


def test_rate_limit_is_retried_until_budget_is_spent():
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(429)

    async def scenario():
        dispatcher = _dispatcher(handler, max_retries=2)
        await dispatcher.get("https://gamma.test/events")

    with pytest.raises(RetriesExhausted) as excinfo:
        asyncio.run(scenario())

    assert calls == 3
    assert excinfo.value.attempts == 3
    assert isinstance(excinfo.value.last_error, RateLimited)
    assert isinstance(excinfo.value.__cause__, RateLimited)
    assert "gamma.test/events" in excinfo.value.target


def test_rate_limit_then_success_resolves_caller():
    responses = iter([httpx.Response(429), httpx.Response(200, json={"ok": True})])

    def handler(request: httpx.Request) -> httpx.Response:
        return next(responses)

    async def scenario():
        return await _dispatcher(handler).get("https://gamma.test/events")

    assert asyncio.run(scenario()) == {"ok": True}


def test_retried_request_goes_back_to_the_front():
    order: list[str] = []
    failed_once: set[str] = set()

    def handler(request: httpx.Request) -> httpx.Response:
        name = request.url.path.strip("/")
        order.append(name)
        if name == "a" and name not in failed_once:
            failed_once.add(name)
            return httpx.Response(429)
        return httpx.Response(200, json={"name": name})

    async def scenario():
        dispatcher = _dispatcher(handler)
        return await asyncio.gather(
            dispatcher.get("https://gamma.test/a"),
            dispatcher.get("https://gamma.test/b"),
        )

    results = asyncio.run(scenario())
    assert results == [{"name": "a"}, {"name": "b"}]
    assert order == ["a", "a", "b"]


def test_timeout_is_surfaced_without_retry():
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        raise httpx.ReadTimeout("too slow", request=request)

    async def scenario():
        await _dispatcher(handler, max_retries=3).get("https://gamma.test/events")

    with pytest.raises(DispatchTimeout):
        asyncio.run(scenario())
    assert calls == 1


def test_server_error_is_surfaced_immediately():
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(500, text="boom")

    async def scenario():
        await _dispatcher(handler).get("https://gamma.test/events")

    with pytest.raises(UpstreamError) as excinfo:
        asyncio.run(scenario())
    assert calls == 1
    assert excinfo.value.status_code == 500


def test_connection_reset_is_retried():
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise httpx.ReadError("connection reset by peer", request=request)
        return httpx.Response(200, json={"result": "0x10"})

    async def scenario():
        return await _dispatcher(handler).post("https://rpc.test", json={"method": "eth_blockNumber"})

    assert asyncio.run(scenario()) == {"result": "0x10"}
    assert calls == 2


def test_non_json_body_is_malformed():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>not json</html>")

    async def scenario():
        await _dispatcher(handler).get("https://gamma.test/events")

    with pytest.raises(MalformedResponse):
        asyncio.run(scenario())


def test_failure_of_one_request_does_not_block_the_next():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/bad":
            return httpx.Response(404)
        return httpx.Response(200, json={"ok": True})

    async def scenario():
        dispatcher = _dispatcher(handler)
        return await asyncio.gather(
            dispatcher.get("https://gamma.test/bad"),
            dispatcher.get("https://gamma.test/good"),
            return_exceptions=True,
        )

    bad, good = asyncio.run(scenario())
    assert isinstance(bad, UpstreamError)
    assert good == {"ok": True}
