from __future__ import annotations

import asyncio

import httpx

from ingestion.client import GammaClient
from ingestion.dispatcher import RequestDispatcher


def _client(handler, page_size: int = 2) -> GammaClient:
    dispatcher = RequestDispatcher(
        httpx.AsyncClient(transport=httpx.MockTransport(handler)), min_interval=0, retry_delay=0
    )
    return GammaClient(dispatcher, base_url="https://gamma.test/", page_size=page_size)


def test_iter_events_paginates_until_short_page():
    seen: list[httpx.URL] = []
    events = [{"id": str(index)} for index in range(5)]

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url)
        offset = int(request.url.params["offset"])
        limit = int(request.url.params["limit"])
        return httpx.Response(200, json=events[offset : offset + limit])

    async def collect():
        pages = []
        async for page in _client(handler).iter_events(closed=False):
            pages.append([event["id"] for event in page])
        return pages

    assert asyncio.run(collect()) == [["0", "1"], ["2", "3"], ["4"]]
    assert [url.params["offset"] for url in seen] == ["0", "2", "4"]
    assert all(url.params["closed"] == "false" for url in seen)
    assert all(url.path == "/events" for url in seen)


def test_fetch_accepts_wrapped_payloads_and_drops_unknown_filters():
    seen: list[httpx.URL] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url)
        return httpx.Response(200, json={"data": [{"id": "1"}, "junk"]})

    records = asyncio.run(
        _client(handler).fetch_markets(clob_token_ids=["101", "102"], not_a_filter="x")
    )

    assert records == [{"id": "1"}]
    assert seen[0].path == "/markets"
    assert seen[0].params["clob_token_ids"] == "101,102"
    assert "not_a_filter" not in seen[0].params
