from __future__ import annotations

import asyncio
from datetime import date

import httpx

from ingestion.client import GammaClient
from ingestion.dispatcher import RequestDispatcher
from ingestion.service import MarketRefreshService
from tracker.domain import MarketStatus
from tracker.services.market_state import MarketStateTable


class MemoryStore:
    def __init__(self) -> None:
        self.saved = []

    def save(self, snapshot) -> None:
        self.saved.append(snapshot)


def _service(handler, store=None) -> tuple[MarketRefreshService, MarketStateTable]:
    dispatcher = RequestDispatcher(
        httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        min_interval=0,
        retry_delay=0,
        max_retries=0,
    )
    client = GammaClient(dispatcher, base_url="https://gamma.test", page_size=10)
    state = MarketStateTable()
    service = MarketRefreshService(
        client, state, store=store, resolved_since=date(2024, 10, 10), winner_threshold=0.9
    )
    return service, state


def test_full_update_sweeps_active_and_resolved(sample_event_payload, resolved_event_payload):
    other_resolved = dict(resolved_event_payload, id="99", slug="other")
    other_resolved["markets"] = [
        dict(resolved_event_payload["markets"][0], id="300", clobTokenIds='["301", "302"]')
    ]
    seen: list[httpx.URL] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url)
        if request.url.params["closed"] == "false":
            return httpx.Response(200, json=[sample_event_payload, {"title": "no id"}])
        return httpx.Response(200, json=[other_resolved])

    store = MemoryStore()
    service, state = _service(handler, store=store)

    summary = asyncio.run(service.perform_full_update(include_resolved=True))

    assert summary.active.new_events == 1
    assert summary.active.dropped_events == 1
    assert summary.resolved.new_events == 1
    assert summary.saved
    assert summary.stats["total_events"] == 2
    assert len(store.saved) == 1
    assert state.last_update is not None
    assert state.get_market("300").status is MarketStatus.RESOLVED
    resolved_call = next(url for url in seen if url.params["closed"] == "true")
    assert resolved_call.params["end_date_min"] == "2024-10-10T00:00:00Z"


def test_second_update_counts_updates_and_skips_resolved_by_default(sample_event_payload):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["closed"] == "false"
        return httpx.Response(200, json=[sample_event_payload])

    service, _ = _service(handler)

    async def scenario():
        await service.perform_full_update()
        return await service.perform_full_update()

    summary = asyncio.run(scenario())
    assert summary.active.new_events == 0
    assert summary.active.updated_events == 1
    assert summary.resolved is None
    assert not summary.saved


def test_failed_page_keeps_already_applied_state(sample_event_payload):
    first_page = [dict(sample_event_payload, id=str(index)) for index in range(10)]
    for index, event in enumerate(first_page):
        event["markets"] = [
            dict(market, id=f"{index}-{market.get('id')}") for market in sample_event_payload["markets"][:1]
        ]

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params["offset"] == "0":
            return httpx.Response(200, json=first_page)
        return httpx.Response(503)

    service, state = _service(handler)
    result = asyncio.run(service.track_active_events())

    assert result.failed
    assert result.pages == 1
    assert result.new_events == 10
    assert len(state.list_events()) == 10
