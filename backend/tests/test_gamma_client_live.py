from __future__ import annotations

import asyncio

import pytest

from ingestion.client import GammaClient
from ingestion.dispatcher import RequestDispatcher
from ingestion.errors import DispatchError
from ingestion.normalize import normalize_event


@pytest.mark.network
def test_gamma_client_live_fetches_active_events():
    async def fetch():
        async with RequestDispatcher(user_agent="PolymarketTracker/1.0") as dispatcher:
            client = GammaClient(dispatcher, page_size=5)
            return await client.fetch_events(closed=False)

    try:
        events = asyncio.run(fetch())
    except DispatchError as exc:
        pytest.skip(f"Gamma API unavailable: {exc}")

    assert events, "Gamma API returned no events"
    for raw_event in events:
        group = normalize_event(raw_event)
        assert group.event.event_id
        for market in group.markets:
            assert market.market_id
            assert market.question
