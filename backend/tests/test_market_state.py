from __future__ import annotations

import asyncio

from ingestion.normalize import normalize_event
from tracker.domain import MarketResolved, MarketStatus, PriceUpdate
from tracker.services.market_state import MarketStateTable


def _table(*payloads) -> MarketStateTable:
    table = MarketStateTable()

    async def load():
        for payload in payloads:
            await table.replace_event(normalize_event(payload, winner_threshold=0.9))

    asyncio.run(load())
    return table


def test_replace_event_reports_new_then_updated(sample_event_payload):
    table = MarketStateTable()

    async def scenario():
        first = await table.replace_event(normalize_event(sample_event_payload))
        second = await table.replace_event(normalize_event(sample_event_payload))
        return first, second

    assert asyncio.run(scenario()) == (True, False)
    assert len(table) == 2
    assert len(table.list_events()) == 1


def test_replacing_an_event_drops_markets_it_no_longer_lists(sample_event_payload, resolved_event_payload):
    table = _table(sample_event_payload, resolved_event_payload)
    assert table.get_market("253592") is None
    assert table.get_market("253591").status is MarketStatus.RESOLVED
    assert table.list_events(MarketStatus.ACTIVE) == []


def test_price_update_matches_token_then_market_id(sample_event_payload):
    table = _table(sample_event_payload)

    update = asyncio.run(table.apply_price_update("101", 0.95))
    assert isinstance(update, PriceUpdate)
    assert update.market_id == "253591"
    assert update.old_price == 0.93
    assert update.event_id == "16085"
    market = table.get_market("253591")
    assert market.price == 0.95
    assert market.outcomes[0].price == 0.95

    by_market_id = asyncio.run(table.apply_price_update("253592", 0.61))
    assert by_market_id.market_id == "253592"
    assert asyncio.run(table.apply_price_update("unknown", 0.5)) is None


def test_mark_resolved_transitions_in_place_and_recounts(sample_event_payload):
    table = _table(sample_event_payload)

    resolved = asyncio.run(table.mark_resolved("101"))
    assert isinstance(resolved, MarketResolved)
    assert resolved.active_markets_count == 1
    assert resolved.resolved_markets_count == 1
    assert table.get_market("253591").status is MarketStatus.RESOLVED
    assert table.get_market("253591").resolved_at is not None
    assert table.get_event("16085").event.status is MarketStatus.ACTIVE

    # Already resolved markets are not resolved twice.
    assert asyncio.run(table.mark_resolved("253591")) is None
    # Resolved markets ignore further price updates.
    assert asyncio.run(table.apply_price_update("101", 0.99)) is None

    asyncio.run(table.mark_resolved("203"))
    event = table.get_event("16085").event
    assert event.status is MarketStatus.RESOLVED
    assert event.active_markets_count == 0
    assert event.resolved_markets_count == 2


def test_reads_return_copies(sample_event_payload):
    table = _table(sample_event_payload)
    market = table.get_market("253591")
    market.price = 0.0
    assert table.get_market("253591").price == 0.93

    snapshot = table.snapshot()
    snapshot.markets[0].question = "mutated"
    assert table.get_market(snapshot.markets[0].market_id).question != "mutated"


def test_listings_and_stats(sample_event_payload, resolved_event_payload):
    other = dict(resolved_event_payload, id="99", slug="other")
    other["markets"] = [dict(resolved_event_payload["markets"][0], id="300", clobTokenIds='["301", "302"]')]
    table = _table(sample_event_payload, other)

    assert [g.event.event_id for g in table.top_events(MarketStatus.ACTIVE)] == ["16085"]
    assert [g.event.event_id for g in table.top_events(MarketStatus.RESOLVED)] == ["99"]
    assert [g.event.event_id for g in table.multi_outcome_events(MarketStatus.ACTIVE)] == ["16085"]
    assert table.multi_outcome_events(MarketStatus.RESOLVED) == []

    stats = table.stats()
    assert stats.total_events == 2
    assert stats.active_events == 1
    assert stats.resolved_events == 1
    assert stats.total_markets == 3
    assert stats.multi_outcome_markets == 1
    assert stats.binary_markets == 2

    assert table.position_id_for("253592", "cut 50") == "202"
    assert table.position_id_for("253592", "Hike") is None
    assert table.position_id_for("missing", "Yes") is None


def test_restore_rebuilds_counters_and_index(sample_event_payload):
    source = _table(sample_event_payload)
    snapshot = source.snapshot()
    for market in snapshot.markets:
        if market.market_id == "253591":
            market.status = MarketStatus.RESOLVED

    restored = MarketStateTable()
    asyncio.run(restored.restore(snapshot))

    event = restored.get_event("16085").event
    assert event.resolved_markets_count == 1
    assert event.active_markets_count == 1
    assert asyncio.run(restored.apply_price_update("201", 0.7)).market_id == "253592"


def test_refresh_does_not_reopen_a_streamed_resolution(sample_event_payload):
    table = _table(sample_event_payload)

    async def scenario():
        await table.mark_resolved("101")
        resolved_at = table.get_market("253591").resolved_at
        # Gamma still lists the market as open.
        created = await table.replace_event(normalize_event(sample_event_payload, winner_threshold=0.9))
        return created, resolved_at

    created, resolved_at = asyncio.run(scenario())

    assert created is False
    market = table.get_market("253591")
    assert market.status is MarketStatus.RESOLVED
    assert market.resolved_at == resolved_at
    assert table.get_market("253592").status is MarketStatus.ACTIVE
    event = table.get_event("16085").event
    assert event.resolved_markets_count == 1
    assert event.active_markets_count == 1
    assert asyncio.run(table.apply_price_update("101", 0.5)) is None
