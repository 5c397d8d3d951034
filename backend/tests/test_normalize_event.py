from __future__ import annotations

import pytest

from ingestion.normalize import normalize_event, normalize_market
from tracker.domain import MarketStatus


def test_normalize_event_handles_real_payload(sample_event_payload):
    group = normalize_event(sample_event_payload, winner_threshold=0.9)
    event = group.event

    assert event.event_id == "16085"
    assert event.title == "Fed decision in December?"
    assert event.status is MarketStatus.ACTIVE
    assert event.tags == ["Economy", "Fed Rates"]
    assert event.featured is True
    assert event.url == "https://polymarket.com/event/fed-decision-in-december"
    assert event.end_date is not None and event.end_date.tzinfo is not None

    # The market without an id is dropped, not fatal.
    assert [market.market_id for market in group.markets] == ["253591", "253592"]
    assert event.market_ids == ["253591", "253592"]
    assert event.markets_count == 2
    assert event.active_markets_count == 2
    assert event.multi_outcome_markets_count == 1
    assert event.total_volume == pytest.approx(30100200.5 + 15129812.25)


def test_outcomes_decode_json_string_fields(sample_event_payload):
    group = normalize_event(sample_event_payload)
    binary, multi = group.markets

    assert [(o.label, o.token_id, o.price) for o in binary.outcomes] == [
        ("Yes", "101", 0.93),
        ("No", "102", 0.07),
    ]
    assert not any(o.winner for o in binary.outcomes)
    assert binary.winning_outcome is None
    assert not binary.is_ambiguous
    assert binary.price == pytest.approx(0.93)
    assert multi.is_multi_outcome
    assert multi.outcomes_count == 3
    assert [token.position_id for token in multi.outcome_tokens()] == ["201", "202", "203"]


def test_closed_market_marks_winner_above_threshold(resolved_event_payload):
    group = normalize_event(resolved_event_payload, winner_threshold=0.9)
    market = group.markets[0]

    assert group.event.status is MarketStatus.RESOLVED
    assert market.status is MarketStatus.RESOLVED
    assert market.winning_outcome == "Yes"
    assert [o.winner for o in market.outcomes] == [True, False]
    assert market.resolved_at is not None
    assert group.event.resolved_markets_count == 1


def test_threshold_is_strict_and_configurable(resolved_event_payload):
    raw_market = dict(resolved_event_payload["markets"][0], outcomePrices='["0.9", "0.1"]')

    strict = normalize_market(raw_market, winner_threshold=0.9)
    assert strict.winning_outcome is None
    assert strict.is_ambiguous

    relaxed = normalize_market(raw_market, winner_threshold=0.85)
    assert relaxed.winning_outcome == "Yes"
    assert not relaxed.is_ambiguous


def test_tokens_payload_is_used_when_outcome_fields_are_missing():
    market = normalize_market(
        {
            "id": "77",
            "question": "Legacy shape?",
            "closed": False,
            "tokens": [
                {"token_id": "9001", "outcome": "Yes", "price": 0.4},
                {"token_id": "9002", "outcome": "No", "price": 0.6},
            ],
        },
        winner_threshold=0.9,
    )
    assert [(o.label, o.token_id, o.price) for o in market.outcomes] == [
        ("Yes", "9001", 0.4),
        ("No", "9002", 0.6),
    ]


def test_event_without_id_is_rejected():
    with pytest.raises(ValueError):
        normalize_event({"title": "no id"})
