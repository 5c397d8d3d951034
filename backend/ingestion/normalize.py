from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from dateutil import parser as date_parser
from loguru import logger

from tracker.core.config import settings
from tracker.domain import (
    EventGroupRecord,
    EventRecord,
    MarketRecord,
    MarketStatus,
    OutcomeRecord,
    utcnow,
)


POLYMARKET_EVENT_URL = "https://polymarket.com/event/{slug}"


def _as_list(value: Any) -> list[Any]:
    """Return value as a list when possible, decoding JSON strings."""
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return []
        return parsed if isinstance(parsed, list) else []
    return []


def _parse_datetime(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        parsed = date_parser.isoparse(str(value))
    except (ValueError, TypeError):
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _parse_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_bool(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def _event_url(slug: str | None) -> str | None:
    return POLYMARKET_EVENT_URL.format(slug=slug) if slug else None


def _build_outcomes(raw_market: dict[str, Any], closed: bool, threshold: float) -> list[OutcomeRecord]:
    tokens = [token for token in _as_list(raw_market.get("tokens")) if isinstance(token, dict)]
    labels = _as_list(raw_market.get("outcomes"))
    prices = _as_list(raw_market.get("outcomePrices"))
    token_ids = _as_list(raw_market.get("clobTokenIds"))

    def token_id_at(index: int) -> str | None:
        if index < len(token_ids) and token_ids[index]:
            return str(token_ids[index])
        if index < len(tokens) and tokens[index].get("token_id"):
            return str(tokens[index]["token_id"])
        return None

    if labels and (prices or not tokens):
        outcomes: list[OutcomeRecord] = []
        for index, label in enumerate(labels):
            price = _parse_float(prices[index]) if index < len(prices) else None
            outcomes.append(
                OutcomeRecord(
                    label=str(label),
                    token_id=token_id_at(index),
                    price=price,
                    winner=closed and price is not None and price > threshold,
                )
            )
        return outcomes

    outcomes = []
    for index, token in enumerate(tokens):
        price = _parse_float(token.get("price"))
        winner = bool(token.get("winner"))
        if closed and index < len(prices):
            price = _parse_float(prices[index])
            winner = price is not None and price > threshold
        label = token.get("outcome") or (labels[index] if index < len(labels) else f"Outcome {index + 1}")
        outcomes.append(
            OutcomeRecord(label=str(label), token_id=token_id_at(index), price=price, winner=winner)
        )
    return outcomes


def normalize_market(
    raw_market: dict[str, Any],
    *,
    event_id: str | None = None,
    event_slug: str | None = None,
    winner_threshold: float | None = None,
) -> MarketRecord:
    raw_id = raw_market.get("id") or raw_market.get("marketId")
    if not raw_id:
        raise ValueError("market payload has no id")
    threshold = settings.winner_price_threshold if winner_threshold is None else winner_threshold
    closed = bool(_as_bool(raw_market.get("closed")))
    outcomes = _build_outcomes(raw_market, closed, threshold)

    winning_outcome = None
    if closed:
        winning_outcome = next((outcome.label for outcome in outcomes if outcome.winner), None)

    return MarketRecord(
        market_id=str(raw_id),
        event_id=event_id,
        question=raw_market.get("question") or raw_market.get("title") or "",
        status=MarketStatus.RESOLVED if closed else MarketStatus.ACTIVE,
        slug=raw_market.get("slug"),
        description=raw_market.get("description"),
        question_id=raw_market.get("questionID") or raw_market.get("question_id"),
        condition_id=raw_market.get("conditionId") or raw_market.get("condition_id"),
        price=_parse_float(raw_market.get("lastTradePrice")),
        volume=_parse_float(raw_market.get("volume")) or 0.0,
        volume_usd=_parse_float(raw_market.get("volumeNum") or raw_market.get("volume_usd")) or 0.0,
        liquidity=_parse_float(raw_market.get("liquidity")) or 0.0,
        outcomes=outcomes,
        winning_outcome=winning_outcome,
        is_ambiguous=closed and bool(outcomes) and winning_outcome is None,
        start_date=_parse_datetime(raw_market.get("startDate") or raw_market.get("start_date")),
        end_date=_parse_datetime(raw_market.get("endDate") or raw_market.get("end_date")),
        resolved_at=_parse_datetime(raw_market.get("closedTime")) if closed else None,
        url=_event_url(event_slug),
    )


def normalize_event(
    raw_event: dict[str, Any], *, winner_threshold: float | None = None
) -> EventGroupRecord:
    """Extract an event and its markets; unparseable markets are dropped."""

    raw_id = raw_event.get("id")
    if not raw_id:
        raise ValueError("event payload has no id")
    event_id = str(raw_id)
    slug = raw_event.get("slug")

    markets: list[MarketRecord] = []
    for raw_market in _as_list(raw_event.get("markets")):
        if not isinstance(raw_market, dict):
            logger.warning("Dropping non-object market entry in event {}", event_id)
            continue
        try:
            markets.append(
                normalize_market(
                    raw_market,
                    event_id=event_id,
                    event_slug=slug,
                    winner_threshold=winner_threshold,
                )
            )
        except (TypeError, ValueError, KeyError, AttributeError) as exc:
            logger.warning("Dropping unparseable market in event {}: {}", event_id, exc)

    closed = bool(_as_bool(raw_event.get("closed")))
    tags = [
        str(tag.get("label") or tag.get("slug"))
        for tag in _as_list(raw_event.get("tags"))
        if isinstance(tag, dict) and (tag.get("label") or tag.get("slug"))
    ]
    event = EventRecord(
        event_id=event_id,
        title=raw_event.get("title"),
        status=MarketStatus.RESOLVED if closed else MarketStatus.ACTIVE,
        ticker=raw_event.get("ticker"),
        slug=slug,
        description=raw_event.get("description"),
        start_date=_parse_datetime(raw_event.get("startDate")),
        creation_date=_parse_datetime(raw_event.get("creationDate")),
        end_date=_parse_datetime(raw_event.get("endDate") or raw_event.get("end_date")),
        volume=_parse_float(raw_event.get("volume")) or 0.0,
        liquidity=_parse_float(raw_event.get("liquidity")) or 0.0,
        active=_as_bool(raw_event.get("active")),
        closed=closed,
        archived=_as_bool(raw_event.get("archived")),
        featured=_as_bool(raw_event.get("featured")),
        restricted=_as_bool(raw_event.get("restricted")),
        new=_as_bool(raw_event.get("new")),
        tags=tags,
        last_update=utcnow(),
        url=_event_url(slug),
    )
    event.recount(markets)
    return EventGroupRecord(event=event, markets=markets)


__all__ = ["normalize_event", "normalize_market"]
