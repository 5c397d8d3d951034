"""In-memory market-state table shared by the refresh job and the stream channel."""

from __future__ import annotations

import asyncio
import copy
from dataclasses import dataclass
from datetime import datetime

from loguru import logger

from tracker.domain import (
    EventGroupRecord,
    EventRecord,
    MarketRecord,
    MarketResolved,
    MarketSnapshot,
    MarketStatus,
    PriceUpdate,
    utcnow,
)


@dataclass(slots=True)
class MarketStats:
    total_events: int
    active_events: int
    resolved_events: int
    total_markets: int
    active_markets: int
    resolved_markets: int
    multi_outcome_markets: int
    binary_markets: int
    total_volume: float
    last_update: datetime | None


class MarketStateTable:
    """Markets keyed by id with a ``status`` field, plus their owning events.

    Writers serialize on one ``asyncio.Lock``; readers receive copies so a
    listing never observes a half-applied mutation.
    """

    def __init__(self) -> None:
        self._markets: dict[str, MarketRecord] = {}
        self._events: dict[str, EventRecord] = {}
        self._asset_index: dict[str, str] = {}
        self._lock = asyncio.Lock()
        self.last_update: datetime | None = None

    def __len__(self) -> int:
        return len(self._markets)

    # ------------------------------------------------------------------
    # Mutations

    async def replace_event(self, group: EventGroupRecord) -> bool:
        """Install an event and its markets; returns True when the event is new."""

        async with self._lock:
            event = group.event
            previous = self._events.get(event.event_id)
            # Gamma can lag the push feed; a resolution is never undone by a sweep.
            for market in group.markets:
                known = self._markets.get(market.market_id)
                if (
                    known is not None
                    and known.status is MarketStatus.RESOLVED
                    and market.status is MarketStatus.ACTIVE
                ):
                    market.status = MarketStatus.RESOLVED
                    market.resolved_at = known.resolved_at
            if previous is not None:
                for market_id in previous.market_ids:
                    self._markets.pop(market_id, None)
            for market in group.markets:
                market.event_id = event.event_id
                self._markets[market.market_id] = market
            event.recount(group.markets)
            if event.markets_count and not event.active_markets_count:
                event.status = MarketStatus.RESOLVED
            self._events[event.event_id] = event
            self._rebuild_asset_index()
            return previous is None

    async def restore(self, snapshot: MarketSnapshot) -> None:
        async with self._lock:
            self._markets = {market.market_id: market for market in snapshot.markets}
            self._events = {}
            for event in snapshot.events:
                markets = [self._markets[m] for m in event.market_ids if m in self._markets]
                event.recount(markets)
                self._events[event.event_id] = event
            self.last_update = snapshot.last_update
            self._rebuild_asset_index()
        logger.info(
            "Restored {} events and {} markets from snapshot", len(self._events), len(self._markets)
        )

    async def touch(self, when: datetime | None = None) -> None:
        async with self._lock:
            self.last_update = when or utcnow()

    async def apply_price_update(self, asset_id: str, price: float) -> PriceUpdate | None:
        async with self._lock:
            market = self._lookup(asset_id)
            if market is None or market.status is not MarketStatus.ACTIVE:
                return None
            old_price = market.price or 0.0
            market.price = float(price)
            for outcome in market.outcomes:
                if outcome.token_id == asset_id:
                    outcome.price = float(price)
            logger.info("Market price update: {} - {} -> {}", market.question, old_price, price)
            return PriceUpdate(
                event_id=market.event_id,
                market_id=market.market_id,
                asset_id=asset_id,
                price=float(price),
                old_price=old_price,
                question=market.question,
            )

    async def mark_resolved(self, asset_id: str) -> MarketResolved | None:
        async with self._lock:
            market = self._lookup(asset_id)
            if market is None or market.status is not MarketStatus.ACTIVE:
                return None
            market.status = MarketStatus.RESOLVED
            market.resolved_at = utcnow()

            event = self._events.get(market.event_id) if market.event_id else None
            if event is not None:
                event.recount(self._markets_of(event))
                if event.markets_count and not event.active_markets_count:
                    event.status = MarketStatus.RESOLVED
                event.last_update = market.resolved_at
            logger.info("Market resolved in real time: {}", market.question)
            return MarketResolved(
                event_id=market.event_id,
                market_id=market.market_id,
                market=market.to_dict(),
                event_title=event.title if event else None,
                active_markets_count=event.active_markets_count if event else 0,
                resolved_markets_count=event.resolved_markets_count if event else 1,
            )

    # ------------------------------------------------------------------
    # Queries

    def get_market(self, market_id: str) -> MarketRecord | None:
        market = self._markets.get(market_id)
        return copy.deepcopy(market) if market is not None else None

    def get_event(self, event_id: str) -> EventGroupRecord | None:
        event = self._events.get(event_id)
        return self._group(event) if event is not None else None

    def list_events(self, status: MarketStatus | None = None) -> list[EventGroupRecord]:
        return [
            self._group(event)
            for event in self._events.values()
            if status is None or event.status is status
        ]

    def top_events(self, status: MarketStatus, limit: int = 10) -> list[EventGroupRecord]:
        events = sorted(
            (event for event in self._events.values() if event.status is status),
            key=lambda event: event.total_volume,
            reverse=True,
        )
        return [self._group(event) for event in events[:limit]]

    def multi_outcome_events(self, status: MarketStatus, limit: int = 10) -> list[EventGroupRecord]:
        events = sorted(
            (
                event
                for event in self._events.values()
                if event.status is status and event.multi_outcome_markets_count > 0
            ),
            key=lambda event: event.total_volume,
            reverse=True,
        )
        return [self._group(event) for event in events[:limit]]

    def position_id_for(self, market_id: str, outcome_label: str) -> str | None:
        market = self._markets.get(market_id)
        if market is None:
            return None
        wanted = outcome_label.strip().lower()
        for token in market.outcome_tokens():
            if token.outcome_label.strip().lower() == wanted:
                return token.position_id
        return None

    def stats(self) -> MarketStats:
        markets = list(self._markets.values())
        multi_outcome = sum(1 for market in markets if market.is_multi_outcome)
        return MarketStats(
            total_events=len(self._events),
            active_events=sum(1 for e in self._events.values() if e.status is MarketStatus.ACTIVE),
            resolved_events=sum(1 for e in self._events.values() if e.status is MarketStatus.RESOLVED),
            total_markets=len(markets),
            active_markets=sum(1 for m in markets if m.status is MarketStatus.ACTIVE),
            resolved_markets=sum(1 for m in markets if m.status is MarketStatus.RESOLVED),
            multi_outcome_markets=multi_outcome,
            binary_markets=len(markets) - multi_outcome,
            total_volume=sum(
                event.total_volume
                for event in self._events.values()
                if event.status is MarketStatus.ACTIVE
            ),
            last_update=self.last_update,
        )

    def snapshot(self) -> MarketSnapshot:
        return MarketSnapshot(
            events=copy.deepcopy(list(self._events.values())),
            markets=copy.deepcopy(list(self._markets.values())),
            last_update=self.last_update,
        )

    # ------------------------------------------------------------------
    # Internals

    def _lookup(self, asset_id: str) -> MarketRecord | None:
        market_id = self._asset_index.get(asset_id, asset_id)
        return self._markets.get(market_id)

    def _markets_of(self, event: EventRecord) -> list[MarketRecord]:
        return [self._markets[m] for m in event.market_ids if m in self._markets]

    def _group(self, event: EventRecord) -> EventGroupRecord:
        return EventGroupRecord(
            event=copy.deepcopy(event),
            markets=copy.deepcopy(self._markets_of(event)),
        )

    def _rebuild_asset_index(self) -> None:
        self._asset_index = {
            token.position_id: market.market_id
            for market in self._markets.values()
            for token in market.outcome_tokens()
        }


__all__ = ["MarketStateTable", "MarketStats"]
