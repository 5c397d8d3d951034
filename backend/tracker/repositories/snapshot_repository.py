"""Persistence of the in-memory market snapshot."""

from __future__ import annotations

from datetime import datetime, timezone

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload, sessionmaker

from tracker.db import SessionLocal, session_scope
from tracker.domain import (
    EventRecord,
    MarketRecord,
    MarketSnapshot,
    MarketStatus,
    OutcomeRecord,
)
from tracker.models import Event, Market, Outcome, TrackerState


_STATE_KEY = "market_snapshot"


def _aware(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back out.
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _status(value: str | None) -> MarketStatus:
    try:
        return MarketStatus(value)
    except ValueError:
        return MarketStatus.ACTIVE


class SnapshotRepository:
    """Mirror a ``MarketSnapshot`` into the events/markets/outcomes tables."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Mutations

    def save_snapshot(self, snapshot: MarketSnapshot) -> None:
        event_ids = set()
        for event in snapshot.events:
            self.upsert_event(event)
            event_ids.add(event.event_id)

        market_ids = set()
        for market in snapshot.markets:
            self.upsert_market(market)
            market_ids.add(market.market_id)

        for stale_market in self._session.execute(select(Market)).scalars().all():
            if stale_market.market_id not in market_ids:
                self._session.delete(stale_market)
        for stale_event in self._session.execute(select(Event)).scalars().all():
            if stale_event.event_id not in event_ids:
                self._session.delete(stale_event)

        state = self._session.get(TrackerState, _STATE_KEY)
        if state is None:
            state = TrackerState(key=_STATE_KEY)
            self._session.add(state)
        state.last_update = snapshot.last_update
        state.saved_at = datetime.now(timezone.utc)

    def upsert_event(self, event: EventRecord) -> Event:
        existing = self._session.get(Event, event.event_id)
        if existing is None:
            existing = Event(event_id=event.event_id)
            self._session.add(existing)

        existing.ticker = event.ticker
        existing.slug = event.slug
        existing.title = event.title
        existing.description = event.description
        existing.status = event.status.value
        existing.start_date = event.start_date
        existing.creation_date = event.creation_date
        existing.end_date = event.end_date
        existing.volume = event.volume
        existing.liquidity = event.liquidity
        existing.active = event.active
        existing.closed = event.closed
        existing.archived = event.archived
        existing.featured = event.featured
        existing.restricted = event.restricted
        existing.new = event.new
        existing.tags = list(event.tags)
        existing.market_ids = list(event.market_ids)
        existing.url = event.url
        existing.last_update = event.last_update
        return existing

    def upsert_market(self, market: MarketRecord) -> Market:
        existing = self._session.get(Market, market.market_id)
        if existing is None:
            existing = Market(market_id=market.market_id)
            self._session.add(existing)

        existing.event_id = market.event_id
        existing.question = market.question
        existing.status = market.status.value
        existing.slug = market.slug
        existing.description = market.description
        existing.question_id = market.question_id
        existing.condition_id = market.condition_id
        existing.price = market.price
        existing.volume = market.volume
        existing.volume_usd = market.volume_usd
        existing.liquidity = market.liquidity
        existing.winning_outcome = market.winning_outcome
        existing.is_ambiguous = market.is_ambiguous
        existing.start_date = market.start_date
        existing.end_date = market.end_date
        existing.resolved_at = market.resolved_at
        existing.url = market.url

        existing_outcomes = {outcome.position: outcome for outcome in existing.outcomes}
        for position, outcome in enumerate(market.outcomes):
            row = existing_outcomes.pop(position, None)
            if row is None:
                row = Outcome(position=position)
                existing.outcomes.append(row)
            row.label = outcome.label
            row.token_id = outcome.token_id
            row.price = outcome.price
            row.winner = outcome.winner

        for orphan in existing_outcomes.values():
            existing.outcomes.remove(orphan)

        return existing

    # ------------------------------------------------------------------
    # Queries

    def load_snapshot(self) -> MarketSnapshot:
        markets = (
            self._session.execute(select(Market).options(selectinload(Market.outcomes)))
            .scalars()
            .all()
        )
        events = self._session.execute(select(Event)).scalars().all()
        state = self._session.get(TrackerState, _STATE_KEY)
        return MarketSnapshot(
            events=[self._to_event_record(event) for event in events],
            markets=[self._to_market_record(market) for market in markets],
            last_update=_aware(state.last_update) if state else None,
        )

    @staticmethod
    def _to_event_record(row: Event) -> EventRecord:
        return EventRecord(
            event_id=row.event_id,
            title=row.title,
            status=_status(row.status),
            ticker=row.ticker,
            slug=row.slug,
            description=row.description,
            start_date=_aware(row.start_date),
            creation_date=_aware(row.creation_date),
            end_date=_aware(row.end_date),
            volume=row.volume or 0.0,
            liquidity=row.liquidity or 0.0,
            active=row.active,
            closed=row.closed,
            archived=row.archived,
            featured=row.featured,
            restricted=row.restricted,
            new=row.new,
            tags=list(row.tags or []),
            market_ids=list(row.market_ids or []),
            last_update=_aware(row.last_update),
            url=row.url,
        )

    @staticmethod
    def _to_market_record(row: Market) -> MarketRecord:
        return MarketRecord(
            market_id=row.market_id,
            event_id=row.event_id,
            question=row.question,
            status=_status(row.status),
            slug=row.slug,
            description=row.description,
            question_id=row.question_id,
            condition_id=row.condition_id,
            price=row.price,
            volume=row.volume or 0.0,
            volume_usd=row.volume_usd or 0.0,
            liquidity=row.liquidity or 0.0,
            outcomes=[
                OutcomeRecord(
                    label=outcome.label,
                    token_id=outcome.token_id,
                    price=outcome.price,
                    winner=outcome.winner,
                )
                for outcome in row.outcomes
            ],
            winning_outcome=row.winning_outcome,
            is_ambiguous=row.is_ambiguous,
            start_date=_aware(row.start_date),
            end_date=_aware(row.end_date),
            resolved_at=_aware(row.resolved_at),
            url=row.url,
        )


class SnapshotStore:
    """``load()``/``save()`` pair used by the runtime and the stream channel."""

    def __init__(self, session_factory: sessionmaker[Session] | None = None) -> None:
        self._session_factory = session_factory or SessionLocal

    def load(self) -> MarketSnapshot:
        with session_scope(self._session_factory) as session:
            snapshot = SnapshotRepository(session).load_snapshot()
        logger.info(
            "Loaded snapshot with {} events and {} markets",
            len(snapshot.events),
            len(snapshot.markets),
        )
        return snapshot

    def save(self, snapshot: MarketSnapshot) -> None:
        with session_scope(self._session_factory) as session:
            SnapshotRepository(session).save_snapshot(snapshot)
        logger.info(
            "Saved snapshot with {} events and {} markets",
            len(snapshot.events),
            len(snapshot.markets),
        )


__all__ = ["SnapshotRepository", "SnapshotStore"]
