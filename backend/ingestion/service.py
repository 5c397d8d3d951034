from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Any, Protocol

from loguru import logger

from tracker.core.config import settings
from tracker.domain import MarketSnapshot, utcnow
from tracker.services.market_state import MarketStateTable

from .client import GammaClient
from .errors import DispatchError
from .normalize import normalize_event


class SnapshotSink(Protocol):
    def save(self, snapshot: MarketSnapshot) -> None:
        ...


def _isoformat_utc(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


@dataclass(slots=True)
class SweepResult:
    new_events: int = 0
    updated_events: int = 0
    dropped_events: int = 0
    pages: int = 0
    failed: bool = False

    @property
    def processed(self) -> int:
        return self.new_events + self.updated_events


@dataclass(slots=True)
class RefreshSummary:
    active: SweepResult
    resolved: SweepResult | None
    started_at: datetime
    finished_at: datetime
    saved: bool = False
    stats: dict[str, Any] = field(default_factory=dict)

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()


class MarketRefreshService:
    """Poll the Gamma API and fold the results into the market-state table."""

    def __init__(
        self,
        client: GammaClient,
        state: MarketStateTable,
        *,
        store: SnapshotSink | None = None,
        resolved_since: date | None = None,
        winner_threshold: float | None = None,
    ) -> None:
        self._client = client
        self._state = state
        self._store = store
        self.resolved_since = resolved_since or settings.resolved_since
        self.winner_threshold = winner_threshold
        self._lock = asyncio.Lock()

    async def _sweep(self, label: str, **filters: Any) -> SweepResult:
        result = SweepResult()
        try:
            async for page in self._client.iter_events(**filters):
                result.pages += 1
                for raw_event in page:
                    try:
                        group = normalize_event(raw_event, winner_threshold=self.winner_threshold)
                    except (TypeError, ValueError) as exc:
                        logger.warning("Dropping unparseable {} event: {}", label, exc)
                        result.dropped_events += 1
                        continue
                    if await self._state.replace_event(group):
                        result.new_events += 1
                    else:
                        result.updated_events += 1
                logger.info(
                    "Processed {} {} events so far ({} pages)", result.processed, label, result.pages
                )
        except DispatchError as exc:
            logger.error("Stopping {} sweep after {} pages: {}", label, result.pages, exc)
            result.failed = True
        return result

    async def track_active_events(self) -> SweepResult:
        logger.info("Fetching active events")
        result = await self._sweep("active", closed=False)
        logger.info(
            "Active sweep: {} new, {} updated events", result.new_events, result.updated_events
        )
        return result

    async def track_resolved_events(self) -> SweepResult:
        since = datetime.combine(self.resolved_since, time.min, tzinfo=timezone.utc)
        logger.info("Fetching resolved events ending on or after {}", since.date())
        result = await self._sweep("resolved", closed=True, end_date_min=_isoformat_utc(since))
        logger.info(
            "Resolved sweep: {} new, {} updated events", result.new_events, result.updated_events
        )
        return result

    async def perform_full_update(
        self, *, include_resolved: bool = False, save: bool = True
    ) -> RefreshSummary:
        async with self._lock:
            started_at = utcnow()
            logger.info("Starting full market update")
            active = await self.track_active_events()
            resolved = await self.track_resolved_events() if include_resolved else None
            await self._state.touch()

            saved = False
            if save and self._store is not None:
                try:
                    await asyncio.to_thread(self._store.save, self._state.snapshot())
                    saved = True
                except Exception:  # noqa: BLE001 - a failed save keeps the refreshed state
                    logger.exception("Failed to save snapshot after full update")

            stats = self._state.stats()
            logger.info(
                "Full update complete: {} active / {} resolved events, {} markets",
                stats.active_events,
                stats.resolved_events,
                stats.total_markets,
            )
            return RefreshSummary(
                active=active,
                resolved=resolved,
                started_at=started_at,
                finished_at=utcnow(),
                saved=saved,
                stats={
                    "total_events": stats.total_events,
                    "active_events": stats.active_events,
                    "resolved_events": stats.resolved_events,
                    "total_markets": stats.total_markets,
                },
            )


__all__ = ["MarketRefreshService", "RefreshSummary", "SweepResult"]
