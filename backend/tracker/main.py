from __future__ import annotations

import json
from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from loguru import logger

from ingestion.errors import DispatchError

from . import schemas
from .core.config import settings
from .db import init_db
from .domain import EventGroupRecord, MarketStatus
from .runtime import TrackerRuntime
from .services.balance_service import ReconstructionError
from .services.fanout import QueueSubscriber
from .services.winner_service import (
    AmbiguousResolutionError,
    MarketNotFoundError,
    PositionNotFoundError,
)

app = FastAPI(title="Polymarket Tracker API", version="0.1.0", debug=settings.debug)

_runtime: TrackerRuntime | None = None

SSE_KEEPALIVE_SECONDS = 15.0


def get_runtime() -> TrackerRuntime:
    """Provide the process-wide tracker runtime."""

    global _runtime
    if _runtime is None:
        _runtime = TrackerRuntime(settings)
    return _runtime


@app.on_event("startup")
async def on_startup() -> None:
    """Create the snapshot tables, restore state and start background work."""

    if settings.persist_snapshots:
        init_db()
    await get_runtime().start()


@app.on_event("shutdown")
async def on_shutdown() -> None:
    if _runtime is not None:
        await _runtime.stop()


def _event_list(groups: list[EventGroupRecord]) -> schemas.EventList:
    items = [schemas.EventWithMarkets.model_validate(group) for group in groups]
    return schemas.EventList(total=len(items), items=items)


@app.get("/healthz", tags=["system"])
def healthcheck() -> dict[str, str]:
    """Basic readiness probe consumed by infrastructure monitors."""

    return {"status": "ok"}


@app.get("/stats", response_model=schemas.TrackerStats, tags=["markets"])
def get_stats(runtime: TrackerRuntime = Depends(get_runtime)):
    stats = runtime.state.stats()
    return schemas.TrackerStats(
        total_events=stats.total_events,
        active_events=stats.active_events,
        resolved_events=stats.resolved_events,
        total_markets=stats.total_markets,
        active_markets=stats.active_markets,
        resolved_markets=stats.resolved_markets,
        multi_outcome_markets=stats.multi_outcome_markets,
        binary_markets=stats.binary_markets,
        total_volume=stats.total_volume,
        last_update=stats.last_update,
        subscribers=len(runtime.hub),
        realtime_status=runtime.channel.status.value,
    )


@app.get("/active", response_model=schemas.EventList, tags=["events"])
def list_active(runtime: TrackerRuntime = Depends(get_runtime)):
    """Events that still have trading markets."""

    return _event_list(runtime.state.list_events(MarketStatus.ACTIVE))


@app.get("/resolved", response_model=schemas.EventList, tags=["events"])
def list_resolved(runtime: TrackerRuntime = Depends(get_runtime)):
    return _event_list(runtime.state.list_events(MarketStatus.RESOLVED))


@app.get("/multi-outcome", response_model=schemas.EventList, tags=["events"])
def list_multi_outcome(
    *,
    type: Annotated[
        MarketStatus, Query(description="Which partition to list (active|resolved)")
    ] = MarketStatus.ACTIVE,
    limit: Annotated[int, Query(ge=1, le=200)] = 10,
    runtime: TrackerRuntime = Depends(get_runtime),
):
    """Events holding at least one market with more than two outcomes."""

    return _event_list(runtime.state.multi_outcome_events(type, limit))


@app.get("/top-active", response_model=schemas.EventList, tags=["events"])
def top_active(
    limit: Annotated[int, Query(ge=1, le=200)] = 10,
    runtime: TrackerRuntime = Depends(get_runtime),
):
    return _event_list(runtime.state.top_events(MarketStatus.ACTIVE, limit))


@app.get("/top-resolved", response_model=schemas.EventList, tags=["events"])
def top_resolved(
    limit: Annotated[int, Query(ge=1, le=200)] = 10,
    runtime: TrackerRuntime = Depends(get_runtime),
):
    return _event_list(runtime.state.top_events(MarketStatus.RESOLVED, limit))


@app.get("/markets/{market_id}", response_model=schemas.Market, tags=["markets"])
def get_market(market_id: str, runtime: TrackerRuntime = Depends(get_runtime)):
    """Retrieve a single market by its Polymarket identifier."""

    market = runtime.state.get_market(market_id)
    if market is None:
        raise HTTPException(status_code=404, detail="Market not found")
    return schemas.Market.model_validate(market)


@app.get("/export", tags=["markets"])
def export_state(runtime: TrackerRuntime = Depends(get_runtime)):
    """Dump the full in-memory state plus tracked winners."""

    snapshot = runtime.state.snapshot()
    return {
        "events": [
            schemas.EventWithMarkets.model_validate(group).model_dump(mode="json")
            for group in runtime.state.list_events()
        ],
        "stats": get_stats(runtime).model_dump(mode="json"),
        "last_update": snapshot.last_update.isoformat() if snapshot.last_update else None,
        "winners": runtime.winners.export(),
    }


@app.post("/update", response_model=schemas.RefreshSummary, tags=["markets"])
async def trigger_update(
    include_resolved: Annotated[bool, Query(description="Also sweep closed events")] = False,
    runtime: TrackerRuntime = Depends(get_runtime),
):
    """Run a full refresh now instead of waiting for the scheduler."""

    summary = await runtime.refresh.perform_full_update(include_resolved=include_resolved)
    return schemas.RefreshSummary.model_validate(summary)


@app.get("/stream", tags=["stream"])
async def stream_updates(request: Request, runtime: TrackerRuntime = Depends(get_runtime)):
    """Server-sent events carrying price updates and resolutions."""

    subscriber = QueueSubscriber(maxsize=settings.sse_queue_size)
    runtime.hub.subscribe(subscriber)
    logger.info("SSE client connected ({} subscribers)", len(runtime.hub))

    async def event_source():
        try:
            yield f"data: {json.dumps({'type': 'connected'})}\n\n"
            while not subscriber.closed:
                if await request.is_disconnected():
                    break
                event = await subscriber.get(timeout=SSE_KEEPALIVE_SECONDS)
                if event is None:
                    yield ": keepalive\n\n"
                    continue
                yield f"data: {json.dumps(event.to_dict())}\n\n"
        finally:
            subscriber.close()
            runtime.hub.unsubscribe(subscriber)
            logger.info("SSE client disconnected")

    return StreamingResponse(
        event_source(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@app.get("/winners", tags=["winners"])
def list_winners(
    market_id: Annotated[str | None, Query(description="Return one market's winner record")] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 10,
    runtime: TrackerRuntime = Depends(get_runtime),
):
    """One market's winner record, or the top winners across tracked markets."""

    if market_id:
        record = runtime.winners.get_market_winners(market_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Market winners not tracked")
        return schemas.WinnerRecord.model_validate(record)
    return [schemas.RankedWinner.model_validate(winner) for winner in runtime.winners.top_winners(limit)]


@app.get("/winner-stats", response_model=schemas.WinnerStats, tags=["winners"])
def winner_stats(runtime: TrackerRuntime = Depends(get_runtime)):
    return schemas.WinnerStats.model_validate(runtime.winners.winner_stats())


@app.get(
    "/winners/{market_id}/verify/{address}",
    response_model=schemas.PayoutVerification,
    tags=["winners"],
)
def verify_winner(market_id: str, address: str, runtime: TrackerRuntime = Depends(get_runtime)):
    return schemas.PayoutVerification.model_validate(
        runtime.winners.verify_winner_payout(market_id, address)
    )


@app.post("/track-winners", response_model=schemas.WinnerRecord, tags=["winners"])
async def track_winners(
    market_id: str,
    outcome: Annotated[str | None, Query(description="Outcome label; defaults to the resolved winner")] = None,
    cutoff: Annotated[int | None, Query(ge=0, description="Block cutoff; defaults to the chain head")] = None,
    runtime: TrackerRuntime = Depends(get_runtime),
):
    """Reconstruct holders of a market's winning outcome and store the result."""

    try:
        record = await runtime.winners.track_market_winners(market_id, outcome, cutoff)
    except (MarketNotFoundError, PositionNotFoundError) as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except AmbiguousResolutionError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except (ReconstructionError, DispatchError) as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return schemas.WinnerRecord.model_validate(record)
