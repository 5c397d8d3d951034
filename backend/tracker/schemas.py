from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .domain import MarketStatus


class Outcome(BaseModel):
    label: str
    token_id: str | None = None
    price: float | None = None
    winner: bool = False

    model_config = {"from_attributes": True}


class Market(BaseModel):
    market_id: str
    event_id: str | None = None
    question: str
    status: MarketStatus
    slug: str | None = None
    description: str | None = None
    condition_id: str | None = None
    price: float | None = None
    volume: float = 0.0
    volume_usd: float = 0.0
    liquidity: float = 0.0
    outcomes: list[Outcome] = Field(default_factory=list)
    outcomes_count: int = 0
    is_multi_outcome: bool = False
    winning_outcome: str | None = None
    is_ambiguous: bool = False
    start_date: datetime | None = None
    end_date: datetime | None = None
    resolved_at: datetime | None = None
    url: str | None = None

    model_config = {"from_attributes": True}


class Event(BaseModel):
    event_id: str
    title: str | None = None
    status: MarketStatus
    ticker: str | None = None
    slug: str | None = None
    description: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    volume: float = 0.0
    liquidity: float = 0.0
    tags: list[str] = Field(default_factory=list)
    markets_count: int = 0
    active_markets_count: int = 0
    resolved_markets_count: int = 0
    multi_outcome_markets_count: int = 0
    total_volume: float = 0.0
    total_liquidity: float = 0.0
    last_update: datetime | None = None
    url: str | None = None

    model_config = {"from_attributes": True}


class EventWithMarkets(BaseModel):
    event: Event
    markets: list[Market] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class EventList(BaseModel):
    total: int
    items: list[EventWithMarkets]


class TrackerStats(BaseModel):
    total_events: int
    active_events: int
    resolved_events: int
    total_markets: int
    active_markets: int
    resolved_markets: int
    multi_outcome_markets: int
    binary_markets: int
    total_volume: float
    last_update: datetime | None = None
    subscribers: int = 0
    realtime_status: str | None = None

    model_config = {"from_attributes": True}


class WinnerEntry(BaseModel):
    address: str
    tokens: int
    payout: int

    model_config = {"from_attributes": True}


class WinnerRecord(BaseModel):
    market_id: str
    position_id: str
    outcome_label: str
    resolution_sequence_number: int
    winners: list[WinnerEntry] = Field(default_factory=list)
    total_payout: int
    winner_count: int
    computed_at: datetime

    model_config = {"from_attributes": True}


class RankedWinner(BaseModel):
    market_id: str
    winning_outcome: str
    address: str
    tokens: int
    payout: int

    model_config = {"from_attributes": True}


class WinnerStats(BaseModel):
    total_markets_tracked: int
    total_winners: int
    total_payout: int
    average_winner_payout: float
    top_winner: RankedWinner | None = None

    model_config = {"from_attributes": True}


class PayoutVerification(BaseModel):
    verified: bool
    market_id: str
    reason: str | None = None
    winning_outcome: str | None = None
    tokens: int | None = None
    payout: int | None = None

    model_config = {"from_attributes": True}


class SweepResult(BaseModel):
    new_events: int
    updated_events: int
    dropped_events: int
    pages: int
    failed: bool

    model_config = {"from_attributes": True}


class RefreshSummary(BaseModel):
    active: SweepResult
    resolved: SweepResult | None = None
    started_at: datetime
    finished_at: datetime
    saved: bool
    stats: dict[str, Any] = Field(default_factory=dict)

    model_config = {"from_attributes": True}
