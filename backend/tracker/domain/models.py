"""Typed domain representations shared by ingestion, the state table, and APIs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


NULL_ADDRESS = "0x0000000000000000000000000000000000000000"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MarketStatus(str, Enum):
    ACTIVE = "active"
    RESOLVED = "resolved"


@dataclass(frozen=True, slots=True)
class OutcomeToken:
    """One side of a market's outcome set, identified by its ERC-1155 position id."""

    position_id: str
    market_id: str
    outcome_label: str


@dataclass(slots=True)
class OutcomeRecord:
    """Outcome as reported by the event-data API."""

    label: str
    token_id: str | None = None
    price: float | None = None
    winner: bool = False


@dataclass(slots=True)
class MarketRecord:
    """Row of the market-state table; status transitions happen in place."""

    market_id: str
    event_id: str | None
    question: str
    status: MarketStatus = MarketStatus.ACTIVE
    slug: str | None = None
    description: str | None = None
    question_id: str | None = None
    condition_id: str | None = None
    price: float | None = None
    volume: float = 0.0
    volume_usd: float = 0.0
    liquidity: float = 0.0
    outcomes: list[OutcomeRecord] = field(default_factory=list)
    winning_outcome: str | None = None
    is_ambiguous: bool = False
    start_date: datetime | None = None
    end_date: datetime | None = None
    resolved_at: datetime | None = None
    url: str | None = None

    @property
    def outcomes_count(self) -> int:
        return len(self.outcomes)

    @property
    def is_multi_outcome(self) -> bool:
        return len(self.outcomes) > 2

    def outcome_tokens(self) -> list[OutcomeToken]:
        return [
            OutcomeToken(position_id=outcome.token_id, market_id=self.market_id, outcome_label=outcome.label)
            for outcome in self.outcomes
            if outcome.token_id
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.market_id,
            "event_id": self.event_id,
            "question": self.question,
            "status": self.status.value,
            "slug": self.slug,
            "condition_id": self.condition_id,
            "price": self.price,
            "volume": self.volume,
            "volume_usd": self.volume_usd,
            "liquidity": self.liquidity,
            "outcomes": [
                {
                    "outcome": outcome.label,
                    "token_id": outcome.token_id,
                    "price": outcome.price,
                    "winner": outcome.winner,
                }
                for outcome in self.outcomes
            ],
            "winning_outcome": self.winning_outcome,
            "is_ambiguous": self.is_ambiguous,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
        }


@dataclass(slots=True)
class EventRecord:
    """Event grouping several markets; counters are derived from its markets."""

    event_id: str
    title: str | None
    status: MarketStatus = MarketStatus.ACTIVE
    ticker: str | None = None
    slug: str | None = None
    description: str | None = None
    start_date: datetime | None = None
    creation_date: datetime | None = None
    end_date: datetime | None = None
    volume: float = 0.0
    liquidity: float = 0.0
    active: bool | None = None
    closed: bool | None = None
    archived: bool | None = None
    featured: bool | None = None
    restricted: bool | None = None
    new: bool | None = None
    tags: list[str] = field(default_factory=list)
    market_ids: list[str] = field(default_factory=list)
    markets_count: int = 0
    active_markets_count: int = 0
    resolved_markets_count: int = 0
    multi_outcome_markets_count: int = 0
    total_volume: float = 0.0
    total_liquidity: float = 0.0
    last_update: datetime | None = None
    url: str | None = None

    def recount(self, markets: list[MarketRecord]) -> None:
        self.market_ids = [market.market_id for market in markets]
        self.markets_count = len(markets)
        self.active_markets_count = sum(1 for m in markets if m.status is MarketStatus.ACTIVE)
        self.resolved_markets_count = sum(1 for m in markets if m.status is MarketStatus.RESOLVED)
        self.multi_outcome_markets_count = sum(1 for m in markets if m.is_multi_outcome)
        self.total_volume = sum(m.volume_usd or m.volume or 0.0 for m in markets)
        self.total_liquidity = sum(m.liquidity or 0.0 for m in markets)

    @property
    def has_active_markets(self) -> bool:
        return self.active_markets_count > 0

    @property
    def has_resolved_markets(self) -> bool:
        return self.resolved_markets_count > 0


@dataclass(slots=True)
class EventGroupRecord:
    """Bundle an event with its markets for listing and replacement."""

    event: EventRecord
    markets: list[MarketRecord] = field(default_factory=list)


@dataclass(slots=True)
class MarketSnapshot:
    """Everything the snapshot store loads and saves."""

    events: list[EventRecord] = field(default_factory=list)
    markets: list[MarketRecord] = field(default_factory=list)
    last_update: datetime | None = None


@dataclass(frozen=True, slots=True)
class TransferEvent:
    """A single ERC-1155 movement of one outcome token."""

    position_id: str
    sender: str
    recipient: str
    amount: int
    sequence_number: int
    log_index: int = 0
    transaction_hash: str | None = None

    @property
    def is_mint(self) -> bool:
        return self.sender == NULL_ADDRESS

    @property
    def is_burn(self) -> bool:
        return self.recipient == NULL_ADDRESS


@dataclass(frozen=True, slots=True)
class WinnerEntry:
    address: str
    tokens: int
    payout: int


@dataclass(frozen=True, slots=True)
class WinnerRecord:
    """Holders of a market's winning outcome at the resolution cutoff."""

    market_id: str
    position_id: str
    outcome_label: str
    resolution_sequence_number: int
    winners: tuple[WinnerEntry, ...]
    total_payout: int
    winner_count: int
    computed_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "market_id": self.market_id,
            "position_id": self.position_id,
            "winning_outcome": self.outcome_label,
            "resolution_sequence_number": self.resolution_sequence_number,
            "winners": [
                {"address": entry.address, "tokens": entry.tokens, "payout": entry.payout}
                for entry in self.winners
            ],
            "total_payout": self.total_payout,
            "winner_count": self.winner_count,
            "computed_at": self.computed_at.isoformat(),
        }
