"""Domain events fanned out to stream subscribers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar

from .models import utcnow


@dataclass(frozen=True, slots=True)
class PriceUpdate:
    type: ClassVar[str] = "price_update"

    event_id: str | None
    market_id: str
    asset_id: str
    price: float
    old_price: float
    question: str | None = None
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "eventId": self.event_id,
            "marketId": self.market_id,
            "assetId": self.asset_id,
            "price": self.price,
            "oldPrice": self.old_price,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class MarketResolved:
    type: ClassVar[str] = "market_resolved"

    event_id: str | None
    market_id: str
    market: dict[str, Any]
    event_title: str | None
    active_markets_count: int
    resolved_markets_count: int
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "eventId": self.event_id,
            "marketId": self.market_id,
            "market": self.market,
            "eventData": {
                "title": self.event_title,
                "activeMarketsCount": self.active_markets_count,
                "resolvedMarketsCount": self.resolved_markets_count,
            },
            "timestamp": self.timestamp.isoformat(),
        }


DomainEvent = PriceUpdate | MarketResolved


__all__ = ["DomainEvent", "MarketResolved", "PriceUpdate"]
