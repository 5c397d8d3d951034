"""Domain models for markets, outcome tokens, transfers and winners."""

from .events import DomainEvent, MarketResolved, PriceUpdate
from .ledger import HolderLedger
from .models import (
    NULL_ADDRESS,
    EventGroupRecord,
    EventRecord,
    MarketRecord,
    MarketSnapshot,
    MarketStatus,
    OutcomeRecord,
    OutcomeToken,
    TransferEvent,
    WinnerEntry,
    WinnerRecord,
    utcnow,
)

__all__ = [
    "NULL_ADDRESS",
    "DomainEvent",
    "EventGroupRecord",
    "EventRecord",
    "HolderLedger",
    "MarketRecord",
    "MarketResolved",
    "MarketSnapshot",
    "MarketStatus",
    "OutcomeRecord",
    "OutcomeToken",
    "PriceUpdate",
    "TransferEvent",
    "WinnerEntry",
    "WinnerRecord",
    "utcnow",
]
