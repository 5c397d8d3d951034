"""Winner sets and payouts derived from reconstructed holder ledgers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from loguru import logger

from tracker.domain import HolderLedger, MarketStatus, WinnerEntry, WinnerRecord, utcnow

from .balance_service import BalanceReconstructor
from .market_state import MarketStateTable


class ChainHead(Protocol):
    async def latest_sequence_number(self) -> int:
        ...


class MarketNotFoundError(LookupError):
    pass


class PositionNotFoundError(LookupError):
    pass


class AmbiguousResolutionError(ValueError):
    """No outcome cleared the winner threshold and none was named explicitly."""


@dataclass(slots=True)
class RankedWinner:
    market_id: str
    winning_outcome: str
    address: str
    tokens: int
    payout: int


@dataclass(slots=True)
class WinnerStats:
    total_markets_tracked: int
    total_winners: int
    total_payout: int
    average_winner_payout: float
    top_winner: RankedWinner | None


@dataclass(slots=True)
class PayoutVerification:
    verified: bool
    market_id: str
    reason: str | None = None
    winning_outcome: str | None = None
    tokens: int | None = None
    payout: int | None = None


def build_winner_record(
    market_id: str,
    outcome_label: str,
    ledger: HolderLedger,
    cutoff: int,
) -> WinnerRecord:
    # Redemption is 1:1, so the payout equals the token count.
    entries = sorted(
        (WinnerEntry(address=address, tokens=tokens, payout=tokens) for address, tokens in ledger.items()),
        key=lambda entry: (-entry.tokens, entry.address),
    )
    return WinnerRecord(
        market_id=market_id,
        position_id=ledger.position_id,
        outcome_label=outcome_label,
        resolution_sequence_number=cutoff,
        winners=tuple(entries),
        total_payout=sum(entry.payout for entry in entries),
        winner_count=len(entries),
        computed_at=utcnow(),
    )


class WinnerService:
    """Compute and keep the latest ``WinnerRecord`` per market.

    A newer computation for the same market replaces the old record.
    """

    def __init__(
        self,
        reconstructor: BalanceReconstructor,
        *,
        state: MarketStateTable | None = None,
        chain: ChainHead | None = None,
    ) -> None:
        self._reconstructor = reconstructor
        self._state = state
        self._chain = chain
        self._records: dict[str, WinnerRecord] = {}

    async def compute_winners(
        self,
        market_id: str,
        position_id: str,
        outcome_label: str,
        cutoff: int,
    ) -> WinnerRecord:
        ledger = await self._reconstructor.reconstruct(position_id, cutoff)
        record = build_winner_record(market_id, outcome_label, ledger, cutoff)
        self._records[market_id] = record
        logger.info(
            "Found {} winners for market {} (total payout {})",
            record.winner_count,
            market_id,
            record.total_payout,
        )
        return record

    async def track_market_winners(
        self,
        market_id: str,
        outcome_label: str | None = None,
        cutoff: int | None = None,
        *,
        position_id: str | None = None,
    ) -> WinnerRecord:
        if position_id is None or outcome_label is None:
            market = self._state.get_market(market_id) if self._state is not None else None
            if market is None:
                raise MarketNotFoundError(f"market {market_id} is not tracked")
            if outcome_label is None:
                if market.status is not MarketStatus.RESOLVED:
                    raise AmbiguousResolutionError(
                        f"market {market_id} is not resolved; name the outcome explicitly"
                    )
                if market.winning_outcome is None:
                    raise AmbiguousResolutionError(
                        f"no outcome of market {market_id} cleared the winner price threshold"
                    )
                outcome_label = market.winning_outcome
            if position_id is None:
                position_id = self._state.position_id_for(market_id, outcome_label)
                if position_id is None:
                    raise PositionNotFoundError(
                        f"market {market_id} has no token for outcome {outcome_label!r}"
                    )

        if cutoff is None:
            if self._chain is None:
                raise ValueError("a cutoff is required when no chain head source is configured")
            cutoff = await self._chain.latest_sequence_number()

        logger.info(
            "Tracking winners for market {}, outcome {} at block {}", market_id, outcome_label, cutoff
        )
        return await self.compute_winners(market_id, position_id, outcome_label, cutoff)

    def get_market_winners(self, market_id: str) -> WinnerRecord | None:
        return self._records.get(market_id)

    def all_market_winners(self) -> dict[str, WinnerRecord]:
        return dict(self._records)

    def top_winners(self, limit: int = 10) -> list[RankedWinner]:
        ranked = [
            RankedWinner(
                market_id=record.market_id,
                winning_outcome=record.outcome_label,
                address=entry.address,
                tokens=entry.tokens,
                payout=entry.payout,
            )
            for record in self._records.values()
            for entry in record.winners
        ]
        ranked.sort(key=lambda winner: winner.payout, reverse=True)
        return ranked[: max(0, limit)]

    def winner_stats(self) -> WinnerStats:
        total_winners = sum(record.winner_count for record in self._records.values())
        total_payout = sum(record.total_payout for record in self._records.values())
        top = self.top_winners(1)
        return WinnerStats(
            total_markets_tracked=len(self._records),
            total_winners=total_winners,
            total_payout=total_payout,
            average_winner_payout=total_payout / total_winners if total_winners else 0.0,
            top_winner=top[0] if top else None,
        )

    def verify_winner_payout(self, market_id: str, address: str) -> PayoutVerification:
        record = self._records.get(market_id)
        if record is None:
            return PayoutVerification(
                verified=False, market_id=market_id, reason="Market winner data not found"
            )
        wanted = address.lower()
        entry = next((entry for entry in record.winners if entry.address.lower() == wanted), None)
        if entry is None:
            return PayoutVerification(
                verified=False, market_id=market_id, reason="Address not found in winners list"
            )
        return PayoutVerification(
            verified=True,
            market_id=market_id,
            winning_outcome=record.outcome_label,
            tokens=entry.tokens,
            payout=entry.payout,
        )

    def export(self) -> dict[str, Any]:
        return {
            "market_winners": {
                market_id: record.to_dict() for market_id, record in self._records.items()
            },
            "exported_at": utcnow().isoformat(),
            "total_markets": len(self._records),
        }


__all__ = [
    "AmbiguousResolutionError",
    "ChainHead",
    "MarketNotFoundError",
    "PayoutVerification",
    "PositionNotFoundError",
    "RankedWinner",
    "WinnerService",
    "WinnerStats",
    "build_winner_record",
]
