"""Rebuild outcome-token holder balances by replaying transfer logs."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from typing import Protocol

from loguru import logger

from ingestion.errors import DispatchError
from tracker.domain import HolderLedger, TransferEvent


class TransferSource(Protocol):
    async def query_transfers(
        self, position_id: str, start: int, end: int
    ) -> Sequence[TransferEvent]:
        ...


class ReconstructionError(RuntimeError):
    """A window query failed; no partial ledger is reported."""

    def __init__(self, position_id: str, window: tuple[int, int], cause: Exception) -> None:
        super().__init__(
            f"reconstruction of {position_id} failed in blocks {window[0]}-{window[1]}: {cause}"
        )
        self.position_id = position_id
        self.window = window


def iter_windows(start: int, cutoff: int, window_size: int) -> Iterator[tuple[int, int]]:
    """Split the inclusive range ``[start, cutoff]`` into contiguous windows."""

    if window_size < 1:
        raise ValueError("window_size must be at least 1")
    lower = start
    while lower <= cutoff:
        upper = min(lower + window_size - 1, cutoff)
        yield lower, upper
        lower = upper + 1


class BalanceReconstructor:
    def __init__(
        self,
        source: TransferSource,
        *,
        window_size: int = 10_000,
        start_sequence: int = 0,
    ) -> None:
        if window_size < 1:
            raise ValueError("window_size must be at least 1")
        self._source = source
        self.window_size = window_size
        self.start_sequence = start_sequence

    async def reconstruct(self, position_id: str, cutoff: int) -> HolderLedger:
        """Fold every transfer up to ``cutoff`` into a fresh ledger.

        Windows are queried one after another in increasing order; a later
        window's deltas only make sense on top of the earlier ones.
        """

        ledger = HolderLedger(position_id, cutoff_sequence_number=cutoff)
        applied = 0
        for window in iter_windows(self.start_sequence, cutoff, self.window_size):
            try:
                events = await self._source.query_transfers(position_id, *window)
            except DispatchError as exc:
                logger.error(
                    "Transfer query failed for {} in blocks {}-{}: {}",
                    position_id,
                    window[0],
                    window[1],
                    exc,
                )
                raise ReconstructionError(position_id, window, exc) from exc
            for event in events:
                ledger.apply(event)
                applied += 1
        logger.info(
            "Reconstructed {} holders for position {} from {} transfers (cutoff {})",
            len(ledger),
            position_id,
            applied,
            cutoff,
        )
        return ledger


__all__ = ["BalanceReconstructor", "ReconstructionError", "TransferSource", "iter_windows"]
