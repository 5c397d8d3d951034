"""Holder balances derived purely from replayed transfer events."""

from __future__ import annotations

from collections.abc import Iterator, Mapping

from .models import TransferEvent


class HolderLedger(Mapping[str, int]):
    """Address to balance mapping for one outcome token.

    Entries are always strictly positive: a debit that takes a balance to zero
    or below removes the address instead of keeping a non-positive value.
    """

    def __init__(self, position_id: str, cutoff_sequence_number: int | None = None) -> None:
        self.position_id = position_id
        self.cutoff_sequence_number = cutoff_sequence_number
        self._balances: dict[str, int] = {}

    def __getitem__(self, address: str) -> int:
        return self._balances[address]

    def __iter__(self) -> Iterator[str]:
        return iter(self._balances)

    def __len__(self) -> int:
        return len(self._balances)

    def __repr__(self) -> str:
        return f"HolderLedger(position_id={self.position_id!r}, holders={self._balances!r})"

    def credit(self, address: str, amount: int) -> None:
        balance = self._balances.get(address, 0) + amount
        if balance > 0:
            self._balances[address] = balance
        else:
            self._balances.pop(address, None)

    def debit(self, address: str, amount: int) -> None:
        self.credit(address, -amount)

    def apply(self, event: TransferEvent) -> None:
        if not event.is_mint:
            self.debit(event.sender, event.amount)
        if not event.is_burn:
            self.credit(event.recipient, event.amount)

    def total(self) -> int:
        return sum(self._balances.values())

    def as_dict(self) -> dict[str, int]:
        return dict(self._balances)


__all__ = ["HolderLedger"]
