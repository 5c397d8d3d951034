from __future__ import annotations

import random

from tracker.domain import NULL_ADDRESS, HolderLedger, TransferEvent

A = "0x" + "a" * 40
B = "0x" + "b" * 40
C = "0x" + "c" * 40


def _transfer(sender: str, recipient: str, amount: int, block: int = 1) -> TransferEvent:
    return TransferEvent(
        position_id="101",
        sender=sender,
        recipient=recipient,
        amount=amount,
        sequence_number=block,
    )


def test_mint_then_transfers_drop_emptied_holders():
    ledger = HolderLedger("101")
    ledger.apply(_transfer(NULL_ADDRESS, A, 50))
    ledger.apply(_transfer(A, B, 20))
    assert ledger.as_dict() == {A: 30, B: 20}

    ledger.apply(_transfer(A, B, 30))
    assert ledger.as_dict() == {B: 50}
    assert A not in ledger


def test_burn_debits_sender_only():
    ledger = HolderLedger("101")
    ledger.apply(_transfer(NULL_ADDRESS, A, 10))
    ledger.apply(_transfer(A, NULL_ADDRESS, 4))
    assert ledger.as_dict() == {A: 6}
    assert NULL_ADDRESS not in ledger


def test_overdrawn_sender_is_removed_not_negative():
    ledger = HolderLedger("101")
    ledger.apply(_transfer(B, A, 5))
    assert ledger.as_dict() == {A: 5}


def test_random_histories_match_received_minus_sent():
    rng = random.Random(7)
    holders = [A, B, C]
    ledger = HolderLedger("101")
    received = {address: 0 for address in holders}
    sent = {address: 0 for address in holders}
    balances = {address: 0 for address in holders}

    for block in range(200):
        kind = rng.choice(["mint", "transfer", "burn"])
        if kind == "mint":
            recipient = rng.choice(holders)
            amount = rng.randint(1, 100)
            event = _transfer(NULL_ADDRESS, recipient, amount, block)
            received[recipient] += amount
            balances[recipient] += amount
        else:
            funded = [address for address in holders if balances[address] > 0]
            if not funded:
                continue
            sender = rng.choice(funded)
            amount = rng.randint(1, balances[sender])
            recipient = NULL_ADDRESS if kind == "burn" else rng.choice(holders)
            event = _transfer(sender, recipient, amount, block)
            sent[sender] += amount
            balances[sender] -= amount
            if recipient != NULL_ADDRESS:
                received[recipient] += amount
                balances[recipient] += amount
        ledger.apply(event)
        assert all(balance > 0 for balance in ledger.values())

    for address in holders:
        expected = received[address] - sent[address]
        if expected > 0:
            assert ledger[address] == expected
        else:
            assert address not in ledger
    assert ledger.total() == sum(balance for balance in balances.values() if balance > 0)
