"""
Balance Reconstructor: replays a POS instance's ledger into drawer contents.

Entries are folded in ascending id order, reverted or not. The separate
reversal entry that points at a reverted entry applies the inverse of the
original's effect, so the pair nets to zero. The ``is_reverted`` flag is
bookkeeping for readers of the ledger and never changes the fold.

The fold is pure. It does not lock, does not consult the clock and never
rejects negative counts; deciding what an inconsistent history means is up
to the caller.
"""

import logging
from typing import Iterable, Sequence

from .denominations import DENOMINATIONS, DenominationCount, empty_counts
from .models import (
    DepositPayload,
    LedgerEntry,
    ReversalPayload,
    SalePayload,
    WithdrawalPayload,
)

logger = logging.getLogger("cashdrawer.balance")


def _apply(balance: DenominationCount, counts: dict[int, int], sign: int) -> None:
    for denom, count in counts.items():
        balance[denom] = balance.get(denom, 0) + sign * count


def apply_effect(balance: DenominationCount, payload, sign: int = 1) -> None:
    """Apply one non-reversal payload to ``balance`` in place.

    ``sign=-1`` applies the inverse, which is what a reversal does.
    """
    if isinstance(payload, DepositPayload):
        _apply(balance, payload.amount, sign)
    elif isinstance(payload, WithdrawalPayload):
        _apply(balance, payload.amount, -sign)
    elif isinstance(payload, SalePayload):
        _apply(balance, payload.paid_amount, sign)
        _apply(balance, payload.change_given, -sign)
    elif isinstance(payload, ReversalPayload):
        # Reversals are not revertible, so one can never be the target here.
        return
    else:
        raise TypeError(f"Unknown ledger payload {type(payload).__name__}")


def fold_entry(
    balance: DenominationCount, entry: LedgerEntry, index: dict[int, LedgerEntry]
) -> None:
    """Fold a single entry into ``balance``, resolving reversals through ``index``."""
    payload = entry.payload
    if isinstance(payload, ReversalPayload):
        original = index.get(payload.original_entry_id)
        if original is None:
            logger.warning(
                "Reversal %s points at entry %s which is not in the replay batch",
                entry.id, payload.original_entry_id,
            )
            return
        apply_effect(balance, original.payload, sign=-1)
    else:
        apply_effect(balance, payload)


def reconstruct_balance(
    entries: Iterable[LedgerEntry], denominations: Sequence[int] = DENOMINATIONS
) -> DenominationCount:
    ordered = sorted(entries, key=lambda e: e.id)
    index = {entry.id: entry for entry in ordered}
    balance = empty_counts(denominations)
    for entry in ordered:
        fold_entry(balance, entry, index)
    return balance
