"""
Cash Drawer Ledger for a point-of-sale register

This module provides:
- An append-only ledger of sales, deposits, withdrawals and reversals
- Drawer balance reconstruction per denomination
- Greedy change-making for sales
- Payout suggestions for sellers and depositors
- Reversals that undo an entry without deleting it
"""

from .balance import reconstruct_balance
from .change import compute_change
from .denominations import DENOMINATIONS
from .models import (
    EntryType,
    LedgerEntry,
    PartyKind,
    Product,
    DrawerBalance,
    PayoutSuggestion,
)
from .service import DrawerService

__all__ = [
    "DENOMINATIONS",
    "EntryType",
    "LedgerEntry",
    "PartyKind",
    "Product",
    "DrawerBalance",
    "PayoutSuggestion",
    "DrawerService",
    "reconstruct_balance",
    "compute_change",
]
