"""
Points Ledger for Named Members

This module provides:
- Member creation with monotonically increasing ids
- Balance lookup, awards and deductions that never go below zero
- Synchronous balance-changed notifications for observers
- A leaderboard ordered by balance
"""

from .models import (
    ChangeKind,
    Member,
    BalanceChanged,
    LeaderboardEntry,
)
from .service import (
    LedgerService,
    LedgerServiceError,
    MemberNotFoundError,
    InvalidAmountError,
    InsufficientBalanceError,
)

__all__ = [
    "ChangeKind",
    "Member",
    "BalanceChanged",
    "LeaderboardEntry",
    "LedgerService",
    "LedgerServiceError",
    "MemberNotFoundError",
    "InvalidAmountError",
    "InsufficientBalanceError",
]
