"""
FBT points and cash ledger

This package provides:
- Balance adjustments and transfers with an append-only transaction log
- Five-level referral bonuses paid when an account is approved
- Point transfers, directly or through admin-approved requests
- Dice round settlement and hand-judged ultra manual bets
- Investments: pending → approved → completed / declined
- Withdrawal, loan and VIP upgrade requests
- Optimistic version checks on every batched write
"""

from .errors import (
    ConflictError,
    InsufficientFundsError,
    LedgerServiceError,
    NotFoundError,
    ValidationError,
)
from .models import (
    Account,
    BalanceField,
    DiceColor,
    Transaction,
    TransactionType,
)
from .service import LedgerService
from .store import DocumentStore

__all__ = [
    "Account",
    "BalanceField",
    "DiceColor",
    "Transaction",
    "TransactionType",
    "LedgerService",
    "DocumentStore",
    "LedgerServiceError",
    "ValidationError",
    "NotFoundError",
    "InsufficientFundsError",
    "ConflictError",
]
