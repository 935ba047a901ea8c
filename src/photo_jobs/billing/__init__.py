"""User balance accounting."""

from photo_jobs.billing.ledger import (
    AccountNotFoundError,
    BalanceLedger,
    InsufficientBalanceError,
    LedgerError,
    SqlBalanceLedger,
)

__all__ = [
    "AccountNotFoundError",
    "BalanceLedger",
    "InsufficientBalanceError",
    "LedgerError",
    "SqlBalanceLedger",
]
