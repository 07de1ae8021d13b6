"""
Credit Ledger

This module provides:
- Immutable, append-only credit transactions
- Atomic application of earn, spend, bonus and penalty entries
- Idempotent appends keyed on (account, reference key)
- Level progression derived from cumulative earnings
- Two-sided purchase settlement with owner commission
"""

from .config import EconomyConfig, Settings, load_economy_config
from .errors import (
    ErrorKind,
    LedgerServiceError,
    AccountNotFoundError,
    AlreadyPurchasedError,
    IdempotencyConflictError,
    InsufficientCreditsError,
    InvalidIdentifierError,
    StorageUnavailableError,
)
from .levels import LevelCalculator
from .models import (
    Account,
    LevelInfo,
    PurchaseReceipt,
    PurchaseRecord,
    Transaction,
    TransactionCategory,
    TransactionKind,
    TransactionRequest,
    TransactionResult,
)
from .service import LedgerService
from .storage import LedgerStorage, InMemoryStorage, SQLiteStorage

__all__ = [
    "EconomyConfig",
    "Settings",
    "load_economy_config",
    "ErrorKind",
    "LedgerServiceError",
    "AccountNotFoundError",
    "AlreadyPurchasedError",
    "IdempotencyConflictError",
    "InsufficientCreditsError",
    "InvalidIdentifierError",
    "StorageUnavailableError",
    "LevelCalculator",
    "Account",
    "LevelInfo",
    "PurchaseReceipt",
    "PurchaseRecord",
    "Transaction",
    "TransactionCategory",
    "TransactionKind",
    "TransactionRequest",
    "TransactionResult",
    "LedgerService",
    "LedgerStorage",
    "InMemoryStorage",
    "SQLiteStorage",
]
