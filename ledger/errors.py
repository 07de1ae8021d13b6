from enum import Enum


class ErrorKind(str, Enum):
    ACCOUNT_NOT_FOUND = "AccountNotFound"
    INSUFFICIENT_CREDITS = "InsufficientCredits"
    INVALID_IDENTIFIER = "InvalidIdentifier"
    ALREADY_PURCHASED = "AlreadyPurchased"
    DUPLICATE_REFERENCE = "DuplicateReference"
    IDEMPOTENCY_CONFLICT = "IdempotencyConflict"
    STORAGE_UNAVAILABLE = "StorageUnavailable"


class LedgerServiceError(Exception):
    kind: ErrorKind = ErrorKind.STORAGE_UNAVAILABLE


class AccountNotFoundError(LedgerServiceError):
    kind = ErrorKind.ACCOUNT_NOT_FOUND

    def __init__(self, account_id: str):
        super().__init__(f"Account {account_id} not found")
        self.account_id = account_id


class InsufficientCreditsError(LedgerServiceError):
    kind = ErrorKind.INSUFFICIENT_CREDITS

    def __init__(self, account_id: str, balance: int, required: int):
        super().__init__(f"Account {account_id} has {balance} credits, needs {required}")
        self.account_id = account_id
        self.balance = balance
        self.required = required


class InvalidIdentifierError(LedgerServiceError):
    kind = ErrorKind.INVALID_IDENTIFIER


class AlreadyPurchasedError(LedgerServiceError):
    kind = ErrorKind.ALREADY_PURCHASED


class IdempotencyConflictError(LedgerServiceError):
    kind = ErrorKind.IDEMPOTENCY_CONFLICT


class StorageUnavailableError(LedgerServiceError):
    """Transient storage failure. Safe to retry because every append is idempotent."""
    kind = ErrorKind.STORAGE_UNAVAILABLE
