"""Exception hierarchy for branch banking operations."""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Categories of failure reported to callers"""
    NOT_FOUND = "not_found"
    ACCOUNT_LOCKED = "account_locked"
    INVALID_CREDENTIAL = "invalid_credential"
    LIMIT_VIOLATION = "limit_violation"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    INVALID_OPERATION = "invalid_operation"
    PERSISTENCE = "persistence"


class BankingError(Exception):
    """Base exception for all branch banking errors."""

    kind: ErrorKind = ErrorKind.INVALID_OPERATION

    def __init__(self, message: str, account_number: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.account_number = account_number


class AccountNotFoundError(BankingError):
    """Raised when an account number is not in the ledger."""

    kind = ErrorKind.NOT_FOUND


class AccountLockedError(BankingError):
    """Raised when a locked account is used."""

    kind = ErrorKind.ACCOUNT_LOCKED


class InvalidCredentialError(BankingError):
    """Raised when a PIN does not match."""

    kind = ErrorKind.INVALID_CREDENTIAL


class LimitViolationError(BankingError):
    """Raised when an amount is outside a per-transaction or daily limit."""

    kind = ErrorKind.LIMIT_VIOLATION


class InsufficientFundsError(BankingError):
    """Raised when a debit exceeds the available balance."""

    kind = ErrorKind.INSUFFICIENT_FUNDS


class InvalidOperationError(BankingError):
    """Raised for malformed requests or operations on closed accounts."""

    kind = ErrorKind.INVALID_OPERATION


class WeakPinError(InvalidOperationError):
    """Raised when a new PIN fails the strength check."""


class PersistenceError(BankingError):
    """Raised when the ledger could not be flushed to durable storage.

    The in-memory change has been applied but may not survive a restart.
    """

    kind = ErrorKind.PERSISTENCE
