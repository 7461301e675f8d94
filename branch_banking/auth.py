"""
Authentication Module

Validates account-number + PIN pairs against the ledger and applies the
failed-attempt lockout policy. Authentication never raises: every outcome is
reported through AuthResult and the audit trail.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from .accounts import Account, AccountLedger, AccountStatus
from .audit import AuditTrail, AuditEventType
from .clock import Clock, local_now
from .config import MAX_FAILED_ATTEMPTS
from .exceptions import ErrorKind, PersistenceError
from .inactivity import InactivityMonitor
from .logging_config import get_logger, log_action
from .security import verify_pin

LOCKED_MESSAGE = (
    "Account locked due to too many failed attempts or inactivity. "
    "Please contact customer support."
)
LOCKOUT_MESSAGE = "Account locked due to too many failed attempts. Please contact customer support."


@dataclass
class AuthResult:
    """Outcome of one authentication attempt"""
    success: bool
    account_number: str
    message: str
    error: Optional[ErrorKind] = None
    attempts_remaining: Optional[int] = None
    persisted: bool = True  # False if a state change may not survive a restart

    def __bool__(self) -> bool:
        return self.success


class Authenticator:
    """
    PIN authentication with lockout after max_failed_attempts consecutive
    failures and inactivity locking on every attempt.
    """

    def __init__(
        self,
        ledger: AccountLedger,
        audit_trail: AuditTrail,
        inactivity_monitor: InactivityMonitor,
        max_failed_attempts: int = MAX_FAILED_ATTEMPTS,
        clock: Optional[Clock] = None
    ):
        self.ledger = ledger
        self.audit_trail = audit_trail
        self.inactivity_monitor = inactivity_monitor
        self.max_failed_attempts = max_failed_attempts
        self._clock = clock or local_now
        self.logger = get_logger("branch_banking.auth")

    def validate(self, account_number: str, pin: str) -> bool:
        """Return True if the PIN is correct and the account may be used"""
        return self.authenticate(account_number, pin).success

    def authenticate(self, account_number: str, pin: str) -> AuthResult:
        """
        Authenticate an account holder

        Args:
            account_number: Account to log into
            pin: PIN as entered by the customer

        Returns:
            AuthResult describing success or the reason for refusal
        """
        account = self.ledger.get(account_number)
        if account is None:
            durable = self._audit(
                AuditEventType.ACCOUNT_NOT_FOUND, account_number,
                f"Failed login attempt - account not found: {account_number}"
            )
            self._log("warning", "Login for unknown account", account_number, ErrorKind.NOT_FOUND)
            return AuthResult(False, account_number, "Account not found.",
                              error=ErrorKind.NOT_FOUND, persisted=durable)

        with self.ledger.account_lock(account_number):
            durable = True
            try:
                self.inactivity_monitor.check_inactivity(account)
            except PersistenceError:
                self.logger.error("Could not persist inactivity lock", exc_info=True)
                durable = False

            if account.status == AccountStatus.LOCKED:
                durable &= self._audit(
                    AuditEventType.LOCKED_ACCESS_ATTEMPT, account_number,
                    f"Attempt to access locked account: {account_number}"
                )
                self._log("warning", "Login refused, account locked", account_number, ErrorKind.ACCOUNT_LOCKED)
                return AuthResult(False, account_number, LOCKED_MESSAGE,
                                  error=ErrorKind.ACCOUNT_LOCKED, attempts_remaining=0,
                                  persisted=durable)

            if account.status == AccountStatus.CLOSED:
                durable &= self._audit(
                    AuditEventType.LOGIN_FAILED, account_number,
                    f"Login attempt on closed account: {account_number}",
                    {"reason": "closed"}
                )
                return AuthResult(False, account_number, "Account is closed.",
                                  error=ErrorKind.INVALID_OPERATION, persisted=durable)

            if verify_pin(pin, account.pin_hash):
                return self._succeed(account, durable)
            return self._fail(account, durable)

    def _succeed(self, account: Account, durable: bool) -> AuthResult:
        had_failures = account.failed_attempts > 0
        account.failed_attempts = 0

        durable &= self._audit(
            AuditEventType.LOGIN_SUCCESS, account.account_number,
            f"Successful login: {account.account_number}"
        )
        if had_failures:
            account.updated_at = self._clock()
            durable &= self._persist()

        self._log("info", "Login succeeded", account.account_number)
        return AuthResult(True, account.account_number, "Login successful.",
                          attempts_remaining=self.max_failed_attempts, persisted=durable)

    def _fail(self, account: Account, durable: bool) -> AuthResult:
        number = account.account_number
        account.failed_attempts = min(account.failed_attempts + 1, self.max_failed_attempts)
        account.updated_at = self._clock()
        attempt = account.failed_attempts

        durable &= self._audit(
            AuditEventType.LOGIN_FAILED, number,
            f"Failed login attempt for account: {number} (attempt {attempt})",
            {"attempt": attempt}
        )

        if attempt >= self.max_failed_attempts:
            account.transition_to(AccountStatus.LOCKED, self._clock())
            durable &= self._persist()
            durable &= self._audit(
                AuditEventType.ACCOUNT_LOCKED, number,
                f"Account locked: {number}",
                {"reason": "failed_attempts", "attempts": attempt}
            )
            self._log("warning", "Account locked after failed logins", number,
                      ErrorKind.ACCOUNT_LOCKED, {"attempts": attempt})
            return AuthResult(False, number, LOCKOUT_MESSAGE,
                              error=ErrorKind.ACCOUNT_LOCKED, attempts_remaining=0,
                              persisted=durable)

        remaining = self.max_failed_attempts - attempt
        durable &= self._persist()
        self._log("info", "Login failed, invalid PIN", number,
                  ErrorKind.INVALID_CREDENTIAL, {"attempt": attempt})
        return AuthResult(False, number, f"Invalid PIN. {remaining} attempts remaining.",
                          error=ErrorKind.INVALID_CREDENTIAL, attempts_remaining=remaining,
                          persisted=durable)

    def _audit(self, event_type: AuditEventType, account_number: str, message: str,
               metadata: Optional[Dict[str, Any]] = None) -> bool:
        try:
            self.audit_trail.log_event(event_type, account_number, message, metadata)
            return True
        except PersistenceError:
            self.logger.error(f"Could not write audit event {event_type.value}", exc_info=True)
            return False

    def _persist(self) -> bool:
        try:
            self.ledger.persist()
            return True
        except PersistenceError:
            return False

    def _log(self, level: str, message: str, account_number: str,
             error: Optional[ErrorKind] = None,
             details: Optional[Dict[str, Any]] = None) -> None:
        log_action(self.logger, level, message, action="authenticate",
                   account_number=account_number,
                   error_kind=error.value if error else None, details=details)
