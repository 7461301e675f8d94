"""
Account Lifecycle Service

Opens accounts, changes PINs and performs administrative unlocks. Money
movement and closure belong to the TransactionAuthorizer.
"""

import re
import uuid
from typing import Callable, Container, Optional

from .accounts import Account, AccountLedger, AccountStatus, AccountType
from .audit import AuditTrail, AuditEventType
from .clock import Clock, local_now, same_day
from .config import BankConfig
from .currency import ZERO, format_amount, to_amount
from .exceptions import (
    InvalidCredentialError, InvalidOperationError, LimitViolationError, WeakPinError
)
from .identifiers import generate_account_number, generate_cif_number, ifsc_code, micr_code
from .logging_config import get_logger, log_action
from .security import hash_pin, is_strong_pin, verify_pin
from .transactions import Amount, TransactionAuthorizer

WEAK_PIN_MESSAGE = "PIN must be exactly 4 characters and not all the same"

_PHONE_RE = re.compile(r"^\d{10}$")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class AccountService:
    """
    Account opening, PIN management and administrative unlock
    """

    def __init__(
        self,
        ledger: AccountLedger,
        audit_trail: AuditTrail,
        authorizer: TransactionAuthorizer,
        config: Optional[BankConfig] = None,
        clock: Optional[Clock] = None,
        account_number_factory: Optional[Callable[[Container[str]], str]] = None
    ):
        self.ledger = ledger
        self.audit_trail = audit_trail
        self.authorizer = authorizer
        self.config = config or BankConfig()
        self._clock = clock or local_now
        self._new_account_number = account_number_factory or generate_account_number
        self.logger = get_logger("branch_banking.accounts")

    def open_account(
        self,
        name: str,
        gender: str,
        phone_number: str,
        email: str,
        address: str,
        age: int,
        pin: str,
        account_type: AccountType = AccountType.SAVINGS,
        initial_deposit: Optional[Amount] = None
    ) -> Account:
        """
        Open a new account

        Args:
            name: Account holder's full name
            gender: Free-text gender as given by the customer
            phone_number: 10-digit mobile number
            email: Contact e-mail address
            address: Postal address
            age: Age in years
            pin: Initial PIN, checked with is_strong_pin
            account_type: SAVINGS or CURRENT
            initial_deposit: Optional opening deposit, subject to the deposit limits

        Returns:
            The new ACTIVE account

        Raises:
            WeakPinError: If the PIN fails the strength check
            InvalidOperationError: If a customer field is invalid
            LimitViolationError: If the opening deposit is outside the limits
        """
        if not is_strong_pin(pin):
            raise WeakPinError(WEAK_PIN_MESSAGE)
        self._validate_customer(name, phone_number, email, age)

        opening_amount = None
        if initial_deposit is not None:
            try:
                opening_amount = to_amount(initial_deposit)
            except (TypeError, ValueError, ArithmeticError):
                raise InvalidOperationError(f"Invalid amount: {initial_deposit!r}")
            if opening_amount == ZERO:
                opening_amount = None
            elif not self.config.min_deposit <= opening_amount <= self.config.max_deposit:
                raise LimitViolationError(
                    f"Opening deposit must be between {format_amount(self.config.min_deposit)} "
                    f"and {format_amount(self.config.max_deposit)}"
                )

        now = self._clock()
        account = Account(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            account_number=self._new_account_number(self.ledger),
            cif_number=generate_cif_number(),
            name=name.strip(),
            gender=gender.strip(),
            phone_number=phone_number,
            email=email.strip(),
            address=address.strip(),
            age=age,
            pin_hash=hash_pin(pin),
            account_type=account_type,
            branch_name=self.config.branch_name,
            branch_address=self.config.branch_address,
            ifsc_code=ifsc_code(self.config.ifsc_prefix),
            micr_code=micr_code(self.config.micr_city_code),
            opening_date=now.date()
        )

        self.ledger.insert(account)
        self.ledger.persist()
        self.audit_trail.log_event(
            AuditEventType.ACCOUNT_OPENED, account.account_number,
            f"Account created: {account.account_number}",
            {"cif_number": account.cif_number, "account_type": account_type.value}
        )
        log_action(self.logger, "info", "Account opened", action="open_account",
                   account_number=account.account_number,
                   details={"account_type": account_type.value})

        if opening_amount is not None:
            self.authorizer.deposit(account.account_number, opening_amount, "Initial deposit")

        return account

    def change_pin(self, account_number: str, old_pin: str, new_pin: str) -> None:
        """
        Replace an account's PIN

        Raises:
            AccountNotFoundError: Unknown account
            InvalidCredentialError: Old PIN does not match
            WeakPinError: New PIN fails the strength check or equals the old one
            InvalidOperationError: Account is closed
            PersistenceError: New PIN could not be persisted
        """
        account = self.ledger.require(account_number)
        with self.ledger.account_lock(account_number):
            if account.is_closed:
                raise InvalidOperationError("Account is closed", account_number)

            if not verify_pin(old_pin, account.pin_hash):
                self.audit_trail.log_event(
                    AuditEventType.PIN_CHANGE_FAILED, account_number,
                    f"PIN change failed, incorrect current PIN: {account_number}"
                )
                raise InvalidCredentialError("Current PIN is incorrect", account_number)
            if not is_strong_pin(new_pin):
                raise WeakPinError(WEAK_PIN_MESSAGE, account_number)
            if new_pin == old_pin:
                raise WeakPinError("New PIN must differ from the current PIN", account_number)

            now = self._clock()
            account.pin_hash = hash_pin(new_pin)
            account.updated_at = now
            self.ledger.persist()
            self.audit_trail.log_event(
                AuditEventType.PIN_CHANGED, account_number,
                f"PIN changed for account: {account_number}"
            )
            log_action(self.logger, "info", "PIN changed", action="change_pin",
                       account_number=account_number)

    def unlock_account(self, account_number: str, reason: str) -> Account:
        """
        Administrative unlock of a LOCKED account

        Clears failed attempts and counts as activity, so an account locked
        for inactivity is not locked again on the next login.
        """
        account = self.ledger.require(account_number)
        with self.ledger.account_lock(account_number):
            if account.status != AccountStatus.LOCKED:
                raise InvalidOperationError(
                    f"Account {account_number} is {account.status.value}, not LOCKED",
                    account_number
                )

            now = self._clock()
            if account.last_transaction_date is None or not same_day(account.last_transaction_date, now):
                account.daily_withdrawal_total = ZERO
            account.transition_to(AccountStatus.ACTIVE, now)
            account.failed_attempts = 0
            account.last_transaction_date = now

            self.ledger.persist()
            self.audit_trail.log_event(
                AuditEventType.ACCOUNT_UNLOCKED, account_number,
                f"Account unlocked: {account_number}",
                {"reason": reason}
            )
            log_action(self.logger, "info", "Account unlocked", action="unlock_account",
                       account_number=account_number, details={"reason": reason})
            return account

    def _validate_customer(self, name: str, phone_number: str, email: str, age: int) -> None:
        if not name or not name.strip():
            raise InvalidOperationError("Name is required")
        if not isinstance(age, int) or age <= 0 or age > 150:
            raise InvalidOperationError("Age must be a whole number between 1 and 150")
        if not _PHONE_RE.match(phone_number or ""):
            raise InvalidOperationError("Phone number must be 10 digits")
        if not _EMAIL_RE.match((email or "").strip()):
            raise InvalidOperationError("Invalid e-mail address")
