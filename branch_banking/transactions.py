"""
Transaction Processing Module

Authorizes and applies deposits, withdrawals, transfers, interest postings,
bill payments and account closure against the Account Ledger. Every operation
follows the same shape: validate, mutate, append to the transaction log,
persist the ledger, audit. All checks run before any mutation, so a rejected
operation leaves the ledger untouched.
"""

from decimal import Decimal
from datetime import datetime
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union
from enum import Enum
from contextlib import contextmanager
import uuid

from .accounts import Account, AccountLedger, AccountStatus
from .audit import AuditTrail, AuditEventType
from .clock import Clock, add_months, local_now, same_day, whole_months_between
from .config import BankConfig
from .currency import ZERO, format_amount, to_amount
from .exceptions import (
    AccountLockedError, BankingError, InsufficientFundsError,
    InvalidOperationError, LimitViolationError, PersistenceError
)
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord

Amount = Union[Decimal, int, str]


class TransactionType(Enum):
    """Types of branch transactions"""
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    TRANSFER = "TRANSFER"
    INTEREST = "INTEREST"
    BILL_PAYMENT = "BILL_PAYMENT"


@dataclass
class Transaction(StorageRecord):
    """
    One completed money movement. Append-only: never mutated or removed.
    """
    account_number: str
    transaction_type: TransactionType
    amount: Decimal
    timestamp: datetime
    description: str
    from_account: str = ""
    to_account: str = ""

    def __post_init__(self):
        self.amount = to_amount(self.amount)
        if self.amount <= ZERO:
            raise ValueError("Transaction amount must be positive")

        if self.transaction_type == TransactionType.TRANSFER:
            if not self.from_account or not self.to_account:
                raise ValueError("Transfer must reference both accounts")
            if self.from_account == self.to_account:
                raise ValueError("Transfer source and destination must differ")
        elif self.from_account or self.to_account:
            raise ValueError("Only transfers carry from/to accounts")

    def involves(self, account_number: str) -> bool:
        """Check if the account is subject, source or destination"""
        return account_number in (self.account_number, self.from_account, self.to_account)

    def signed_amount(self, account_number: str) -> Decimal:
        """Amount as seen from the given account: credits positive, debits negative"""
        if self.transaction_type == TransactionType.TRANSFER:
            return -self.amount if account_number == self.from_account else self.amount
        if self.transaction_type in (TransactionType.DEPOSIT, TransactionType.INTEREST):
            return self.amount
        return -self.amount

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Transaction':
        """Create Transaction from dictionary with proper type restoration"""
        data = dict(data)
        data['transaction_type'] = TransactionType(data['transaction_type'])
        data['amount'] = Decimal(data['amount'])
        if isinstance(data['timestamp'], str):
            data['timestamp'] = datetime.fromisoformat(data['timestamp'])
        return super().from_dict(data)


class TransactionLog:
    """Append-only record of completed transactions"""

    def __init__(self, storage: StorageInterface, table_name: str = "transactions"):
        self.storage = storage
        self.table_name = table_name

    def append(self, transaction: Transaction) -> None:
        """Durably record one completed transaction"""
        if self.storage.exists(self.table_name, transaction.id):
            raise InvalidOperationError(f"Transaction {transaction.id} already recorded")
        self.storage.save(self.table_name, transaction.id, transaction.to_dict())

    def all(self) -> List[Transaction]:
        """Every transaction, oldest first"""
        return [Transaction.from_dict(data) for data in self.storage.load_all(self.table_name)]

    def history(
        self,
        account_number: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> List[Transaction]:
        """
        Transactions involving an account, oldest first

        Args:
            account_number: Account as subject, source or destination
            start: Earliest timestamp (inclusive)
            end: Latest timestamp (inclusive)
        """
        result = [tx for tx in self.all() if tx.involves(account_number)]
        if start:
            result = [tx for tx in result if tx.timestamp >= start]
        if end:
            result = [tx for tx in result if tx.timestamp <= end]
        return result

    def count(self) -> int:
        return self.storage.count(self.table_name)


class TransactionAuthorizer:
    """
    Validates and applies money movements against balances, per-transaction
    limits and the calendar-day withdrawal cap.

    Callers authenticate the account holder first; the authorizer only checks
    that the account is in a state that allows the operation.
    """

    def __init__(
        self,
        ledger: AccountLedger,
        audit_trail: AuditTrail,
        transaction_log: TransactionLog,
        config: Optional[BankConfig] = None,
        clock: Optional[Clock] = None
    ):
        self.ledger = ledger
        self.audit_trail = audit_trail
        self.transaction_log = transaction_log
        self.config = config or BankConfig()
        self._clock = clock or local_now
        self.logger = get_logger("branch_banking.transactions")

    # Public operations

    def deposit(self, account_number: str, amount: Amount,
                description: Optional[str] = None) -> Transaction:
        """
        Deposit cash into an account

        Raises:
            AccountNotFoundError, AccountLockedError, InvalidOperationError,
            LimitViolationError, PersistenceError
        """
        with self._authorizing("deposit", account_number, amount) as amount:
            account = self.ledger.require(account_number)
            with self.ledger.account_lock(account_number):
                now = self._clock()
                self._check_usable(account)
                self._roll_daily_window(account, now)
                self._check_deposit_limits(amount)

                account.balance += amount
                account.last_transaction_date = now
                account.updated_at = now

                tx = self._new_transaction(
                    account_number, TransactionType.DEPOSIT, amount, now,
                    description or "Cash deposit"
                )
                self._commit(tx, AuditEventType.DEPOSIT,
                             f"Deposit of {format_amount(amount)} to account: {account_number}",
                             {"balance": account.balance})
                return tx

    def withdraw(self, account_number: str, amount: Amount,
                 description: Optional[str] = None) -> Transaction:
        """
        Withdraw cash from an account

        Raises:
            AccountNotFoundError, AccountLockedError, InvalidOperationError,
            LimitViolationError, InsufficientFundsError, PersistenceError
        """
        with self._authorizing("withdrawal", account_number, amount) as amount:
            account = self.ledger.require(account_number)
            with self.ledger.account_lock(account_number):
                now = self._clock()
                self._check_usable(account)
                self._roll_daily_window(account, now)
                self._check_withdrawal(account, amount)

                account.balance -= amount
                account.daily_withdrawal_total += amount
                account.last_transaction_date = now
                account.updated_at = now

                tx = self._new_transaction(
                    account_number, TransactionType.WITHDRAWAL, amount, now,
                    description or "Cash withdrawal"
                )
                self._commit(tx, AuditEventType.WITHDRAWAL,
                             f"Withdrawal of {format_amount(amount)} from account: {account_number}",
                             {"balance": account.balance,
                              "daily_withdrawal_total": account.daily_withdrawal_total})
                return tx

    def transfer(self, from_account: str, to_account: str, amount: Amount,
                 description: Optional[str] = None) -> Transaction:
        """
        Move money between two ACTIVE accounts of the branch

        The source is subject to the withdrawal minimum, its balance and its
        daily withdrawal cap.

        Raises:
            AccountNotFoundError: Source account does not exist
            InvalidOperationError: Same account, unknown or inactive destination
            AccountLockedError, LimitViolationError, InsufficientFundsError,
            PersistenceError
        """
        with self._authorizing("transfer", from_account, amount) as amount:
            if from_account == to_account:
                raise InvalidOperationError("Cannot transfer to the same account", from_account)
            source = self.ledger.require(from_account)
            destination = self.ledger.get(to_account)
            if destination is None:
                raise InvalidOperationError(f"Destination account {to_account} not found", from_account)

            with self.ledger.account_lock(from_account, to_account):
                now = self._clock()
                self._check_usable(source)
                if destination.status != AccountStatus.ACTIVE:
                    raise InvalidOperationError(
                        f"Destination account {to_account} is not active", from_account
                    )
                self._roll_daily_window(source, now)
                self._roll_daily_window(destination, now)
                self._check_withdrawal(source, amount)

                source.balance -= amount
                source.daily_withdrawal_total += amount
                destination.balance += amount
                for account in (source, destination):
                    account.last_transaction_date = now
                    account.updated_at = now

                tx = self._new_transaction(
                    from_account, TransactionType.TRANSFER, amount, now,
                    description or f"Transfer to {to_account}",
                    from_account=from_account, to_account=to_account
                )
                self._commit(tx, AuditEventType.TRANSFER,
                             f"Transfer of {format_amount(amount)} from account: "
                             f"{from_account} to account: {to_account}",
                             {"to_account": to_account, "balance": source.balance})
                return tx

    def post_interest(self, account_number: str) -> Transaction:
        """
        Credit simple interest for the whole months elapsed since the last
        posting (or since opening): balance x annual rate x months / 12

        The accrual anchor advances by exactly the months paid, so a partial
        month carries over to the next posting. Interest is a bank credit,
        not customer activity, so it does not reset the inactivity clock.

        Raises:
            InvalidOperationError: If no full month has elapsed, or the
                balance earns nothing
        """
        with self._authorizing("interest", account_number, None):
            account = self.ledger.require(account_number)
            with self.ledger.account_lock(account_number):
                now = self._clock()
                self._check_usable(account)
                self._roll_daily_window(account, now)

                accrued_from = account.interest_accrued_from
                months = whole_months_between(accrued_from, now.date())
                if months < 1:
                    raise InvalidOperationError(
                        f"No interest due before {add_months(accrued_from, 1).isoformat()}",
                        account_number
                    )

                interest = to_amount(account.balance * self.config.interest_rate * months / 12)
                if interest <= ZERO:
                    raise InvalidOperationError("No interest due on this balance", account_number)

                account.balance += interest
                account.last_interest_date = add_months(accrued_from, months)
                account.updated_at = now

                rate_pct = (self.config.interest_rate * 100).normalize()
                tx = self._new_transaction(
                    account_number, TransactionType.INTEREST, interest, now,
                    f"Interest @ {rate_pct}% p.a. for {months} month(s)"
                )
                self._commit(tx, AuditEventType.INTEREST_POSTED,
                             f"Interest of {format_amount(interest)} credited to account: {account_number}",
                             {"months": months, "rate": self.config.interest_rate,
                              "accrued_to": account.last_interest_date.isoformat(),
                              "balance": account.balance})
                return tx

    def pay_bill(self, account_number: str, biller: str, amount: Amount,
                 reference: Optional[str] = None) -> Transaction:
        """
        Pay a utility or merchant bill from the account

        Raises:
            InvalidOperationError: Missing biller
            LimitViolationError, InsufficientFundsError, AccountLockedError,
            PersistenceError
        """
        with self._authorizing("bill_payment", account_number, amount) as amount:
            biller = (biller or "").strip()
            if not biller:
                raise InvalidOperationError("Biller name is required", account_number)
            account = self.ledger.require(account_number)
            with self.ledger.account_lock(account_number):
                now = self._clock()
                self._check_usable(account)
                self._roll_daily_window(account, now)
                if amount < self.config.min_bill_payment:
                    raise LimitViolationError(
                        f"Minimum bill payment is {format_amount(self.config.min_bill_payment)}",
                        account_number
                    )
                if amount > self.config.max_bill_payment:
                    raise LimitViolationError(
                        f"Maximum bill payment is {format_amount(self.config.max_bill_payment)}",
                        account_number
                    )
                self._check_funds(account, amount)

                account.balance -= amount
                account.last_transaction_date = now
                account.updated_at = now

                description = f"Bill payment to {biller}"
                if reference:
                    description += f" (ref {reference})"
                tx = self._new_transaction(
                    account_number, TransactionType.BILL_PAYMENT, amount, now, description
                )
                self._commit(tx, AuditEventType.BILL_PAYMENT,
                             f"Bill payment of {format_amount(amount)} to {biller} from account: {account_number}",
                             {"biller": biller, "reference": reference, "balance": account.balance})
                return tx

    def close_account(self, account_number: str) -> Optional[Transaction]:
        """
        Close an ACTIVE or LOCKED account, paying out any remaining balance

        The payout is recorded as a WITHDRAWAL and is exempt from the
        withdrawal limits.

        Returns:
            The payout transaction, or None if the balance was zero
        """
        with self._authorizing("close", account_number, None):
            account = self.ledger.require(account_number)
            with self.ledger.account_lock(account_number):
                if account.is_closed:
                    raise InvalidOperationError("Account is already closed", account_number)

                now = self._clock()
                payout = account.balance
                account.balance = ZERO
                account.transition_to(AccountStatus.CLOSED, now)

                tx = None
                if payout > ZERO:
                    tx = self._new_transaction(
                        account_number, TransactionType.WITHDRAWAL, payout, now,
                        "Closing balance payout"
                    )
                    self.transaction_log.append(tx)
                self.ledger.persist()
                self.audit_trail.log_event(
                    AuditEventType.ACCOUNT_CLOSED, account_number,
                    f"Account closed: {account_number}",
                    {"payout": payout}
                )
                log_action(self.logger, "info", "Account closed", action="close",
                           account_number=account_number, details={"payout": str(payout)})
                return tx

    # Validation

    def _check_usable(self, account: Account) -> None:
        if account.status == AccountStatus.LOCKED:
            raise AccountLockedError(
                "Account is locked. Please contact customer support.", account.account_number
            )
        if account.status == AccountStatus.CLOSED:
            raise InvalidOperationError("Account is closed", account.account_number)

    def _roll_daily_window(self, account: Account, now: datetime) -> None:
        """Reset the daily withdrawal total on the first operation of a new day"""
        last = account.last_transaction_date
        if last is not None and same_day(last, now):
            return
        if account.daily_withdrawal_total != ZERO:
            account.daily_withdrawal_total = ZERO

    def _check_deposit_limits(self, amount: Decimal) -> None:
        if amount < self.config.min_deposit:
            raise LimitViolationError(f"Minimum deposit is {format_amount(self.config.min_deposit)}")
        if amount > self.config.max_deposit:
            raise LimitViolationError(f"Maximum deposit is {format_amount(self.config.max_deposit)}")

    def _check_funds(self, account: Account, amount: Decimal) -> None:
        if amount > account.balance:
            raise InsufficientFundsError(
                f"Insufficient balance. Available: {format_amount(account.balance)}",
                account.account_number
            )

    def _check_withdrawal(self, account: Account, amount: Decimal) -> None:
        if amount < self.config.min_withdrawal:
            raise LimitViolationError(
                f"Minimum withdrawal is {format_amount(self.config.min_withdrawal)}",
                account.account_number
            )
        self._check_funds(account, amount)
        if account.daily_withdrawal_total + amount > self.config.daily_withdrawal_limit:
            remaining = self.config.daily_withdrawal_limit - account.daily_withdrawal_total
            raise LimitViolationError(
                f"Daily withdrawal limit of {format_amount(self.config.daily_withdrawal_limit)} exceeded. "
                f"Remaining today: {format_amount(max(remaining, ZERO))}",
                account.account_number
            )

    # Recording

    def _new_transaction(self, account_number: str, transaction_type: TransactionType,
                         amount: Decimal, now: datetime, description: str,
                         from_account: str = "", to_account: str = "") -> Transaction:
        return Transaction(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            account_number=account_number,
            transaction_type=transaction_type,
            amount=amount,
            timestamp=now,
            description=description,
            from_account=from_account,
            to_account=to_account
        )

    def _commit(self, tx: Transaction, event_type: AuditEventType, message: str,
                metadata: Dict[str, Any]) -> None:
        """Append, persist and audit a transaction already applied in memory"""
        self.transaction_log.append(tx)
        self.ledger.persist()
        self.audit_trail.log_event(
            event_type, tx.account_number, message,
            dict(metadata, transaction_id=tx.id, amount=tx.amount)
        )
        log_action(
            self.logger, "info", f"Transaction completed: {tx.transaction_type.value}",
            action=tx.transaction_type.value.lower(), account_number=tx.account_number,
            details={"transaction_id": tx.id, "amount": str(tx.amount),
                   "from_account": tx.from_account or None, "to_account": tx.to_account or None}
        )

    @contextmanager
    def _authorizing(self, operation: str, account_number: str, amount: Optional[Amount]):
        """
        Normalise the amount and audit any rejection of the operation.

        Persistence failures pass through untouched: the operation was
        applied in memory and the caller must be told it may not be durable.
        """
        try:
            if amount is not None:
                try:
                    amount = to_amount(amount)
                except (TypeError, ValueError, ArithmeticError):
                    raise InvalidOperationError(f"Invalid amount: {amount!r}", account_number)
                if amount <= ZERO:
                    raise LimitViolationError("Amount must be positive", account_number)
            yield amount
        except PersistenceError:
            self.logger.error(f"{operation} applied but not persisted", exc_info=True)
            raise
        except BankingError as e:
            log_action(
                self.logger, "warning", f"{operation} rejected: {e.message}",
                action=operation, account_number=account_number,
                error_kind=e.kind.value,
                details={"amount": str(amount)} if amount is not None else None
            )
            try:
                self.audit_trail.log_event(
                    AuditEventType.TRANSACTION_REJECTED, account_number,
                    f"Rejected {operation} for account: {account_number} ({e.message})",
                    {"operation": operation, "error": e.kind.value,
                     "amount": str(amount) if amount is not None else None}
                )
            except PersistenceError:
                self.logger.error("Could not audit rejected operation", exc_info=True)
            raise
