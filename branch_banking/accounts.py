"""
Account Management Module

Holds the branch's account records and the in-memory Account Ledger that owns
them. The ledger is the authoritative state; storage is a flush target that
is rewritten whole after every change that must survive a restart.
"""

from decimal import Decimal
from datetime import datetime, date
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional
from enum import Enum
from contextlib import contextmanager, ExitStack
import threading

from .clock import calendar_date
from .currency import ZERO, to_amount
from .exceptions import AccountNotFoundError, InvalidOperationError, PersistenceError
from .logging_config import get_logger
from .storage import StorageInterface, StorageRecord


class AccountStatus(Enum):
    """Account lifecycle states"""
    ACTIVE = "ACTIVE"    # Normal operation
    LOCKED = "LOCKED"    # Failed logins or inactivity, needs administrative unlock
    CLOSED = "CLOSED"    # Terminal


class AccountType(Enum):
    """Deposit products offered by the branch"""
    SAVINGS = "SAVINGS"
    CURRENT = "CURRENT"


# Allowed status changes; CLOSED has no way out
_TRANSITIONS = {
    AccountStatus.ACTIVE: {AccountStatus.LOCKED, AccountStatus.CLOSED},
    AccountStatus.LOCKED: {AccountStatus.ACTIVE, AccountStatus.CLOSED},
    AccountStatus.CLOSED: set(),
}


@dataclass
class Account(StorageRecord):
    """
    One customer account: identity, credential, branch details and balance
    """
    account_number: str
    cif_number: str
    name: str
    gender: str
    phone_number: str
    email: str
    address: str
    age: int
    pin_hash: str
    account_type: AccountType
    branch_name: str
    branch_address: str
    ifsc_code: str
    micr_code: str
    opening_date: date
    balance: Decimal = ZERO
    status: AccountStatus = AccountStatus.ACTIVE
    failed_attempts: int = 0
    last_transaction_date: Optional[datetime] = None
    daily_withdrawal_total: Decimal = ZERO
    last_interest_date: Optional[date] = None

    def __post_init__(self):
        self.balance = to_amount(self.balance)
        self.daily_withdrawal_total = to_amount(self.daily_withdrawal_total)

        if self.balance < ZERO:
            raise ValueError("Account balance cannot be negative")
        if self.daily_withdrawal_total < ZERO:
            raise ValueError("Daily withdrawal total cannot be negative")
        if self.failed_attempts < 0:
            raise ValueError("Failed attempts cannot be negative")

    @property
    def is_active(self) -> bool:
        return self.status == AccountStatus.ACTIVE

    @property
    def is_locked(self) -> bool:
        return self.status == AccountStatus.LOCKED

    @property
    def is_closed(self) -> bool:
        return self.status == AccountStatus.CLOSED

    def last_activity_on(self, now: datetime) -> date:
        """Date of the last customer transaction in now's timezone, or the opening date"""
        if self.last_transaction_date is not None:
            return calendar_date(self.last_transaction_date, now)
        return self.opening_date

    @property
    def interest_accrued_from(self) -> date:
        """Start of the period not yet covered by an interest posting"""
        return self.last_interest_date or self.opening_date

    def transition_to(self, new_status: AccountStatus, when: datetime) -> None:
        """Change status, enforcing the lifecycle"""
        if new_status == self.status:
            return
        if new_status not in _TRANSITIONS[self.status]:
            raise InvalidOperationError(
                f"Account {self.account_number} cannot move from "
                f"{self.status.value} to {new_status.value}",
                self.account_number
            )
        self.status = new_status
        self.updated_at = when

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Account':
        """Create Account from dictionary, restoring Decimal, Enum and date fields"""
        data = dict(data)
        data['account_type'] = AccountType(data['account_type'])
        data['status'] = AccountStatus(data['status'])
        data['balance'] = Decimal(data['balance'])
        data['daily_withdrawal_total'] = Decimal(data['daily_withdrawal_total'])
        if isinstance(data['opening_date'], str):
            data['opening_date'] = date.fromisoformat(data['opening_date'])
        if isinstance(data.get('last_transaction_date'), str):
            data['last_transaction_date'] = datetime.fromisoformat(data['last_transaction_date'])
        if isinstance(data.get('last_interest_date'), str):
            data['last_interest_date'] = date.fromisoformat(data['last_interest_date'])
        return super().from_dict(data)


class AccountLedger:
    """
    In-memory mapping of account number to Account.

    Only account opening inserts; every other component mutates accounts in
    place and then calls persist(). Callers that read, validate and mutate an
    account hold account_lock() for the whole sequence.
    """

    def __init__(self, storage: StorageInterface, table_name: str = "accounts"):
        self.storage = storage
        self.table_name = table_name
        self.logger = get_logger("branch_banking.accounts")
        self._accounts: Dict[str, Account] = {}
        self._account_locks: Dict[str, threading.RLock] = {}
        self._guard = threading.Lock()
        self._persist_lock = threading.Lock()

    def __contains__(self, account_number: str) -> bool:
        return account_number in self._accounts

    def __len__(self) -> int:
        return len(self._accounts)

    def __iter__(self) -> Iterator[Account]:
        return iter(self.all_accounts())

    def get(self, account_number: str) -> Optional[Account]:
        """Get account by number"""
        return self._accounts.get(account_number)

    def require(self, account_number: str) -> Account:
        """Get account by number or raise AccountNotFoundError"""
        account = self._accounts.get(account_number)
        if account is None:
            raise AccountNotFoundError(f"Account {account_number} not found", account_number)
        return account

    def all_accounts(self) -> List[Account]:
        """Snapshot of every account, in opening order"""
        with self._guard:
            return list(self._accounts.values())

    def insert(self, account: Account) -> None:
        """Add a newly opened account; the number must be unused"""
        with self._guard:
            if account.account_number in self._accounts:
                raise InvalidOperationError(
                    f"Account {account.account_number} already exists",
                    account.account_number
                )
            self._accounts[account.account_number] = account

    def persist(self) -> None:
        """
        Flush the entire ledger to storage

        Raises:
            PersistenceError: If storage could not be written; in-memory state
                is kept but may not survive a restart
        """
        with self._persist_lock:
            records = {acc.account_number: acc.to_dict() for acc in self.all_accounts()}
            try:
                with self.storage.atomic():
                    self.storage.save_many(self.table_name, records)
            except PersistenceError:
                self.logger.error("Ledger flush failed", exc_info=True)
                raise
            except OSError as e:
                self.logger.error("Ledger flush failed", exc_info=True)
                raise PersistenceError(f"Could not persist accounts: {e}")

    def load(self) -> int:
        """Replace the in-memory ledger with the persisted accounts"""
        accounts = [Account.from_dict(data) for data in self.storage.load_all(self.table_name)]
        with self._guard:
            self._accounts = {acc.account_number: acc for acc in accounts}
        self.logger.info(f"Loaded {len(accounts)} accounts")
        return len(accounts)

    def _lock_for(self, account_number: str) -> threading.RLock:
        with self._guard:
            lock = self._account_locks.get(account_number)
            if lock is None:
                lock = self._account_locks[account_number] = threading.RLock()
            return lock

    @contextmanager
    def account_lock(self, *account_numbers: str):
        """
        Hold the per-account locks for the given accounts.

        Locks are taken in ascending account-number order so that two
        transfers between the same pair of accounts cannot deadlock.
        """
        with ExitStack() as stack:
            for number in sorted(set(account_numbers)):
                stack.enter_context(self._lock_for(number))
            yield
