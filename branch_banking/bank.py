"""
Branch facade: builds every component from a BankConfig and shares one
ledger, audit trail and transaction log between them.
"""

from datetime import date
from typing import Optional

from .account_service import AccountService
from .accounts import Account, AccountLedger
from .audit import AuditTrail, AuditEventType
from .auth import AuthResult, Authenticator
from .clock import Clock, local_now
from .config import BankConfig
from .inactivity import InactivityMonitor
from .logging_config import get_logger
from .security import set_hash_cost
from .statements import render_history, render_statement
from .storage import FlatFileStorage, InMemoryStorage, StorageInterface
from .transactions import TransactionAuthorizer, TransactionLog


def create_storage(config: BankConfig) -> StorageInterface:
    """Create the storage backend named by config.storage_backend"""
    backend = config.storage_backend.lower()
    if backend == "file":
        return FlatFileStorage(config.data_dir)
    if backend == "memory":
        return InMemoryStorage()
    raise ValueError(f"Unknown storage backend '{config.storage_backend}'")


class Bank:
    """
    One branch: the ledger and every service that reads or mutates it
    """

    def __init__(
        self,
        config: Optional[BankConfig] = None,
        storage: Optional[StorageInterface] = None,
        clock: Optional[Clock] = None
    ):
        self.config = config or BankConfig()
        self.clock = clock or local_now
        self.logger = get_logger("branch_banking.bank")
        set_hash_cost(self.config.pin_hash_n)

        self.storage = storage or create_storage(self.config)
        audit_path = self.config.audit_log_path if self.config.storage_backend.lower() == "file" else None
        self.audit_trail = AuditTrail(self.storage, log_path=audit_path, clock=self.clock)
        self.ledger = AccountLedger(self.storage)
        self.transaction_log = TransactionLog(self.storage)
        self.inactivity_monitor = InactivityMonitor(
            self.ledger, self.audit_trail,
            lock_days=self.config.inactivity_lock_days, clock=self.clock
        )
        self.authenticator = Authenticator(
            self.ledger, self.audit_trail, self.inactivity_monitor,
            max_failed_attempts=self.config.max_failed_attempts, clock=self.clock
        )
        self.authorizer = TransactionAuthorizer(
            self.ledger, self.audit_trail, self.transaction_log,
            config=self.config, clock=self.clock
        )
        self.accounts = AccountService(
            self.ledger, self.audit_trail, self.authorizer,
            config=self.config, clock=self.clock
        )

        self.ledger.load()

    @classmethod
    def from_config(cls, config: Optional[BankConfig] = None) -> 'Bank':
        return cls(config)

    def start(self) -> None:
        self.audit_trail.log_event(
            AuditEventType.SYSTEM_START, "",
            f"System started with {len(self.ledger)} accounts"
        )

    def shutdown(self) -> None:
        self.audit_trail.log_event(AuditEventType.SYSTEM_STOP, "", "System stopped")
        self.storage.close()

    def login(self, account_number: str, pin: str) -> AuthResult:
        return self.authenticator.authenticate(account_number, pin)

    def account(self, account_number: str) -> Account:
        return self.ledger.require(account_number)

    def history_text(self, account_number: str) -> str:
        return render_history(self.transaction_log.history(account_number), account_number)

    def statement_text(self, account_number: str, start: date, end: date) -> str:
        account = self.ledger.require(account_number)
        return render_statement(
            account, self.transaction_log.history(account_number),
            start, end, bank_name=self.config.bank_name
        )
