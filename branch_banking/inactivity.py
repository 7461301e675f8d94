"""
Inactivity Monitor

Locks accounts that have gone too long without a customer transaction.
"""

from typing import Optional

from .accounts import Account, AccountLedger, AccountStatus
from .audit import AuditTrail, AuditEventType
from .clock import Clock, local_now
from .config import INACTIVITY_LOCK_DAYS
from .logging_config import get_logger, log_action


class InactivityMonitor:
    """
    Derives LOCKED status from the number of calendar days since the last
    transaction (or since opening, for an account never used).
    """

    def __init__(
        self,
        ledger: AccountLedger,
        audit_trail: AuditTrail,
        lock_days: int = INACTIVITY_LOCK_DAYS,
        clock: Optional[Clock] = None
    ):
        self.ledger = ledger
        self.audit_trail = audit_trail
        self.lock_days = lock_days
        self._clock = clock or local_now
        self.logger = get_logger("branch_banking.inactivity")

    def days_inactive(self, account: Account) -> int:
        """Calendar days elapsed since the account's last activity"""
        now = self._clock()
        return (now.date() - account.last_activity_on(now)).days

    def check_inactivity(self, account: Account) -> bool:
        """
        Lock an ACTIVE account whose inactivity has reached the threshold

        Returns:
            True if this call locked the account

        Raises:
            PersistenceError: If the lock could not be persisted
        """
        if account.status != AccountStatus.ACTIVE:
            return False

        idle_days = self.days_inactive(account)
        if idle_days < self.lock_days:
            return False

        account.transition_to(AccountStatus.LOCKED, self._clock())

        log_action(
            self.logger, "warning", "Account locked for inactivity",
            action="inactivity_lock", account_number=account.account_number,
            details={"days_inactive": idle_days, "threshold": self.lock_days}
        )
        self.audit_trail.log_event(
            AuditEventType.ACCOUNT_LOCKED,
            account.account_number,
            f"Account locked due to inactivity: {account.account_number} ({idle_days} days)",
            metadata={"reason": "inactivity", "days_inactive": idle_days}
        )
        self.ledger.persist()
        return True
