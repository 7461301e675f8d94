"""
Test suite for transactions module

Tests deposits, withdrawals, transfers, interest, bill payments and closure
against per-transaction limits, balances and the calendar-day withdrawal cap.
Every rejected operation must leave the ledger untouched.
"""

import pytest
from concurrent.futures import ThreadPoolExecutor
from datetime import date, timedelta
from decimal import Decimal

from branch_banking.accounts import AccountLedger, AccountStatus
from branch_banking.audit import AuditEventType, AuditTrail
from branch_banking.config import BankConfig
from branch_banking.exceptions import (
    AccountLockedError, AccountNotFoundError, BankingError, InsufficientFundsError,
    InvalidOperationError, LimitViolationError, PersistenceError
)
from branch_banking.storage import InMemoryStorage
from branch_banking.transactions import (
    Transaction, TransactionAuthorizer, TransactionLog, TransactionType
)

from helpers import START, FailingStorage, FakeClock, build_account


class TestTransaction:
    """Test Transaction record validation"""

    def _tx(self, **overrides):
        values = dict(
            id="T1", created_at=START, updated_at=START,
            account_number="A001", transaction_type=TransactionType.DEPOSIT,
            amount=Decimal("500"), timestamp=START, description="Cash deposit",
        )
        values.update(overrides)
        return Transaction(**values)

    def test_amount_must_be_positive(self):
        with pytest.raises(ValueError):
            self._tx(amount=Decimal("0"))

    def test_transfer_needs_distinct_accounts(self):
        with pytest.raises(ValueError):
            self._tx(transaction_type=TransactionType.TRANSFER, from_account="A001")
        with pytest.raises(ValueError):
            self._tx(transaction_type=TransactionType.TRANSFER,
                     from_account="A001", to_account="A001")

    def test_only_transfers_carry_counterparties(self):
        with pytest.raises(ValueError):
            self._tx(to_account="B002")

    def test_signed_amount(self):
        transfer = self._tx(transaction_type=TransactionType.TRANSFER,
                            from_account="A001", to_account="B002")
        assert transfer.signed_amount("A001") == Decimal("-500.00")
        assert transfer.signed_amount("B002") == Decimal("500.00")
        assert transfer.involves("B002")
        assert not transfer.involves("C003")

        assert self._tx().signed_amount("A001") == Decimal("500.00")
        assert self._tx(transaction_type=TransactionType.INTEREST).signed_amount("A001") > 0
        assert self._tx(transaction_type=TransactionType.WITHDRAWAL).signed_amount("A001") < 0
        assert self._tx(transaction_type=TransactionType.BILL_PAYMENT).signed_amount("A001") < 0


class AuthorizerTestCase:
    """Shared wiring for authorizer tests"""

    def setup_method(self):
        """Set up test fixtures"""
        self.wire(InMemoryStorage())

    def wire(self, storage):
        self.storage = storage
        self.clock = FakeClock()
        self.audit_trail = AuditTrail(self.storage, clock=self.clock)
        self.ledger = AccountLedger(self.storage)
        self.transaction_log = TransactionLog(self.storage)
        self.authorizer = TransactionAuthorizer(
            self.ledger, self.audit_trail, self.transaction_log,
            config=BankConfig(), clock=self.clock
        )
        self.a001 = build_account("A001", balance="1000")
        self.b002 = build_account("B002", balance="0")
        self.ledger.insert(self.a001)
        self.ledger.insert(self.b002)
        self.ledger.persist()

    def assert_rejected(self, exc_type, operation, *args):
        before = (self.a001.balance, self.b002.balance,
                  self.a001.daily_withdrawal_total, self.transaction_log.count())
        with pytest.raises(exc_type) as exc_info:
            operation(*args)
        after = (self.a001.balance, self.b002.balance,
                 self.a001.daily_withdrawal_total, self.transaction_log.count())
        assert before == after
        return exc_info.value


class TestDeposit(AuthorizerTestCase):
    """Test deposits"""

    def test_deposit(self):
        tx = self.authorizer.deposit("A001", "500")

        assert tx.transaction_type == TransactionType.DEPOSIT
        assert tx.amount == Decimal("500.00")
        assert tx.description == "Cash deposit"
        assert self.a001.balance == Decimal("1500.00")
        assert self.a001.last_transaction_date == self.clock()
        assert self.storage.load("accounts", "A001")["balance"] == "1500.00"
        assert self.transaction_log.history("A001") == [tx]

        event = self.audit_trail.get_events_by_type(AuditEventType.DEPOSIT, "A001")[0]
        assert event.message == "Deposit of Rs. 500.00 to account: A001"

    @pytest.mark.parametrize("amount", ["500", "100000", Decimal("500.00")])
    def test_limits_inclusive(self, amount):
        self.authorizer.deposit("A001", amount)

    @pytest.mark.parametrize("amount", ["499", "499.99", "100000.01", "100001"])
    def test_outside_limits(self, amount):
        self.assert_rejected(LimitViolationError, self.authorizer.deposit, "A001", amount)

    @pytest.mark.parametrize("amount", [0, "-500"])
    def test_non_positive(self, amount):
        error = self.assert_rejected(LimitViolationError, self.authorizer.deposit, "A001", amount)
        assert error.message == "Amount must be positive"

    @pytest.mark.parametrize("amount", ["abc", 500.0])
    def test_malformed_amount(self, amount):
        self.assert_rejected(InvalidOperationError, self.authorizer.deposit, "A001", amount)

    def test_unknown_account(self):
        with pytest.raises(AccountNotFoundError):
            self.authorizer.deposit("Z999", "500")

    def test_locked_account(self):
        self.a001.status = AccountStatus.LOCKED
        self.assert_rejected(AccountLockedError, self.authorizer.deposit, "A001", "500")

    def test_closed_account(self):
        self.a001.status = AccountStatus.CLOSED
        self.assert_rejected(InvalidOperationError, self.authorizer.deposit, "A001", "500")

    def test_rejection_is_audited(self):
        self.assert_rejected(LimitViolationError, self.authorizer.deposit, "A001", "100")
        events = self.audit_trail.get_events_by_type(AuditEventType.TRANSACTION_REJECTED, "A001")
        assert len(events) == 1
        assert events[0].metadata["operation"] == "deposit"
        assert events[0].metadata["error"] == "limit_violation"

    def test_applied_but_not_persisted(self):
        storage = FailingStorage()
        self.wire(storage)
        storage.failing = True

        with pytest.raises(PersistenceError):
            self.authorizer.deposit("A001", "500")
        assert self.a001.balance == Decimal("1500.00")
        assert self.audit_trail.get_events_by_type(AuditEventType.TRANSACTION_REJECTED) == []


class TestWithdrawal(AuthorizerTestCase):
    """Test withdrawals and the daily cap"""

    def test_withdraw(self):
        tx = self.authorizer.withdraw("A001", "600")
        assert tx.transaction_type == TransactionType.WITHDRAWAL
        assert self.a001.balance == Decimal("400.00")
        assert self.a001.daily_withdrawal_total == Decimal("600.00")

    def test_insufficient_funds(self):
        self.authorizer.withdraw("A001", "600")
        error = self.assert_rejected(InsufficientFundsError, self.authorizer.withdraw, "A001", "600")
        assert error.message == "Insufficient balance. Available: Rs. 400.00"
        assert self.a001.balance == Decimal("400.00")
        assert self.transaction_log.count() == 1

    def test_whole_balance(self):
        self.authorizer.withdraw("A001", "1000")
        assert self.a001.balance == Decimal("0.00")

    def test_minimum(self):
        self.assert_rejected(LimitViolationError, self.authorizer.withdraw, "A001", "499")
        self.authorizer.withdraw("A001", "500")

    def test_minimum_checked_before_balance(self):
        self.a001.balance = Decimal("100.00")
        self.assert_rejected(LimitViolationError, self.authorizer.withdraw, "A001", "200")

    def test_daily_cap(self):
        self.a001.balance = Decimal("200000.00")
        self.authorizer.withdraw("A001", "30000")
        self.authorizer.withdraw("A001", "20000")
        assert self.a001.daily_withdrawal_total == Decimal("50000.00")

        error = self.assert_rejected(LimitViolationError, self.authorizer.withdraw, "A001", "500")
        assert "Remaining today: Rs. 0.00" in error.message

    def test_daily_cap_resets_next_day(self):
        self.a001.balance = Decimal("200000.00")
        self.authorizer.withdraw("A001", "50000")
        self.clock.now = self.clock.now.replace(hour=23, minute=59)
        self.assert_rejected(LimitViolationError, self.authorizer.withdraw, "A001", "500")

        self.clock.advance(minutes=2)
        self.authorizer.withdraw("A001", "500")
        assert self.a001.daily_withdrawal_total == Decimal("500.00")

    def test_stale_total_reset_by_deposit(self):
        self.a001.balance = Decimal("200000.00")
        self.authorizer.withdraw("A001", "40000")
        self.clock.advance(days=1)
        self.authorizer.deposit("A001", "500")
        assert self.a001.daily_withdrawal_total == Decimal("0.00")

    def test_locked_account(self):
        self.a001.status = AccountStatus.LOCKED
        self.assert_rejected(AccountLockedError, self.authorizer.withdraw, "A001", "500")

    def test_concurrent_withdrawals_never_overdraw(self):
        self.a001.balance = Decimal("10000.00")

        def attempt(_):
            try:
                self.authorizer.withdraw("A001", "1000")
                return True
            except InsufficientFundsError:
                return False

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(attempt, range(30)))

        assert results.count(True) == 10
        assert self.a001.balance == Decimal("0.00")
        assert self.a001.daily_withdrawal_total == Decimal("10000.00")
        assert self.transaction_log.count() == 10


class TestTransfer(AuthorizerTestCase):
    """Test transfers between accounts"""

    def test_transfer(self):
        tx = self.authorizer.transfer("A001", "B002", "600")

        assert tx.transaction_type == TransactionType.TRANSFER
        assert tx.from_account == "A001"
        assert tx.to_account == "B002"
        assert tx.description == "Transfer to B002"
        assert self.a001.balance == Decimal("400.00")
        assert self.b002.balance == Decimal("600.00")
        assert self.a001.daily_withdrawal_total == Decimal("600.00")
        assert self.b002.daily_withdrawal_total == Decimal("0.00")
        assert self.a001.last_transaction_date == self.clock()
        assert self.b002.last_transaction_date == self.clock()
        assert self.transaction_log.history("B002") == [tx]
        assert self.storage.load("accounts", "B002")["balance"] == "600.00"

    def test_same_account(self):
        self.assert_rejected(InvalidOperationError, self.authorizer.transfer, "A001", "A001", "600")

    def test_unknown_destination(self):
        self.assert_rejected(InvalidOperationError, self.authorizer.transfer, "A001", "Z999", "600")

    def test_unknown_source(self):
        self.assert_rejected(AccountNotFoundError, self.authorizer.transfer, "Z999", "A001", "600")

    def test_destination_not_active(self):
        self.b002.status = AccountStatus.LOCKED
        self.assert_rejected(InvalidOperationError, self.authorizer.transfer, "A001", "B002", "600")

    def test_source_locked(self):
        self.a001.status = AccountStatus.LOCKED
        self.assert_rejected(AccountLockedError, self.authorizer.transfer, "A001", "B002", "600")

    def test_limits(self):
        self.assert_rejected(LimitViolationError, self.authorizer.transfer, "A001", "B002", "499")
        self.assert_rejected(InsufficientFundsError, self.authorizer.transfer, "A001", "B002", "1001")

    def test_transfer_counts_toward_daily_cap(self):
        self.a001.balance = Decimal("200000.00")
        self.authorizer.transfer("A001", "B002", "50000")
        self.assert_rejected(LimitViolationError, self.authorizer.withdraw, "A001", "500")

    def test_concurrent_opposite_transfers(self):
        self.a001.balance = Decimal("5000.00")
        self.b002.balance = Decimal("5000.00")

        def move(i):
            source, destination = ("A001", "B002") if i % 2 else ("B002", "A001")
            try:
                self.authorizer.transfer(source, destination, "1000")
            except BankingError:
                pass

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(move, range(40)))

        assert self.a001.balance >= 0
        assert self.b002.balance >= 0
        assert self.a001.balance + self.b002.balance == Decimal("10000.00")


class TestInterest(AuthorizerTestCase):
    """Test interest posting"""

    def test_nothing_due_in_first_month(self):
        self.a001.balance = Decimal("12000.00")
        error = self.assert_rejected(InvalidOperationError, self.authorizer.post_interest, "A001")
        assert error.message == "No interest due before 2024-04-15"

        self.clock.advance(days=30)
        self.assert_rejected(InvalidOperationError, self.authorizer.post_interest, "A001")

    def test_one_month(self):
        self.a001.balance = Decimal("12000.00")
        self.clock.advance(days=31)
        tx = self.authorizer.post_interest("A001")

        assert tx.transaction_type == TransactionType.INTEREST
        assert tx.amount == Decimal("40.00")
        assert tx.description == "Interest @ 4% p.a. for 1 month(s)"
        assert self.a001.balance == Decimal("12040.00")
        assert self.a001.last_interest_date == date(2024, 4, 15)

    def test_second_posting_in_same_month_rejected(self):
        self.a001.balance = Decimal("12000.00")
        self.clock.advance(days=31)
        self.authorizer.post_interest("A001")

        self.clock.advance(days=10)
        self.assert_rejected(InvalidOperationError, self.authorizer.post_interest, "A001")
        assert self.a001.balance == Decimal("12040.00")
        assert len(self.audit_trail.get_events_by_type(AuditEventType.INTEREST_POSTED, "A001")) == 1

    def test_posting_after_several_months(self):
        self.a001.balance = Decimal("12000.00")
        self.clock.advance(days=97)   # 2024-06-20
        tx = self.authorizer.post_interest("A001")

        assert tx.amount == Decimal("120.00")
        assert tx.description == "Interest @ 4% p.a. for 3 month(s)"
        # The five days past 15 June count toward the next month
        assert self.a001.last_interest_date == date(2024, 6, 15)

        self.clock.advance(days=25)   # 2024-07-15
        assert self.authorizer.post_interest("A001").amount == Decimal("40.40")

    def test_rounded_to_paise(self):
        self.clock.advance(days=31)
        assert self.authorizer.post_interest("A001").amount == Decimal("3.33")

    def test_not_customer_activity(self):
        self.clock.advance(days=31)
        self.authorizer.post_interest("A001")
        assert self.a001.last_transaction_date is None

    def test_accrual_date_persisted(self):
        self.clock.advance(days=31)
        self.authorizer.post_interest("A001")
        assert self.storage.load("accounts", "A001")["last_interest_date"] == "2024-04-15"

    def test_zero_balance(self):
        self.clock.advance(days=31)
        with pytest.raises(InvalidOperationError):
            self.authorizer.post_interest("B002")
        assert self.b002.last_interest_date is None


class TestBillPayment(AuthorizerTestCase):
    """Test bill payments"""

    def test_pay_bill(self):
        tx = self.authorizer.pay_bill("A001", "MSEDCL Electricity", "250", reference="170012345")

        assert tx.transaction_type == TransactionType.BILL_PAYMENT
        assert tx.description == "Bill payment to MSEDCL Electricity (ref 170012345)"
        assert self.a001.balance == Decimal("750.00")
        assert self.a001.daily_withdrawal_total == Decimal("0.00")

    def test_limits(self):
        self.assert_rejected(LimitViolationError, self.authorizer.pay_bill, "A001", "Water", "0.50")
        self.a001.balance = Decimal("200000.00")
        self.assert_rejected(LimitViolationError, self.authorizer.pay_bill, "A001", "Water", "100000.01")
        self.authorizer.pay_bill("A001", "Water", "100000")

    def test_insufficient_funds(self):
        self.assert_rejected(InsufficientFundsError, self.authorizer.pay_bill, "A001", "Water", "1000.01")

    def test_biller_required(self):
        self.assert_rejected(InvalidOperationError, self.authorizer.pay_bill, "A001", "  ", "100")


class TestCloseAccount(AuthorizerTestCase):
    """Test account closure"""

    def test_close_pays_out_balance(self):
        tx = self.authorizer.close_account("A001")

        assert tx.transaction_type == TransactionType.WITHDRAWAL
        assert tx.amount == Decimal("1000.00")
        assert tx.description == "Closing balance payout"
        assert self.a001.status == AccountStatus.CLOSED
        assert self.a001.balance == Decimal("0.00")
        assert self.storage.load("accounts", "A001")["status"] == "CLOSED"
        assert len(self.audit_trail.get_events_by_type(AuditEventType.ACCOUNT_CLOSED, "A001")) == 1

    def test_close_empty_account(self):
        assert self.authorizer.close_account("B002") is None
        assert self.b002.status == AccountStatus.CLOSED

    def test_close_locked_account(self):
        self.a001.status = AccountStatus.LOCKED
        self.authorizer.close_account("A001")
        assert self.a001.status == AccountStatus.CLOSED

    def test_closed_is_terminal(self):
        self.authorizer.close_account("A001")
        with pytest.raises(InvalidOperationError):
            self.authorizer.close_account("A001")
        with pytest.raises(InvalidOperationError):
            self.authorizer.deposit("A001", "500")
        with pytest.raises(InvalidOperationError):
            self.authorizer.transfer("B002", "A001", "500")


class TestTransactionLog(AuthorizerTestCase):
    """Test transaction history queries"""

    def test_history_in_order_and_filtered(self):
        first = self.authorizer.deposit("A001", "500")
        self.clock.advance(days=1)
        second = self.authorizer.transfer("A001", "B002", "700")
        self.clock.advance(days=1)
        third = self.authorizer.withdraw("A001", "500")

        assert self.transaction_log.history("A001") == [first, second, third]
        assert self.transaction_log.history("B002") == [second]
        assert self.transaction_log.history(
            "A001", start=START + timedelta(hours=1), end=START + timedelta(days=1, hours=1)
        ) == [second]

    def test_duplicate_append_rejected(self):
        tx = self.authorizer.deposit("A001", "500")
        with pytest.raises(InvalidOperationError):
            self.transaction_log.append(tx)
