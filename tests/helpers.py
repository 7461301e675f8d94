"""Shared builders for the branch banking test suite"""

import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from branch_banking.accounts import Account, AccountType
from branch_banking.security import hash_pin
from branch_banking.storage import InMemoryStorage

IST = timezone(timedelta(hours=5, minutes=30), "IST")
START = datetime(2024, 3, 15, 10, 0, tzinfo=IST)
PIN = "1357"


class FakeClock:
    """Settable clock; call it to read the current time"""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FailingStorage(InMemoryStorage):
    """In-memory storage whose bulk writes fail, as a full disk would"""

    def __init__(self):
        super().__init__()
        self.failing = False

    def save_many(self, table, records):
        if self.failing:
            raise OSError(28, "No space left on device")
        super().save_many(table, records)


def build_account(
    account_number: str = "A001",
    pin: str = PIN,
    balance: str = "0",
    opening_date: Optional[date] = None,
    **fields
) -> Account:
    """Account with fixed branch details, opened on the START date by default"""
    values = dict(
        id=str(uuid.uuid4()),
        created_at=START,
        updated_at=START,
        account_number=account_number,
        cif_number="10000000001",
        name="Asha Kulkarni",
        gender="F",
        phone_number="9876543210",
        email="asha@example.com",
        address="14 FC Road, Pune",
        age=34,
        pin_hash=hash_pin(pin),
        account_type=AccountType.SAVINGS,
        branch_name="Main Branch",
        branch_address="12 MG Road, Pune 411001",
        ifsc_code="SCBK0000001",
        micr_code="411025001",
        opening_date=opening_date or START.date(),
        balance=Decimal(balance),
    )
    values.update(fields)
    return Account(**values)
