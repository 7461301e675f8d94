"""
Account details and statement rendering for the text menu.
"""

from datetime import date
from decimal import Decimal
from typing import List, Optional, Sequence

from .accounts import Account
from .currency import format_amount
from .transactions import Transaction, TransactionType

RULE = "-" * 78


def account_summary(account: Account) -> str:
    """Multi-line account details as shown by "View account details" """
    last_txn = (
        account.last_transaction_date.strftime("%Y-%m-%d %H:%M")
        if account.last_transaction_date else "never"
    )
    rows = [
        ("Account number", account.account_number),
        ("CIF number", account.cif_number),
        ("Name", account.name),
        ("Gender", account.gender),
        ("Age", str(account.age)),
        ("Phone", account.phone_number),
        ("E-mail", account.email),
        ("Address", account.address),
        ("Account type", account.account_type.value),
        ("Branch", account.branch_name),
        ("Branch address", account.branch_address),
        ("IFSC", account.ifsc_code),
        ("MICR", account.micr_code),
        ("Opened on", account.opening_date.isoformat()),
        ("Status", account.status.value),
        ("Balance", format_amount(account.balance)),
        ("Last transaction", last_txn),
    ]
    width = max(len(label) for label, _ in rows)
    return "\n".join(f"{label.ljust(width)} : {value}" for label, value in rows)


def _describe(tx: Transaction, account_number: str) -> str:
    """Description as seen from one side of a transfer"""
    if tx.transaction_type != TransactionType.TRANSFER:
        return tx.description
    if tx.from_account == account_number:
        direction = f"Transfer to {tx.to_account}"
    else:
        direction = f"Transfer from {tx.from_account}"
    if tx.description == f"Transfer to {tx.to_account}":
        return direction
    return f"{direction}: {tx.description}"


def render_history(transactions: Sequence[Transaction], account_number: str) -> str:
    """One line per transaction, oldest first"""
    if not transactions:
        return "No transactions found."
    lines = [f"{'Date':<17} {'Type':<13} {'Amount':>16}  Description", RULE]
    for tx in transactions:
        lines.append(
            f"{tx.timestamp.strftime('%Y-%m-%d %H:%M'):<17} "
            f"{tx.transaction_type.value:<13} "
            f"{format_amount(tx.signed_amount(account_number)):>16}  "
            f"{_describe(tx, account_number)}"
        )
    return "\n".join(lines)


def render_statement(
    account: Account,
    history: Sequence[Transaction],
    start: date,
    end: date,
    bank_name: Optional[str] = None
) -> str:
    """
    Render an account statement for an inclusive date range

    Args:
        account: Account the statement is for
        history: Every transaction involving the account, oldest first
        start: First day of the statement period
        end: Last day of the statement period
        bank_name: Heading printed above the statement

    Returns:
        Statement text with opening balance, period transactions, totals and
        closing balance. Balances are derived backwards from the current
        balance, so the full history must be supplied.
    """
    if start > end:
        raise ValueError("Statement start date is after end date")

    number = account.account_number
    after_end = sum((tx.signed_amount(number) for tx in history
                     if tx.timestamp.date() > end), Decimal("0"))
    period: List[Transaction] = [
        tx for tx in history
        if start <= tx.timestamp.date() <= end
    ]
    closing = account.balance - after_end
    credits = sum((tx.amount for tx in period if tx.signed_amount(number) > 0), Decimal("0"))
    debits = sum((tx.amount for tx in period if tx.signed_amount(number) < 0), Decimal("0"))
    opening = closing - credits + debits

    lines = []
    if bank_name:
        lines.append(bank_name)
    lines.extend([
        f"Statement of account {number} ({account.name})",
        f"{account.branch_name}, IFSC {account.ifsc_code}",
        f"Period: {start.isoformat()} to {end.isoformat()}",
        RULE,
        f"Opening balance: {format_amount(opening)}",
        RULE,
        render_history(period, number),
        RULE,
        f"Total credits  : {format_amount(credits)}",
        f"Total debits   : {format_amount(debits)}",
        f"Closing balance: {format_amount(closing)}",
    ])
    return "\n".join(lines)
