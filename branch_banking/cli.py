"""
Text menu for branch tellers and customers.

Every option that touches an existing account authenticates first through
the Authenticator; errors are shown as one short message per error kind.
"""

import getpass
import sys
from datetime import date, timedelta
from typing import Callable, Optional

from .accounts import AccountType
from .bank import Bank
from .config import BankConfig, get_config
from .currency import decimal_from_string, format_amount
from .exceptions import BankingError, ErrorKind, PersistenceError
from .logging_config import setup_logging
from .statements import account_summary

MENU = """
========== {bank} ==========
 1. Open new account
 2. Deposit
 3. Withdraw
 4. Transfer money
 5. View account details
 6. Transaction history
 7. Change PIN
 8. Close account
 9. Account statement
10. Post interest
11. Pay bills
 0. Exit
"""

ERROR_PREFIX = {
    ErrorKind.NOT_FOUND: "Not found",
    ErrorKind.ACCOUNT_LOCKED: "Account locked",
    ErrorKind.INVALID_CREDENTIAL: "Invalid PIN",
    ErrorKind.LIMIT_VIOLATION: "Limit exceeded",
    ErrorKind.INSUFFICIENT_FUNDS: "Insufficient funds",
    ErrorKind.INVALID_OPERATION: "Not allowed",
    ErrorKind.PERSISTENCE: "Warning",
}


class BankingMenu:
    """Synchronous prompt loop over a Bank"""

    def __init__(
        self,
        bank: Bank,
        input_fn: Callable[[str], str] = input,
        pin_fn: Callable[[str], str] = getpass.getpass,
        output: Callable[[str], None] = print
    ):
        self.bank = bank
        self._input = input_fn
        self._pin = pin_fn
        self._out = output
        self.actions = {
            "1": self.open_account,
            "2": self.deposit,
            "3": self.withdraw,
            "4": self.transfer,
            "5": self.view_details,
            "6": self.view_history,
            "7": self.change_pin,
            "8": self.close_account,
            "9": self.statement,
            "10": self.post_interest,
            "11": self.pay_bill,
        }

    def run(self) -> None:
        while True:
            self._out(MENU.format(bank=self.bank.config.bank_name))
            choice = self._input("Enter your choice: ").strip()
            if choice == "0":
                self._out("Thank you for banking with us.")
                return
            action = self.actions.get(choice)
            if action is None:
                self._out("Invalid choice. Please try again.")
                continue
            self._run_action(action)

    def _run_action(self, action: Callable[[], None]) -> None:
        try:
            action()
        except PersistenceError as e:
            self._out(f"{ERROR_PREFIX[e.kind]}: {e.message}. "
                      "The operation may not survive a restart; please inform the branch.")
        except BankingError as e:
            self._out(f"{ERROR_PREFIX[e.kind]}: {e.message}")
        except ValueError as e:
            self._out(f"Invalid input: {e}")

    # Prompts

    def _login(self) -> Optional[str]:
        """Prompt for account number and PIN; return the number on success"""
        number = self._input("Account number: ").strip()
        pin = self._pin("PIN: ")
        result = self.bank.login(number, pin)
        if not result.persisted:
            self._out("Warning: security state may not survive a restart.")
        if not result.success:
            self._out(result.message)
            return None
        return number

    def _amount(self, prompt: str = "Amount: "):
        return decimal_from_string(self._input(prompt))

    def _date(self, prompt: str, default: date) -> date:
        text = self._input(f"{prompt} [{default.isoformat()}]: ").strip()
        return date.fromisoformat(text) if text else default

    # Actions

    def open_account(self) -> None:
        name = self._input("Full name: ")
        gender = self._input("Gender: ")
        age = int(self._input("Age: ").strip())
        phone = self._input("Phone number (10 digits): ").strip()
        email = self._input("E-mail: ")
        address = self._input("Address: ")
        type_text = self._input("Account type (SAVINGS/CURRENT) [SAVINGS]: ").strip().upper()
        account_type = AccountType(type_text) if type_text else AccountType.SAVINGS
        pin = self._pin("Choose a 4-digit PIN: ")
        if self._pin("Confirm PIN: ") != pin:
            self._out("PINs do not match.")
            return
        deposit_text = self._input(
            f"Initial deposit (0 or {format_amount(self.bank.config.min_deposit)} and above): "
        ).strip()
        initial = decimal_from_string(deposit_text) if deposit_text else None

        account = self.bank.accounts.open_account(
            name=name, gender=gender, phone_number=phone, email=email,
            address=address, age=age, pin=pin, account_type=account_type,
            initial_deposit=initial
        )
        self._out("Account created successfully.")
        self._out(f"Account number: {account.account_number}")
        self._out(f"CIF number    : {account.cif_number}")
        self._out(f"IFSC          : {account.ifsc_code}")
        self._out(f"Balance       : {format_amount(account.balance)}")

    def deposit(self) -> None:
        number = self._login()
        if not number:
            return
        self.bank.authorizer.deposit(number, self._amount())
        self._out(f"Deposit successful. New balance: {format_amount(self.bank.account(number).balance)}")

    def withdraw(self) -> None:
        number = self._login()
        if not number:
            return
        self.bank.authorizer.withdraw(number, self._amount())
        self._out(f"Withdrawal successful. New balance: {format_amount(self.bank.account(number).balance)}")

    def transfer(self) -> None:
        number = self._login()
        if not number:
            return
        to_account = self._input("Destination account number: ").strip()
        self.bank.authorizer.transfer(number, to_account, self._amount())
        self._out(f"Transfer successful. New balance: {format_amount(self.bank.account(number).balance)}")

    def view_details(self) -> None:
        number = self._login()
        if number:
            self._out(account_summary(self.bank.account(number)))

    def view_history(self) -> None:
        number = self._login()
        if number:
            self._out(self.bank.history_text(number))

    def change_pin(self) -> None:
        number = self._input("Account number: ").strip()
        old_pin = self._pin("Current PIN: ")
        new_pin = self._pin("New PIN: ")
        if self._pin("Confirm new PIN: ") != new_pin:
            self._out("PINs do not match.")
            return
        self.bank.accounts.change_pin(number, old_pin, new_pin)
        self._out("PIN changed successfully.")

    def close_account(self) -> None:
        number = self._login()
        if not number:
            return
        if self._input("Type YES to close this account permanently: ").strip() != "YES":
            self._out("Account closure cancelled.")
            return
        payout = self.bank.authorizer.close_account(number)
        if payout is not None:
            self._out(f"Please collect your closing balance of {format_amount(payout.amount)}.")
        self._out("Account closed.")

    def statement(self) -> None:
        number = self._login()
        if not number:
            return
        today = self.bank.clock().date()
        start = self._date("From date (YYYY-MM-DD)", today - timedelta(days=30))
        end = self._date("To date (YYYY-MM-DD)", today)
        self._out(self.bank.statement_text(number, start, end))

    def post_interest(self) -> None:
        number = self._login()
        if not number:
            return
        tx = self.bank.authorizer.post_interest(number)
        self._out(f"{tx.description}: {format_amount(tx.amount)} credited.")

    def pay_bill(self) -> None:
        number = self._login()
        if not number:
            return
        biller = self._input("Biller (e.g. electricity, water, mobile): ")
        reference = self._input("Consumer / reference number: ").strip() or None
        self.bank.authorizer.pay_bill(number, biller, self._amount(), reference)
        self._out(f"Bill paid. New balance: {format_amount(self.bank.account(number).balance)}")


def main(config: Optional[BankConfig] = None) -> int:
    config = config or get_config()
    setup_logging(config.log_level)
    try:
        bank = Bank.from_config(config)
    except PersistenceError as e:
        print(f"Cannot load branch data: {e.message}", file=sys.stderr)
        return 1

    bank.start()
    try:
        BankingMenu(bank).run()
    except (KeyboardInterrupt, EOFError):
        print("\nSession ended.")
    finally:
        bank.shutdown()
    return 0
