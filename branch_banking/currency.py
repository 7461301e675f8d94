"""
Currency Support Module

Handles the branch currency, Decimal precision and display formatting for
financial calculations. NEVER uses float for monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from enum import Enum
from typing import Union
import re

# Set global decimal context for financial precision
getcontext().prec = 28


class Currency(Enum):
    """ISO 4217 currency codes with precision and display symbol"""
    INR = ("INR", 2, "Rs.")

    def __init__(self, code: str, precision: int, symbol: str):
        self.code = code
        self.precision = precision
        self.symbol = symbol


BASE_CURRENCY = Currency.INR

ZERO = Decimal("0.00")


def validate_decimal_precision(value: Decimal, currency: Currency = BASE_CURRENCY) -> Decimal:
    """
    Validate and round decimal to currency precision

    Args:
        value: Decimal to validate
        currency: Currency defining precision

    Returns:
        Properly rounded Decimal
    """
    return value.quantize(
        Decimal('0.1') ** currency.precision,
        rounding=ROUND_HALF_UP
    )


def to_amount(value: Union[Decimal, int, str], currency: Currency = BASE_CURRENCY) -> Decimal:
    """Coerce an int, str or Decimal to a currency-precision Decimal"""
    if isinstance(value, float):
        raise TypeError("Monetary amounts must not be floats")
    if isinstance(value, str):
        value = decimal_from_string(value)
    elif not isinstance(value, Decimal):
        value = Decimal(value)
    if not value.is_finite():
        raise ValueError(f"Amount must be a finite number, got {value}")
    return validate_decimal_precision(value, currency)


def decimal_from_string(value: str) -> Decimal:
    """
    Safely convert user input to Decimal, accepting Indian digit grouping

    Args:
        value: String representation of number, e.g. "1,00,000.50" or "Rs. 500"

    Returns:
        Decimal value

    Raises:
        ValueError: If string cannot be converted to valid Decimal
    """
    if not value or not isinstance(value, str):
        raise ValueError("Value must be a non-empty string")

    # Remove currency symbols, whitespace and grouping commas
    clean_value = re.sub(r'(?i)^\s*(rs\.?|inr|₹)\s*', '', value)
    clean_value = re.sub(r'[\s,]', '', clean_value)

    if not re.fullmatch(r'[-+]?\d+(\.\d+)?', clean_value):
        raise ValueError(f"Cannot convert '{value}' to Decimal")

    try:
        return Decimal(clean_value)
    except InvalidOperation:
        raise ValueError(f"Cannot convert '{value}' to Decimal")


def format_amount(amount: Decimal, currency: Currency = BASE_CURRENCY) -> str:
    """Format for display, e.g. "Rs. 1,00,000.00" using lakh/crore grouping"""
    amount = validate_decimal_precision(amount, currency)
    sign = "-" if amount < 0 else ""
    whole, _, fraction = f"{abs(amount):.{currency.precision}f}".partition(".")

    # Last three digits, then groups of two
    if len(whole) > 3:
        head, tail = whole[:-3], whole[-3:]
        groups = []
        while len(head) > 2:
            groups.insert(0, head[-2:])
            head = head[:-2]
        if head:
            groups.insert(0, head)
        whole = ",".join(groups + [tail])

    text = f"{whole}.{fraction}" if fraction else whole
    return f"{sign}{currency.symbol} {text}"
