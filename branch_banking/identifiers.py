"""
Identifier generation for new accounts: account number, CIF, IFSC and MICR.
"""

import secrets
from typing import Container


def generate_account_number(existing: Container[str], prefix: str = "") -> str:
    """Generate a unique 12-digit account number not present in existing"""
    while True:
        number = prefix + str(secrets.randbelow(9 * 10 ** 11) + 10 ** 11)
        if number not in existing:
            return number


def generate_cif_number() -> str:
    """Customer Information File number: 11 digits"""
    return str(secrets.randbelow(9 * 10 ** 10) + 10 ** 10)


def ifsc_code(bank_prefix: str, branch_code: str = "000001") -> str:
    """IFSC: 4-letter bank code, a literal zero, 6-character branch code"""
    prefix = bank_prefix.upper()
    if len(prefix) != 4 or not prefix.isalpha():
        raise ValueError(f"IFSC bank prefix must be 4 letters, got {bank_prefix!r}")
    if len(branch_code) != 6:
        raise ValueError(f"IFSC branch code must be 6 characters, got {branch_code!r}")
    return f"{prefix}0{branch_code.upper()}"


def micr_code(city_code: str, bank_code: str = "025", branch_code: str = "001") -> str:
    """MICR: 3-digit city, 3-digit bank and 3-digit branch codes"""
    code = f"{city_code}{bank_code}{branch_code}"
    if len(code) != 9 or not code.isdigit():
        raise ValueError(f"MICR code must be 9 digits, got {code!r}")
    return code

