"""
PIN Security Module

Salted scrypt hashing of account PINs and the branch PIN-strength policy.
"""

import hashlib
import hmac
import secrets
from typing import Optional

PIN_LENGTH = 4

# scrypt parameters; tests lower n through set_hash_cost()
_SCRYPT_N = 16384
_SCRYPT_R = 8
_SCRYPT_P = 1


def set_hash_cost(n: int) -> None:
    """Set the scrypt cost factor used for new and verified hashes"""
    global _SCRYPT_N
    if n < 2 or n & (n - 1):
        raise ValueError("scrypt cost factor must be a power of two greater than 1")
    _SCRYPT_N = n


def _generate_salt() -> str:
    """Generate random salt for PIN hashing"""
    return secrets.token_hex(16)


def hash_pin(pin: str, salt: Optional[str] = None) -> str:
    """
    Hash a PIN into its stored credential form "<salt>$<digest>"

    The same (pin, salt) pair always produces the same credential. A fresh
    random salt is drawn when none is given.
    """
    if salt is None:
        salt = _generate_salt()
    digest = hashlib.scrypt(
        pin.encode(),
        salt=salt.encode(),
        n=_SCRYPT_N, r=_SCRYPT_R, p=_SCRYPT_P
    ).hex()
    return f"{salt}${digest}"


def verify_pin(pin: str, pin_hash: str) -> bool:
    """Check a PIN against a stored credential in constant time"""
    salt, sep, _ = pin_hash.partition("$")
    if not sep or not salt:
        return False
    return hmac.compare_digest(hash_pin(pin, salt), pin_hash)


def is_strong_pin(pin: str) -> bool:
    """
    Minimal PIN policy: exactly four characters, not all the same.

    Sequences such as "1234" are accepted.
    """
    if len(pin) != PIN_LENGTH:
        return False
    if all(c == pin[0] for c in pin):
        return False
    return True
