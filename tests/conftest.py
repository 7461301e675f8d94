import pytest

from branch_banking.security import set_hash_cost


@pytest.fixture(autouse=True)
def fast_pin_hashing():
    """Keep scrypt cheap in tests"""
    set_hash_cost(16)
    yield
    set_hash_cost(16384)
