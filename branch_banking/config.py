"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
Every business limit defaults to the branch's published values and can be
overridden with a BANK_* environment variable.
"""

from decimal import Decimal
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings


# Published branch limits
MIN_DEPOSIT = Decimal("500")
MAX_DEPOSIT = Decimal("100000")
MIN_WITHDRAWAL = Decimal("500")
DAILY_WITHDRAWAL_LIMIT = Decimal("50000")
MAX_FAILED_ATTEMPTS = 3
INACTIVITY_LOCK_DAYS = 180
INTEREST_RATE = Decimal("0.04")
MIN_BILL_PAYMENT = Decimal("1")
MAX_BILL_PAYMENT = Decimal("100000")


class BankConfig(BaseSettings):
    """Branch banking system configuration"""

    # Storage configuration
    data_dir: Path = Path("data")
    storage_backend: str = "file"  # file or memory
    audit_log_file: Optional[str] = "audit.log"  # Relative to data_dir, None disables

    # Branch identity
    bank_name: str = "Sahyadri Co-operative Bank"
    branch_name: str = "Main Branch"
    branch_address: str = "12 MG Road, Pune 411001"
    ifsc_prefix: str = "SCBK"
    micr_city_code: str = "411"

    # Logging configuration
    log_level: str = "INFO"

    # Business rules configuration
    min_deposit: Decimal = MIN_DEPOSIT
    max_deposit: Decimal = MAX_DEPOSIT
    min_withdrawal: Decimal = MIN_WITHDRAWAL
    daily_withdrawal_limit: Decimal = DAILY_WITHDRAWAL_LIMIT
    min_bill_payment: Decimal = MIN_BILL_PAYMENT
    max_bill_payment: Decimal = MAX_BILL_PAYMENT
    interest_rate: Decimal = INTEREST_RATE  # Annual, simple interest

    # Security configuration
    max_failed_attempts: int = MAX_FAILED_ATTEMPTS
    inactivity_lock_days: int = INACTIVITY_LOCK_DAYS
    pin_hash_n: int = 16384  # scrypt cost factor, must be a power of two

    class Config:
        env_prefix = "BANK_"
        env_file = ".env"
        case_sensitive = False

    @property
    def audit_log_path(self) -> Optional[Path]:
        """Absolute location of the human-readable audit log, if enabled"""
        if not self.audit_log_file:
            return None
        return self.data_dir / self.audit_log_file


# Global configuration instance
config = BankConfig()


def get_config() -> BankConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> BankConfig:
    """Reload configuration from environment"""
    global config
    config = BankConfig()
    return config
