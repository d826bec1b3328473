"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

import time
from decimal import Decimal
from typing import List, Optional, Tuple

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_RATE_TIERS: List[Tuple[Decimal, Decimal]] = [
    (Decimal('20'), Decimal('5')),
    (Decimal('50'), Decimal('5')),
    (Decimal('100'), Decimal('6')),
    (Decimal('200'), Decimal('6')),
    (Decimal('500'), Decimal('6')),
    (Decimal('1000'), Decimal('7')),
    (Decimal('2000'), Decimal('7')),
    (Decimal('5000'), Decimal('7')),
    (Decimal('10000'), Decimal('8')),
    (Decimal('20000'), Decimal('8')),
]


class YieldLedgerConfig(BaseSettings):
    """Yield ledger configuration"""

    model_config = SettingsConfigDict(
        env_prefix="YIELD_LEDGER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Database configuration
    database_url: str = "sqlite:///yield_ledger.db"

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    # Business rules configuration
    referral_rate: Decimal = Decimal('0.05')
    rate_tiers: List[Tuple[Decimal, Decimal]] = DEFAULT_RATE_TIERS  # (threshold, daily rate percent)
    maturity_days: int = 60
    default_window_days: int = 60
    min_withdrawal_amount: Decimal = Decimal('2')

    # Notification configuration
    operator_emails: List[str] = []
    notification_webhook_url: Optional[str] = None
    notification_timeout: float = 5.0

    # Seconds before get_config() re-reads the environment
    config_refresh_seconds: float = 30.0

    @field_validator("referral_rate")
    @classmethod
    def _check_referral_rate(cls, value: Decimal) -> Decimal:
        if value < 0 or value > 1:
            raise ValueError("referral_rate must be between 0 and 1")
        return value

    @field_validator("rate_tiers")
    @classmethod
    def _check_rate_tiers(cls, value: List[Tuple[Decimal, Decimal]]) -> List[Tuple[Decimal, Decimal]]:
        if not value:
            raise ValueError("rate_tiers must contain at least one tier")
        return sorted(value, key=lambda tier: tier[0])

    @field_validator("maturity_days", "default_window_days")
    @classmethod
    def _check_positive_days(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("day counts must be positive")
        return value


# Global configuration instance, re-read from the environment once it is
# older than its own config_refresh_seconds (0 keeps it until reload_config)
config = YieldLedgerConfig()
_loaded_at = time.monotonic()


def get_config() -> YieldLedgerConfig:
    """Get global configuration instance"""
    refresh = config.config_refresh_seconds
    if refresh > 0 and time.monotonic() - _loaded_at >= refresh:
        return reload_config()
    return config


def reload_config() -> YieldLedgerConfig:
    """Reload configuration from environment"""
    global config, _loaded_at
    config = YieldLedgerConfig()
    _loaded_at = time.monotonic()
    return config
