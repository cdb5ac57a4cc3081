"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class LendingConfig(BaseSettings):
    """Lending engine configuration"""

    model_config = SettingsConfigDict(
        env_prefix="LENDING_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Database configuration
    database_url: str = "sqlite:///lending.db"
    database_timeout: float = 30.0

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Schedule consistency rules
    schedule_gap_tolerance_days: int = 1
    interest_ceiling_factor: int = 3

    # Allocation rules
    paid_tolerance: str = "0.01"  # Outstanding at or below this counts as paid

    # Product fallbacks when a loan's product leaves them blank
    default_repayment_frequency: str = "monthly"
    default_calculation_method: str = "reducing_balance"


# Global configuration instance
config = LendingConfig()


def get_config() -> LendingConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LendingConfig:
    """Reload configuration from environment"""
    global config
    config = LendingConfig()
    return config
