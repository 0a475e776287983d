"""
Configuration Module
====================

Centralized configuration management using Pydantic Settings.
Loads from environment variables with type validation and defaults.

Usage:
    from proofpay.config import settings

    print(settings.environment)
    print(settings.prover.url)
"""

from proofpay.config.settings import (
    Environment,
    LedgerMode,
    LogLevel,
    PaymentMode,
    Settings,
    get_settings,
)


# Global settings instance (singleton)
settings = get_settings()

__all__ = [
    "Settings",
    "get_settings",
    "settings",
    "Environment",
    "LogLevel",
    "LedgerMode",
    "PaymentMode",
]
