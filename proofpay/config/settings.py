"""
Settings Module
===============

Pydantic-based configuration with environment variable loading.

Version: 0.1.0
"""

from decimal import Decimal
from enum import Enum
from functools import lru_cache

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LedgerMode(str, Enum):
    """Ledger operation mode."""

    MOCK = "mock"
    RPC = "rpc"


class PaymentMode(str, Enum):
    """Payment provider operation mode."""

    MOCK = "mock"
    HTTP = "http"


class PostgresSettings(BaseSettings):
    """PostgreSQL database configuration."""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_")

    host: str = "localhost"
    port: int = 5432
    user: str = "proofpay"
    password: SecretStr = SecretStr("proofpay_dev_password")
    db: str = "proofpay"
    pool_size: int = 10
    max_overflow: int = 20

    @property
    def async_url(self) -> str:
        """Generate async SQLAlchemy connection URL."""
        pwd = self.password.get_secret_value()
        return f"postgresql+asyncpg://{self.user}:{pwd}@{self.host}:{self.port}/{self.db}"

    @property
    def sync_url(self) -> str:
        """Generate sync SQLAlchemy connection URL."""
        pwd = self.password.get_secret_value()
        return f"postgresql://{self.user}:{pwd}@{self.host}:{self.port}/{self.db}"


class ProverSettings(BaseSettings):
    """External proof server configuration."""

    model_config = SettingsConfigDict(env_prefix="PROVER_")

    url: str = "http://localhost:6300"
    timeout_seconds: float = 30.0
    max_retries: int = Field(default=3, ge=1)
    backoff_base_seconds: float = 1.0
    backoff_cap_seconds: float = 10.0
    jitter_ratio: float = Field(default=0.3, ge=0.0, le=1.0)

    # Upper bound for a whole generate() call, retries included
    call_timeout_seconds: float = 120.0


class LedgerSettings(BaseSettings):
    """Ledger node configuration."""

    model_config = SettingsConfigDict(env_prefix="LEDGER_")

    mode: LedgerMode = LedgerMode.MOCK
    rpc_url: str = "http://localhost:26657"
    timeout_seconds: float = 30.0
    query_timeout_seconds: float = 10.0


class PaymentSettings(BaseSettings):
    """Payment provider configuration."""

    model_config = SettingsConfigDict(env_prefix="PAYMENT_")

    mode: PaymentMode = PaymentMode.MOCK
    api_url: str = "http://localhost:8090"
    api_key: SecretStr = SecretStr("")
    timeout_seconds: float = 30.0


class PollerSettings(BaseSettings):
    """Confirmation poller configuration."""

    model_config = SettingsConfigDict(env_prefix="POLLER_")

    enabled: bool = True
    interval_seconds: float = Field(default=10.0, gt=0)
    batch_size: int = Field(default=50, ge=1)


class SettlementSettings(BaseSettings):
    """
    Reward settlement configuration.

    amount = max(0, min(max_payment, base_amount + threshold * rate_multiplier))
    """

    model_config = SettingsConfigDict(env_prefix="SETTLEMENT_")

    base_amount: Decimal = Decimal("100")
    rate_multiplier: Decimal = Decimal("0.01")
    max_payment: Decimal = Decimal("10000")
    # Pending payments older than this are presumed orphaned by a crash
    stale_pending_seconds: float = Field(default=900.0, gt=0)


class Settings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables with sensible defaults.
    Use the global `settings` singleton or call `get_settings()`.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # General
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = True
    log_level: LogLevel = LogLevel.INFO
    port: int = 8000

    # Overrides the POSTGRES_* URL when set (e.g. sqlite+aiosqlite for local runs)
    database_url: str = ""

    postgres: PostgresSettings = Field(default_factory=PostgresSettings)

    # External services
    prover: ProverSettings = Field(default_factory=ProverSettings)
    ledger: LedgerSettings = Field(default_factory=LedgerSettings)
    payment: PaymentSettings = Field(default_factory=PaymentSettings)

    # Pipeline
    poller: PollerSettings = Field(default_factory=PollerSettings)
    settlement: SettlementSettings = Field(default_factory=SettlementSettings)

    @field_validator("log_level", mode="before")
    @classmethod
    def uppercase_log_level(cls, v: str | LogLevel) -> LogLevel:
        """Ensure log level is uppercase."""
        if isinstance(v, str):
            return LogLevel(v.upper())
        return v

    @property
    def async_database_url(self) -> str:
        """Database URL used by the async engine."""
        return self.database_url or self.postgres.async_url

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_testing(self) -> bool:
        """Check if running in test mode."""
        return self.environment == Environment.TESTING


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: Application settings singleton.
    """
    return Settings()
