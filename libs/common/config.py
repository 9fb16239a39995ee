from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global application settings."""

    # Application
    ENVIRONMENT: Literal["local", "development", "production"] = "local"
    LOG_LEVEL: str = "INFO"

    # Payment gateway
    GATEWAY_URL: str = "http://localhost:8010"
    GATEWAY_TIMEOUT_SECONDS: float = 10.0

    # Wallet / subscription ledgers (finalize targets)
    LEDGER_URL: str = "http://localhost:8000"

    # Durable pending-intent slots
    STORE_DATABASE_URL: str = "sqlite:///./pending_intents.db"

    # Reconciliation protocol
    POLL_INTERVAL_MS: int = 6000
    GRACE_WINDOW_MS: int = 10 * 60 * 1000
    DEFAULT_INTENT_TTL_MS: int = 5 * 60 * 1000
    # Passive by default: user cancellation only clears local state.
    VOID_ON_CANCEL: bool = False

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("POLL_INTERVAL_MS", "GRACE_WINDOW_MS", "DEFAULT_INTENT_TTL_MS")
    @classmethod
    def non_negative_ms(cls, v: int) -> int:
        if v < 0:
            raise ValueError("durations must be >= 0 milliseconds")
        return v

    @field_validator("GATEWAY_URL", "LEDGER_URL")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


@lru_cache
def get_settings() -> Settings:
    """
    Return the global settings instance, cached.
    """
    return Settings()
