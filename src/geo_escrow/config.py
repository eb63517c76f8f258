"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup — if a setting is malformed, the app fails fast with a clear
error message.

Settings are read once by the composition root (bootstrap.py) and handed to
each component at construction time. Components never call get_settings()
themselves, so tests can build them with any configuration they like.

Usage:
    from geo_escrow.config import get_settings
    settings = get_settings()
    print(settings.platform_fee_bps)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the Geo Escrow service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True
    app_log_level: str = "DEBUG"
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # --- Database (PostgreSQL) ---
    database_url: str = (
        "postgresql+asyncpg://geo_escrow:geo_escrow_dev"
        "@localhost:5432/geo_escrow"
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False

    # --- Redis ---
    redis_url: str = "redis://localhost:6379/0"
    redis_idempotency_ttl_seconds: int = 86400  # 24 hours

    # --- Gateways ---
    # "simulated" settles in-process with fake references (dev / dry runs).
    # "stripe" talks to Stripe PaymentIntents, Refunds, Transfers and Connect accounts.
    gateway_mode: Literal["simulated", "stripe"] = "simulated"
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_api_timeout_seconds: int = 10
    stripe_max_network_retries: int = 2
    currency: str = "usd"
    payee_onboarding_return_url: str = "http://localhost:8000/onboarding/complete"

    # --- Escrow Policy ---
    platform_fee_bps: int = Field(default=200, ge=0, le=10_000)
    expiry_policy: Literal["auto_return", "freeze"] = "freeze"
    claim_window_seconds: int = Field(default=7 * 24 * 3600, ge=0)
    expiry_sweep_interval_seconds: int = Field(default=60, gt=0)
    destination_lookup_timeout_seconds: float = Field(default=5.0, gt=0)
    gateway_timeout_seconds: float = Field(default=15.0, gt=0)
    release_claim_ttl_seconds: int = Field(default=300, gt=0)
    admin_principal_ids: str = ""

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def admin_principal_id_set(self) -> frozenset[str]:
        """Parse comma-separated administrator principal ids into a set."""
        if not self.admin_principal_ids:
            return frozenset()
        return frozenset(
            p.strip() for p in self.admin_principal_ids.split(",") if p.strip()
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
