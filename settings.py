# settings.py
from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Literal



class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # -----------------------
    # Storage
    # -----------------------
    DATABASE_URL: str = Field(default="")
    # "memory" keeps payouts/recipients in-process (tests, local dev)
    LEDGER_BACKEND: Literal["postgres", "memory"] = "postgres"

    LOG_LEVEL: str = "INFO"

    # -----------------------
    # Rails (Mode Switch)
    # -----------------------
    PAYOUT_MODE: Literal["sandbox", "real"] = "sandbox"
    USE_MOCK_PROVIDERS: bool = False

    PROVIDER_HTTP_TIMEOUT_S: float = 30.0

    # Rail A: hosted connected-account rail
    RAIL_A_SANDBOX_API_BASE_URL: str = "https://api.stripe.com"
    RAIL_A_REAL_API_BASE_URL: str = "https://api.stripe.com"
    RAIL_A_SANDBOX_API_KEY: str = ""
    RAIL_A_REAL_API_KEY: str = ""

    # Rail B: direct bank-transfer rail
    RAIL_B_SANDBOX_API_BASE_URL: str = "https://api.sandbox.transferwise.tech"
    RAIL_B_REAL_API_BASE_URL: str = "https://api.wise.com"
    RAIL_B_SANDBOX_API_TOKEN: str = ""
    RAIL_B_REAL_API_TOKEN: str = ""
    RAIL_B_PROFILE_ID: str = ""
    RAIL_B_SOURCE_CURRENCY: str = "USD"

    # Comma lists; empty => built-in rail table
    RAIL_A_COUNTRIES: str = ""
    RAIL_B_CURRENCIES: str = ""

    # -----------------------
    # Webhooks
    # -----------------------
    WEBHOOK_SECRET: str = ""

    # -----------------------
    # Engine
    # -----------------------
    BATCH_MAX_CONCURRENT: int = Field(default=5, ge=1, le=50)
    RETRY_MAX_ATTEMPTS: int = Field(default=3, ge=1)
    RETRY_BASE_DELAY_S: float = Field(default=1.0, ge=0)
    RETRY_CAP_DELAY_S: float = Field(default=10.0, ge=0)

    RECONCILE_STALE_SECONDS: int = 900
    RECONCILE_BATCH_SIZE: int = 50
    RECONCILE_INTERVAL_S: float = 60.0

    # Internal callers (admin tools, scheduled jobs); empty => open
    INTERNAL_API_TOKEN: str = ""



settings = Settings()
