# app/providers/rails/config.py
from __future__ import annotations

from dataclasses import dataclass

from settings import settings


def payout_mode() -> str:
    return (settings.PAYOUT_MODE or "sandbox").strip().lower()


@dataclass(frozen=True)
class ConnectConfig:
    mode: str  # "sandbox" | "real"
    base_url: str
    api_key: str
    timeout_s: float


@dataclass(frozen=True)
class BankTransferConfig:
    mode: str
    base_url: str
    api_token: str
    profile_id: str
    source_currency: str
    timeout_s: float

    @property
    def funds_from_balance(self) -> bool:
        # sandbox transfers are never funded
        return self.mode == "real"


def connect_config() -> ConnectConfig:
    mode = payout_mode()
    if mode == "real":
        return ConnectConfig(
            mode=mode,
            base_url=(settings.RAIL_A_REAL_API_BASE_URL or "").strip().rstrip("/"),
            api_key=(settings.RAIL_A_REAL_API_KEY or "").strip(),
            timeout_s=float(settings.PROVIDER_HTTP_TIMEOUT_S),
        )
    return ConnectConfig(
        mode=mode,
        base_url=(settings.RAIL_A_SANDBOX_API_BASE_URL or "").strip().rstrip("/"),
        api_key=(settings.RAIL_A_SANDBOX_API_KEY or "").strip(),
        timeout_s=float(settings.PROVIDER_HTTP_TIMEOUT_S),
    )


def bank_transfer_config() -> BankTransferConfig:
    mode = payout_mode()
    if mode == "real":
        base = settings.RAIL_B_REAL_API_BASE_URL
        token = settings.RAIL_B_REAL_API_TOKEN
    else:
        base = settings.RAIL_B_SANDBOX_API_BASE_URL
        token = settings.RAIL_B_SANDBOX_API_TOKEN
    return BankTransferConfig(
        mode=mode,
        base_url=(base or "").strip().rstrip("/"),
        api_token=(token or "").strip(),
        profile_id=(settings.RAIL_B_PROFILE_ID or "").strip(),
        source_currency=(settings.RAIL_B_SOURCE_CURRENCY or "USD").strip().upper(),
        timeout_s=float(settings.PROVIDER_HTTP_TIMEOUT_S),
    )


def missing_config(rail: str) -> list[str]:
    """Names of settings a rail needs but does not have (used by /readyz)."""
    missing: list[str] = []
    prefix = "REAL" if payout_mode() == "real" else "SANDBOX"
    if rail == "connect":
        cfg = connect_config()
        if not cfg.base_url:
            missing.append(f"RAIL_A_{prefix}_API_BASE_URL")
        if not cfg.api_key:
            missing.append(f"RAIL_A_{prefix}_API_KEY")
    elif rail == "bank_transfer":
        cfg_b = bank_transfer_config()
        if not cfg_b.base_url:
            missing.append(f"RAIL_B_{prefix}_API_BASE_URL")
        if not cfg_b.api_token:
            missing.append(f"RAIL_B_{prefix}_API_TOKEN")
        if not cfg_b.profile_id.isdigit():
            missing.append("RAIL_B_PROFILE_ID")
    return missing
