# app/providers/rails/factory.py
from __future__ import annotations

import logging
from typing import Any, Dict

from app.catalog.rails import Rail
from settings import settings

logger = logging.getLogger("payouts.providers")

_PROVIDER_CACHE: Dict[str, Any] = {}


def get_provider(rail: str):
    key = Rail(rail).value

    if key in _PROVIDER_CACHE:
        return _PROVIDER_CACHE[key]

    if settings.USE_MOCK_PROVIDERS:
        from app.providers.mock import MockRailProvider
        provider = MockRailProvider(key)

    elif key == Rail.CONNECT.value:
        from app.providers.rails.connect import ConnectProvider
        provider = ConnectProvider()

    else:
        from app.providers.rails.bank_transfer import BankTransferProvider
        provider = BankTransferProvider()

    logger.info("rail_provider_initialized rail=%s impl=%s", key, type(provider).__name__)
    _PROVIDER_CACHE[key] = provider
    return provider


def reset_providers() -> None:
    _PROVIDER_CACHE.clear()
