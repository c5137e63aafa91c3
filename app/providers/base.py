# app/providers/base.py
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional, Protocol

from app.payouts.model import BankDetails, TransferHandle


@dataclass(frozen=True)
class ProviderResult:
    """Snapshot of a transfer as the provider reports it (status polls)."""

    state: str
    provider_ref: Optional[str] = None
    response: Optional[dict[str, Any]] = None
    error: Optional[str] = None

    # None => caller classifies from http status / error
    retryable: Optional[bool] = None


class RailProvider(Protocol):
    """
    One payment rail. Implementations raise ProviderTransient / ProviderTerminal
    and perform exactly one provider round-trip per call (no internal retries).
    """

    rail: str

    def create_recipient(
        self,
        *,
        creator_id: str,
        bank_details: BankDetails,
        currency: str,
    ) -> str: ...

    def create_transfer(
        self,
        *,
        provider_recipient_id: str,
        amount: Decimal,
        currency: str,
        reference: str,
    ) -> TransferHandle: ...

    # Rails that create transfers unfunded pay them here; others no-op.
    def fund_transfer(self, provider_transfer_id: str) -> None: ...

    def get_transfer_status(self, provider_transfer_id: str) -> ProviderResult: ...
