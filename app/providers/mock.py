# app/providers/mock.py
from __future__ import annotations

import threading
import uuid
from decimal import Decimal
from typing import Optional

from app.payouts.model import BankDetails, TransferHandle
from app.providers.base import ProviderResult


class MockRailProvider:
    """
    Test/dev rail.

    `recipient_errors`, `transfer_errors` and `fund_errors` are queues of
    exceptions raised on successive calls before the provider starts
    succeeding. Use them to script timeouts (ProviderTransient) or
    rejections (ProviderTerminal).
    """

    def __init__(
        self,
        rail: str,
        *,
        recipient_errors: Optional[list[Exception]] = None,
        transfer_errors: Optional[list[Exception]] = None,
        fund_errors: Optional[list[Exception]] = None,
        transfer_state: str = "processing",
        fee: Optional[Decimal] = None,
    ):
        self.rail = rail
        self.recipient_errors = list(recipient_errors or [])
        self.transfer_errors = list(transfer_errors or [])
        self.fund_errors = list(fund_errors or [])
        self.transfer_state = transfer_state
        self.fee = fee

        self._lock = threading.Lock()
        self.recipient_calls = 0
        self.transfer_calls = 0
        self.fund_calls = 0
        self.status_calls = 0
        self.transfers: dict[str, dict] = {}
        # reference -> transfer id, mirrors provider-side idempotency
        self._by_reference: dict[str, str] = {}

    def create_recipient(self, *, creator_id: str, bank_details: BankDetails, currency: str) -> str:
        with self._lock:
            self.recipient_calls += 1
            if self.recipient_errors:
                raise self.recipient_errors.pop(0)
        return f"mock-rcp-{uuid.uuid4().hex[:12]}"

    def create_transfer(
        self,
        *,
        provider_recipient_id: str,
        amount: Decimal,
        currency: str,
        reference: str,
    ) -> TransferHandle:
        with self._lock:
            self.transfer_calls += 1
            if self.transfer_errors:
                raise self.transfer_errors.pop(0)
            transfer_id = self._by_reference.get(reference)
            if transfer_id is None:
                transfer_id = f"mock-tr-{uuid.uuid4().hex[:12]}"
                self._by_reference[reference] = transfer_id
                self.transfers[transfer_id] = {
                    "id": transfer_id,
                    "recipient": provider_recipient_id,
                    "amount": str(amount),
                    "currency": currency,
                    "reference": reference,
                    "status": self.transfer_state,
                }
        return TransferHandle(provider_transfer_id=transfer_id, fee=self.fee, initial_status=self.transfer_state)

    def fund_transfer(self, provider_transfer_id: str) -> None:
        with self._lock:
            self.fund_calls += 1
            if self.fund_errors:
                raise self.fund_errors.pop(0)

    def set_state(self, provider_transfer_id: str, state: str) -> None:
        with self._lock:
            self.transfers[provider_transfer_id]["status"] = state

    def get_transfer_status(self, provider_transfer_id: str) -> ProviderResult:
        with self._lock:
            self.status_calls += 1
            transfer = self.transfers.get(provider_transfer_id)
        if transfer is None:
            return ProviderResult(state="", provider_ref=provider_transfer_id, error="NOT_FOUND", retryable=False)
        return ProviderResult(state=transfer["status"], provider_ref=provider_transfer_id, response=dict(transfer))
