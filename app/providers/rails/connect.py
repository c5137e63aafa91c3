# app/providers/rails/connect.py
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Dict

from app.catalog.currencies import to_minor_units
from app.payouts.errors import ProviderTerminal
from app.payouts.model import BankDetails, TransferHandle
from app.providers.base import ProviderResult
from app.providers.rails.config import ConnectConfig, connect_config
from app.providers.rails.http import HttpClient, raise_for_provider_status
from app.recipients.resolver import detail_hash
from services.redaction import redact_dict

logger = logging.getLogger("payouts.rail.connect")

RAIL = "connect"


class ConnectProvider:
    """
    Rail A: one connected account per creator bank destination; transfers move
    platform balance to that account. Requests are form-encoded and carry an
    Idempotency-Key so replays after a timeout return the original object.
    """

    rail = RAIL

    def __init__(self, config: ConnectConfig | None = None, http: HttpClient | None = None):
        self.config = config or connect_config()
        self.http = http or HttpClient(timeout_s=self.config.timeout_s)

    def _headers(self, idempotency_key: str | None = None) -> Dict[str, str]:
        h = {"Authorization": f"Bearer {self.config.api_key}"}
        if idempotency_key:
            h["Idempotency-Key"] = idempotency_key
        return h

    def _url(self, path: str) -> str:
        return f"{self.config.base_url}{path}"

    def _require_config(self) -> None:
        if not self.config.base_url or not self.config.api_key:
            raise ProviderTerminal("connect rail is not configured", code="PROVIDER_NOT_CONFIGURED")

    def create_recipient(self, *, creator_id: str, bank_details: BankDetails, currency: str) -> str:
        self._require_config()
        country = (bank_details.country or "").strip().upper()
        form = {
            "type": "custom",
            "country": country,
            "business_type": "individual",
            "capabilities[transfers][requested]": "true",
            "metadata[creator_id]": creator_id,
            "external_account[object]": "bank_account",
            "external_account[country]": country,
            "external_account[currency]": currency.lower(),
            "external_account[account_number]": bank_details.account_number.strip(),
            "external_account[account_holder_name]": bank_details.account_holder_name.strip(),
            "external_account[account_holder_type]": "individual",
        }
        if bank_details.bank_code.strip():
            form["external_account[routing_number]"] = bank_details.bank_code.strip()

        key = f"recipient-{creator_id}-{detail_hash(bank_details, currency)[:32]}"
        resp = self.http.post(self._url("/v1/accounts"), headers=self._headers(key), form_body=form)
        raise_for_provider_status(resp, rail=RAIL, operation="create_recipient")

        account_id = (resp.json or {}).get("id")
        if not account_id:
            raise ProviderTerminal("account response missing id", code="MALFORMED_RESPONSE")

        logger.info("connect_account_created creator_id=%s account=%s", creator_id, account_id)
        return str(account_id)

    def create_transfer(
        self,
        *,
        provider_recipient_id: str,
        amount: Decimal,
        currency: str,
        reference: str,
    ) -> TransferHandle:
        self._require_config()
        form = {
            "amount": str(to_minor_units(amount, currency)),
            "currency": currency.lower(),
            "destination": provider_recipient_id,
            "transfer_group": reference,
            "metadata[reference]": reference,
        }
        resp = self.http.post(self._url("/v1/transfers"), headers=self._headers(f"transfer-{reference}"), form_body=form)
        raise_for_provider_status(resp, rail=RAIL, operation="create_transfer")

        body = resp.json or {}
        transfer_id = body.get("id")
        if not transfer_id:
            raise ProviderTerminal("transfer response missing id", code="MALFORMED_RESPONSE")

        logger.info("connect_transfer_created transfer_id=%s reference=%s", transfer_id, reference)
        return TransferHandle(provider_transfer_id=str(transfer_id), fee=None, initial_status="created")

    def fund_transfer(self, provider_transfer_id: str) -> None:
        # connect transfers move platform balance on creation
        return None

    def get_transfer_status(self, provider_transfer_id: str) -> ProviderResult:
        self._require_config()
        resp = self.http.get(self._url(f"/v1/transfers/{provider_transfer_id}"), headers=self._headers())
        raise_for_provider_status(resp, rail=RAIL, operation="get_transfer")
        body = resp.json or {}
        state = "reversed" if body.get("reversed") else "paid"
        return ProviderResult(state=state, provider_ref=str(body.get("id") or provider_transfer_id), response=redact_dict(body))
