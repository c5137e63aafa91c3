# app/providers/rails/bank_transfer.py
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from app.payouts.errors import ProviderTerminal
from app.payouts.model import BankDetails, TransferHandle
from app.providers.base import ProviderResult
from app.providers.rails.config import BankTransferConfig, bank_transfer_config
from app.providers.rails.http import HttpClient, raise_for_provider_status
from services.redaction import redact_dict

logger = logging.getLogger("payouts.rail.bank_transfer")

RAIL = "bank_transfer"

# recipient account "type" per target currency
ACCOUNT_TYPES = {
    "NGN": "nigerian_bank_account",
    "GHS": "ghanaian_bank_account",
    "KES": "kenyan_bank_account",
}
DEFAULT_ACCOUNT_TYPE = "bank_account"


def _fee_from_quote(quote: dict[str, Any]) -> Optional[Decimal]:
    fee = quote.get("fee")
    if isinstance(fee, (int, float, str)):
        return Decimal(str(fee))
    for option in quote.get("paymentOptions") or []:
        if not isinstance(option, dict) or option.get("disabled"):
            continue
        total = (option.get("fee") or {}).get("total")
        if total is not None:
            return Decimal(str(total))
    return None


class BankTransferProvider:
    """
    Rail B: recipient account -> quote -> transfer, then (real mode) fund from balance.

    create_transfer sends the payout reference as customerTransactionId, which the
    provider deduplicates on, so re-invoking after an ambiguous timeout returns the
    original transfer instead of creating a second one. Funding is a separate call
    (fund_transfer) made once the transfer id is on the payout row.
    """

    rail = RAIL

    def __init__(self, config: BankTransferConfig | None = None, http: HttpClient | None = None):
        self.config = config or bank_transfer_config()
        self.http = http or HttpClient(timeout_s=self.config.timeout_s)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_token}",
            "Content-Type": "application/json",
        }

    def _url(self, path: str) -> str:
        return f"{self.config.base_url}{path}"

    def _profile_id(self) -> int:
        try:
            return int(self.config.profile_id)
        except ValueError:
            raise ProviderTerminal("RAIL_B_PROFILE_ID must be numeric", code="PROVIDER_NOT_CONFIGURED")

    def _require_config(self) -> None:
        if not self.config.base_url or not self.config.api_token:
            raise ProviderTerminal("bank transfer rail is not configured", code="PROVIDER_NOT_CONFIGURED")

    def create_recipient(self, *, creator_id: str, bank_details: BankDetails, currency: str) -> str:
        self._require_config()
        body = {
            "profile": self._profile_id(),
            "currency": currency,
            "type": ACCOUNT_TYPES.get(currency, DEFAULT_ACCOUNT_TYPE),
            "accountHolderName": bank_details.account_holder_name.strip(),
            "details": {
                "legalType": "PRIVATE",
                "accountType": "checking",
                "accountNumber": bank_details.account_number.strip(),
                "bankCode": bank_details.bank_code.strip(),
                "address": {"country": (bank_details.country or "").upper()},
            },
        }
        resp = self.http.post(self._url("/v1/accounts"), headers=self._headers(), json_body=body)
        raise_for_provider_status(resp, rail=RAIL, operation="create_recipient")

        recipient_id = (resp.json or {}).get("id")
        if recipient_id is None:
            raise ProviderTerminal("recipient response missing id", code="MALFORMED_RESPONSE")

        logger.info("bank_transfer_recipient_created creator_id=%s recipient=%s", creator_id, recipient_id)
        return str(recipient_id)

    def create_transfer(
        self,
        *,
        provider_recipient_id: str,
        amount: Decimal,
        currency: str,
        reference: str,
    ) -> TransferHandle:
        self._require_config()
        profile_id = self._profile_id()

        quote_resp = self.http.post(
            self._url("/v2/quotes"),
            headers=self._headers(),
            json_body={
                "profile": profile_id,
                "sourceCurrency": self.config.source_currency,
                "targetCurrency": currency,
                "targetAmount": float(amount),
                "targetAccount": int(provider_recipient_id) if provider_recipient_id.isdigit() else provider_recipient_id,
                "paymentOption": "BALANCE",
            },
        )
        raise_for_provider_status(quote_resp, rail=RAIL, operation="create_quote")
        quote = quote_resp.json or {}
        quote_id = quote.get("id")
        if not quote_id:
            raise ProviderTerminal("quote response missing id", code="MALFORMED_RESPONSE")

        transfer_resp = self.http.post(
            self._url("/v1/transfers"),
            headers=self._headers(),
            json_body={
                "targetAccount": int(provider_recipient_id) if provider_recipient_id.isdigit() else provider_recipient_id,
                "quoteUuid": quote_id,
                "customerTransactionId": reference,
                "details": {"reference": "Creator payout"},
            },
        )
        raise_for_provider_status(transfer_resp, rail=RAIL, operation="create_transfer")
        transfer = transfer_resp.json or {}
        transfer_id = transfer.get("id")
        if transfer_id is None:
            raise ProviderTerminal("transfer response missing id", code="MALFORMED_RESPONSE")

        logger.info(
            "bank_transfer_created transfer_id=%s reference=%s status=%s",
            transfer_id,
            reference,
            transfer.get("status"),
        )
        return TransferHandle(
            provider_transfer_id=str(transfer_id),
            fee=_fee_from_quote(quote),
            initial_status=transfer.get("status"),
        )

    def fund_transfer(self, provider_transfer_id: str) -> None:
        """Pay an existing transfer from the profile balance. No-op in sandbox."""
        if not self.config.funds_from_balance:
            return
        self._require_config()
        resp = self.http.post(
            self._url(f"/v3/profiles/{self._profile_id()}/transfers/{provider_transfer_id}/payments"),
            headers=self._headers(),
            json_body={"type": "BALANCE"},
        )
        raise_for_provider_status(resp, rail=RAIL, operation="fund_transfer")
        logger.info("bank_transfer_funded transfer_id=%s status=%s", provider_transfer_id, (resp.json or {}).get("status"))

    def get_transfer_status(self, provider_transfer_id: str) -> ProviderResult:
        self._require_config()
        resp = self.http.get(self._url(f"/v1/transfers/{provider_transfer_id}"), headers=self._headers())
        raise_for_provider_status(resp, rail=RAIL, operation="get_transfer")
        body = resp.json or {}
        return ProviderResult(
            state=str(body.get("status") or ""),
            provider_ref=str(body.get("id") or provider_transfer_id),
            response=redact_dict(body),
        )
