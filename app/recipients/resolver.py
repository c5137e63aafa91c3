# app/recipients/resolver.py
from __future__ import annotations

import hashlib
import logging
import re
import uuid
from datetime import datetime, timezone
from typing import Callable

from app.catalog.currencies import normalize_currency
from app.catalog.rails import Rail
from app.payouts.errors import ValidationError
from app.payouts.model import BankDetails, Recipient
from app.providers.base import RailProvider
from app.recipients.store import RecipientStore
from services.metrics import increment_provider_call

logger = logging.getLogger("payouts.recipients")

# account_number / bank_code formats per payout currency
ACCOUNT_NUMBER_RULES: dict[str, str] = {
    "NGN": r"^\d{10}$",
    "GHS": r"^\d{10,16}$",
    "KES": r"^\d{10,16}$",
    "INR": r"^\d{9,18}$",
    "GBP": r"^\d{8}$",
}

BANK_CODE_RULES: dict[str, str] = {
    "NGN": r"^\d{3,6}$",
    "INR": r"^[A-Z]{4}0[A-Z0-9]{6}$",  # IFSC
    "GBP": r"^\d{6}$",  # sort code
    "JPY": r"^\d{3,7}$",
    "SGD": r"^\d{4,7}$",
}

_STRIP_RE = re.compile(r"[\s\-.]")


def normalize_account_field(value: str | None) -> str:
    return _STRIP_RE.sub("", value or "").upper()


def detail_hash(bank_details: BankDetails, currency: str) -> str:
    """sha256 over normalized account number, bank code and currency."""
    parts = (
        normalize_account_field(bank_details.account_number),
        normalize_account_field(bank_details.bank_code),
        normalize_currency(currency),
    )
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


def validate_bank_details(bank_details: BankDetails, currency: str) -> None:
    account = normalize_account_field(bank_details.account_number)
    bank_code = normalize_account_field(bank_details.bank_code)
    cur = normalize_currency(currency)

    if not account:
        raise ValidationError("bank_details.account_number is required", code="INVALID_ACCOUNT")
    if not (bank_details.account_holder_name or "").strip():
        raise ValidationError("bank_details.account_holder_name is required", code="INVALID_ACCOUNT")

    rule = ACCOUNT_NUMBER_RULES.get(cur)
    if rule and not re.match(rule, account):
        raise ValidationError(f"Invalid {cur} account number format", code="INVALID_ACCOUNT")

    rule = BANK_CODE_RULES.get(cur)
    if rule and not re.match(rule, bank_code):
        raise ValidationError(f"Invalid {cur} bank code format", code="INVALID_BANK_CODE")


class RecipientResolver:
    def __init__(self, store: RecipientStore, provider_for: Callable[[str], RailProvider]):
        self.store = store
        self.provider_for = provider_for

    def resolve(
        self,
        creator_id: str,
        bank_details: BankDetails,
        currency: str,
        rail: Rail | str,
    ) -> Recipient:
        rail_name = Rail(rail).value
        h = detail_hash(bank_details, currency)

        existing = self.store.find(creator_id=creator_id, detail_hash=h, rail=rail_name)
        if existing is not None:
            logger.info("recipient_reused creator_id=%s rail=%s recipient_id=%s", creator_id, rail_name, existing.id)
            return existing

        # provider first: a row must never point at a recipient that was not created
        provider = self.provider_for(rail_name)
        try:
            provider_recipient_id = provider.create_recipient(
                creator_id=creator_id,
                bank_details=bank_details,
                currency=normalize_currency(currency),
            )
        except Exception:
            increment_provider_call(rail_name, "create_recipient", "error")
            raise
        increment_provider_call(rail_name, "create_recipient", "ok")

        candidate = Recipient(
            id=str(uuid.uuid4()),
            rail=rail_name,
            creator_id=creator_id,
            detail_hash=h,
            provider_recipient_id=provider_recipient_id,
            currency=normalize_currency(currency),
            created_at=datetime.now(timezone.utc),
        )
        stored, created = self.store.insert_if_absent(candidate)
        if not created:
            # concurrent resolution won; our provider-side recipient is orphaned
            logger.warning(
                "recipient_duplicate_at_provider creator_id=%s rail=%s kept=%s orphaned_provider_recipient_id=%s",
                creator_id,
                rail_name,
                stored.provider_recipient_id,
                provider_recipient_id,
            )
        else:
            logger.info("recipient_created creator_id=%s rail=%s recipient_id=%s", creator_id, rail_name, stored.id)
        return stored
