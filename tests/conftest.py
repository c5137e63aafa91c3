# tests/conftest.py

import os

# before anything imports settings
os.environ.setdefault("LEDGER_BACKEND", "memory")
os.environ.setdefault("USE_MOCK_PROVIDERS", "true")
os.environ.setdefault("WEBHOOK_SECRET", "test_webhook_secret")
os.environ.setdefault("INTERNAL_API_TOKEN", "")

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List

import pytest
from fastapi.testclient import TestClient

from app.catalog.rails import Rail
from app.payouts.model import BankDetails, PayoutRequest
from app.payouts.retry import RetryPolicy
from app.payouts.service import PayoutService, reset_service
from app.payouts.store import InMemoryPayoutStore, reset_payout_store
from app.providers.mock import MockRailProvider
from app.providers.rails.factory import reset_providers
from app.recipients.store import InMemoryRecipientStore, reset_recipient_store
from main import create_app
from services import metrics


WEBHOOK_SECRET = os.environ["WEBHOOK_SECRET"]


@dataclass
class Engine:
    service: PayoutService
    payouts: InMemoryPayoutStore
    recipients: InMemoryRecipientStore
    providers: Dict[str, MockRailProvider]
    sleeps: List[float] = field(default_factory=list)

    def provider_for(self, rail: str) -> MockRailProvider:
        return self.providers[Rail(rail).value]

    @property
    def bank_transfer(self) -> MockRailProvider:
        return self.providers[Rail.BANK_TRANSFER.value]

    @property
    def connect(self) -> MockRailProvider:
        return self.providers[Rail.CONNECT.value]


def make_engine(**provider_kwargs) -> Engine:
    providers = {
        Rail.BANK_TRANSFER.value: MockRailProvider(Rail.BANK_TRANSFER.value, **provider_kwargs),
        Rail.CONNECT.value: MockRailProvider(Rail.CONNECT.value, **provider_kwargs),
    }
    payouts = InMemoryPayoutStore()
    recipients = InMemoryRecipientStore()
    sleeps: List[float] = []
    service = PayoutService(
        payouts,
        recipients,
        lambda rail: providers[Rail(rail).value],
        retry_policy=RetryPolicy(max_attempts=3, base_delay=1.0, cap_delay=10.0),
        sleep=sleeps.append,
    )
    return Engine(service=service, payouts=payouts, recipients=recipients, providers=providers, sleeps=sleeps)


@pytest.fixture(autouse=True)
def engine() -> Engine:
    """Fresh in-memory ledger, scripted rails and a no-sleep service per test."""
    metrics.reset()
    reset_providers()
    eng = make_engine()
    reset_payout_store(eng.payouts)
    reset_recipient_store(eng.recipients)
    reset_service(eng.service)
    yield eng
    reset_service(None)
    reset_payout_store(None)
    reset_recipient_store(None)
    reset_providers()


@pytest.fixture()
def client() -> TestClient:
    # Needed so tests can assert 500s instead of pytest re-raising server exceptions
    return TestClient(create_app(), raise_server_exceptions=False)


# ---------------------------
# Request builders
# ---------------------------

def ngn_request(creator_id: str = "creator-ng-1", amount: str = "1500.00", **overrides) -> PayoutRequest:
    bank = BankDetails(
        account_number=overrides.pop("account_number", "0123456789"),
        bank_code=overrides.pop("bank_code", "058"),
        account_holder_name="Ada Obi",
        country=overrides.pop("country", "NG"),
    )
    return PayoutRequest(
        creator_id=creator_id,
        amount=Decimal(amount),
        currency=overrides.pop("currency", "NGN"),
        bank_details=bank,
        reason=overrides.pop("reason", "march earnings"),
    )


def usd_request(creator_id: str = "creator-us-1", amount: str = "250.00", **overrides) -> PayoutRequest:
    bank = BankDetails(
        account_number=overrides.pop("account_number", "000123456789"),
        bank_code=overrides.pop("bank_code", "110000000"),
        account_holder_name="Sam Lee",
        country=overrides.pop("country", "US"),
    )
    return PayoutRequest(
        creator_id=creator_id,
        amount=Decimal(amount),
        currency=overrides.pop("currency", "USD"),
        bank_details=bank,
    )


def ngn_payload(creator_id: str = "creator-ng-1", amount: str = "1500.00", **bank_overrides) -> dict:
    bank = {
        "account_number": "0123456789",
        "bank_code": "058",
        "account_holder_name": "Ada Obi",
        "country": "NG",
    }
    bank.update(bank_overrides)
    return {
        "creator_id": creator_id,
        "amount": amount,
        "currency": "NGN",
        "bank_details": bank,
        "reason": "march earnings",
    }
