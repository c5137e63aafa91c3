from datetime import datetime, timezone
from decimal import Decimal

import pytest

from app.payouts.errors import ProviderTransient
from app.payouts.model import BankDetails, Payout
from app.workers.reconcile_worker import reconcile_once
from services.metrics import get_counter
from tests.conftest import ngn_request, usd_request


def _stale_payout(engine, request):
    result = engine.service.submit(request)
    engine.payouts.backdate(result.payout_id, seconds=3600)
    return engine.payouts.get(result.payout_id)


def test_settles_stale_processing_payouts(engine):
    done = _stale_payout(engine, ngn_request(creator_id="c-1"))
    bounced = _stale_payout(engine, ngn_request(creator_id="c-2"))
    engine.bank_transfer.set_state(done.provider_transfer_id, "outgoing_payment_sent")
    engine.bank_transfer.set_state(bounced.provider_transfer_id, "bounced_back")

    moved = reconcile_once(store=engine.payouts, provider_for=engine.provider_for, stale_seconds=900)

    assert moved == 2
    assert engine.payouts.get(done.id).status == "completed"
    failed = engine.payouts.get(bounced.id)
    assert failed.status == "failed"
    assert failed.status_history[-1].source == "reconcile"
    assert get_counter("payout_transitions_total", {"status": "completed", "source": "reconcile"}) == 1


def test_fresh_and_in_flight_payouts_untouched(engine):
    fresh = engine.service.submit(ngn_request(creator_id="c-1"))
    stale = _stale_payout(engine, usd_request(creator_id="c-2"))  # mock still reports "processing"

    moved = reconcile_once(store=engine.payouts, provider_for=engine.provider_for, stale_seconds=900)

    assert moved == 0
    assert engine.payouts.get(fresh.payout_id).status == "processing"
    assert engine.payouts.get(stale.id).status == "processing"
    assert engine.connect.status_calls == 1


def test_poll_error_skips_payout(engine, monkeypatch):
    stale = _stale_payout(engine, ngn_request())

    def boom(provider_transfer_id):
        raise ProviderTransient("timeout")

    monkeypatch.setattr(engine.bank_transfer, "get_transfer_status", boom)

    assert reconcile_once(store=engine.payouts, provider_for=engine.provider_for, stale_seconds=900) == 0
    assert engine.payouts.get(stale.id).status == "processing"
    assert get_counter(
        "provider_calls_total", {"rail": "bank_transfer", "operation": "get_transfer_status", "result": "error"}
    ) == 1


def test_defaults_use_process_store(engine, monkeypatch):
    stale = _stale_payout(engine, ngn_request())
    engine.bank_transfer.set_state(stale.provider_transfer_id, "paid")
    monkeypatch.setattr("app.workers.reconcile_worker.get_provider", engine.provider_for)

    assert reconcile_once(stale_seconds=900) == 1
    assert engine.payouts.get(stale.id).status == "completed"


def _stranded(engine, payout_id, status, *, provider_transfer_id=None, rail="bank_transfer"):
    now = datetime.now(timezone.utc)
    engine.payouts.create(
        Payout(
            id=payout_id,
            creator_id="creator-1",
            amount=Decimal("10.00"),
            currency="NGN",
            status=status,
            reference=f"ref-{payout_id}",
            created_at=now,
            updated_at=now,
            rail=rail,
            bank_details=BankDetails(
                account_number="0123456789", bank_code="058", account_holder_name="Ada Obi", country="NG"
            ),
        )
    )
    if provider_transfer_id:
        engine.payouts.attach_transfer(payout_id, provider_transfer_id=provider_transfer_id)
    engine.payouts.backdate(payout_id, seconds=3600)


def test_stale_transfer_creating_with_transfer_id_is_settled(engine):
    handle = engine.bank_transfer.create_transfer(
        provider_recipient_id="rcp-1", amount=Decimal("10.00"), currency="NGN", reference="ref-p-tc"
    )
    engine.bank_transfer.set_state(handle.provider_transfer_id, "outgoing_payment_sent")
    _stranded(engine, "p-tc", "transfer_creating", provider_transfer_id=handle.provider_transfer_id)

    moved = reconcile_once(store=engine.payouts, provider_for=engine.provider_for, stale_seconds=900)

    assert moved == 1
    payout = engine.payouts.get("p-tc")
    assert payout.status == "completed"
    assert payout.status_history[-1].source == "reconcile"


def test_stale_transfer_creating_still_in_flight_moves_to_processing(engine):
    handle = engine.bank_transfer.create_transfer(
        provider_recipient_id="rcp-1", amount=Decimal("10.00"), currency="NGN", reference="ref-p-if"
    )
    _stranded(engine, "p-if", "transfer_creating", provider_transfer_id=handle.provider_transfer_id)

    assert reconcile_once(store=engine.payouts, provider_for=engine.provider_for, stale_seconds=900) == 1
    assert engine.payouts.get("p-if").status == "processing"


@pytest.mark.parametrize("status", ["pending", "recipient_resolving", "transfer_creating"])
def test_stale_payout_without_transfer_fails_retryable(engine, status):
    _stranded(engine, "p-stuck", status)

    assert reconcile_once(store=engine.payouts, provider_for=engine.provider_for, stale_seconds=900) == 1

    payout = engine.payouts.get("p-stuck")
    assert payout.status == "failed"
    assert payout.retryable is True
    assert payout.error_code == "STALLED"
    assert payout.status_history[-1].source == "reconcile"
    assert engine.bank_transfer.status_calls == 0

    retried = engine.service.retry("p-stuck")
    assert retried.success
    assert engine.payouts.get(retried.payout_id).reference == "ref-p-stuck"


def test_fresh_stranded_payout_left_alone(engine):
    now = datetime.now(timezone.utc)
    engine.payouts.create(
        Payout(
            id="p-new",
            creator_id="creator-1",
            amount=Decimal("10.00"),
            currency="NGN",
            status="recipient_resolving",
            reference="ref-new",
            created_at=now,
            updated_at=now,
        )
    )

    assert reconcile_once(store=engine.payouts, provider_for=engine.provider_for, stale_seconds=900) == 0
    assert engine.payouts.get("p-new").status == "recipient_resolving"
