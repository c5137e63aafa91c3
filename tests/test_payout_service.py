from decimal import Decimal

import pytest

from app.payouts.errors import (
    PayoutNotFound,
    ProviderTerminal,
    ProviderTransient,
    RetryNotAllowed,
    UnsupportedCorridor,
    ValidationError,
)
from app.payouts.model import BankDetails, PayoutRequest
from services.metrics import get_counter
from tests.conftest import ngn_request, usd_request


def _statuses(payout):
    return [e.status for e in payout.status_history]


def test_submit_happy_path_bank_transfer(engine):
    result = engine.service.submit(ngn_request())

    assert result.success is True
    assert result.status == "processing"
    payout = engine.payouts.get(result.payout_id)
    assert payout.rail == "bank_transfer"
    assert payout.provider_transfer_id
    assert payout.recipient_id
    assert _statuses(payout) == ["pending", "recipient_resolving", "transfer_creating", "processing"]
    assert {e.source for e in payout.status_history} == {"engine"}
    assert payout.status == payout.status_history[-1].status


def test_submit_routes_usd_to_connect(engine):
    result = engine.service.submit(usd_request())
    assert result.success
    assert engine.payouts.get(result.payout_id).rail == "connect"
    assert engine.connect.transfer_calls == 1
    assert engine.bank_transfer.transfer_calls == 0


@pytest.mark.parametrize(
    "overrides, code",
    [
        ({"amount": "0"}, "INVALID_AMOUNT"),
        ({"amount": "-5"}, "INVALID_AMOUNT"),
        ({"amount": "10.123"}, "INVALID_AMOUNT"),
        ({"currency": "ABC"}, "INVALID_CURRENCY"),
        ({"creator_id": " "}, "INVALID_CREATOR"),
        ({"country": "NGA"}, "INVALID_COUNTRY"),
    ],
)
def test_input_validation_creates_no_row(engine, overrides, code):
    creator_id = overrides.pop("creator_id", "creator-ng-1")
    amount = overrides.pop("amount", "1500.00")
    with pytest.raises(ValidationError) as exc:
        engine.service.submit(ngn_request(creator_id=creator_id, amount=amount, **overrides))
    assert exc.value.code == code
    assert exc.value.payout_id is None
    assert engine.service.list_for_creator("creator-ng-1") == []


def test_unsupported_corridor_cancels_row(engine):
    with pytest.raises(UnsupportedCorridor) as exc:
        engine.service.submit(usd_request(country="ZZ"))

    payout = engine.payouts.get(exc.value.payout_id)
    assert payout.status == "cancelled"
    assert payout.error_code == "UNSUPPORTED_CORRIDOR"
    assert payout.retryable is False
    assert engine.connect.recipient_calls == 0


def test_bad_account_format_cancels_row(engine):
    with pytest.raises(ValidationError) as exc:
        engine.service.submit(ngn_request(account_number="123"))
    assert exc.value.code == "INVALID_ACCOUNT"
    assert engine.payouts.get(exc.value.payout_id).status == "cancelled"


def test_transient_transfer_error_is_retried(engine):
    engine.bank_transfer.transfer_errors = [ProviderTransient("timeout"), ProviderTransient("timeout")]

    result = engine.service.submit(ngn_request())

    assert result.success
    assert engine.bank_transfer.transfer_calls == 3
    assert engine.sleeps == [2.0, 4.0]


def test_retries_exhausted_fails_retryable(engine):
    engine.bank_transfer.transfer_errors = [ProviderTransient("timeout")] * 3

    result = engine.service.submit(ngn_request())

    assert result.success is False
    assert result.status == "failed"
    assert result.retryable is True
    payout = engine.payouts.get(result.payout_id)
    assert payout.status == "failed"
    assert payout.retryable is True
    assert payout.provider_transfer_id is None
    assert payout.status_history[-1].error


def test_terminal_provider_error_fails_without_retry(engine):
    engine.bank_transfer.recipient_errors = [
        ProviderTerminal("invalid account", code="INVALID_ACCOUNT", http_status=400)
    ]

    result = engine.service.submit(ngn_request())

    assert result.success is False
    assert result.retryable is False
    assert result.error_code == "INVALID_ACCOUNT"
    assert engine.bank_transfer.recipient_calls == 1
    assert engine.sleeps == []
    assert engine.payouts.get(result.payout_id).status == "failed"


def test_retry_creates_linked_payout(engine):
    engine.bank_transfer.transfer_errors = [ProviderTransient("timeout")] * 3
    failed = engine.service.submit(ngn_request())

    retried = engine.service.retry(failed.payout_id)

    assert retried.success
    assert retried.payout_id != failed.payout_id
    original = engine.payouts.get(failed.payout_id)
    new = engine.payouts.get(retried.payout_id)
    assert original.status == "failed"
    assert new.retry_of == original.id
    assert new.reference == original.reference
    # recipient resolved once, reused by the retry
    assert engine.bank_transfer.recipient_calls == 1


def test_retry_refused_for_terminal_error(engine):
    engine.bank_transfer.transfer_errors = [ProviderTerminal("rejected", http_status=400)]
    failed = engine.service.submit(ngn_request())

    with pytest.raises(RetryNotAllowed):
        engine.service.retry(failed.payout_id)


def test_retry_refused_twice_and_for_processing(engine):
    engine.bank_transfer.transfer_errors = [ProviderTransient("timeout")] * 3
    failed = engine.service.submit(ngn_request())
    engine.service.retry(failed.payout_id)
    with pytest.raises(RetryNotAllowed):
        engine.service.retry(failed.payout_id)

    ok = engine.service.submit(ngn_request(creator_id="creator-2"))
    with pytest.raises(RetryNotAllowed):
        engine.service.retry(ok.payout_id)


def test_get_and_soft_delete(engine):
    result = engine.service.submit(ngn_request())
    assert engine.service.get(result.payout_id).id == result.payout_id

    engine.service.soft_delete(result.payout_id)

    with pytest.raises(PayoutNotFound):
        engine.service.get(result.payout_id)
    assert engine.service.list_for_creator("creator-ng-1") == []
    assert engine.payouts.get(result.payout_id, include_deleted=True).is_deleted
    with pytest.raises(PayoutNotFound):
        engine.service.soft_delete(result.payout_id)


def test_amount_and_currency_normalized(engine):
    req = PayoutRequest(
        creator_id="creator-jp",
        amount="5000",
        currency="jpy",
        bank_details=BankDetails(account_number="1234567", bank_code="0005", account_holder_name="K", country="jp"),
    )
    result = engine.service.submit(req)
    payout = engine.payouts.get(result.payout_id)
    assert payout.currency == "JPY"
    assert payout.amount == Decimal("5000")
    assert payout.bank_details.country == "JP"
    assert get_counter("payout_transitions_total", {"status": "processing", "source": "engine"}) == 1


def test_funding_failure_records_transfer_and_blocks_retry(engine):
    engine.bank_transfer.fund_errors = [ProviderTransient("balance service down")] * 3

    result = engine.service.submit(ngn_request())

    assert result.success is False
    assert result.retryable is False
    assert engine.bank_transfer.transfer_calls == 1
    assert engine.bank_transfer.fund_calls == 3
    payout = engine.payouts.get(result.payout_id)
    assert payout.status == "failed"
    assert payout.provider_transfer_id
    with pytest.raises(RetryNotAllowed):
        engine.service.retry(payout.id)


def test_funding_runs_once_per_transfer(engine):
    engine.bank_transfer.fund_errors = [ProviderTransient("blip")]

    result = engine.service.submit(ngn_request())

    assert result.success
    assert engine.bank_transfer.transfer_calls == 1
    assert engine.bank_transfer.fund_calls == 2
    assert get_counter("provider_calls_total", {"rail": "bank_transfer", "operation": "fund_transfer", "result": "ok"}) == 1


def test_get_by_reference_prefers_latest_attempt(engine):
    engine.bank_transfer.transfer_errors = [ProviderTransient("timeout")] * 3
    failed = engine.service.submit(ngn_request())
    reference = engine.payouts.get(failed.payout_id).reference

    retried = engine.service.retry(failed.payout_id)

    assert engine.service.get_by_reference(reference).id == retried.payout_id
    with pytest.raises(PayoutNotFound):
        engine.service.get_by_reference("no-such-reference")
    with pytest.raises(ValidationError) as exc:
        engine.service.get_by_reference("  ")
    assert exc.value.code == "INVALID_REFERENCE"


def test_creator_stats_by_currency(engine):
    paid = engine.service.submit(ngn_request(creator_id="c-1", amount="1500.00"))
    engine.payouts.transition(paid.payout_id, to_status="completed", source="webhook")
    engine.bank_transfer.transfer_errors = [ProviderTerminal("rejected", http_status=400)]
    engine.service.submit(ngn_request(creator_id="c-1", amount="20.00"))
    engine.service.submit(ngn_request(creator_id="c-1", amount="300.00"))
    engine.service.submit(usd_request(creator_id="c-1", amount="250.00"))
    deleted = engine.service.submit(ngn_request(creator_id="c-1", amount="999.00"))
    engine.service.soft_delete(deleted.payout_id)
    engine.service.submit(ngn_request(creator_id="c-2"))

    stats = {s.currency: s for s in engine.service.creator_stats("c-1")}

    assert sorted(stats) == ["NGN", "USD"]
    ngn = stats["NGN"]
    assert (ngn.total_payouts, ngn.successful_payouts, ngn.failed_payouts, ngn.pending_payouts) == (3, 1, 1, 1)
    assert ngn.total_paid_out == Decimal("1500.00")
    assert ngn.last_payout_at is not None
    usd = stats["USD"]
    assert (usd.total_payouts, usd.pending_payouts, usd.total_paid_out) == (1, 1, Decimal("0"))
    assert usd.last_payout_at is None
    assert engine.service.creator_stats("nobody") == []


def test_pending_summary_counts_unsettled_only(engine):
    first = engine.service.submit(ngn_request(creator_id="c-1", amount="1000.00"))
    second = engine.service.submit(ngn_request(creator_id="c-2", amount="500.00"))
    done = engine.service.submit(ngn_request(creator_id="c-3", amount="7.00"))
    engine.payouts.transition(done.payout_id, to_status="completed", source="webhook")
    engine.service.submit(usd_request(creator_id="c-4", amount="250.00"))
    with pytest.raises(UnsupportedCorridor):
        engine.service.submit(usd_request(creator_id="c-5", country="ZZ"))

    summary = {s.currency: s for s in engine.service.pending_summary()}

    assert sorted(summary) == ["NGN", "USD"]
    ngn = summary["NGN"]
    assert ngn.pending_count == 2
    assert ngn.total_amount == Decimal("1500.00")
    assert ngn.oldest_pending == engine.payouts.get(first.payout_id).created_at
    assert ngn.newest_pending == engine.payouts.get(second.payout_id).created_at
    assert summary["USD"].pending_count == 1
