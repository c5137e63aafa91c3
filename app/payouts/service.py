# app/payouts/service.py
from __future__ import annotations

import logging
import time
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional

from app.catalog.currencies import has_valid_precision, is_known_currency, normalize_currency
from app.catalog.rails import RailTable, select_rail
from app.payouts.errors import (
    PayoutError,
    PayoutNotFound,
    RetryNotAllowed,
    UnsupportedCorridor,
    ValidationError,
)
from app.payouts.executor import TransferExecutor
from app.payouts.model import (
    CANCELLED,
    FAILED,
    PENDING,
    PROCESSING,
    RECIPIENT_RESOLVING,
    SOURCE_ENGINE,
    TRANSFER_CREATING,
    BankDetails,
    CreatorPayoutStats,
    Payout,
    PayoutRequest,
    PayoutResult,
    PendingPayoutSummary,
    StatusHistoryEntry,
)
from app.payouts.retry import RetryPolicy, with_retry
from app.payouts.state_machine import TERMINAL_STATUSES, assert_processing_invariant
from app.payouts.store import PayoutStore, get_payout_store
from app.providers.rails.factory import get_provider
from app.recipients.resolver import RecipientResolver, validate_bank_details
from app.recipients.store import RecipientStore, get_recipient_store

logger = logging.getLogger("payouts.engine")

NON_TERMINAL = frozenset({PENDING, RECIPIENT_RESOLVING, TRANSFER_CREATING, PROCESSING})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def validate_request(req: PayoutRequest) -> PayoutRequest:
    """
    Input checks that run before any row exists. Returns the request with
    currency/country normalized.
    """
    if not (req.creator_id or "").strip():
        raise ValidationError("creator_id is required", code="INVALID_CREATOR")

    try:
        amount = req.amount if isinstance(req.amount, Decimal) else Decimal(str(req.amount))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"amount is not a number: {req.amount!r}", code="INVALID_AMOUNT")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("amount must be greater than zero", code="INVALID_AMOUNT")

    currency = normalize_currency(req.currency)
    if not is_known_currency(currency):
        raise ValidationError(f"Unsupported currency: {req.currency!r}", code="INVALID_CURRENCY")
    if not has_valid_precision(amount, currency):
        raise ValidationError(f"amount has more decimals than {currency} allows", code="INVALID_AMOUNT")

    bank = req.bank_details
    if bank is None:
        raise ValidationError("bank_details is required", code="INVALID_ACCOUNT")
    country = (bank.country or "").strip().upper()
    if len(country) != 2 or not country.isalpha():
        raise ValidationError("bank_details.country must be an ISO 3166 alpha-2 code", code="INVALID_COUNTRY")

    return PayoutRequest(
        creator_id=req.creator_id.strip(),
        amount=amount,
        currency=currency,
        bank_details=BankDetails(
            account_number=bank.account_number,
            bank_code=bank.bank_code,
            account_holder_name=bank.account_holder_name,
            country=country,
        ),
        reason=req.reason,
        metadata=dict(req.metadata or {}),
    )


def _failure(payout_id: Optional[str], exc: BaseException, *, status: Optional[str]) -> PayoutResult:
    if isinstance(exc, PayoutError):
        return PayoutResult(
            payout_id=payout_id,
            success=False,
            status=status,
            retryable=bool(exc.retryable),
            error=str(exc),
            error_code=exc.code,
        )
    return PayoutResult(
        payout_id=payout_id,
        success=False,
        status=status,
        retryable=False,
        error=f"{type(exc).__name__}: {exc}",
        error_code="INTERNAL_ERROR",
    )


class PayoutService:
    """
    Drives one payout through validate -> route -> resolve recipient ->
    create transfer, writing every step to the ledger.
    """

    def __init__(
        self,
        payouts: PayoutStore,
        recipients: RecipientStore,
        provider_for: Callable[[str], Any] = get_provider,
        *,
        rail_table: Optional[RailTable] = None,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Any] = time.sleep,
    ):
        self.payouts = payouts
        self.rail_table = rail_table
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self.sleep = sleep
        self.resolver = RecipientResolver(recipients, provider_for)
        self.executor = TransferExecutor(payouts, provider_for)

    # ----------------------------------------------------------
    # Public operations
    # ----------------------------------------------------------

    def submit(
        self,
        request: PayoutRequest,
        *,
        retry_of: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> PayoutResult:
        req = validate_request(request)
        payout = self._create_row(req, retry_of=retry_of, reference=reference)

        try:
            rail = select_rail(req.currency, req.bank_details.country, self.rail_table)
            validate_bank_details(req.bank_details, req.currency)
        except (UnsupportedCorridor, ValidationError) as exc:
            self.payouts.transition(
                payout.id,
                to_status=CANCELLED,
                source=SOURCE_ENGINE,
                error=str(exc),
                last_error=str(exc),
                error_code=exc.code,
                retryable=False,
            )
            logger.info("payout_cancelled payout_id=%s code=%s error=%s", payout.id, exc.code, exc)
            exc.payout_id = payout.id
            raise

        self.payouts.transition(payout.id, to_status=RECIPIENT_RESOLVING, source=SOURCE_ENGINE, rail=rail.value)
        return self._drive(payout.id, req, rail.value)

    def retry(self, payout_id: str) -> PayoutResult:
        original = self.get(payout_id)

        if original.status != FAILED:
            raise RetryNotAllowed(f"Payout {payout_id} is {original.status}; only failed payouts can be retried")
        if not original.retryable:
            raise RetryNotAllowed(f"Payout {payout_id} failed with a terminal error ({original.error_code})")
        if original.provider_transfer_id:
            # a transfer exists at the provider; its outcome belongs to reconciliation
            raise RetryNotAllowed(f"Payout {payout_id} already reached the provider")
        if original.bank_details is None:
            raise RetryNotAllowed(f"Payout {payout_id} has no stored bank details")
        if self.payouts.get_retry_of(payout_id) is not None:
            raise RetryNotAllowed(f"Payout {payout_id} was already retried")

        logger.info("payout_retry_requested payout_id=%s", payout_id)
        return self.submit(
            PayoutRequest(
                creator_id=original.creator_id,
                amount=original.amount,
                currency=original.currency,
                bank_details=original.bank_details,
                reason=original.reason,
                metadata=dict(original.metadata),
            ),
            retry_of=original.id,
            # same provider idempotency key: if the failed attempt did reach the
            # provider, the retry gets that transfer back instead of a new one
            reference=original.reference,
        )

    def get(self, payout_id: str) -> Payout:
        payout = self.payouts.get(payout_id)
        if payout is None:
            raise PayoutNotFound(f"Payout {payout_id} not found", payout_id=payout_id)
        return payout

    def get_by_reference(self, reference: str) -> Payout:
        if not (reference or "").strip():
            raise ValidationError("reference is required", code="INVALID_REFERENCE")
        payout = self.payouts.get_by_reference(reference.strip())
        if payout is None:
            raise PayoutNotFound(f"No payout with reference {reference}")
        return payout

    def list_for_creator(self, creator_id: str, *, limit: int = 100) -> list[Payout]:
        return self.payouts.list_for_creator(creator_id, limit=limit)

    def creator_stats(self, creator_id: str) -> list[CreatorPayoutStats]:
        if not (creator_id or "").strip():
            raise ValidationError("creator_id is required", code="INVALID_CREATOR")
        return self.payouts.creator_stats(creator_id.strip())

    def pending_summary(self) -> list[PendingPayoutSummary]:
        return self.payouts.pending_summary()

    def soft_delete(self, payout_id: str) -> None:
        if not self.payouts.soft_delete(payout_id):
            raise PayoutNotFound(f"Payout {payout_id} not found", payout_id=payout_id)
        logger.info("payout_soft_deleted payout_id=%s", payout_id)

    # ----------------------------------------------------------
    # Internals
    # ----------------------------------------------------------

    def _create_row(self, req: PayoutRequest, *, retry_of: Optional[str], reference: Optional[str]) -> Payout:
        now = _utcnow()
        payout = Payout(
            id=str(uuid.uuid4()),
            creator_id=req.creator_id,
            amount=req.amount,
            currency=req.currency,
            status=PENDING,
            reference=reference or str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            bank_details=req.bank_details,
            reason=req.reason,
            metadata=req.metadata,
            status_history=(StatusHistoryEntry(status=PENDING, timestamp=now, source=SOURCE_ENGINE),),
            retry_of=retry_of,
        )
        created = self.payouts.create(payout)
        logger.info(
            "payout_created payout_id=%s creator_id=%s amount=%s currency=%s retry_of=%s",
            created.id,
            created.creator_id,
            created.amount,
            created.currency,
            retry_of,
        )
        return created

    def _drive(self, payout_id: str, req: PayoutRequest, rail: str) -> PayoutResult:
        status = RECIPIENT_RESOLVING
        try:
            recipient = with_retry(
                lambda: self.resolver.resolve(req.creator_id, req.bank_details, req.currency, rail),
                self.retry_policy,
                label="resolve_recipient",
                sleep=self.sleep,
            )
            self.payouts.transition(
                payout_id, to_status=TRANSFER_CREATING, source=SOURCE_ENGINE, recipient_id=recipient.id
            )
            status = TRANSFER_CREATING

            handle = with_retry(
                lambda: self.executor.create_transfer(payout_id, recipient, req.amount, req.currency),
                self.retry_policy,
                label="create_transfer",
                sleep=self.sleep,
            )
        except PayoutError as exc:
            return self._fail(payout_id, exc)
        except Exception as exc:
            logger.exception("payout_unexpected_error payout_id=%s stage=%s", payout_id, status)
            self._fail(payout_id, exc)
            raise

        try:
            with_retry(
                lambda: self.executor.fund_transfer(payout_id, rail, handle.provider_transfer_id),
                self.retry_policy,
                label="fund_transfer",
                sleep=self.sleep,
            )
        except PayoutError as exc:
            # transfer exists at the provider; not eligible for a fresh retry
            return self._fail(payout_id, exc, retryable=False)
        except Exception as exc:
            logger.exception("payout_unexpected_error payout_id=%s stage=fund_transfer", payout_id)
            self._fail(payout_id, exc, retryable=False)
            raise

        assert_processing_invariant(PROCESSING, handle.provider_transfer_id)
        updated = self.payouts.transition(
            payout_id,
            to_status=PROCESSING,
            source=SOURCE_ENGINE,
            expected={TRANSFER_CREATING},
            provider_transfer_id=handle.provider_transfer_id,
            fee=handle.fee,
        )
        if updated is None:
            # a callback settled it first
            updated = self.payouts.get(payout_id, include_deleted=True)
            logger.info("payout_settled_before_processing payout_id=%s status=%s", payout_id, updated and updated.status)

        final_status = updated.status if updated else PROCESSING
        logger.info(
            "payout_submitted payout_id=%s status=%s provider_transfer_id=%s",
            payout_id,
            final_status,
            handle.provider_transfer_id,
        )
        return PayoutResult(payout_id=payout_id, success=final_status != FAILED, status=final_status)

    def _fail(self, payout_id: str, exc: BaseException, *, retryable: Optional[bool] = None) -> PayoutResult:
        result = _failure(payout_id, exc, status=FAILED)
        if retryable is not None:
            result = replace(result, retryable=retryable)
        updated = self.payouts.transition(
            payout_id,
            to_status=FAILED,
            source=SOURCE_ENGINE,
            expected=NON_TERMINAL,
            error=result.error,
            last_error=result.error,
            error_code=result.error_code,
            retryable=result.retryable,
        )
        if updated is None:
            current = self.payouts.get(payout_id, include_deleted=True)
            if current is not None and current.status in TERMINAL_STATUSES:
                logger.warning(
                    "payout_fail_skipped payout_id=%s status=%s error=%s", payout_id, current.status, result.error
                )
                return PayoutResult(
                    payout_id=payout_id,
                    success=current.status != FAILED,
                    status=current.status,
                    retryable=result.retryable,
                    error=result.error,
                    error_code=result.error_code,
                )
        logger.warning(
            "payout_failed payout_id=%s code=%s retryable=%s error=%s",
            payout_id,
            result.error_code,
            result.retryable,
            result.error,
        )
        return result


_SERVICE: Optional[PayoutService] = None


def get_service() -> PayoutService:
    global _SERVICE
    if _SERVICE is None:
        _SERVICE = PayoutService(get_payout_store(), get_recipient_store())
    return _SERVICE


def reset_service(service: Optional[PayoutService] = None) -> None:
    global _SERVICE
    _SERVICE = service


def failure_result(payout_id: Optional[str], exc: BaseException) -> PayoutResult:
    status = CANCELLED if isinstance(exc, (UnsupportedCorridor, ValidationError)) and payout_id else None
    return _failure(payout_id, exc, status=status)
