# schemas.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from app.payouts.batch import BatchSummary
from app.payouts.model import (
    BankDetails,
    CreatorPayoutStats,
    Payout,
    PayoutRequest,
    PayoutResult,
    PendingPayoutSummary,
)
from services.redaction import mask_account_number


# -------- REQUESTS --------
class BankDetailsIn(BaseModel):
    account_number: str
    bank_code: str = ""
    account_holder_name: str
    country: str = Field(min_length=2, max_length=2)


class PayoutCreate(BaseModel):
    creator_id: str
    # str accepted so a malformed amount reaches the engine's INVALID_AMOUNT check
    amount: Union[Decimal, str]
    currency: str
    bank_details: BankDetailsIn
    reason: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def to_request(self) -> PayoutRequest:
        return PayoutRequest(
            creator_id=self.creator_id,
            amount=self.amount,
            currency=self.currency,
            bank_details=BankDetails(
                account_number=self.bank_details.account_number,
                bank_code=self.bank_details.bank_code,
                account_holder_name=self.bank_details.account_holder_name,
                country=self.bank_details.country,
            ),
            reason=self.reason,
            metadata=dict(self.metadata),
        )


class BatchCreate(BaseModel):
    items: List[PayoutCreate] = Field(min_length=1, max_length=500)
    max_concurrent: Optional[int] = Field(default=None, ge=1, le=50)


# -------- RESPONSES --------
class PayoutResultOut(BaseModel):
    payout_id: Optional[str] = None
    success: bool
    status: Optional[str] = None
    retryable: Optional[bool] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def from_result(cls, r: PayoutResult) -> "PayoutResultOut":
        return cls(
            payout_id=r.payout_id,
            success=r.success,
            status=r.status,
            retryable=r.retryable,
            error=r.error,
            error_code=r.error_code,
        )


class BatchSummaryOut(BaseModel):
    total: int
    successful: int
    failed: int
    retryable_failures: int
    totals: Dict[str, str]

    @classmethod
    def from_summary(cls, s: BatchSummary) -> "BatchSummaryOut":
        return cls(
            total=s.total,
            successful=s.successful,
            failed=s.failed,
            retryable_failures=s.retryable_failures,
            totals={cur: str(amount) for cur, amount in s.totals.items()},
        )


class BatchResponse(BaseModel):
    results: List[PayoutResultOut]
    summary: BatchSummaryOut


class StatusHistoryOut(BaseModel):
    status: str
    timestamp: datetime
    source: str
    error: Optional[str] = None


class PayoutOut(BaseModel):
    id: str
    creator_id: str
    amount: str
    currency: str
    status: str
    rail: Optional[str] = None
    reference: str
    recipient_id: Optional[str] = None
    provider_transfer_id: Optional[str] = None
    fee: Optional[str] = None
    reason: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    account_number_masked: Optional[str] = None
    country: Optional[str] = None
    last_error: Optional[str] = None
    error_code: Optional[str] = None
    retryable: Optional[bool] = None
    retry_of: Optional[str] = None
    status_history: List[StatusHistoryOut]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_payout(cls, p: Payout) -> "PayoutOut":
        bank = p.bank_details
        return cls(
            id=p.id,
            creator_id=p.creator_id,
            amount=str(p.amount),
            currency=p.currency,
            status=p.status,
            rail=p.rail,
            reference=p.reference,
            recipient_id=p.recipient_id,
            provider_transfer_id=p.provider_transfer_id,
            fee=str(p.fee) if p.fee is not None else None,
            reason=p.reason,
            metadata=dict(p.metadata),
            account_number_masked=mask_account_number(bank.account_number) if bank else None,
            country=bank.country if bank else None,
            last_error=p.last_error,
            error_code=p.error_code,
            retryable=p.retryable,
            retry_of=p.retry_of,
            status_history=[
                StatusHistoryOut(status=e.status, timestamp=e.timestamp, source=e.source, error=e.error)
                for e in p.status_history
            ],
            created_at=p.created_at,
            updated_at=p.updated_at,
        )


class PayoutListResponse(BaseModel):
    creator_id: str
    payouts: List[PayoutOut]


class CreatorPayoutStatsOut(BaseModel):
    currency: str
    total_payouts: int
    successful_payouts: int
    failed_payouts: int
    pending_payouts: int
    total_paid_out: str
    last_payout_at: Optional[datetime] = None

    @classmethod
    def from_stats(cls, s: CreatorPayoutStats) -> "CreatorPayoutStatsOut":
        return cls(
            currency=s.currency,
            total_payouts=s.total_payouts,
            successful_payouts=s.successful_payouts,
            failed_payouts=s.failed_payouts,
            pending_payouts=s.pending_payouts,
            total_paid_out=str(s.total_paid_out),
            last_payout_at=s.last_payout_at,
        )


class CreatorStatsResponse(BaseModel):
    creator_id: str
    stats: List[CreatorPayoutStatsOut]


class PendingSummaryOut(BaseModel):
    currency: str
    pending_count: int
    total_amount: str
    oldest_pending: datetime
    newest_pending: datetime

    @classmethod
    def from_summary(cls, s: PendingPayoutSummary) -> "PendingSummaryOut":
        return cls(
            currency=s.currency,
            pending_count=s.pending_count,
            total_amount=str(s.total_amount),
            oldest_pending=s.oldest_pending,
            newest_pending=s.newest_pending,
        )


class PendingSummaryResponse(BaseModel):
    summary: List[PendingSummaryOut]


class WebhookAck(BaseModel):
    ok: bool = True
    result: str
    event_id: Optional[str] = None
