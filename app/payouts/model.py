from __future__ import annotations
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Any
from datetime import datetime


# Statuses
PENDING = "pending"
RECIPIENT_RESOLVING = "recipient_resolving"
TRANSFER_CREATING = "transfer_creating"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"
CANCELLED = "cancelled"

# status_history sources
SOURCE_ENGINE = "engine"
SOURCE_WEBHOOK = "webhook"
SOURCE_RECONCILE = "reconcile"


@dataclass(frozen=True)
class BankDetails:
    account_number: str
    bank_code: str
    account_holder_name: str
    country: str

    def as_dict(self) -> dict[str, str]:
        return {
            "account_number": self.account_number,
            "bank_code": self.bank_code,
            "account_holder_name": self.account_holder_name,
            "country": self.country,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BankDetails":
        return cls(
            account_number=str(data.get("account_number") or ""),
            bank_code=str(data.get("bank_code") or ""),
            account_holder_name=str(data.get("account_holder_name") or ""),
            country=str(data.get("country") or ""),
        )


@dataclass(frozen=True)
class PayoutRequest:
    creator_id: str
    amount: Decimal
    currency: str
    bank_details: BankDetails
    reason: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StatusHistoryEntry:
    status: str
    timestamp: datetime
    source: str
    error: Optional[str] = None

    def as_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "status": self.status,
            "timestamp": self.timestamp.isoformat(),
            "source": self.source,
        }
        if self.error:
            out["error"] = self.error
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StatusHistoryEntry":
        ts = data.get("timestamp")
        if isinstance(ts, str):
            ts = datetime.fromisoformat(ts)
        return cls(
            status=data["status"],
            timestamp=ts,
            source=data.get("source") or SOURCE_ENGINE,
            error=data.get("error"),
        )


@dataclass(frozen=True)
class Payout:
    id: str
    creator_id: str
    amount: Decimal
    currency: str
    status: str
    reference: str
    created_at: datetime
    updated_at: datetime
    rail: Optional[str] = None
    recipient_id: Optional[str] = None
    provider_transfer_id: Optional[str] = None
    fee: Optional[Decimal] = None
    bank_details: Optional[BankDetails] = None
    reason: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    status_history: tuple[StatusHistoryEntry, ...] = ()
    applied_event_ids: tuple[str, ...] = ()
    last_error: Optional[str] = None
    error_code: Optional[str] = None
    retryable: Optional[bool] = None
    retry_of: Optional[str] = None
    deleted_at: Optional[datetime] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


@dataclass(frozen=True)
class Recipient:
    id: str
    rail: str
    creator_id: str
    detail_hash: str
    provider_recipient_id: str
    currency: str
    created_at: datetime


@dataclass(frozen=True)
class TransferHandle:
    provider_transfer_id: str
    fee: Optional[Decimal] = None
    initial_status: Optional[str] = None


@dataclass(frozen=True)
class PayoutResult:
    payout_id: Optional[str]
    success: bool
    status: Optional[str] = None
    retryable: Optional[bool] = None
    error: Optional[str] = None
    error_code: Optional[str] = None


@dataclass(frozen=True)
class CreatorPayoutStats:
    """Per-currency totals for one creator; soft-deleted payouts excluded."""

    currency: str
    total_payouts: int
    successful_payouts: int
    failed_payouts: int
    # not yet completed, failed or cancelled
    pending_payouts: int
    total_paid_out: Decimal
    last_payout_at: Optional[datetime] = None


@dataclass(frozen=True)
class PendingPayoutSummary:
    currency: str
    pending_count: int
    total_amount: Decimal
    oldest_pending: datetime
    newest_pending: datetime
