# app/payouts/store.py
from __future__ import annotations

import logging
import threading
from collections import defaultdict
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Iterable, Optional, Protocol

from psycopg2.errors import UniqueViolation

from app.payouts import repository
from app.payouts.errors import RetryNotAllowed
from app.payouts.model import (
    COMPLETED,
    FAILED,
    BankDetails,
    CreatorPayoutStats,
    Payout,
    PendingPayoutSummary,
    StatusHistoryEntry,
)
from app.payouts.state_machine import is_terminal, predecessors
from db import get_conn
from services.metrics import increment_payout_transition
from settings import settings

logger = logging.getLogger("payouts.ledger")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PayoutStore(Protocol):
    def create(self, payout: Payout) -> Payout: ...

    def get(self, payout_id: str, *, include_deleted: bool = False) -> Optional[Payout]: ...

    def get_by_provider_transfer_id(self, provider_transfer_id: str) -> Optional[Payout]: ...

    def get_retry_of(self, payout_id: str) -> Optional[Payout]: ...

    def get_by_reference(self, reference: str) -> Optional[Payout]: ...

    def list_for_creator(self, creator_id: str, *, limit: int = 100) -> list[Payout]: ...

    def creator_stats(self, creator_id: str) -> list[CreatorPayoutStats]: ...

    def pending_summary(self) -> list[PendingPayoutSummary]: ...

    def list_stale_unsettled(self, *, batch_size: int, stale_after_seconds: int) -> list[Payout]: ...

    def transition(
        self,
        payout_id: str,
        *,
        to_status: str,
        source: str,
        expected: Optional[Iterable[str]] = None,
        error: Optional[str] = None,
        event_id: Optional[str] = None,
        **changes: Any,
    ) -> Optional[Payout]: ...

    def attach_transfer(self, payout_id: str, *, provider_transfer_id: str, fee: Optional[Decimal] = None) -> bool: ...

    def soft_delete(self, payout_id: str) -> bool: ...


_CHANGE_FIELDS = ("rail", "recipient_id", "provider_transfer_id", "fee", "last_error", "error_code", "retryable")


def _check_changes(changes: dict[str, Any]) -> None:
    unknown = set(changes) - set(_CHANGE_FIELDS)
    if unknown:
        raise TypeError(f"transition() got unexpected fields: {sorted(unknown)}")


def _str_or_none(value: Any) -> Optional[str]:
    return str(value) if value is not None else None


def row_to_payout(row: dict[str, Any]) -> Payout:
    bank = row.get("bank_details")
    fee = row.get("fee")
    return Payout(
        id=str(row["id"]),
        creator_id=row["creator_id"],
        amount=Decimal(row["amount"]),
        currency=row["currency"],
        status=row["status"],
        reference=row["reference"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        rail=row.get("rail"),
        recipient_id=_str_or_none(row.get("recipient_id")),
        provider_transfer_id=row.get("provider_transfer_id"),
        fee=Decimal(fee) if fee is not None else None,
        bank_details=BankDetails.from_dict(bank) if bank else None,
        reason=row.get("reason"),
        metadata=row.get("metadata") or {},
        status_history=tuple(StatusHistoryEntry.from_dict(e) for e in (row.get("status_history") or [])),
        applied_event_ids=tuple(row.get("applied_event_ids") or ()),
        last_error=row.get("last_error"),
        error_code=row.get("error_code"),
        retryable=row.get("retryable"),
        retry_of=_str_or_none(row.get("retry_of")),
        deleted_at=row.get("deleted_at"),
    )


class PostgresPayoutStore:
    """Payout ledger on payout_engine.payouts; every call is its own transaction."""

    def __init__(self, get_conn=get_conn):
        self._get_conn = get_conn

    def create(self, payout: Payout) -> Payout:
        try:
            with self._get_conn() as conn:
                row = repository.insert_payout(
                    conn,
                    payout_id=payout.id,
                    creator_id=payout.creator_id,
                    amount=payout.amount,
                    currency=payout.currency,
                    reference=payout.reference,
                    status=payout.status,
                    status_history=[e.as_dict() for e in payout.status_history],
                    bank_details=payout.bank_details.as_dict() if payout.bank_details else None,
                    reason=payout.reason,
                    metadata=payout.metadata,
                    retry_of=payout.retry_of,
                )
        except UniqueViolation as exc:
            if payout.retry_of:
                raise RetryNotAllowed(f"Payout {payout.retry_of} was already retried") from exc
            raise
        return row_to_payout(row)

    def get(self, payout_id: str, *, include_deleted: bool = False) -> Optional[Payout]:
        with self._get_conn() as conn:
            row = repository.get_payout(conn, payout_id, include_deleted=include_deleted)
        return row_to_payout(row) if row else None

    def get_by_provider_transfer_id(self, provider_transfer_id: str) -> Optional[Payout]:
        with self._get_conn() as conn:
            row = repository.get_payout_by_provider_transfer_id(conn, provider_transfer_id)
        return row_to_payout(row) if row else None

    def get_retry_of(self, payout_id: str) -> Optional[Payout]:
        with self._get_conn() as conn:
            row = repository.get_payout_by_retry_of(conn, payout_id)
        return row_to_payout(row) if row else None

    def list_for_creator(self, creator_id: str, *, limit: int = 100) -> list[Payout]:
        with self._get_conn() as conn:
            rows = repository.list_payouts_for_creator(conn, creator_id, limit=limit)
        return [row_to_payout(r) for r in rows]

    def get_by_reference(self, reference: str) -> Optional[Payout]:
        with self._get_conn() as conn:
            row = repository.get_latest_payout_by_reference(conn, reference)
        return row_to_payout(row) if row else None

    def creator_stats(self, creator_id: str) -> list[CreatorPayoutStats]:
        with self._get_conn() as conn:
            rows = repository.creator_payout_stats(conn, creator_id)
        return [
            CreatorPayoutStats(
                currency=r["currency"],
                total_payouts=int(r["total_payouts"]),
                successful_payouts=int(r["successful_payouts"]),
                failed_payouts=int(r["failed_payouts"]),
                pending_payouts=int(r["pending_payouts"]),
                total_paid_out=Decimal(r["total_paid_out"]),
                last_payout_at=r.get("last_payout_at"),
            )
            for r in rows
        ]

    def pending_summary(self) -> list[PendingPayoutSummary]:
        with self._get_conn() as conn:
            rows = repository.pending_payouts_summary(conn)
        return [
            PendingPayoutSummary(
                currency=r["currency"],
                pending_count=int(r["pending_count"]),
                total_amount=Decimal(r["total_amount"]),
                oldest_pending=r["oldest_pending"],
                newest_pending=r["newest_pending"],
            )
            for r in rows
        ]

    def list_stale_unsettled(self, *, batch_size: int, stale_after_seconds: int) -> list[Payout]:
        with self._get_conn() as conn:
            rows = repository.list_stale_unsettled(
                conn, batch_size=batch_size, stale_after_seconds=stale_after_seconds
            )
        return [row_to_payout(r) for r in rows]

    def transition(
        self,
        payout_id: str,
        *,
        to_status: str,
        source: str,
        expected: Optional[Iterable[str]] = None,
        error: Optional[str] = None,
        event_id: Optional[str] = None,
        **changes: Any,
    ) -> Optional[Payout]:
        _check_changes(changes)
        entry = StatusHistoryEntry(status=to_status, timestamp=_utcnow(), source=source, error=error)
        with self._get_conn() as conn:
            row = repository.transition_status(
                conn,
                payout_id=payout_id,
                new_status=to_status,
                expected=expected if expected is not None else predecessors(to_status),
                history_entry=entry.as_dict(),
                event_id=event_id,
                **changes,
            )
        if row is None:
            return None
        increment_payout_transition(to_status, source)
        return row_to_payout(row)

    def attach_transfer(self, payout_id: str, *, provider_transfer_id: str, fee: Optional[Decimal] = None) -> bool:
        with self._get_conn() as conn:
            return repository.attach_transfer(
                conn, payout_id=payout_id, provider_transfer_id=provider_transfer_id, fee=fee
            )

    def soft_delete(self, payout_id: str) -> bool:
        with self._get_conn() as conn:
            return repository.soft_delete_payout(conn, payout_id=payout_id)


class InMemoryPayoutStore:
    """
    Same contract as PostgresPayoutStore, kept in a dict behind one lock.
    Used by tests and LEDGER_BACKEND=memory.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._rows: dict[str, Payout] = {}

    def create(self, payout: Payout) -> Payout:
        with self._lock:
            if payout.id in self._rows:
                raise ValueError(f"Duplicate payout id {payout.id}")
            if payout.retry_of and any(p.retry_of == payout.retry_of for p in self._rows.values()):
                raise RetryNotAllowed(f"Payout {payout.retry_of} was already retried")
            self._rows[payout.id] = payout
        return payout

    def get(self, payout_id: str, *, include_deleted: bool = False) -> Optional[Payout]:
        with self._lock:
            p = self._rows.get(payout_id)
        if p is None or (p.is_deleted and not include_deleted):
            return None
        return p

    def get_by_provider_transfer_id(self, provider_transfer_id: str) -> Optional[Payout]:
        with self._lock:
            matches = [p for p in self._rows.values() if p.provider_transfer_id == provider_transfer_id]
        if not matches:
            return None
        return max(matches, key=lambda p: p.created_at)

    def get_retry_of(self, payout_id: str) -> Optional[Payout]:
        with self._lock:
            for p in self._rows.values():
                if p.retry_of == payout_id:
                    return p
        return None

    def list_for_creator(self, creator_id: str, *, limit: int = 100) -> list[Payout]:
        with self._lock:
            rows = [p for p in self._rows.values() if p.creator_id == creator_id and not p.is_deleted]
        rows.sort(key=lambda p: p.created_at, reverse=True)
        return rows[:limit]

    def get_by_reference(self, reference: str) -> Optional[Payout]:
        with self._lock:
            matches = [p for p in self._rows.values() if p.reference == reference and not p.is_deleted]
        if not matches:
            return None
        return max(matches, key=lambda p: p.created_at)

    def creator_stats(self, creator_id: str) -> list[CreatorPayoutStats]:
        by_currency: dict[str, list[Payout]] = defaultdict(list)
        with self._lock:
            for p in self._rows.values():
                if p.creator_id == creator_id and not p.is_deleted:
                    by_currency[p.currency].append(p)

        stats = []
        for currency in sorted(by_currency):
            rows = by_currency[currency]
            completed = [p for p in rows if p.status == COMPLETED]
            stats.append(
                CreatorPayoutStats(
                    currency=currency,
                    total_payouts=len(rows),
                    successful_payouts=len(completed),
                    failed_payouts=sum(1 for p in rows if p.status == FAILED),
                    pending_payouts=sum(1 for p in rows if not is_terminal(p.status)),
                    total_paid_out=sum((p.amount for p in completed), Decimal("0")),
                    last_payout_at=max((p.updated_at for p in completed), default=None),
                )
            )
        return stats

    def pending_summary(self) -> list[PendingPayoutSummary]:
        by_currency: dict[str, list[Payout]] = defaultdict(list)
        with self._lock:
            for p in self._rows.values():
                if not is_terminal(p.status) and not p.is_deleted:
                    by_currency[p.currency].append(p)

        return [
            PendingPayoutSummary(
                currency=currency,
                pending_count=len(rows),
                total_amount=sum((p.amount for p in rows), Decimal("0")),
                oldest_pending=min(p.created_at for p in rows),
                newest_pending=max(p.created_at for p in rows),
            )
            for currency, rows in sorted(by_currency.items())
        ]

    def list_stale_unsettled(self, *, batch_size: int, stale_after_seconds: int) -> list[Payout]:
        cutoff = _utcnow() - timedelta(seconds=stale_after_seconds)
        with self._lock:
            rows = [p for p in self._rows.values() if not is_terminal(p.status) and p.updated_at <= cutoff]
        rows.sort(key=lambda p: p.updated_at)
        return rows[:batch_size]

    def transition(
        self,
        payout_id: str,
        *,
        to_status: str,
        source: str,
        expected: Optional[Iterable[str]] = None,
        error: Optional[str] = None,
        event_id: Optional[str] = None,
        **changes: Any,
    ) -> Optional[Payout]:
        _check_changes(changes)
        allowed = set(expected) if expected is not None else predecessors(to_status)
        now = _utcnow()

        with self._lock:
            current = self._rows.get(payout_id)
            if current is None or current.status not in allowed:
                return None
            if event_id is not None and event_id in current.applied_event_ids:
                return None

            updates: dict[str, Any] = {k: v for k, v in changes.items() if v is not None}
            updated = replace(
                current,
                status=to_status,
                status_history=current.status_history
                + (StatusHistoryEntry(status=to_status, timestamp=now, source=source, error=error),),
                applied_event_ids=current.applied_event_ids + ((event_id,) if event_id else ()),
                updated_at=now,
                **updates,
            )
            self._rows[payout_id] = updated

        increment_payout_transition(to_status, source)
        return updated

    def attach_transfer(self, payout_id: str, *, provider_transfer_id: str, fee: Optional[Decimal] = None) -> bool:
        with self._lock:
            current = self._rows.get(payout_id)
            if current is None or current.provider_transfer_id:
                return False
            self._rows[payout_id] = replace(
                current,
                provider_transfer_id=provider_transfer_id,
                fee=fee if fee is not None else current.fee,
                updated_at=_utcnow(),
            )
        return True

    def soft_delete(self, payout_id: str) -> bool:
        with self._lock:
            current = self._rows.get(payout_id)
            if current is None or current.is_deleted:
                return False
            now = _utcnow()
            self._rows[payout_id] = replace(current, deleted_at=now, updated_at=now)
        return True

    # test helper: age a row so the reconcile sweep picks it up
    def backdate(self, payout_id: str, *, seconds: int) -> None:
        with self._lock:
            current = self._rows[payout_id]
            self._rows[payout_id] = replace(current, updated_at=current.updated_at - timedelta(seconds=seconds))


_STORE: Optional[PayoutStore] = None


def get_payout_store() -> PayoutStore:
    global _STORE
    if _STORE is None:
        if settings.LEDGER_BACKEND == "memory":
            _STORE = InMemoryPayoutStore()
        else:
            _STORE = PostgresPayoutStore()
        logger.info("payout_store_initialized backend=%s", settings.LEDGER_BACKEND)
    return _STORE


def reset_payout_store(store: Optional[PayoutStore] = None) -> None:
    global _STORE
    _STORE = store
