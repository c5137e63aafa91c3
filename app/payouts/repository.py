# app/payouts/repository.py
from __future__ import annotations

from decimal import Decimal
from typing import Any, Iterable, Optional

from psycopg2.extras import Json, RealDictCursor

PAYOUT_COLUMNS = """
  id,
  creator_id,
  amount,
  currency,
  rail,
  recipient_id,
  provider_transfer_id,
  fee,
  reference,
  reason,
  bank_details,
  metadata,
  status,
  status_history,
  applied_event_ids,
  last_error,
  error_code,
  retryable,
  retry_of,
  created_at,
  updated_at,
  deleted_at
"""


# ==========================================================
# Inserts
# ==========================================================

def insert_payout(
    conn,
    *,
    payout_id: str,
    creator_id: str,
    amount: Decimal,
    currency: str,
    reference: str,
    status: str,
    status_history: list[dict[str, Any]],
    bank_details: Optional[dict[str, Any]] = None,
    reason: Optional[str] = None,
    metadata: Optional[dict[str, Any]] = None,
    retry_of: Optional[str] = None,
) -> dict:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            INSERT INTO payout_engine.payouts (
              id, creator_id, amount, currency, reference, status,
              status_history, bank_details, reason, metadata, retry_of
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s::jsonb, %s::jsonb, %s, %s::jsonb, %s)
            RETURNING {PAYOUT_COLUMNS}
            """,
            (
                payout_id,
                creator_id,
                amount,
                currency,
                reference,
                status,
                Json(status_history),
                Json(bank_details) if bank_details is not None else None,
                reason,
                Json(metadata or {}),
                retry_of,
            ),
        )
        return dict(cur.fetchone())


# ==========================================================
# Updates
# ==========================================================

def transition_status(
    conn,
    *,
    payout_id: str,
    new_status: str,
    expected: Iterable[str],
    history_entry: dict[str, Any],
    event_id: Optional[str] = None,
    rail: Optional[str] = None,
    recipient_id: Optional[str] = None,
    provider_transfer_id: Optional[str] = None,
    fee: Optional[Decimal] = None,
    last_error: Optional[str] = None,
    error_code: Optional[str] = None,
    retryable: Optional[bool] = None,
) -> Optional[dict]:
    """
    Single conditional UPDATE: moves status only from an expected predecessor,
    appends exactly one history entry, and records `event_id` (if any) in the
    same statement so a redelivered callback matches zero rows.
    """
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            UPDATE payout_engine.payouts
            SET
              status = %(new_status)s,
              status_history = status_history || %(entry)s::jsonb,
              applied_event_ids = CASE
                WHEN %(event_id)s::text IS NULL THEN applied_event_ids
                ELSE applied_event_ids || to_jsonb(%(event_id)s::text)
              END,
              rail = COALESCE(%(rail)s, rail),
              recipient_id = COALESCE(%(recipient_id)s::uuid, recipient_id),
              provider_transfer_id = COALESCE(%(provider_transfer_id)s, provider_transfer_id),
              fee = COALESCE(%(fee)s, fee),
              last_error = COALESCE(%(last_error)s, last_error),
              error_code = COALESCE(%(error_code)s, error_code),
              retryable = COALESCE(%(retryable)s, retryable),
              updated_at = now()
            WHERE id = %(payout_id)s
              AND status = ANY(%(expected)s)
              AND (%(event_id)s::text IS NULL OR NOT (applied_event_ids ? %(event_id)s::text))
            RETURNING {PAYOUT_COLUMNS}
            """,
            {
                "new_status": new_status,
                "entry": Json([history_entry]),
                "event_id": event_id,
                "rail": rail,
                "recipient_id": recipient_id,
                "provider_transfer_id": provider_transfer_id,
                "fee": fee,
                "last_error": last_error,
                "error_code": error_code,
                "retryable": retryable,
                "payout_id": payout_id,
                "expected": list(expected),
            },
        )
        row = cur.fetchone()
        return dict(row) if row else None


def attach_transfer(conn, *, payout_id: str, provider_transfer_id: str, fee: Optional[Decimal] = None) -> bool:
    """
    Not a status change: records the provider transfer id as soon as the
    provider returns it. First writer wins.
    """
    cur = conn.cursor()
    cur.execute(
        """
        UPDATE payout_engine.payouts
        SET
          provider_transfer_id = %s,
          fee = COALESCE(%s, fee),
          updated_at = now()
        WHERE id = %s
          AND provider_transfer_id IS NULL
        """,
        (provider_transfer_id, fee, payout_id),
    )
    return cur.rowcount == 1


def soft_delete_payout(conn, *, payout_id: str) -> bool:
    cur = conn.cursor()
    cur.execute(
        """
        UPDATE payout_engine.payouts
        SET deleted_at = now(), updated_at = now()
        WHERE id = %s
          AND deleted_at IS NULL
        """,
        (payout_id,),
    )
    return cur.rowcount == 1


# ==========================================================
# Reads
# ==========================================================

def get_payout(conn, payout_id: str, *, include_deleted: bool = False) -> dict | None:
    deleted_filter = "" if include_deleted else "AND deleted_at IS NULL"
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {PAYOUT_COLUMNS}
            FROM payout_engine.payouts
            WHERE id = %s
            {deleted_filter}
            """,
            (payout_id,),
        )
        row = cur.fetchone()
        return dict(row) if row else None


def get_payout_by_provider_transfer_id(conn, provider_transfer_id: str) -> dict | None:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {PAYOUT_COLUMNS}
            FROM payout_engine.payouts
            WHERE provider_transfer_id = %s
            ORDER BY created_at DESC
            LIMIT 1
            """,
            (provider_transfer_id,),
        )
        row = cur.fetchone()
        return dict(row) if row else None


def get_payout_by_retry_of(conn, payout_id: str) -> dict | None:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {PAYOUT_COLUMNS}
            FROM payout_engine.payouts
            WHERE retry_of = %s
            LIMIT 1
            """,
            (payout_id,),
        )
        row = cur.fetchone()
        return dict(row) if row else None


def list_payouts_for_creator(conn, creator_id: str, *, limit: int = 100) -> list[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {PAYOUT_COLUMNS}
            FROM payout_engine.payouts
            WHERE creator_id = %s
              AND deleted_at IS NULL
            ORDER BY created_at DESC
            LIMIT %s
            """,
            (creator_id, limit),
        )
        return [dict(r) for r in cur.fetchall()]


def list_stale_unsettled(conn, *, batch_size: int, stale_after_seconds: int) -> list[dict]:
    """Non-terminal payouts not touched for `stale_after_seconds`, oldest first."""
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {PAYOUT_COLUMNS}
            FROM payout_engine.payouts
            WHERE status IN ('pending', 'recipient_resolving', 'transfer_creating', 'processing')
              AND updated_at <= (now() - (%s || ' seconds')::interval)
            ORDER BY updated_at ASC
            LIMIT %s
            """,
            (stale_after_seconds, batch_size),
        )
        return [dict(r) for r in cur.fetchall()]


def get_latest_payout_by_reference(conn, reference: str) -> dict | None:
    """A retry shares its original's reference; the newest active row wins."""
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {PAYOUT_COLUMNS}
            FROM payout_engine.payouts
            WHERE reference = %s
              AND deleted_at IS NULL
            ORDER BY created_at DESC
            LIMIT 1
            """,
            (reference,),
        )
        row = cur.fetchone()
        return dict(row) if row else None


# ==========================================================
# Reporting
# ==========================================================

def creator_payout_stats(conn, creator_id: str) -> list[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT
              currency,
              COUNT(*) AS total_payouts,
              COUNT(*) FILTER (WHERE status = 'completed') AS successful_payouts,
              COUNT(*) FILTER (WHERE status = 'failed') AS failed_payouts,
              COUNT(*) FILTER (
                WHERE status IN ('pending', 'recipient_resolving', 'transfer_creating', 'processing')
              ) AS pending_payouts,
              COALESCE(SUM(amount) FILTER (WHERE status = 'completed'), 0) AS total_paid_out,
              MAX(updated_at) FILTER (WHERE status = 'completed') AS last_payout_at
            FROM payout_engine.payouts
            WHERE creator_id = %s
              AND deleted_at IS NULL
            GROUP BY currency
            ORDER BY currency
            """,
            (creator_id,),
        )
        return [dict(r) for r in cur.fetchall()]


def pending_payouts_summary(conn) -> list[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT
              currency,
              COUNT(*) AS pending_count,
              SUM(amount) AS total_amount,
              MIN(created_at) AS oldest_pending,
              MAX(created_at) AS newest_pending
            FROM payout_engine.payouts
            WHERE status IN ('pending', 'recipient_resolving', 'transfer_creating', 'processing')
              AND deleted_at IS NULL
            GROUP BY currency
            ORDER BY currency
            """
        )
        return [dict(r) for r in cur.fetchall()]
