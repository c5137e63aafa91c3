# app/recipients/repository.py
from __future__ import annotations

from psycopg2.extras import RealDictCursor

RECIPIENT_COLUMNS = "id, rail, creator_id, detail_hash, provider_recipient_id, currency, created_at"


def find_recipient(conn, *, creator_id: str, detail_hash: str, rail: str) -> dict | None:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {RECIPIENT_COLUMNS}
            FROM payout_engine.recipients
            WHERE creator_id = %s
              AND detail_hash = %s
              AND rail = %s
            ORDER BY created_at ASC
            LIMIT 1
            """,
            (creator_id, detail_hash, rail),
        )
        row = cur.fetchone()
        return dict(row) if row else None


def insert_recipient_if_absent(
    conn,
    *,
    recipient_id: str,
    rail: str,
    creator_id: str,
    detail_hash: str,
    provider_recipient_id: str,
    currency: str,
) -> tuple[dict, bool]:
    """
    Conditional insert on (creator_id, detail_hash, rail).
    Returns (row, created); created=False means another writer got there first
    and `row` is theirs.
    """
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            INSERT INTO payout_engine.recipients (
              id, rail, creator_id, detail_hash, provider_recipient_id, currency
            )
            VALUES (%s, %s, %s, %s, %s, %s)
            ON CONFLICT (creator_id, detail_hash, rail) DO NOTHING
            RETURNING {RECIPIENT_COLUMNS}
            """,
            (recipient_id, rail, creator_id, detail_hash, provider_recipient_id, currency),
        )
        row = cur.fetchone()
        if row:
            return dict(row), True

    existing = find_recipient(conn, creator_id=creator_id, detail_hash=detail_hash, rail=rail)
    if existing is None:
        raise RuntimeError("recipient insert conflicted but no row found")
    return existing, False
