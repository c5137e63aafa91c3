# app/recipients/store.py
from __future__ import annotations

import threading
from typing import Optional, Protocol

from app.payouts.model import Recipient
from app.recipients import repository
from db import get_conn
from settings import settings


class RecipientStore(Protocol):
    def find(self, *, creator_id: str, detail_hash: str, rail: str) -> Optional[Recipient]: ...

    def insert_if_absent(self, recipient: Recipient) -> tuple[Recipient, bool]: ...


def row_to_recipient(row: dict) -> Recipient:
    return Recipient(
        id=str(row["id"]),
        rail=row["rail"],
        creator_id=row["creator_id"],
        detail_hash=row["detail_hash"],
        provider_recipient_id=row["provider_recipient_id"],
        currency=row["currency"],
        created_at=row["created_at"],
    )


class PostgresRecipientStore:
    def __init__(self, get_conn=get_conn):
        self._get_conn = get_conn

    def find(self, *, creator_id: str, detail_hash: str, rail: str) -> Optional[Recipient]:
        with self._get_conn() as conn:
            row = repository.find_recipient(conn, creator_id=creator_id, detail_hash=detail_hash, rail=rail)
        return row_to_recipient(row) if row else None

    def insert_if_absent(self, recipient: Recipient) -> tuple[Recipient, bool]:
        with self._get_conn() as conn:
            row, created = repository.insert_recipient_if_absent(
                conn,
                recipient_id=recipient.id,
                rail=recipient.rail,
                creator_id=recipient.creator_id,
                detail_hash=recipient.detail_hash,
                provider_recipient_id=recipient.provider_recipient_id,
                currency=recipient.currency,
            )
        return row_to_recipient(row), created


class InMemoryRecipientStore:
    def __init__(self):
        self._lock = threading.Lock()
        self._rows: dict[tuple[str, str, str], Recipient] = {}

    def find(self, *, creator_id: str, detail_hash: str, rail: str) -> Optional[Recipient]:
        with self._lock:
            return self._rows.get((creator_id, detail_hash, rail))

    def insert_if_absent(self, recipient: Recipient) -> tuple[Recipient, bool]:
        key = (recipient.creator_id, recipient.detail_hash, recipient.rail)
        with self._lock:
            existing = self._rows.get(key)
            if existing is not None:
                return existing, False
            self._rows[key] = recipient
        return recipient, True

    def all(self) -> list[Recipient]:
        with self._lock:
            return list(self._rows.values())


_STORE: Optional[RecipientStore] = None


def get_recipient_store() -> RecipientStore:
    global _STORE
    if _STORE is None:
        _STORE = InMemoryRecipientStore() if settings.LEDGER_BACKEND == "memory" else PostgresRecipientStore()
    return _STORE


def reset_recipient_store(store: Optional[RecipientStore] = None) -> None:
    global _STORE
    _STORE = store
