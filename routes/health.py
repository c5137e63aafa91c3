from __future__ import annotations

import os

from fastapi import APIRouter

from app.catalog.rails import Rail, load_rail_table
from app.providers.rails.config import missing_config, payout_mode
from db import get_conn
from settings import settings

router = APIRouter(tags=["health"])

MIGRATION_REVISION = "0001_payout_engine_schema"


def _check_db() -> tuple[bool, str | None]:
    if settings.LEDGER_BACKEND == "memory":
        return True, None
    try:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True, None
    except Exception as exc:
        return False, f"{type(exc).__name__}: {exc}"


def _check_migrations() -> bool:
    if settings.LEDGER_BACKEND == "memory":
        return True
    try:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT to_regclass('public.alembic_version');")
                exists = cur.fetchone()[0]
                if not exists:
                    return False
                cur.execute("SELECT version_num FROM alembic_version LIMIT 1;")
                row = cur.fetchone()
                return bool(row and row[0])
    except Exception:
        return False


def _missing_provider_config() -> dict[str, list[str]]:
    if settings.USE_MOCK_PROVIDERS:
        return {}
    out = {}
    for rail in Rail:
        missing = missing_config(rail.value)
        if missing:
            out[rail.value] = missing
    return out


def _resolve_git_sha() -> str | None:
    return (os.getenv("GIT_SHA") or "").strip() or None


@router.get("/healthz")
def healthz():
    db_ok, db_error = _check_db()
    return {
        "ok": True,
        "version": os.getenv("APP_VERSION", "1.0.0"),
        "git_sha": _resolve_git_sha(),
        "db_ok": db_ok,
        "db_error": db_error,
    }


@router.get("/health")
def health():
    return {
        "ok": True,
        "payout_mode": payout_mode(),
        "ledger_backend": settings.LEDGER_BACKEND,
        "rail_table_version": load_rail_table().version,
        "git_sha": _resolve_git_sha(),
    }


@router.get("/readyz")
def readyz():
    db_ok, db_error = _check_db()
    migrations_ok = _check_migrations()
    missing = _missing_provider_config()
    ready = bool(db_ok and migrations_ok and not missing)
    return {
        "ready": ready,
        "version": os.getenv("APP_VERSION", "1.0.0"),
        "db_ok": db_ok,
        "db_error": db_error,
        "migrations_ok": migrations_ok,
        "migration_revision": MIGRATION_REVISION,
        "missing_provider_config": missing,
    }
