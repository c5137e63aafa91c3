# app/workers/reconcile_worker.py
from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from app.payouts.errors import PayoutError
from app.payouts.model import FAILED, PROCESSING, SOURCE_RECONCILE, TRANSFER_CREATING, Payout
from app.payouts.store import PayoutStore, get_payout_store
from app.providers.base import RailProvider
from app.providers.rails.factory import get_provider
from app.webhooks.events import map_provider_state
from services.metrics import increment_provider_call
from settings import settings

logger = logging.getLogger("payouts.reconcile")

STALLED = "STALLED"


def _fail_stalled(store: PayoutStore, p: Payout) -> bool:
    """
    No transfer id was recorded before the engine stopped driving this payout.
    Failed as retryable; a retry reuses the reference, so any transfer the
    provider did create is handed back rather than duplicated.
    """
    error = f"stalled in {p.status}"
    updated = store.transition(
        p.id,
        to_status=FAILED,
        source=SOURCE_RECONCILE,
        expected={p.status},
        error=error,
        last_error=error,
        error_code=STALLED,
        retryable=True,
    )
    if updated is None:
        logger.info("reconcile_skipped payout_id=%s target=%s", p.id, FAILED)
        return False
    logger.warning("reconcile_stalled_failed payout_id=%s stalled_in=%s", p.id, p.status)
    return True


def _reconcile_one(store: PayoutStore, provider_for: Callable[[str], RailProvider], p: Payout) -> bool:
    if not p.provider_transfer_id:
        return _fail_stalled(store, p)
    if not p.rail:
        return False

    try:
        res = provider_for(p.rail).get_transfer_status(p.provider_transfer_id)
    except PayoutError as exc:
        increment_provider_call(p.rail, "get_transfer_status", "error")
        logger.warning(
            "reconcile_poll_failed payout_id=%s provider_transfer_id=%s code=%s error=%s",
            p.id,
            p.provider_transfer_id,
            exc.code,
            exc,
        )
        return False
    increment_provider_call(p.rail, "get_transfer_status", "ok")

    if res.error:
        logger.warning(
            "reconcile_status_error payout_id=%s provider_transfer_id=%s error=%s",
            p.id,
            p.provider_transfer_id,
            res.error,
        )
        return False

    target = map_provider_state(res.state)
    if target is None:
        if p.status == TRANSFER_CREATING:
            # transfer exists and is moving; record what the engine never got to
            target = PROCESSING
        else:
            logger.info("reconcile_still_in_flight payout_id=%s state=%s", p.id, res.state)
            return False

    error = f"provider state {res.state}" if target == FAILED else None
    updated = store.transition(
        p.id,
        to_status=target,
        source=SOURCE_RECONCILE,
        expected={p.status},
        error=error,
        last_error=error,
        error_code=res.state.upper() if target == FAILED else None,
        retryable=False if target == FAILED else None,
    )
    if updated is None:
        # a webhook got there first
        logger.info("reconcile_skipped payout_id=%s target=%s", p.id, target)
        return False

    logger.info(
        "reconcile_applied payout_id=%s status=%s provider_state=%s",
        updated.id,
        updated.status,
        res.state,
    )
    return True


def reconcile_once(
    *,
    store: Optional[PayoutStore] = None,
    provider_for: Optional[Callable[[str], RailProvider]] = None,
    batch_size: Optional[int] = None,
    stale_seconds: Optional[int] = None,
) -> int:
    """
    Sweep payouts left unsettled for longer than `stale_seconds`.

    Rows carrying a provider transfer id are polled and moved to what the
    provider reports; rows that never got one are failed as retryable.
    Returns how many payouts moved.
    """
    store = store or get_payout_store()
    provider_for = provider_for or get_provider
    batch_size = int(batch_size if batch_size is not None else settings.RECONCILE_BATCH_SIZE)
    stale_seconds = int(stale_seconds if stale_seconds is not None else settings.RECONCILE_STALE_SECONDS)

    stale = store.list_stale_unsettled(batch_size=batch_size, stale_after_seconds=stale_seconds)
    logger.info("reconcile_started stale=%s stale_seconds=%s", len(stale), stale_seconds)

    moved = 0
    for p in stale:
        if _reconcile_one(store, provider_for, p):
            moved += 1

    logger.info("reconcile_finished checked=%s moved=%s", len(stale), moved)
    return moved


def run_forever(*, interval_s: Optional[float] = None, sleep: Callable[[float], object] = time.sleep) -> None:
    interval = float(interval_s if interval_s is not None else settings.RECONCILE_INTERVAL_S)
    logger.info("reconcile_worker_starting interval=%ss", interval)
    while True:
        try:
            reconcile_once()
        except KeyboardInterrupt:
            logger.info("reconcile_worker_exiting")
            raise
        except Exception:
            logger.exception("reconcile_worker_pass_failed")
        sleep(interval)
