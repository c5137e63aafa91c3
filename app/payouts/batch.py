# app/payouts/batch.py
from __future__ import annotations

import contextvars
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Optional, Sequence

from app.payouts.errors import PayoutError
from app.payouts.model import PayoutRequest, PayoutResult
from app.payouts.service import PayoutService, failure_result, get_service
from settings import settings

logger = logging.getLogger("payouts.batch")


@dataclass(frozen=True)
class BatchSummary:
    total: int
    successful: int
    failed: int
    retryable_failures: int
    # successful amounts per currency
    totals: dict[str, Decimal] = field(default_factory=dict)


def summarize(requests: Sequence[PayoutRequest], results: Sequence[PayoutResult]) -> BatchSummary:
    totals: dict[str, Decimal] = {}
    for req, res in zip(requests, results):
        if res.success:
            cur = (req.currency or "").upper()
            totals[cur] = totals.get(cur, Decimal("0")) + Decimal(str(req.amount))
    failed = [r for r in results if not r.success]
    return BatchSummary(
        total=len(results),
        successful=len(results) - len(failed),
        failed=len(failed),
        retryable_failures=sum(1 for r in failed if r.retryable),
        totals=totals,
    )


class BatchCoordinator:
    """
    Fans requests out over a pool of `max_concurrent` threads. Every item gets
    exactly one PayoutResult, in input order; a failing item never stops its
    siblings.
    """

    def __init__(self, submit: Callable[[PayoutRequest], PayoutResult]):
        self.submit = submit

    @classmethod
    def for_service(cls, service: PayoutService) -> "BatchCoordinator":
        return cls(service.submit)

    def _run_one(self, index: int, req: PayoutRequest) -> PayoutResult:
        try:
            return self.submit(req)
        except PayoutError as exc:
            logger.info("batch_item_rejected index=%s code=%s error=%s", index, exc.code, exc)
            return failure_result(exc.payout_id, exc)
        except Exception as exc:
            logger.exception("batch_item_crashed index=%s", index)
            return failure_result(getattr(exc, "payout_id", None), exc)

    def run(self, requests: Sequence[PayoutRequest], max_concurrent: Optional[int] = None) -> list[PayoutResult]:
        workers = int(max_concurrent if max_concurrent is not None else settings.BATCH_MAX_CONCURRENT)
        if workers < 1:
            raise ValueError("max_concurrent must be >= 1")
        if not requests:
            return []

        logger.info("batch_started items=%s max_concurrent=%s", len(requests), workers)
        with ThreadPoolExecutor(max_workers=min(workers, len(requests)), thread_name_prefix="payout-batch") as pool:
            # copy_context keeps the request id on worker-thread log lines
            futures = [
                pool.submit(contextvars.copy_context().run, self._run_one, i, req)
                for i, req in enumerate(requests)
            ]
            results = [f.result() for f in futures]

        summary = summarize(requests, results)
        logger.info(
            "batch_finished total=%s successful=%s failed=%s retryable_failures=%s",
            summary.total,
            summary.successful,
            summary.failed,
            summary.retryable_failures,
        )
        return results


def run_batch(
    requests: Sequence[PayoutRequest],
    max_concurrent: Optional[int] = None,
    *,
    service: Optional[PayoutService] = None,
) -> list[PayoutResult]:
    if service is None:
        service = get_service()
    return BatchCoordinator.for_service(service).run(requests, max_concurrent)
