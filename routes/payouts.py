# routes/payouts.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Response

from app.catalog.rails import load_rail_table
from app.payouts.batch import run_batch, summarize
from app.payouts.service import get_service
from deps.auth import require_internal_caller
from schemas import (
    BatchCreate,
    BatchResponse,
    BatchSummaryOut,
    CreatorPayoutStatsOut,
    CreatorStatsResponse,
    PayoutCreate,
    PayoutListResponse,
    PayoutOut,
    PayoutResultOut,
    PendingSummaryOut,
    PendingSummaryResponse,
)

logger = logging.getLogger("payouts.api")

# PayoutError raised below is mapped to a status code by the app-wide handler
# (services/http_errors.py)
router = APIRouter(prefix="/v1", tags=["payouts"], dependencies=[Depends(require_internal_caller)])


@router.get("/payouts/rails")
def get_rail_catalog():
    return load_rail_table().as_dict()


@router.get("/payouts/pending-summary", response_model=PendingSummaryResponse)
def get_pending_summary():
    return PendingSummaryResponse(summary=[PendingSummaryOut.from_summary(s) for s in get_service().pending_summary()])


@router.get("/payouts/by-reference/{reference}", response_model=PayoutOut)
def get_payout_by_reference(reference: str):
    return PayoutOut.from_payout(get_service().get_by_reference(reference))


@router.post("/payouts", response_model=PayoutResultOut, status_code=201)
def create_payout(body: PayoutCreate):
    result = get_service().submit(body.to_request())
    return PayoutResultOut.from_result(result)


@router.post("/payouts/batch", response_model=BatchResponse)
def create_payout_batch(body: BatchCreate):
    requests = [item.to_request() for item in body.items]
    results = run_batch(requests, body.max_concurrent, service=get_service())
    logger.info("batch_request items=%s", len(requests))
    return BatchResponse(
        results=[PayoutResultOut.from_result(r) for r in results],
        summary=BatchSummaryOut.from_summary(summarize(requests, results)),
    )


@router.get("/payouts/{payout_id}", response_model=PayoutOut)
def get_payout(payout_id: str):
    return PayoutOut.from_payout(get_service().get(payout_id))


@router.post("/payouts/{payout_id}/retry", response_model=PayoutResultOut, status_code=201)
def retry_payout(payout_id: str):
    return PayoutResultOut.from_result(get_service().retry(payout_id))


@router.delete("/payouts/{payout_id}", status_code=204)
def delete_payout(payout_id: str):
    get_service().soft_delete(payout_id)
    return Response(status_code=204)


@router.get("/creators/{creator_id}/payouts", response_model=PayoutListResponse)
def list_creator_payouts(creator_id: str, limit: int = Query(default=50, ge=1, le=200)):
    payouts = get_service().list_for_creator(creator_id, limit=limit)
    return PayoutListResponse(creator_id=creator_id, payouts=[PayoutOut.from_payout(p) for p in payouts])


@router.get("/creators/{creator_id}/payouts/stats", response_model=CreatorStatsResponse)
def get_creator_payout_stats(creator_id: str):
    stats = get_service().creator_stats(creator_id)
    return CreatorStatsResponse(creator_id=creator_id, stats=[CreatorPayoutStatsOut.from_stats(s) for s in stats])
