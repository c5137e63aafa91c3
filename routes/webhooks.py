# routes/webhooks.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse
from starlette.concurrency import run_in_threadpool

from app.webhooks.reconciler import handle_webhook
from schemas import WebhookAck

router = APIRouter(tags=["webhooks"])
logger = logging.getLogger("payouts.webhooks")

SIGNATURE_HEADERS = ("X-Signature", "X-Signature-SHA256")


def _signature(request: Request) -> str | None:
    for name in SIGNATURE_HEADERS:
        value = request.headers.get(name)
        if value:
            return value
    return None


@router.get("/webhook", response_class=PlainTextResponse)
def webhook_check():
    # providers GET the URL once when the subscription is registered
    return "OK"


@router.post("/webhook", response_model=WebhookAck)
async def receive_webhook(request: Request):
    """Always 200; the outcome is reported in the body only."""
    raw = await request.body()
    try:
        outcome = await run_in_threadpool(handle_webhook, raw, _signature(request))
    except Exception:
        logger.exception("webhook_handler_crashed bytes=%s", len(raw))
        return WebhookAck(ok=False, result="error")
    return WebhookAck(ok=outcome.result != "invalid_signature", result=outcome.result, event_id=outcome.event_id)
