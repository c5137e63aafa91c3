# app/webhooks/reconciler.py
from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Optional

from app.payouts.errors import DuplicateEvent, SignatureInvalid
from app.payouts.model import SOURCE_WEBHOOK, Payout
from app.payouts.state_machine import is_terminal, predecessors
from app.payouts.store import PayoutStore, get_payout_store
from app.webhooks.events import (
    MalformedEvent,
    TransferStateChanged,
    UnknownEvent,
    map_provider_state,
    parse_event,
)
from services.metrics import increment_webhook_event
from settings import settings

logger = logging.getLogger("payouts.webhooks")

# outcome.result values
APPLIED = "applied"
DUPLICATE = "duplicate"
INVALID_SIGNATURE = "invalid_signature"
MALFORMED = "malformed"
IGNORED = "ignored"
NOT_FOUND = "not_found"
IN_FLIGHT = "in_flight"
ANOMALY = "anomaly"
CONFLICT = "conflict"


@dataclass(frozen=True)
class WebhookOutcome:
    result: str
    event_id: Optional[str] = None
    payout_id: Optional[str] = None
    status: Optional[str] = None

    @property
    def applied(self) -> bool:
        return self.result == APPLIED


def verify_signature(raw: bytes, signature_header: Optional[str], secret: Optional[str]) -> None:
    """HMAC-SHA256 hex over the raw body; accepts an optional "sha256=" prefix."""
    if not secret or not secret.strip():
        raise SignatureInvalid("webhook secret not configured", code="WEBHOOK_SECRET_NOT_CONFIGURED")

    if not signature_header or not signature_header.strip():
        raise SignatureInvalid("missing signature header", code="MISSING_SIGNATURE")

    sig = signature_header.strip()
    if sig.lower().startswith("sha256="):
        sig = sig.split("=", 1)[1].strip()

    expected = hmac.new(secret.encode("utf-8"), raw, hashlib.sha256).hexdigest()
    # bytes, so a non-ASCII header is a mismatch rather than a TypeError
    if not hmac.compare_digest(expected.encode("ascii"), sig.lower().encode("utf-8")):
        raise SignatureInvalid("signature mismatch")


class WebhookReconciler:
    def __init__(self, store: PayoutStore, secret: Optional[str] = None):
        self.store = store
        self.secret = secret

    def _secret(self) -> Optional[str]:
        return self.secret if self.secret is not None else settings.WEBHOOK_SECRET

    def handle(self, raw_body: bytes, signature_header: Optional[str]) -> WebhookOutcome:
        """
        Never raises for provider-caused problems: every path ends in a logged
        WebhookOutcome so the HTTP layer can always acknowledge with 200.
        """
        try:
            verify_signature(raw_body, signature_header, self._secret())
        except SignatureInvalid as exc:
            logger.warning("webhook_signature_invalid code=%s error=%s bytes=%s", exc.code, exc, len(raw_body))
            increment_webhook_event(False, INVALID_SIGNATURE)
            return WebhookOutcome(result=INVALID_SIGNATURE)

        try:
            event = parse_event(raw_body)
        except MalformedEvent as exc:
            logger.warning("webhook_malformed error=%s", exc)
            increment_webhook_event(True, MALFORMED)
            return WebhookOutcome(result=MALFORMED)

        if isinstance(event, UnknownEvent):
            logger.info("webhook_ignored event_type=%s event_id=%s", event.event_type, event.event_id)
            increment_webhook_event(True, IGNORED)
            return WebhookOutcome(result=IGNORED, event_id=event.event_id)

        try:
            outcome = self._apply(event)
        except DuplicateEvent as exc:
            logger.info("webhook_duplicate event_id=%s payout_id=%s", event.event_id, exc.payout_id)
            outcome = WebhookOutcome(result=DUPLICATE, event_id=event.event_id, payout_id=exc.payout_id)

        increment_webhook_event(True, outcome.result)
        return outcome

    def _apply(self, event: TransferStateChanged) -> WebhookOutcome:
        payout = self.store.get_by_provider_transfer_id(event.resource_id)
        if payout is None:
            # picked up by the reconcile sweep once the engine records the transfer
            logger.warning(
                "webhook_payout_not_found provider_transfer_id=%s state=%s event_id=%s",
                event.resource_id,
                event.current_state,
                event.event_id,
            )
            return WebhookOutcome(result=NOT_FOUND, event_id=event.event_id)

        if event.event_id in payout.applied_event_ids:
            raise DuplicateEvent(event.event_id, payout_id=payout.id)

        target = map_provider_state(event.current_state)
        if target is None:
            logger.info(
                "webhook_in_flight payout_id=%s state=%s event_id=%s",
                payout.id,
                event.current_state,
                event.event_id,
            )
            return WebhookOutcome(result=IN_FLIGHT, event_id=event.event_id, payout_id=payout.id, status=payout.status)

        if is_terminal(payout.status):
            return self._terminal_conflict(payout, event, target)

        updated = self.store.transition(
            payout.id,
            to_status=target,
            source=SOURCE_WEBHOOK,
            expected=predecessors(target),
            event_id=event.event_id,
            error=None if target != "failed" else f"provider state {event.current_state}",
            last_error=None if target != "failed" else f"provider state {event.current_state}",
            error_code=None if target != "failed" else event.current_state.upper(),
            retryable=False if target == "failed" else None,
        )
        if updated is None:
            # lost a race: another delivery or the engine moved the row first
            current = self.store.get(payout.id, include_deleted=True)
            if current is not None and event.event_id in current.applied_event_ids:
                raise DuplicateEvent(event.event_id, payout_id=payout.id)
            if current is not None and is_terminal(current.status):
                return self._terminal_conflict(current, event, target)
            logger.warning(
                "webhook_transition_conflict payout_id=%s status=%s target=%s event_id=%s",
                payout.id,
                current.status if current else None,
                target,
                event.event_id,
            )
            return WebhookOutcome(
                result=CONFLICT,
                event_id=event.event_id,
                payout_id=payout.id,
                status=current.status if current else None,
            )

        logger.info(
            "webhook_applied payout_id=%s status=%s state=%s event_id=%s",
            updated.id,
            updated.status,
            event.current_state,
            event.event_id,
        )
        return WebhookOutcome(result=APPLIED, event_id=event.event_id, payout_id=updated.id, status=updated.status)

    def _terminal_conflict(self, payout: Payout, event: TransferStateChanged, target: str) -> WebhookOutcome:
        if payout.status == target:
            raise DuplicateEvent(event.event_id, payout_id=payout.id)
        logger.error(
            "webhook_terminal_anomaly payout_id=%s status=%s reported_state=%s event_id=%s",
            payout.id,
            payout.status,
            event.current_state,
            event.event_id,
        )
        return WebhookOutcome(result=ANOMALY, event_id=event.event_id, payout_id=payout.id, status=payout.status)


def handle_webhook(raw_body: bytes, signature_header: Optional[str]) -> WebhookOutcome:
    return WebhookReconciler(get_payout_store()).handle(raw_body, signature_header)
