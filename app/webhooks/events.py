# app/webhooks/events.py
from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from app.payouts.model import COMPLETED, FAILED

# bank-transfer rail
TRANSFER_STATE_CHANGE = "transfers#state-change"
# connected-account rail: state is implied by the event type
CONNECT_TRANSFER_EVENTS = {
    "transfer.paid": "paid",
    "transfer.failed": "failed",
    "transfer.reversed": "reversed",
}

_COMPLETED_STATES = {"outgoing_payment_sent", "paid", "completed"}
_FAILED_STATES = {
    "bounced_back",
    "funds_refunded",
    "charged_back",
    "cancelled",
    "canceled",
    "failed",
    "reversed",
}


def map_provider_state(state: str | None) -> Optional[str]:
    """
    Provider transfer state -> payout status. None for in-flight states
    (incoming_payment_waiting, processing, funds_converted, ...).
    """
    s = (state or "").strip().lower()
    if s in _COMPLETED_STATES:
        return COMPLETED
    if s in _FAILED_STATES:
        return FAILED
    return None


@dataclass(frozen=True)
class TransferStateChanged:
    event_id: str
    event_type: str
    resource_id: str
    current_state: str
    occurred_at: Optional[str] = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass(frozen=True)
class UnknownEvent:
    event_id: str
    event_type: str
    raw: dict[str, Any] = field(default_factory=dict, repr=False)


WebhookEvent = Union[TransferStateChanged, UnknownEvent]


class MalformedEvent(ValueError):
    pass


def derive_event_id(resource_id: str, current_state: str, occurred_at: Optional[str]) -> str:
    """Stable id for envelopes that carry none: redeliveries hash to the same value."""
    basis = f"{resource_id}|{current_state}|{occurred_at or ''}"
    return "derived:" + hashlib.sha256(basis.encode("utf-8")).hexdigest()


def _envelope_event_id(body: dict[str, Any]) -> Optional[str]:
    for key in ("event_id", "id"):
        value = body.get(key)
        if value not in (None, ""):
            return str(value)
    return None


def parse_event(raw_body: bytes) -> WebhookEvent:
    try:
        body = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedEvent(f"body is not JSON: {exc}") from exc
    if not isinstance(body, dict):
        raise MalformedEvent("body is not a JSON object")

    event_type = str(body.get("event_type") or body.get("type") or "").strip()
    data = body.get("data") if isinstance(body.get("data"), dict) else {}

    if event_type == TRANSFER_STATE_CHANGE:
        resource = data.get("resource") if isinstance(data.get("resource"), dict) else {}
        resource_id = resource.get("id")
        current_state = data.get("current_state")
        if resource_id in (None, "") or not current_state:
            raise MalformedEvent("state-change event without data.resource.id / data.current_state")
        occurred_at = data.get("occurred_at") or body.get("sent_at")
        return TransferStateChanged(
            event_id=_envelope_event_id(body) or derive_event_id(str(resource_id), str(current_state), occurred_at),
            event_type=event_type,
            resource_id=str(resource_id),
            current_state=str(current_state),
            occurred_at=occurred_at,
            raw=body,
        )

    if event_type in CONNECT_TRANSFER_EVENTS:
        obj = data.get("object") if isinstance(data.get("object"), dict) else {}
        resource_id = obj.get("id")
        if not resource_id:
            raise MalformedEvent(f"{event_type} event without data.object.id")
        state = CONNECT_TRANSFER_EVENTS[event_type]
        occurred_at = str(body.get("created")) if body.get("created") is not None else None
        return TransferStateChanged(
            event_id=_envelope_event_id(body) or derive_event_id(str(resource_id), state, occurred_at),
            event_type=event_type,
            resource_id=str(resource_id),
            current_state=state,
            occurred_at=occurred_at,
            raw=body,
        )

    event_id = _envelope_event_id(body) or "derived:" + hashlib.sha256(raw_body).hexdigest()
    return UnknownEvent(event_id=event_id, event_type=event_type or "<missing>", raw=body)
