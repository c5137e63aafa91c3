import json

import pytest

from app.webhooks.events import (
    MalformedEvent,
    TransferStateChanged,
    UnknownEvent,
    derive_event_id,
    map_provider_state,
    parse_event,
)


def _b(payload) -> bytes:
    return json.dumps(payload).encode("utf-8")


@pytest.mark.parametrize(
    "state, expected",
    [
        ("outgoing_payment_sent", "completed"),
        ("PAID", "completed"),
        ("bounced_back", "failed"),
        ("funds_refunded", "failed"),
        ("charged_back", "failed"),
        ("cancelled", "failed"),
        ("reversed", "failed"),
        ("processing", None),
        ("incoming_payment_waiting", None),
        ("", None),
        (None, None),
    ],
)
def test_map_provider_state(state, expected):
    assert map_provider_state(state) == expected


def test_parse_state_change():
    event = parse_event(
        _b(
            {
                "event_type": "transfers#state-change",
                "data": {
                    "resource": {"id": 4711, "type": "transfer"},
                    "current_state": "outgoing_payment_sent",
                    "occurred_at": "2026-03-01T10:00:00Z",
                },
            }
        )
    )
    assert isinstance(event, TransferStateChanged)
    assert event.resource_id == "4711"
    assert event.current_state == "outgoing_payment_sent"
    assert event.event_id == derive_event_id("4711", "outgoing_payment_sent", "2026-03-01T10:00:00Z")


def test_parse_connect_event_uses_envelope_id():
    event = parse_event(_b({"id": "evt_1", "type": "transfer.reversed", "data": {"object": {"id": "tr_9"}}}))
    assert isinstance(event, TransferStateChanged)
    assert event.event_id == "evt_1"
    assert event.resource_id == "tr_9"
    assert event.current_state == "reversed"


def test_unknown_event_type():
    event = parse_event(_b({"event_type": "balances#credit", "data": {}}))
    assert isinstance(event, UnknownEvent)
    assert event.event_type == "balances#credit"
    assert event.event_id.startswith("derived:")


@pytest.mark.parametrize(
    "raw",
    [
        b"not json",
        b"[1, 2]",
        _b({"event_type": "transfers#state-change", "data": {"resource": {}}}),
        _b({"type": "transfer.paid", "data": {"object": {}}}),
    ],
)
def test_malformed(raw):
    with pytest.raises(MalformedEvent):
        parse_event(raw)
