from __future__ import annotations

import os
import sys

from tests.conftest import WEBHOOK_SECRET

SCRIPT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "scripts"))
if SCRIPT_DIR not in sys.path:
    sys.path.insert(0, SCRIPT_DIR)

from _webhook_signing import canonical_json_bytes, signature_header, state_change_payload  # noqa: E402


def test_canonical_json_bytes_stable():
    payload_a = {"b": 1, "a": 2}
    payload_b = {"a": 2, "b": 1}
    bytes_a = canonical_json_bytes(payload_a)
    bytes_b = canonical_json_bytes(payload_b)
    assert bytes_a == bytes_b
    assert bytes_a == b'{"a":2,"b":1}'


def test_signature_matches_server(client):
    payload = state_change_payload("unknown-transfer", "outgoing_payment_sent")
    body_bytes = canonical_json_bytes(payload)
    headers = signature_header(WEBHOOK_SECRET, body_bytes)
    headers["Content-Type"] = "application/json"

    r = client.post("/webhook", content=body_bytes, headers=headers)
    assert r.status_code == 200, r.text
    # signature accepted; the transfer itself is unknown
    assert r.json()["result"] == "not_found"


def test_signature_over_different_bytes_rejected(client):
    payload = state_change_payload("unknown-transfer", "outgoing_payment_sent")
    headers = signature_header(WEBHOOK_SECRET, canonical_json_bytes(payload))
    # same JSON, different whitespace: bytes differ, so the signature must not match
    r = client.post("/webhook", content=b" " + canonical_json_bytes(payload), headers=headers)
    assert r.status_code == 200
    assert r.json()["result"] == "invalid_signature"
