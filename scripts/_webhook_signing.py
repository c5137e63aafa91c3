import hashlib
import hmac
import json


def canonical_json_bytes(payload) -> bytes:
    return json.dumps(
        payload,
        separators=(",", ":"),
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")


def hmac_sha256_hex(secret: str, body_bytes: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body_bytes, hashlib.sha256).hexdigest()


def signature_header(secret: str, body_bytes: bytes) -> dict[str, str]:
    return {"X-Signature": "sha256=" + hmac_sha256_hex(secret, body_bytes)}


def state_change_payload(transfer_id: str, state: str, *, occurred_at: str = "2026-01-01T00:00:00Z") -> dict:
    """Bank-transfer rail `transfers#state-change` envelope."""
    return {
        "event_type": "transfers#state-change",
        "schema_version": "2.0.0",
        "sent_at": occurred_at,
        "data": {
            "resource": {"id": transfer_id, "type": "transfer"},
            "current_state": state,
            "occurred_at": occurred_at,
        },
    }
