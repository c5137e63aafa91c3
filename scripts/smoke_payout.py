import os
import sys
import time
import uuid

import requests

from _webhook_signing import canonical_json_bytes, signature_header, state_change_payload


def die(message, code=1):
    print(message)
    sys.exit(code)


def step(message):
    print("\n==> " + message)


def request(method, url, headers=None, json_body=None, data=None, allow_failure=False):
    try:
        resp = requests.request(method, url, headers=headers, json=json_body, data=data, timeout=30)
    except Exception as exc:
        die("Request failed: %s" % exc)
    if resp.status_code < 200 or resp.status_code >= 300:
        if not allow_failure:
            print("HTTP %s %s" % (resp.status_code, resp.reason))
            print(resp.text)
            sys.exit(1)
    return resp


def internal_headers():
    token = (os.getenv("INTERNAL_API_TOKEN") or "").strip()
    return {"X-Internal-Token": token} if token else {}


def main():
    base_url = (os.getenv("BASE_URL") or "http://127.0.0.1:8000").rstrip("/")
    secret = os.getenv("WEBHOOK_SECRET") or ""
    creator_id = os.getenv("SMOKE_CREATOR_ID") or "smoke-" + uuid.uuid4().hex[:8]

    step("Health")
    request("GET", base_url + "/health")

    step("Create NGN payout (bank-transfer rail)")
    resp = request(
        "POST",
        base_url + "/v1/payouts",
        headers=internal_headers(),
        json_body={
            "creator_id": creator_id,
            "amount": "1500.00",
            "currency": "NGN",
            "bank_details": {
                "account_number": "0123456789",
                "bank_code": "058",
                "account_holder_name": "Smoke Test",
                "country": "NG",
            },
            "reason": "smoke",
        },
    )
    result = resp.json()
    print(result)
    if not result.get("success"):
        die("Payout was not accepted: %s" % result.get("error"))
    payout_id = result["payout_id"]

    payout = request("GET", base_url + "/v1/payouts/" + payout_id, headers=internal_headers()).json()
    transfer_id = payout.get("provider_transfer_id")
    print("status=%s provider_transfer_id=%s" % (payout.get("status"), transfer_id))

    if secret and transfer_id:
        step("Deliver signed outgoing_payment_sent webhook")
        body = canonical_json_bytes(state_change_payload(transfer_id, "outgoing_payment_sent"))
        headers = signature_header(secret, body)
        headers["Content-Type"] = "application/json"
        ack = request("POST", base_url + "/webhook", headers=headers, data=body).json()
        print(ack)

        time.sleep(0.5)
        payout = request("GET", base_url + "/v1/payouts/" + payout_id, headers=internal_headers()).json()
        if payout.get("status") != "completed":
            die("Expected completed, got %s" % payout.get("status"))

    print("\nOK payout_id=%s status=%s" % (payout_id, payout.get("status")))


if __name__ == "__main__":
    main()
