from __future__ import annotations

from settings import settings


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["ok"] is True
    assert body["ledger_backend"] == "memory"
    assert body["payout_mode"] == "sandbox"


def test_healthz_memory_backend(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.json()["db_ok"] is True


def test_readyz_with_mock_providers(client):
    body = client.get("/readyz").json()
    assert body["ready"] is True
    assert body["missing_provider_config"] == {}


def test_readyz_reports_missing_rail_config(client, monkeypatch):
    monkeypatch.setattr(settings, "USE_MOCK_PROVIDERS", False)
    monkeypatch.setattr(settings, "RAIL_A_SANDBOX_API_KEY", "")
    monkeypatch.setattr(settings, "RAIL_B_SANDBOX_API_TOKEN", "tok")
    monkeypatch.setattr(settings, "RAIL_B_PROFILE_ID", "12345")

    body = client.get("/readyz").json()

    assert body["ready"] is False
    assert body["missing_provider_config"] == {"connect": ["RAIL_A_SANDBOX_API_KEY"]}


def test_metrics_endpoint(client):
    from tests.conftest import ngn_payload

    client.post("/v1/payouts", json=ngn_payload())
    r = client.get("/metrics")
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/plain")
    assert 'payout_transitions_total{source="engine",status="processing"} 1' in r.text
    assert "http_requests_total" in r.text
