from services import metrics


def test_counters_and_render():
    metrics.increment_provider_call("connect", "create_transfer", "ok")
    metrics.increment_provider_call("connect", "create_transfer", "ok")
    metrics.increment_webhook_event(False, "invalid_signature")

    assert metrics.get_counter(
        "provider_calls_total", {"rail": "connect", "operation": "create_transfer", "result": "ok"}
    ) == 2
    text = metrics.render_prometheus()
    assert "# TYPE provider_calls_total counter" in text
    assert 'provider_calls_total{operation="create_transfer",rail="connect",result="ok"} 2' in text
    assert 'webhook_events_total{result="invalid_signature",signature_valid="false"} 1' in text


def test_reset():
    metrics.increment_retry_attempt("x", "ok")
    metrics.reset()
    assert metrics.get_counter("retry_attempts_total", {"label": "x", "result": "ok"}) == 0
    assert metrics.render_prometheus() == ""
