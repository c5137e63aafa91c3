import logging

from services.observability import RequestIdLogFilter, get_request_id, set_request_id


def _record():
    return logging.LogRecord("payouts.engine", logging.INFO, __file__, 1, "payout_created", None, None)


def test_filter_stamps_current_request_id():
    f = RequestIdLogFilter()
    set_request_id("req-123")
    try:
        record = _record()
        assert f.filter(record) is True
        assert record.request_id == "req-123"
    finally:
        set_request_id(None)


def test_filter_outside_request():
    record = _record()
    RequestIdLogFilter().filter(record)
    assert record.request_id == "-"
    assert get_request_id() is None
