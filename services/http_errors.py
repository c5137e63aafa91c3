# services/http_errors.py
from __future__ import annotations

from fastapi.responses import JSONResponse

from app.payouts.errors import (
    PayoutError,
    PayoutNotFound,
    ProviderTerminal,
    ProviderTransient,
    RetryNotAllowed,
    UnsupportedCorridor,
    ValidationError,
)

PAYOUT_ERROR_HTTP_MAP: dict[str, tuple[int, str]] = {
    "UNSUPPORTED_CORRIDOR": (422, "Unsupported corridor"),
    "INVALID_CREATOR": (422, "Invalid creator_id"),
    "INVALID_AMOUNT": (422, "Invalid amount"),
    "INVALID_CURRENCY": (422, "Invalid currency"),
    "INVALID_COUNTRY": (422, "Invalid country"),
    "INVALID_ACCOUNT": (422, "Invalid account number"),
    "INVALID_BANK_CODE": (422, "Invalid bank code"),
    "INVALID_REFERENCE": (422, "Invalid reference"),
    "PAYOUT_NOT_FOUND": (404, "Payout not found"),
    "RETRY_NOT_ALLOWED": (409, "Retry not allowed"),
}

# fallback by exception class when the code is not in the map
_CLASS_HTTP_STATUS: tuple[tuple[type[PayoutError], int], ...] = (
    (ValidationError, 422),
    (UnsupportedCorridor, 422),
    (PayoutNotFound, 404),
    (RetryNotAllowed, 409),
    (ProviderTransient, 503),
    (ProviderTerminal, 502),
)


def http_status_for(exc: PayoutError) -> int:
    if exc.code in PAYOUT_ERROR_HTTP_MAP:
        return PAYOUT_ERROR_HTTP_MAP[exc.code][0]
    for cls, status in _CLASS_HTTP_STATUS:
        if isinstance(exc, cls):
            return status
    return 400


def error_body(exc: PayoutError) -> dict:
    """{"detail": CODE, "message": ..., "payout_id"?}"""
    summary = PAYOUT_ERROR_HTTP_MAP.get(exc.code, (0, ""))[1]
    body = {"detail": exc.code, "message": str(exc) or summary}
    if exc.payout_id:
        body["payout_id"] = exc.payout_id
    return body


def payout_error_response(exc: PayoutError) -> JSONResponse:
    return JSONResponse(status_code=http_status_for(exc), content=error_body(exc))
