# app/payouts/errors.py
from __future__ import annotations

from typing import Optional


class PayoutError(Exception):
    code = "PAYOUT_ERROR"
    retryable = False

    def __init__(self, message: str = "", *, code: Optional[str] = None, payout_id: Optional[str] = None):
        super().__init__(message or self.code)
        if code:
            self.code = code
        self.payout_id = payout_id


class ValidationError(PayoutError):
    """Bad input. Never retried."""

    code = "VALIDATION_ERROR"


class UnsupportedCorridor(PayoutError):
    code = "UNSUPPORTED_CORRIDOR"


class ProviderError(PayoutError):
    code = "PROVIDER_ERROR"

    def __init__(
        self,
        message: str = "",
        *,
        code: Optional[str] = None,
        http_status: Optional[int] = None,
        retryable: Optional[bool] = None,
        payout_id: Optional[str] = None,
    ):
        super().__init__(message, code=code, payout_id=payout_id)
        self.http_status = http_status
        if retryable is not None:
            self.retryable = retryable


class ProviderTransient(ProviderError):
    """Timeout, connection reset, 429 or 5xx."""

    code = "PROVIDER_UNAVAILABLE"
    retryable = True


class ProviderTerminal(ProviderError):
    code = "PROVIDER_REJECTED"
    retryable = False


class SignatureInvalid(PayoutError):
    code = "INVALID_SIGNATURE"


class DuplicateEvent(PayoutError):
    code = "DUPLICATE_EVENT"


class PayoutNotFound(PayoutError):
    code = "PAYOUT_NOT_FOUND"


class RetryNotAllowed(PayoutError):
    code = "RETRY_NOT_ALLOWED"
