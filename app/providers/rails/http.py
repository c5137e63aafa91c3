# app/providers/rails/http.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from app.payouts.errors import ProviderTerminal, ProviderTransient
from app.payouts.retry import is_retryable_http
from services.redaction import redact_dict, redact_text

logger = logging.getLogger("payouts.http_client")


@dataclass
class HttpResponse:
    status_code: int
    json: Optional[dict[str, Any]]
    text: str


class HttpClient:
    """
    Thin httpx wrapper shared by the rail adapters.
    Every call is bounded by `timeout_s`; transport failures surface as ProviderTransient.
    """

    def __init__(self, timeout_s: float = 30.0, follow_redirects: bool = True, transport: httpx.BaseTransport | None = None):
        self._client = httpx.Client(timeout=timeout_s, follow_redirects=follow_redirects, transport=transport)

    def post(
        self,
        url: str,
        *,
        headers: dict[str, str],
        json_body: dict[str, Any] | None = None,
        form_body: dict[str, Any] | None = None,
    ) -> HttpResponse:
        return self._send("POST", url, headers=headers, json=json_body, data=form_body)

    def put(self, url: str, *, headers: dict[str, str], json_body: dict[str, Any] | None = None) -> HttpResponse:
        return self._send("PUT", url, headers=headers, json=json_body)

    def get(self, url: str, *, headers: dict[str, str]) -> HttpResponse:
        return self._send("GET", url, headers=headers)

    def close(self) -> None:
        self._client.close()

    def _send(self, method: str, url: str, *, headers: dict[str, str], **kwargs: Any) -> HttpResponse:
        try:
            r = self._client.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("provider_http_timeout method=%s url=%s", method, url)
            raise ProviderTransient(f"{method} {url} timed out", code="PROVIDER_TIMEOUT") from exc
        except httpx.TransportError as exc:
            logger.warning("provider_http_transport_error method=%s url=%s error=%s", method, url, exc)
            raise ProviderTransient(f"{method} {url} failed: {exc}", code="PROVIDER_CONNECTION_ERROR") from exc

        logger.debug("provider_http method=%s url=%s status=%s", method, url, r.status_code)
        return self._wrap(r)

    @staticmethod
    def _wrap(r: httpx.Response) -> HttpResponse:
        try:
            payload = r.json()
        except ValueError:
            payload = None
        if payload is not None and not isinstance(payload, dict):
            payload = {"data": payload}
        return HttpResponse(status_code=r.status_code, json=payload, text=r.text)


_ERROR_CODES_BY_STATUS = {
    400: "INVALID_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    422: "INVALID_REQUEST",
    429: "RATE_LIMIT_EXCEEDED",
}


def _error_message(resp: HttpResponse) -> str:
    body = resp.json or {}
    err = body.get("error")
    if isinstance(err, dict):
        return str(err.get("message") or err.get("code") or "")
    errors = body.get("errors")
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        return str(errors[0].get("message") or errors[0].get("code") or "")
    return str(body.get("message") or err or resp.text[:200] or "")


def _error_code(resp: HttpResponse, message: str) -> str:
    if resp.status_code >= 500:
        return "SERVER_ERROR"
    code = _ERROR_CODES_BY_STATUS.get(resp.status_code, "PROVIDER_REJECTED")
    if resp.status_code == 400:
        lowered = message.lower()
        if "balance" in lowered:
            return "INSUFFICIENT_BALANCE"
        if "account" in lowered:
            return "INVALID_ACCOUNT"
    return code


def raise_for_provider_status(resp: HttpResponse, *, rail: str, operation: str) -> None:
    if 200 <= resp.status_code < 300:
        return

    message = _error_message(resp)
    code = _error_code(resp, message)
    logger.warning(
        "provider_error rail=%s operation=%s status=%s code=%s message=%s body=%s",
        rail,
        operation,
        resp.status_code,
        code,
        redact_text(message),
        redact_dict(resp.json or {}),
    )

    detail = f"{rail} {operation} failed ({resp.status_code}): {message or code}"
    if is_retryable_http(resp.status_code):
        raise ProviderTransient(detail, code=code, http_status=resp.status_code)
    raise ProviderTerminal(detail, code=code, http_status=resp.status_code)
