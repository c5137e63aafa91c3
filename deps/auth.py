# deps/auth.py
import hmac
from typing import Optional

from fastapi import Header, HTTPException

from settings import settings


def require_internal_caller(x_internal_token: Optional[str] = Header(default=None)) -> None:
    """
    Payout routes are called by the platform's own backend. When
    INTERNAL_API_TOKEN is unset (local dev, tests) the check is off.
    """
    expected = (settings.INTERNAL_API_TOKEN or "").strip()
    if not expected:
        return

    if not x_internal_token:
        raise HTTPException(status_code=401, detail="UNAUTHORIZED")
    if not hmac.compare_digest(x_internal_token.strip().encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=401, detail="UNAUTHORIZED")
