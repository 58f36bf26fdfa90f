"""Double-submit CSRF protection: the X-CSRF-Token header must echo the csrf_token cookie."""

import logging
import secrets

from fastapi import HTTPException, Request, Response, status

from beammeup.config import get_settings

log = logging.getLogger(__name__)

CSRF_COOKIE = "csrf_token"
CSRF_HEADER = "X-CSRF-Token"
CSRF_MAX_AGE_SECONDS = 24 * 60 * 60

_SAFE_METHODS = ("GET", "HEAD", "OPTIONS")


def generate_csrf_token() -> str:
    return secrets.token_hex(32)


def set_csrf_cookie(response: Response, token: str) -> None:
    """Readable by the frontend (not httpOnly) so it can be echoed in the header."""
    response.set_cookie(
        CSRF_COOKIE,
        token,
        max_age=CSRF_MAX_AGE_SECONDS,
        httponly=False,
        secure=get_settings().environment.strip().lower() == "production",
        samesite="lax",
        path="/",
    )


async def verify_csrf(request: Request) -> None:
    """FastAPI dependency for mutating routes."""
    if request.method in _SAFE_METHODS:
        return
    header = request.headers.get(CSRF_HEADER) or ""
    cookie = request.cookies.get(CSRF_COOKIE) or ""
    if not header or not cookie or not secrets.compare_digest(header, cookie):
        log.warning("CSRF validation failed: %s %s", request.method, request.url.path)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="CSRF token validation failed",
        )
