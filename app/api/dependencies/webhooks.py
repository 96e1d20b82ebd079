from __future__ import annotations

import hmac

from fastapi import HTTPException, Query, Request, status

from app.core.config import get_settings


def _extract_token(request: Request, token: str | None) -> str | None:
    auth_header = request.headers.get("authorization")
    if auth_header and auth_header.lower().startswith("bearer "):
        provided = auth_header.split(" ", 1)[1].strip()
        if provided:
            return provided
    if token and token.strip():
        return token.strip()
    return None


async def require_webhook_secret(
    request: Request,
    token: str | None = Query(
        default=None,
        description="Optional token fallback when the Authorization header is unavailable.",
    ),
) -> None:
    """Reject webhook calls that do not present the configured shared secret."""

    expected = get_settings().webhook_secret
    if not expected:
        return
    provided = _extract_token(request, token)
    if not provided or not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing webhook token",
        )
