from __future__ import annotations

import time
from typing import Iterable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.logging import log_error, log_info


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    client = request.client
    return client.host if client else "unknown"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log each webhook call with its outcome and duration.

    Bodies are never logged because inbound chat events carry message text
    and base64 media.
    """

    def __init__(
        self,
        app,
        *,
        exempt_paths: Iterable[str] | None = None,
    ) -> None:
        super().__init__(app)
        self.exempt_paths = tuple(exempt_paths or ())

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if any(path.startswith(prefix) for prefix in self.exempt_paths):
            return await call_next(request)

        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:  # pragma: no cover - logged then re-raised
            log_error(
                "Request raised unhandled exception",
                method=request.method,
                path=path,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
                client_ip=_client_ip(request),
                error=str(exc),
            )
            raise

        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        log_function = log_error if response.status_code >= 500 else log_info
        log_function(
            "Request completed",
            method=request.method,
            path=path,
            status_code=response.status_code,
            duration_ms=duration_ms,
            client_ip=_client_ip(request),
        )
        return response
