"""
HTTP middleware: bounded request time and the common error body.
"""

from __future__ import annotations

import asyncio

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

log = structlog.get_logger()

DEFAULT_TIMEOUT_SECONDS = 15.0


def error_response(status: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content={
            "error": {
                "code": code,
                "message": message,
                "status": status,
            }
        },
    )


# ---------------------------------------------------------------------------
# Request timeout
# ---------------------------------------------------------------------------

class RequestTimeoutMiddleware(BaseHTTPMiddleware):
    """
    Turn a hung downstream call into an explicit 408 instead of an open socket.
    """

    def __init__(self, app, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS):
        super().__init__(app)
        self._timeout_seconds = timeout_seconds

    async def dispatch(self, request: Request, call_next) -> Response:
        try:
            return await asyncio.wait_for(call_next(request), timeout=self._timeout_seconds)
        except asyncio.TimeoutError:
            log.warning(
                "request.timeout",
                method=request.method,
                path=request.url.path,
                timeout=self._timeout_seconds,
            )
            return error_response(408, "REQUEST_TIMEOUT", "Request timeout")
