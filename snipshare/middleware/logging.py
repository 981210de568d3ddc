"""
SnipShare — Request Logging Middleware
======================================

What:  One access-log line per API call, tagged with who made it: an
       anonymous browser, a known client session, or a signed-in user.
How:   Wraps call_next() with a perf counter. The caller's UserSession is
       read back from request.state after the handler ran (the session
       dependency stores it there). Failed calls log at WARNING (4xx) or
       ERROR (5xx); calls slower than SLOW_REQUEST_MS log at WARNING.

GET /health is not logged. Request bodies and the session cookie value
never reach the log.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from snipshare.middleware.request_id import request_id_var

logger = logging.getLogger("snipshare.access")

SLOW_REQUEST_MS = 2000.0


def _caller(request: Request) -> str:
    user_session = getattr(request.state, "user_session", None)
    if user_session is None:
        return "anonymous"
    username = user_session.store.state.username
    return f"user={username}" if username else "session"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path == "/health":
            return await call_next(request)

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000

        code = response.status_code
        level = logging.INFO
        if code >= 500:
            level = logging.ERROR
        elif code >= 400 or elapsed_ms > SLOW_REQUEST_MS:
            level = logging.WARNING

        caller = _caller(request)
        logger.log(
            level,
            "[%s] %s %s → %d (%.0fms, %s)",
            request_id_var.get(""),
            request.method,
            request.url.path,
            code,
            elapsed_ms,
            caller,
            extra={"caller": caller, "status": code, "elapsed_ms": round(elapsed_ms, 1)},
        )
        return response
