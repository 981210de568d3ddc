"""
SnipShare — Request ID Middleware
=================================

What:  Gives every API call a correlation ID that follows it into the logs,
       the error body and the backend calls it makes.
How:   A client-supplied X-Request-ID is kept only when it is a short token
       of letters, digits, '-' or '_'; anything else (empty, oversized, or
       carrying spaces or control characters that would forge log lines) is
       replaced with 12 hex characters. The ID lives in `request_id_var`;
       BackendClient forwards it to the auth and table APIs.
"""

import re
import uuid
from contextvars import ContextVar
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

HEADER = "X-Request-ID"

_ACCEPTED = re.compile(r"[A-Za-z0-9_-]{1,64}")

request_id_var: ContextVar[str] = ContextVar("request_id", default="")


def resolve_request_id(supplied: Optional[str]) -> str:
    """The client's ID when well formed, otherwise a fresh one."""
    if supplied and _ACCEPTED.fullmatch(supplied):
        return supplied
    return uuid.uuid4().hex[:12]


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = resolve_request_id(request.headers.get(HEADER))
        marker = request_id_var.set(rid)
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(marker)
        response.headers[HEADER] = rid
        return response
