"""
SnipShare — Backend Client
==========================

What:  The single shared client for the external backend-as-a-service.
How:   One httpx.AsyncClient carries every auth and table call. Each call is
       classified on failure into a BackendError with a BackendErrorKind.
       Read operations (GET) are retried with exponential backoff by
       tenacity, only for transient kinds (TIMEOUT, CONNECTION).
Who:   Created once by the application factory; every lease from the pool
       wraps this same instance.

Classification Table:
    transport timeout                    → TIMEOUT
    transport connect/read failure       → CONNECTION
    pg 42501 (insufficient_privilege)    → PERMISSION_DENIED
    pg 57014 (statement timeout)         → TIMEOUT
    pg 23505 (unique_violation)          → CONFLICT
    PGRST116 (single row expected)       → NOT_FOUND
    400 invalid_grant                    → AUTH
    401 / 403 / 404 / 408 / 409 / 504    → AUTH / PERMISSION_DENIED /
                                           NOT_FOUND / TIMEOUT / CONFLICT /
                                           TIMEOUT
    502 / 503                            → CONNECTION
"""

import logging
import time
from typing import TYPE_CHECKING, Any, Dict, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from snipshare.config import settings
from snipshare.exceptions import BackendError, BackendErrorKind
from snipshare.middleware.request_id import HEADER as REQUEST_ID_HEADER, request_id_var

if TYPE_CHECKING:
    from snipshare.backend.auth import AuthClient
    from snipshare.backend.query import TableQuery

logger = logging.getLogger(__name__)

_PG_CODE_KINDS = {
    "42501": BackendErrorKind.PERMISSION_DENIED,
    "57014": BackendErrorKind.TIMEOUT,
    "23505": BackendErrorKind.CONFLICT,
    "PGRST116": BackendErrorKind.NOT_FOUND,
}

_STATUS_KINDS = {
    401: BackendErrorKind.AUTH,
    403: BackendErrorKind.PERMISSION_DENIED,
    404: BackendErrorKind.NOT_FOUND,
    408: BackendErrorKind.TIMEOUT,
    409: BackendErrorKind.CONFLICT,
    422: BackendErrorKind.INVALID_REQUEST,
    502: BackendErrorKind.CONNECTION,
    503: BackendErrorKind.CONNECTION,
    504: BackendErrorKind.TIMEOUT,
}


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, BackendError) and exc.kind.is_transient


def classify_response(response: httpx.Response) -> BackendError:
    """
    Turn an error response from the auth or table API into a BackendError.

    Both APIs answer with JSON bodies, but the field names differ:
    PostgREST uses {code, message, details, hint}; GoTrue uses
    {error, error_description} or {code, msg}.
    """
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    code = str(body.get("code") or body.get("error_code") or body.get("error") or "")
    message = (
        body.get("message")
        or body.get("msg")
        or body.get("error_description")
        or body.get("error")
        or response.reason_phrase
        or "The backend request failed"
    )

    if code in _PG_CODE_KINDS:
        kind = _PG_CODE_KINDS[code]
    elif response.status_code == 400 and code == "invalid_grant":
        kind = BackendErrorKind.AUTH
    elif response.status_code in _STATUS_KINDS:
        kind = _STATUS_KINDS[response.status_code]
    elif response.status_code == 400:
        kind = BackendErrorKind.INVALID_REQUEST
    else:
        kind = BackendErrorKind.UNKNOWN

    return BackendError(
        message=str(message),
        kind=kind,
        status_code=response.status_code,
        context={"code": code, "path": response.request.url.path},
    )


class BackendClient:
    """
    Shared async client for the auth and table APIs.

    Usage:
        backend = BackendClient()
        rows = await backend.table("snippets").select("*").order(
            "created_at", desc=True
        ).execute()
        auth = backend.auth_client()
        await auth.sign_in_with_password(email, password)

    Tests inject an httpx.MockTransport through `transport`.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        anon_key: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_attempts: Optional[int] = None,
        retry_initial_wait: Optional[float] = None,
        retry_max_wait: Optional[float] = None,
    ):
        self.url = (url or settings.backend_url).rstrip("/")
        self.anon_key = anon_key or settings.backend_anon_key
        self.retry_attempts = retry_attempts or settings.retry_max_attempts
        self.retry_initial_wait = (
            settings.retry_initial_wait if retry_initial_wait is None else retry_initial_wait
        )
        self.retry_max_wait = settings.retry_max_wait if retry_max_wait is None else retry_max_wait

        self._http = httpx.AsyncClient(
            base_url=self.url,
            timeout=timeout or settings.backend_timeout,
            transport=transport,
            headers={
                "apikey": self.anon_key,
                "x-client-info": settings.backend_client_info,
            },
        )

        logger.info(
            "BackendClient initialized for %s (retry attempts=%d)",
            self.url,
            self.retry_attempts,
        )

    # ── Factories ─────────────────────────────────────────────────────────

    def table(self, name: str, access_token: Optional[str] = None) -> "TableQuery":
        """Start a query against one table, optionally as a signed-in user."""
        from snipshare.backend.query import TableQuery

        return TableQuery(self, name, access_token=access_token)

    def auth_client(self, session=None) -> "AuthClient":
        """Create an auth state holder for one client session."""
        from snipshare.backend.auth import AuthClient

        return AuthClient(self, session=session)

    # ── Transport ─────────────────────────────────────────────────────────

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Any = None,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None,
        access_token: Optional[str] = None,
    ) -> Any:
        """
        Send one call and return the decoded JSON body (None when empty).

        GET requests are retried for transient failures; writes are sent
        exactly once.

        Raises:
            BackendError: with the kind assigned by classify_response or the
                transport failure mapping.
        """
        if method.upper() != "GET":
            return await self._send(method, path, params, json, headers, access_token)

        retrying = AsyncRetrying(
            retry=retry_if_exception(_is_transient),
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=self.retry_initial_wait, max=self.retry_max_wait),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._send(method, path, params, json, headers, access_token)

    async def _send(
        self,
        method: str,
        path: str,
        params: Any,
        json: Any,
        headers: Optional[Dict[str, str]],
        access_token: Optional[str],
    ) -> Any:
        request_headers = {"Authorization": f"Bearer {access_token or self.anon_key}"}
        rid = request_id_var.get()
        if rid:
            request_headers[REQUEST_ID_HEADER] = rid
        if headers:
            request_headers.update(headers)

        start_time = time.perf_counter()
        try:
            response = await self._http.request(
                method, path, params=params, json=json, headers=request_headers
            )
        except httpx.TimeoutException as exc:
            logger.warning("Backend %s %s timed out: %s", method, path, exc)
            raise BackendError(
                message="Operation timed out",
                kind=BackendErrorKind.TIMEOUT,
                context={"path": path},
            ) from exc
        except httpx.RequestError as exc:
            logger.warning("Backend %s %s connection error: %s", method, path, exc)
            raise BackendError(
                message="Database connection error",
                kind=BackendErrorKind.CONNECTION,
                context={"path": path, "error_type": type(exc).__name__},
            ) from exc

        duration_ms = (time.perf_counter() - start_time) * 1000
        logger.debug(
            "Backend %s %s -> %d in %.1fms", method, path, response.status_code, duration_ms
        )

        if response.is_error:
            error = classify_response(response)
            logger.warning(
                "Backend %s %s failed: %d %s (%s)",
                method,
                path,
                response.status_code,
                error.message,
                error.kind.value,
            )
            raise error

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # ── Lifecycle ─────────────────────────────────────────────────────────

    async def health_check(self) -> bool:
        """
        Check that the auth service answers.

        Returns: True if reachable, False otherwise. Never raises.
        """
        try:
            await self._send("GET", "/auth/v1/health", None, None, None, None)
            return True
        except BackendError as exc:
            logger.warning("Backend health check failed: %s", exc.message)
            return False

    async def aclose(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._http.aclose()
