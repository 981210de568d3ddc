"""
SnipShare — Auth Client
=======================

What:  Holds the auth session of ONE client session (one browser) and talks
       to the GoTrue-style auth endpoints through the shared BackendClient.
How:   Every operation that changes the session emits an AuthEvent to the
       listeners registered with on_auth_state_change(), after the new
       session is in place.
Who:   Created per client session by the SessionRegistry; observed by the
       AuthStore of that session.

Endpoints:
    POST /auth/v1/signup
    POST /auth/v1/token?grant_type=password | refresh_token | pkce
    POST /auth/v1/logout
    GET  /auth/v1/user
    PUT  /auth/v1/user
"""

import base64
import hashlib
import logging
import secrets
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Tuple

from snipshare.exceptions import BackendError, BackendErrorKind
from snipshare.models.auth import AuthEvent, Session, User

if TYPE_CHECKING:
    from snipshare.backend.client import BackendClient

logger = logging.getLogger(__name__)

AuthListener = Callable[[AuthEvent, Optional[Session]], Awaitable[None]]


def _pkce_pair() -> Tuple[str, str]:
    """Return (code_verifier, S256 code_challenge)."""
    verifier = secrets.token_urlsafe(64)[:96]
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return verifier, challenge


class AuthSubscription:
    """Handle returned by on_auth_state_change(); call unsubscribe() to stop."""

    def __init__(self, client: "AuthClient", listener: AuthListener):
        self._client = client
        self._listener = listener

    def unsubscribe(self) -> None:
        self._client._remove_listener(self._listener)


class AuthClient:
    """Auth operations and session state for one client session."""

    def __init__(self, backend: "BackendClient", session: Optional[Session] = None):
        self._backend = backend
        self._session = session
        self._listeners: List[AuthListener] = []
        self._code_verifier: Optional[str] = None

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def access_token(self) -> Optional[str]:
        return self._session.access_token if self._session else None

    # ── Subscriptions ─────────────────────────────────────────────────────

    def on_auth_state_change(self, listener: AuthListener) -> AuthSubscription:
        self._listeners.append(listener)
        return AuthSubscription(self, listener)

    def _remove_listener(self, listener: AuthListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def _emit(self, event: AuthEvent) -> None:
        logger.debug("Auth event %s (%d listeners)", event.value, len(self._listeners))
        for listener in list(self._listeners):
            await listener(event, self._session)

    async def _set_session(self, session: Optional[Session], event: AuthEvent) -> None:
        self._session = session
        await self._emit(event)

    # ── Sign up / sign in ─────────────────────────────────────────────────

    async def sign_up(
        self,
        email: str,
        password: str,
        data: Optional[Dict[str, Any]] = None,
        redirect_to: Optional[str] = None,
    ) -> User:
        """
        Register a new auth user.

        A PKCE code challenge is sent so the confirmation link comes back to
        /auth/callback with a code this client can exchange.
        When the backend has email confirmation disabled it answers with a
        session directly and SIGNED_IN is emitted.
        """
        verifier, challenge = _pkce_pair()
        params = {"redirect_to": redirect_to} if redirect_to else None
        body = await self._backend.request(
            "POST",
            "/auth/v1/signup",
            params=params,
            json={
                "email": email,
                "password": password,
                "data": data or {},
                "code_challenge": challenge,
                "code_challenge_method": "s256",
            },
        )
        self._code_verifier = verifier

        if not body:
            raise BackendError(message="Sign up returned no user", kind=BackendErrorKind.UNKNOWN)
        if "access_token" in body:
            session = Session.model_validate(body)
            await self._set_session(session, AuthEvent.SIGNED_IN)
            return session.user
        return User.model_validate(body.get("user", body))

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        body = await self._backend.request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        session = Session.model_validate(body)
        await self._set_session(session, AuthEvent.SIGNED_IN)
        return session

    async def exchange_code_for_session(self, auth_code: str) -> Session:
        """Trade the code from an email link for a session (PKCE)."""
        if not self._code_verifier:
            raise BackendError(
                message="No pending sign-up for this browser; please sign in.",
                kind=BackendErrorKind.AUTH,
            )
        body = await self._backend.request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "pkce"},
            json={"auth_code": auth_code, "code_verifier": self._code_verifier},
        )
        self._code_verifier = None
        session = Session.model_validate(body)
        await self._set_session(session, AuthEvent.SIGNED_IN)
        return session

    # ── Session upkeep ────────────────────────────────────────────────────

    async def get_session(self) -> Optional[Session]:
        """The locally held session, without a network call."""
        return self._session

    async def get_user(self) -> Optional[User]:
        """Fetch the user for the current access token (None when signed out)."""
        if self._session is None:
            return None
        body = await self._backend.request(
            "GET", "/auth/v1/user", access_token=self._session.access_token
        )
        return User.model_validate(body)

    async def refresh_session(self) -> Session:
        """
        Exchange the refresh token for a new session.

        A rejected refresh token ends the session (SIGNED_OUT) before the
        error propagates.
        """
        if self._session is None:
            raise BackendError(message="Not signed in", kind=BackendErrorKind.AUTH)
        try:
            body = await self._backend.request(
                "POST",
                "/auth/v1/token",
                params={"grant_type": "refresh_token"},
                json={"refresh_token": self._session.refresh_token},
            )
        except BackendError as exc:
            if exc.kind == BackendErrorKind.AUTH:
                await self._set_session(None, AuthEvent.SIGNED_OUT)
            raise
        session = Session.model_validate(body)
        await self._set_session(session, AuthEvent.TOKEN_REFRESHED)
        return session

    async def update_user(
        self,
        password: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> User:
        if self._session is None:
            raise BackendError(message="Not signed in", kind=BackendErrorKind.AUTH)
        payload: Dict[str, Any] = {}
        if password is not None:
            payload["password"] = password
        if data is not None:
            payload["data"] = data
        body = await self._backend.request(
            "PUT", "/auth/v1/user", json=payload, access_token=self._session.access_token
        )
        user = User.model_validate(body)
        self._session = self._session.model_copy(update={"user": user})
        await self._emit(AuthEvent.USER_UPDATED)
        return user

    async def sign_out(self) -> None:
        """
        Revoke the session on the backend and drop it locally.

        An already-invalid token (AUTH / NOT_FOUND) still counts as signed out.
        """
        if self._session is not None:
            try:
                await self._backend.request(
                    "POST", "/auth/v1/logout", access_token=self._session.access_token
                )
            except BackendError as exc:
                if exc.kind not in (BackendErrorKind.AUTH, BackendErrorKind.NOT_FOUND):
                    raise
                logger.info("Logout with stale token treated as signed out: %s", exc.message)
        await self._set_session(None, AuthEvent.SIGNED_OUT)
