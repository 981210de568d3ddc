"""
SnipShare — Auth State Store
============================

What:  The observable {user, session, profile, loading, error} state of one
       client session.
How:   Subscribes to the AuthClient's auth-change notifications. SIGNED_IN and
       TOKEN_REFRESHED trigger refresh_auth(), which re-reads the user and
       the profile (looked up by email) inside a pool lease. SIGNED_OUT clears
       everything and sets `redirect_to` to the sign-in path.
Who:   One per client session, created by the SessionRegistry. Read by the
       feed view (current username) and the form flows (identity).

Concurrency:
    Refreshes are not mutually exclusive. Two overlapping refresh_auth()
    calls both publish; the last one to finish wins.
"""

import logging
from typing import Callable, List, Optional, Tuple

from pydantic import BaseModel

from snipshare.backend.auth import AuthClient, AuthSubscription
from snipshare.backend.client import BackendClient
from snipshare.config import settings
from snipshare.exceptions import BackendError, BackendErrorKind, LeaseTimeoutError
from snipshare.models.auth import AuthEvent, Session, User
from snipshare.models.profile import Profile
from snipshare.services.pool import LeasePool

logger = logging.getLogger(__name__)


class AuthState(BaseModel):
    """Snapshot published to subscribers after every change."""

    user: Optional[User] = None
    session: Optional[Session] = None
    profile: Optional[Profile] = None
    loading: bool = True
    error: Optional[str] = None
    redirect_to: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None and self.session is not None

    @property
    def username(self) -> Optional[str]:
        return self.profile.username if self.profile else None


StateListener = Callable[[AuthState], None]


class AuthStore:
    """
    Auth state holder for one client session.

    Usage:
        store = AuthStore(backend.auth_client(), backend, pool)
        await store.start()
        store.state.user
    """

    def __init__(self, auth: AuthClient, backend: BackendClient, pool: LeasePool):
        self.auth = auth
        self._backend = backend
        self._pool = pool
        self._state = AuthState()
        self._listeners: List[StateListener] = []
        self._subscription: Optional[AuthSubscription] = None

    @property
    def state(self) -> AuthState:
        return self._state

    # ── Publishing ────────────────────────────────────────────────────────

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a state listener; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, **changes) -> None:
        self._state = self._state.model_copy(update=changes)
        for listener in list(self._listeners):
            listener(self._state)

    # ── Lifecycle ─────────────────────────────────────────────────────────

    async def start(self) -> AuthState:
        """Prewarm the pool, start observing auth changes, run the initial check."""
        self._pool.prewarm()
        if self._subscription is None:
            self._subscription = self.auth.on_auth_state_change(self._on_auth_change)

        user: Optional[User] = None
        profile: Optional[Profile] = None
        error: Optional[str] = None
        session = await self.auth.get_session()
        if session is not None:
            try:
                async with self._pool.lease():
                    try:
                        user = await self.auth.get_user()
                    except BackendError as exc:
                        logger.warning("Initial auth check failed: %s", exc.message)
                        error = exc.message
                        session = None
                    if user is not None:
                        profile, error = await self._lookup_profile(user, session)
            except LeaseTimeoutError as exc:
                logger.warning("Initial auth check skipped: %s", exc.message)
                error = exc.message

        self._publish(user=user, session=session, profile=profile, loading=False, error=error)
        return self._state

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        self._listeners.clear()

    async def _on_auth_change(self, event: AuthEvent, session: Optional[Session]) -> None:
        logger.debug("Auth store received %s", event.value)
        if event in (AuthEvent.SIGNED_IN, AuthEvent.TOKEN_REFRESHED):
            await self.refresh_auth()
        elif event == AuthEvent.SIGNED_OUT:
            self._publish(
                user=None,
                session=None,
                profile=None,
                loading=False,
                error=None,
                redirect_to=settings.signin_path,
            )
        elif event == AuthEvent.USER_UPDATED and session is not None:
            self._publish(user=session.user, session=session)

    # ── Operations ────────────────────────────────────────────────────────

    async def _fetch_profile(self, user: User, session: Optional[Session]) -> Optional[Profile]:
        if not user.email:
            return None
        token = session.access_token if session else None
        row = await (
            self._backend.table("profiles", access_token=token)
            .select("*")
            .eq("email", user.email)
            .single()
            .execute()
        )
        return Profile.model_validate(row) if row else None

    async def _lookup_profile(
        self, user: User, session: Optional[Session]
    ) -> Tuple[Optional[Profile], Optional[str]]:
        """Profile for `user`, or (None, message) when the lookup fails."""
        try:
            return await self._fetch_profile(user, session), None
        except BackendError as exc:
            logger.warning("Profile lookup for %s failed: %s (%s)", user.email, exc.message, exc.kind.value)
            return None, exc.message

    async def refresh_auth(self) -> AuthState:
        """
        Re-read user, session and profile and publish them.

        Failures are recorded in `error` rather than raised. A failed user
        read keeps the previous state; a failed profile lookup keeps the
        user and session, the same as the initial check in start().
        """
        self._publish(loading=True)
        profile: Optional[Profile] = None
        error: Optional[str] = None
        try:
            async with self._pool.lease():
                session = await self.auth.get_session()
                user = await self.auth.get_user()
                if user is not None:
                    profile, error = await self._lookup_profile(user, session)
        except (BackendError, LeaseTimeoutError) as exc:
            logger.warning("Auth refresh failed: %s", exc.message)
            self._publish(loading=False, error=exc.message)
            return self._state

        self._publish(
            user=user,
            session=session,
            profile=profile,
            loading=False,
            error=error,
            redirect_to=None,
        )
        return self._state

    async def sign_out(self) -> None:
        """Sign out on the backend; the SIGNED_OUT notification clears the state."""
        async with self._pool.lease():
            try:
                await self.auth.sign_out()
            except BackendError as exc:
                logger.warning("Sign out failed: %s", exc.message)
                self._publish(error=exc.message)
                raise

    async def ensure_fresh(self) -> None:
        """Refresh the access token when it is about to expire."""
        session = self.auth.session
        if session is None or not session.is_expired():
            return
        try:
            await self.auth.refresh_session()
        except BackendError as exc:
            # A rejected refresh token has already emitted SIGNED_OUT
            if exc.kind != BackendErrorKind.AUTH:
                logger.warning("Token refresh failed: %s", exc.message)
                self._publish(error=exc.message)
