"""
SnipShare — Client Session Registry
===================================

What:  Maps a session cookie to the per-browser state: auth client, auth
       store and feed view.
How:   get_or_create() builds and starts a UserSession on first sight of a
       cookie value. Sessions untouched for `session_idle_ttl` seconds are
       dropped by prune_idle(), which runs on each lookup. At most
       `max_sessions` live at once; creating one more drops the least
       recently seen.
Who:   One registry per app, owned by AppServices; resolved per request by
       dependencies.get_user_session().
"""

import asyncio
import logging
import secrets
import time
from typing import Dict, Optional, Tuple

from snipshare.backend.auth import AuthClient
from snipshare.backend.client import BackendClient
from snipshare.config import settings
from snipshare.services.auth_store import AuthStore
from snipshare.services.feed import FeedAggregator, FeedView
from snipshare.services.pool import LeasePool

logger = logging.getLogger(__name__)


class UserSession:
    """Everything the service keeps for one browser."""

    def __init__(self, sid: str, auth: AuthClient, store: AuthStore, feed: FeedView):
        self.sid = sid
        self.auth = auth
        self.store = store
        self.feed = feed
        self.last_seen = time.monotonic()

    def touch(self) -> None:
        self.last_seen = time.monotonic()

    def close(self) -> None:
        self.feed.close()
        self.store.close()


class SessionRegistry:
    def __init__(
        self,
        backend: BackendClient,
        pool: LeasePool,
        aggregator: Optional[FeedAggregator] = None,
        idle_ttl: Optional[float] = None,
        max_sessions: Optional[int] = None,
    ):
        self._backend = backend
        self._pool = pool
        self._aggregator = aggregator or FeedAggregator(backend, pool)
        self.idle_ttl = idle_ttl or settings.session_idle_ttl
        self.max_sessions = max_sessions or settings.session_max_count
        self._sessions: Dict[str, UserSession] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, sid: str) -> Optional[UserSession]:
        return self._sessions.get(sid)

    async def get_or_create(self, sid: Optional[str]) -> Tuple[UserSession, bool]:
        """
        Return the session for `sid`, creating one when unknown.

        Returns: (session, created). A created session always carries a
        freshly minted sid; unknown cookie values are never adopted.
        """
        self.prune_idle()
        async with self._lock:
            if sid and sid in self._sessions:
                session = self._sessions[sid]
                session.touch()
                return session, False

            while len(self._sessions) >= self.max_sessions:
                self._evict_oldest()

            sid = secrets.token_urlsafe(32)
            auth = self._backend.auth_client()
            store = AuthStore(auth, self._backend, self._pool)
            feed = FeedView(self._aggregator, store)
            session = UserSession(sid, auth, store, feed)
            self._sessions[sid] = session

        await store.start()
        logger.debug("Client session created (%d active)", len(self._sessions))
        return session, True

    def prune_idle(self) -> int:
        cutoff = time.monotonic() - self.idle_ttl
        expired = [sid for sid, s in self._sessions.items() if s.last_seen < cutoff]
        for sid in expired:
            self._sessions.pop(sid).close()
        if expired:
            logger.info("Dropped %d idle client sessions", len(expired))
        return len(expired)

    def _evict_oldest(self) -> None:
        sid = min(self._sessions, key=lambda key: self._sessions[key].last_seen)
        self._sessions.pop(sid).close()
        logger.info("Session cap %d reached, dropped least recently seen session", self.max_sessions)

    def close_all(self) -> None:
        for session in self._sessions.values():
            session.close()
        count = len(self._sessions)
        self._sessions.clear()
        logger.info("Closed %d client sessions", count)
