"""
SnipShare — Service Container & FastAPI Dependencies
====================================================

What:  AppServices holds the process-wide objects (backend client, lease
       pool, feed aggregator, session registry). The dependency functions
       resolve them, plus the caller's client session, for route handlers.
How:   create_app() stores one AppServices on app.state.services. The session
       cookie selects a UserSession from the registry; a new one is created
       (and the cookie set) when the cookie is missing or unknown.
"""

import logging
import time
from typing import Optional

from fastapi import Depends, Request, Response

from snipshare.backend.client import BackendClient
from snipshare.config import settings
from snipshare.exceptions import AuthenticationError
from snipshare.services.feed import FeedAggregator
from snipshare.services.forms import FormFlows
from snipshare.services.pool import LeasePool
from snipshare.services.sessions import SessionRegistry, UserSession

logger = logging.getLogger(__name__)


class AppServices:
    """
    Process-wide service objects, created once per app.

    Tests build one around a MockTransport-backed BackendClient and pass it
    to create_app(services=...).
    """

    def __init__(
        self,
        backend: Optional[BackendClient] = None,
        pool: Optional[LeasePool] = None,
        registry: Optional[SessionRegistry] = None,
    ):
        self.backend = backend or BackendClient()
        self.pool = pool or LeasePool()
        self.aggregator = FeedAggregator(self.backend, self.pool)
        self.registry = registry or SessionRegistry(self.backend, self.pool, self.aggregator)
        self.started_at = time.time()

    async def aclose(self) -> None:
        self.registry.close_all()
        await self.pool.close()
        await self.backend.aclose()


def set_session_cookie(response: Response, sid: str) -> None:
    response.set_cookie(
        settings.session_cookie_name,
        sid,
        max_age=settings.session_idle_ttl,
        httponly=True,
        samesite="lax",
    )


def get_services(request: Request) -> AppServices:
    return request.app.state.services


async def get_user_session(
    request: Request,
    response: Response,
    services: AppServices = Depends(get_services),
) -> UserSession:
    """Resolve (or create) the caller's client session and refresh its token if due."""
    sid = request.cookies.get(settings.session_cookie_name)
    user_session, created = await services.registry.get_or_create(sid)
    if created:
        set_session_cookie(response, user_session.sid)
    request.state.user_session = user_session
    await user_session.store.ensure_fresh()
    return user_session


async def require_user(user_session: UserSession = Depends(get_user_session)) -> UserSession:
    """Same as get_user_session, but rejects callers that are not signed in."""
    if not user_session.store.state.is_authenticated:
        raise AuthenticationError("You must be signed in to do that")
    return user_session


def get_flows(
    services: AppServices = Depends(get_services),
    user_session: UserSession = Depends(get_user_session),
) -> FormFlows:
    return FormFlows(services.backend, services.pool, user_session.store, user_session.feed)
