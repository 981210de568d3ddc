"""
SnipShare — Backend-as-a-Service Client Package
===============================================

What:  Async client for the external backend: GoTrue-style auth endpoints
       and PostgREST-style table endpoints, sharing one httpx.AsyncClient.

Modules:
    - client.py: BackendClient (transport, error classification, read retry)
    - auth.py:   AuthClient (per client-session auth state and events)
    - query.py:  TableQuery (filter/order/select builder for one table)
"""

from snipshare.backend.auth import AuthClient, AuthSubscription
from snipshare.backend.client import BackendClient
from snipshare.backend.query import TableQuery

__all__ = ["AuthClient", "AuthSubscription", "BackendClient", "TableQuery"]
