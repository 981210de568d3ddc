"""
SnipShare — Test Configuration (conftest.py)
============================================

What:  Shared pytest fixtures for the entire test suite.
How:   FakeBackend is an in-memory stand-in for the auth and table APIs,
       served to BackendClient through httpx.MockTransport. Tests seed it,
       inject failures or delays, and inspect the calls it received.

Fixture Hierarchy:
    fake_backend ─▶ backend (BackendClient on MockTransport)
                    pool    (small LeasePool with short timers)
                    ─▶ services (AppServices) ─▶ test_client (ASGI)
"""

import asyncio
import base64
import hashlib
import json
import os
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import parse_qsl

# Settings are read at import time; override before importing the package
os.environ["BACKEND_URL"] = "https://test.supabase.co"
os.environ["BACKEND_ANON_KEY"] = "test-anon-key"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["ALLOWED_EMAIL_DOMAINS"] = "cribl.io"

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from snipshare.backend.client import BackendClient
from snipshare.dependencies import AppServices
from snipshare.services.pool import LeasePool

ANON_KEY = "test-anon-key"
_EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _fmt(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    return str(value)


def _json(status: int, body: Any = None) -> httpx.Response:
    if body is None:
        return httpx.Response(status)
    return httpx.Response(status, content=json.dumps(body).encode(), headers={"content-type": "application/json"})


class FakeBackend:
    """
    In-memory auth + table API.

    Seeding:
        user = fake.add_user("alice@cribl.io", "pw", "alice")
        fake.add_snippet(title="...", language="go", tags=["cli"], username="alice")

    Fault injection:
        fake.fail("GET", "/rest/v1/snippet_votes", status=503, body={...}, times=1)
        fake.fail("GET", "/rest/v1/snippets", exc=httpx.ConnectError("down"))
        fake.delay("GET", "/rest/v1/snippets", 0.2)
    """

    UNIQUE = {"snippet_votes": ("snippet_id", "username"), "profiles": ("username",)}

    def __init__(self):
        self.users: Dict[str, dict] = {}
        self.passwords: Dict[str, str] = {}
        self.tokens: Dict[str, str] = {}          # access token → user id
        self.refresh_tokens: Dict[str, str] = {}  # refresh token → user id
        self.codes: Dict[str, Tuple[str, str]] = {}  # auth code → (user id, challenge)
        self.tables: Dict[str, List[dict]] = {
            "profiles": [],
            "snippets": [],
            "snippet_votes": [],
            "snippet_comments": [],
        }
        self.calls: List[Tuple[str, str, Dict[str, str]]] = []
        self.request_ids: List[str] = []  # X-Request-ID of each call, "" when absent
        self.auto_confirm = False
        self.session_ttl = 3600
        self._failures: List[dict] = []
        self._delays: Dict[Tuple[str, str], float] = {}
        self._clock = 0

    # ── Seeding ───────────────────────────────────────────────────────────

    def _now(self) -> str:
        self._clock += 1
        return (_EPOCH + timedelta(seconds=self._clock)).isoformat()

    def add_user(
        self,
        email: str,
        password: str,
        username: Optional[str] = None,
        name: str = "Test User",
        confirmed: bool = True,
        with_profile: bool = True,
    ) -> dict:
        user_id = str(uuid.uuid4())
        user = {
            "id": user_id,
            "email": email,
            "email_confirmed_at": self._now() if confirmed else None,
            "user_metadata": {"username": username, "name": name},
            "created_at": self._now(),
        }
        self.users[user_id] = user
        self.passwords[user_id] = password
        if with_profile and username:
            self.tables["profiles"].append(
                {"id": user_id, "username": username, "name": name, "email": email, "created_at": self._now()}
            )
        return user

    def add_snippet(self, **fields) -> dict:
        row = {
            "id": str(uuid.uuid4()),
            "created_at": self._now(),
            "title": "Snippet",
            "description": None,
            "code": "print('hi')",
            "language": "python",
            "tags": [],
            "username": "alice",
        }
        row.update(fields)
        self.tables["snippets"].append(row)
        return row

    def add_vote(self, snippet_id: str, username: str, is_upvote: bool) -> None:
        self.tables["snippet_votes"].append(
            {"snippet_id": str(snippet_id), "username": username, "is_upvote": is_upvote}
        )

    def add_comment(self, snippet_id: str, username: str, content: str = "Nice") -> dict:
        row = {
            "id": str(uuid.uuid4()),
            "snippet_id": str(snippet_id),
            "username": username,
            "content": content,
            "created_at": self._now(),
            "updated_at": None,
        }
        self.tables["snippet_comments"].append(row)
        return row

    def issue_session(self, user_id: str) -> dict:
        access = f"access-{uuid.uuid4().hex}"
        refresh = f"refresh-{uuid.uuid4().hex}"
        self.tokens[access] = user_id
        self.refresh_tokens[refresh] = user_id
        return {
            "access_token": access,
            "refresh_token": refresh,
            "token_type": "bearer",
            "expires_in": self.session_ttl,
            "user": self.users[user_id],
        }

    # ── Fault injection ───────────────────────────────────────────────────

    def fail(
        self,
        method: str,
        path: str,
        status: int = 500,
        body: Optional[dict] = None,
        exc: Optional[Exception] = None,
        times: int = 1,
    ) -> None:
        self._failures.append(
            {"method": method, "path": path, "status": status, "body": body, "exc": exc, "times": times}
        )

    def delay(self, method: str, path: str, seconds: float) -> None:
        self._delays[(method, path)] = seconds

    def count(self, method: str, path: str) -> int:
        return sum(1 for m, p, _ in self.calls if m == method and p == path)

    # ── Transport entry point ─────────────────────────────────────────────

    async def handler(self, request: httpx.Request) -> httpx.Response:
        method, path = request.method, request.url.path
        params = dict(parse_qsl(request.url.query.decode()))
        self.calls.append((method, path, params))
        self.request_ids.append(request.headers.get("x-request-id", ""))

        seconds = self._delays.get((method, path))
        if seconds:
            await asyncio.sleep(seconds)

        for failure in self._failures:
            if failure["method"] == method and failure["path"] == path and failure["times"] > 0:
                failure["times"] -= 1
                if failure["exc"] is not None:
                    raise failure["exc"]
                return _json(failure["status"], failure["body"] or {"message": "injected failure"})

        if request.headers.get("apikey") != ANON_KEY:
            return _json(401, {"message": "Invalid API key"})

        body = json.loads(request.content) if request.content else None
        if path.startswith("/auth/v1/"):
            return self._auth(method, path[len("/auth/v1/"):], params, body, request)
        if path.startswith("/rest/v1/"):
            return self._rest(method, path[len("/rest/v1/"):], request, body)
        return _json(404, {"message": "not found"})

    # ── Auth API ──────────────────────────────────────────────────────────

    def _bearer_user(self, request: httpx.Request) -> Optional[str]:
        header = request.headers.get("authorization", "")
        token = header[len("Bearer "):] if header.startswith("Bearer ") else ""
        return self.tokens.get(token)

    def _auth(self, method, route, params, body, request) -> httpx.Response:
        if route == "health" and method == "GET":
            return _json(200, {"name": "GoTrue"})

        if route == "signup" and method == "POST":
            if any(u["email"] == body["email"] for u in self.users.values()):
                return _json(422, {"code": 422, "msg": "User already registered"})
            meta = body.get("data") or {}
            user = self.add_user(
                body["email"],
                body["password"],
                username=meta.get("username"),
                name=meta.get("name", ""),
                confirmed=self.auto_confirm,
                with_profile=False,
            )
            code = f"code-{uuid.uuid4().hex}"
            self.codes[code] = (user["id"], body.get("code_challenge", ""))
            if self.auto_confirm:
                return _json(200, self.issue_session(user["id"]))
            return _json(200, user)

        if route == "token" and method == "POST":
            grant = params.get("grant_type")
            if grant == "password":
                for user_id, user in self.users.items():
                    if user["email"] == body["email"] and self.passwords[user_id] == body["password"]:
                        return _json(200, self.issue_session(user_id))
                return _json(400, {"error": "invalid_grant", "error_description": "Invalid login credentials"})
            if grant == "refresh_token":
                user_id = self.refresh_tokens.pop(body["refresh_token"], None)
                if user_id is None:
                    return _json(400, {"error": "invalid_grant", "error_description": "Invalid Refresh Token"})
                return _json(200, self.issue_session(user_id))
            if grant == "pkce":
                entry = self.codes.pop(body["auth_code"], None)
                digest = hashlib.sha256(body["code_verifier"].encode()).digest()
                challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode()
                if entry is None or entry[1] != challenge:
                    return _json(400, {"error": "invalid_grant", "error_description": "invalid flow state"})
                self.users[entry[0]]["email_confirmed_at"] = self._now()
                return _json(200, self.issue_session(entry[0]))
            return _json(400, {"error": "unsupported_grant_type"})

        user_id = self._bearer_user(request)
        if route == "user":
            if user_id is None:
                return _json(401, {"code": 401, "msg": "invalid JWT"})
            if method == "PUT":
                if "password" in body:
                    self.passwords[user_id] = body["password"]
                if "data" in body:
                    self.users[user_id]["user_metadata"].update(body["data"])
            return _json(200, self.users[user_id])

        if route == "logout" and method == "POST":
            if user_id is None:
                return _json(401, {"code": 401, "msg": "invalid JWT"})
            for token in [t for t, uid in self.tokens.items() if uid == user_id]:
                del self.tokens[token]
            return _json(204)

        return _json(404, {"message": "not found"})

    # ── Table API ─────────────────────────────────────────────────────────

    @staticmethod
    def _matches(row: dict, filters: List[Tuple[str, str]]) -> bool:
        for column, expr in filters:
            op, _, value = expr.partition(".")
            actual = _fmt(row.get(column))
            if op == "eq" and actual != value:
                return False
            if op == "in" and actual not in value.strip("()").split(","):
                return False
        return True

    def _rest(self, method, table, request, body) -> httpx.Response:
        rows = self.tables.setdefault(table, [])
        pairs = parse_qsl(request.url.query.decode())
        reserved = {"select", "order", "limit", "on_conflict"}
        filters = [(k, v) for k, v in pairs if k not in reserved]
        params = dict(pairs)
        single = request.headers.get("accept") == "application/vnd.pgrst.object+json"
        prefer = request.headers.get("prefer", "")

        if self._bearer_user(request) is None and method != "GET" and table != "profiles":
            return _json(403, {"code": "42501", "message": "permission denied for table " + table})

        if method == "GET":
            result = [dict(r) for r in rows if self._matches(r, filters)]
            if "order" in params:
                column, _, direction = params["order"].partition(".")
                result.sort(key=lambda r: r.get(column) or "", reverse=direction == "desc")
            if "limit" in params:
                result = result[: int(params["limit"])]
            return self._respond(result, single, representation=True)

        if method == "POST":
            incoming = body if isinstance(body, list) else [body]
            conflict = params.get("on_conflict")
            written = []
            for new in incoming:
                row = dict(new)
                if table in ("snippets", "snippet_comments", "profiles"):
                    row.setdefault("id", str(uuid.uuid4()))
                    row.setdefault("created_at", self._now())
                key_cols = conflict.split(",") if conflict else self.UNIQUE.get(table, ())
                existing = None
                if key_cols:
                    existing = next(
                        (r for r in rows if all(_fmt(r.get(c)) == _fmt(row.get(c)) for c in key_cols)),
                        None,
                    )
                if existing is not None and not conflict:
                    return _json(409, {"code": "23505", "message": "duplicate key value violates unique constraint"})
                if existing is not None:
                    existing.update(row)
                    written.append(dict(existing))
                else:
                    rows.append(row)
                    written.append(dict(row))
            return self._respond(written, single, "return=representation" in prefer, status=201)

        if method == "PATCH":
            updated = []
            for row in rows:
                if self._matches(row, filters):
                    row.update(body)
                    updated.append(dict(row))
            return self._respond(updated, single, "return=representation" in prefer)

        if method == "DELETE":
            kept = [r for r in rows if not self._matches(r, filters)]
            removed = [dict(r) for r in rows if self._matches(r, filters)]
            self.tables[table] = kept
            return self._respond(removed, single, "return=representation" in prefer)

        return _json(405, {"message": "method not allowed"})

    @staticmethod
    def _respond(rows: List[dict], single: bool, representation: bool, status: int = 200) -> httpx.Response:
        if not representation:
            return _json(204)
        if single:
            if len(rows) != 1:
                return _json(
                    406,
                    {"code": "PGRST116", "message": "JSON object requested, multiple (or no) rows returned"},
                )
            return _json(status, rows[0])
        return _json(status, rows)


# ══════════════════════════════════════════════════════════════════════════
# Fixtures
# ══════════════════════════════════════════════════════════════════════════


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest_asyncio.fixture
async def backend(fake_backend):
    """BackendClient wired to the fake, with zero retry backoff."""
    client = BackendClient(
        url="https://test.supabase.co",
        anon_key=ANON_KEY,
        transport=httpx.MockTransport(fake_backend.handler),
        retry_attempts=3,
        retry_initial_wait=0,
        retry_max_wait=0,
    )
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def pool():
    lease_pool = LeasePool(max_leases=5, min_idle=2, idle_timeout=0.05, acquire_timeout=1.0)
    yield lease_pool
    await lease_pool.close()


@pytest.fixture
def alice(fake_backend) -> dict:
    return fake_backend.add_user("alice@cribl.io", "secret-pw", "alice", name="Alice")


@pytest.fixture
def bob(fake_backend) -> dict:
    return fake_backend.add_user("bob@cribl.io", "bob-pw", "bob", name="Bob")


@pytest_asyncio.fixture
async def services(backend, pool):
    return AppServices(backend=backend, pool=pool)


@pytest_asyncio.fixture
async def test_client(services):
    """
    HTTPX AsyncClient talking to a fresh app over ASGITransport.

    Cookies persist across requests, so one client is one browser.
    """
    from snipshare.main import create_app

    app = create_app(services=services)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    services.registry.close_all()
