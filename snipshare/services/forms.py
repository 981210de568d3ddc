"""
SnipShare — Form Flows
======================

What:  The user-facing write operations: register, sign in/out, snippet
       create/edit/delete, password change, profile update and comments.
How:   Every flow follows the same shape:
           1. Validate input locally (ValidationError, no network call)
           2. Acquire a pool lease
           3. One or two backend calls
           4. On failure, turn the BackendError into a FormFlowError whose
              message is chosen by the error kind
           5. Release the lease
Who:   One FormFlows per request, built by the dependency layer from the
       client session's auth store and feed view.

Error messages by kind:
    TIMEOUT            → "Operation timed out. Please try again with a smaller snippet."
    PERMISSION_DENIED  → "Unable to save snippet due to SQL command restrictions. ..."
    CONNECTION         → "Database connection error. Please try again in a moment."
    anything else      → the backend's own message
"""

import logging
import re
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable, List, Optional, Sequence, Tuple, Union

from snipshare.backend.client import BackendClient
from snipshare.config import settings
from snipshare.exceptions import (
    AuthenticationError,
    BackendError,
    BackendErrorKind,
    FormFlowError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from snipshare.models.auth import Session
from snipshare.models.profile import Profile
from snipshare.models.snippet import LANGUAGES, Comment, Snippet
from snipshare.services.auth_store import AuthState, AuthStore
from snipshare.services.feed import FeedView
from snipshare.services.pool import LeasePool

logger = logging.getLogger(__name__)

REGISTRATION_MESSAGE = (
    "Registration successful! Please check your email to verify your account "
    "before signing in."
)

_KIND_MESSAGES = {
    BackendErrorKind.TIMEOUT: "Operation timed out. Please try again with a smaller snippet.",
    BackendErrorKind.PERMISSION_DENIED: (
        "Unable to save snippet due to SQL command restrictions. "
        "Please remove any SET commands or similar SQL operations."
    ),
    BackendErrorKind.CONNECTION: "Database connection error. Please try again in a moment.",
}

_SET_STATEMENT = re.compile(r"^\s*set\s+", re.IGNORECASE | re.MULTILINE)

SLOW_WRITE_SECONDS = 1.0


# ══════════════════════════════════════════════════════════════════════════
# Helpers
# ══════════════════════════════════════════════════════════════════════════


def describe_error(exc: BackendError) -> str:
    """User-facing message for a backend failure, chosen by its kind."""
    return _KIND_MESSAGES.get(exc.kind, exc.message)


def clean_tags(tags: Union[str, Iterable[str], None]) -> List[str]:
    """
    Split comma-separated text (or take a list), trim, drop empties and
    duplicates. The first occurrence of each tag keeps its position.
    """
    if tags is None:
        return []
    parts = tags.split(",") if isinstance(tags, str) else tags
    cleaned: List[str] = []
    for tag in parts:
        tag = tag.strip()
        if tag and tag not in cleaned:
            cleaned.append(tag)
    return cleaned


def sanitize_code(code: str) -> str:
    """Break lines after every `;` and comment out lines starting with `set `."""
    return _SET_STATEMENT.sub("-- set ", code.replace(";", ";\n")).strip()


def validate_email_domain(email: str, allowed: Optional[Sequence[str]] = None) -> bool:
    domains = allowed if allowed is not None else settings.allowed_email_domains_list
    local, at, domain = email.strip().rpartition("@")
    if not (local and at and domain):
        return False
    return domain.lower() in {d.lower() for d in domains}


def _require(value: Optional[str], label: str, field: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{label} is required", field=field)
    return value.strip()


# ══════════════════════════════════════════════════════════════════════════
# Flows
# ══════════════════════════════════════════════════════════════════════════


class FormFlows:
    """
    Form operations for one client session.

    Usage:
        flows = FormFlows(backend, pool, user_session.store, user_session.feed)
        snippet = await flows.create_snippet("Hello", None, "print(1)", "python", "demo")
    """

    def __init__(
        self,
        backend: BackendClient,
        pool: LeasePool,
        store: AuthStore,
        feed: Optional[FeedView] = None,
    ):
        self._backend = backend
        self._pool = pool
        self._store = store
        self._feed = feed

    @property
    def auth(self):
        return self._store.auth

    @asynccontextmanager
    async def _flow(self, name: str) -> AsyncIterator[None]:
        async with self._pool.lease():
            try:
                yield
            except BackendError as exc:
                logger.warning("%s failed: %s (%s)", name, exc.message, exc.kind.value)
                raise FormFlowError(
                    message=describe_error(exc),
                    kind=exc.kind,
                    context={"flow": name},
                ) from exc

    def _signed_in(self, message: str = "You must be signed in to do that") -> Tuple[AuthState, str]:
        state = self._store.state
        if not state.is_authenticated or state.session is None:
            raise AuthenticationError(message)
        return state, state.session.access_token

    def _signed_in_with_profile(self, message: str) -> Tuple[AuthState, str, str]:
        state, token = self._signed_in(message)
        if not state.username:
            raise AuthenticationError("Your profile could not be loaded. Please sign in again.")
        return state, token, state.username

    async def _fetch_one(self, table: str, row_id: uuid.UUID, token: str, resource: str) -> dict:
        try:
            return await (
                self._backend.table(table, access_token=token)
                .select("*")
                .eq("id", row_id)
                .single()
                .execute()
            )
        except BackendError as exc:
            if exc.kind == BackendErrorKind.NOT_FOUND:
                raise NotFoundError(resource, str(row_id)) from exc
            raise

    # ── Account ───────────────────────────────────────────────────────────

    async def register(
        self,
        username: str,
        name: str,
        email: str,
        password: str,
        verify_password: str,
        email_redirect_to: Optional[str] = None,
    ) -> str:
        """
        Create the auth user, then the profile row.

        Returns: the success message shown before redirecting to sign-in.
        """
        username = _require(username, "Username", "username")
        name = _require(name, "Name", "name")
        email = _require(email, "Email", "email")
        if not password:
            raise ValidationError("Password is required", field="password")
        if not validate_email_domain(email):
            domains = " or ".join(settings.allowed_email_domains_list)
            raise ValidationError(f"Email must be a {domains} domain", field="email")
        if password != verify_password:
            raise ValidationError("Passwords do not match", field="verify_password")

        async with self._flow("register"):
            user = await self.auth.sign_up(
                email,
                password,
                data={"username": username, "name": name},
                redirect_to=email_redirect_to,
            )
            await (
                self._backend.table("profiles", access_token=self.auth.access_token)
                .insert([{"id": str(user.id), "username": username, "name": name, "email": email}])
                .execute()
            )

        logger.info("Registered %s as '%s'", email, username)
        return REGISTRATION_MESSAGE

    async def sign_in(self, email: str, password: str) -> AuthState:
        """
        Sign in with email and password.

        Raises:
            AuthenticationError: the email address is not confirmed yet; the
                session that was issued is discarded.
        """
        email = _require(email, "Email", "email")
        if not password:
            raise ValidationError("Password is required", field="password")

        async with self._flow("sign_in"):
            session = await self.auth.sign_in_with_password(email, password)
            if not session.user.is_confirmed:
                await self.auth.sign_out()
                raise AuthenticationError("Please verify your email before signing in")

        return self._store.state

    async def sign_out(self) -> None:
        try:
            await self._store.sign_out()
        except BackendError as exc:
            raise FormFlowError(describe_error(exc), kind=exc.kind) from exc

    async def complete_email_link(self, code: str) -> Session:
        """Exchange the code from a confirmation link and verify the session's user."""
        code = _require(code, "Code", "code")
        async with self._flow("auth_callback"):
            session = await self.auth.exchange_code_for_session(code)
            user = await self.auth.get_user()
        if user is None:
            raise AuthenticationError("Could not verify the session")
        return session

    async def change_password(self, current: str, new: str, confirm: str) -> str:
        """Verify the current password by signing in with it, then set the new one."""
        if not current or not new:
            raise ValidationError("Current and new password are required", field="new_password")
        if new != confirm:
            raise ValidationError("New passwords do not match", field="confirm_password")
        state, _ = self._signed_in()
        email = state.user.email or ""

        async with self._flow("change_password"):
            try:
                await self.auth.sign_in_with_password(email, current)
            except BackendError as exc:
                if exc.kind == BackendErrorKind.AUTH or exc.kind == BackendErrorKind.INVALID_REQUEST:
                    raise ValidationError(
                        "Current password is incorrect", field="current_password"
                    ) from exc
                raise
            await self.auth.update_user(password=new)

        logger.info("Password changed for %s", email)
        return "Password updated successfully"

    async def update_profile(self, username: str, name: str) -> Optional[Profile]:
        """Update the profile row matched by email, then refresh the auth state."""
        username = _require(username, "Username", "username")
        state, token = self._signed_in()
        email = state.user.email
        if not email:
            raise AuthenticationError("User not authenticated or missing email")

        async with self._flow("update_profile"):
            await (
                self._backend.table("profiles", access_token=token)
                .update({"username": username, "name": (name or "").strip()})
                .eq("email", email)
                .execute()
            )

        refreshed = await self._store.refresh_auth()
        return refreshed.profile

    # ── Snippets ──────────────────────────────────────────────────────────

    @staticmethod
    def _snippet_fields(
        title: str,
        description: Optional[str],
        code: str,
        language: str,
        tags: Union[str, Iterable[str], None],
    ) -> dict:
        title = _require(title, "Title", "title")
        _require(code, "Code", "code")
        language = _require(language, "Language", "language")
        if language not in LANGUAGES:
            raise ValidationError(f"Unknown language '{language}'", field="language")
        return {
            "title": title,
            "description": (description or "").strip(),
            "code": sanitize_code(code),
            "language": language,
            "tags": clean_tags(tags),
        }

    async def create_snippet(
        self,
        title: str,
        description: Optional[str],
        code: str,
        language: str,
        tags: Union[str, Iterable[str], None] = None,
    ) -> Snippet:
        _, token, username = self._signed_in_with_profile("You must be logged in to submit a snippet")
        fields = self._snippet_fields(title, description, code, language, tags)
        fields["username"] = username

        async with self._flow("create_snippet"):
            started = time.perf_counter()
            row = await (
                self._backend.table("snippets", access_token=token)
                .insert([fields])
                .select("*")
                .single()
                .execute()
            )
            elapsed = time.perf_counter() - started
            if elapsed > SLOW_WRITE_SECONDS:
                logger.warning("Snippet insert took %.2fs", elapsed)

        if not row:
            raise FormFlowError("No data returned from insert")
        snippet = Snippet.model_validate(row)
        logger.info("Snippet %s created by %s", snippet.id, username)
        if self._feed is not None:
            self._feed.mark_stale()
        return snippet

    async def _owned_snippet(self, snippet_id: uuid.UUID, token: str, username: str) -> Snippet:
        snippet = Snippet.model_validate(await self._fetch_one("snippets", snippet_id, token, "Snippet"))
        if snippet.username != username:
            raise PermissionDeniedError("Only the author can change this snippet")
        return snippet

    async def edit_snippet(
        self,
        snippet_id: uuid.UUID,
        title: str,
        description: Optional[str],
        code: str,
        language: str,
        tags: Union[str, Iterable[str], None] = None,
    ) -> Snippet:
        _, token, username = self._signed_in_with_profile("You must be logged in to edit a snippet")
        fields = self._snippet_fields(title, description, code, language, tags)

        async with self._flow("edit_snippet"):
            await self._owned_snippet(snippet_id, token, username)
            row = await (
                self._backend.table("snippets", access_token=token)
                .update(fields)
                .eq("id", snippet_id)
                .eq("username", username)
                .select("*")
                .single()
                .execute()
            )

        if self._feed is not None:
            self._feed.mark_stale()
        return Snippet.model_validate(row)

    async def delete_snippet(self, snippet_id: uuid.UUID) -> None:
        _, token, username = self._signed_in_with_profile("You must be logged in to delete a snippet")
        async with self._flow("delete_snippet"):
            await self._owned_snippet(snippet_id, token, username)
            await (
                self._backend.table("snippets", access_token=token)
                .delete()
                .eq("id", snippet_id)
                .eq("username", username)
                .execute()
            )
        logger.info("Snippet %s deleted by %s", snippet_id, username)
        if self._feed is not None:
            self._feed.mark_stale()

    async def list_user_snippets(self) -> List[Snippet]:
        """The signed-in user's own snippets, newest first."""
        _, token, username = self._signed_in_with_profile("You must be signed in to view your snippets")
        async with self._flow("list_user_snippets"):
            rows = await (
                self._backend.table("snippets", access_token=token)
                .select("*")
                .eq("username", username)
                .order("created_at", desc=True)
                .execute()
            )
        return [Snippet.model_validate(row) for row in rows or []]

    # ── Comments ──────────────────────────────────────────────────────────

    async def list_comments(self, snippet_id: uuid.UUID) -> List[Comment]:
        session = self._store.state.session
        token = session.access_token if session else None
        async with self._flow("list_comments"):
            rows = await (
                self._backend.table("snippet_comments", access_token=token)
                .select("*")
                .eq("snippet_id", snippet_id)
                .order("created_at")
                .execute()
            )
        return [Comment.model_validate(row) for row in rows or []]

    async def add_comment(self, snippet_id: uuid.UUID, content: str) -> Comment:
        _, token, username = self._signed_in_with_profile("Sign in to comment")
        content = (content or "").strip()
        if not content:
            raise ValidationError("Comment cannot be empty", field="content")

        async with self._flow("add_comment"):
            row = await (
                self._backend.table("snippet_comments", access_token=token)
                .insert([{"snippet_id": str(snippet_id), "username": username, "content": content}])
                .select("*")
                .single()
                .execute()
            )

        if self._feed is not None:
            self._feed.adjust_comment_count(snippet_id, 1)
        return Comment.model_validate(row)

    async def delete_comment(self, comment_id: uuid.UUID) -> None:
        _, token, username = self._signed_in_with_profile("Sign in to delete comments")
        async with self._flow("delete_comment"):
            comment = Comment.model_validate(
                await self._fetch_one("snippet_comments", comment_id, token, "Comment")
            )
            if comment.username != username:
                raise PermissionDeniedError("Only the author can delete this comment")
            await (
                self._backend.table("snippet_comments", access_token=token)
                .delete()
                .eq("id", comment_id)
                .eq("username", username)
                .execute()
            )

        if self._feed is not None:
            self._feed.adjust_comment_count(comment.snippet_id, -1)
