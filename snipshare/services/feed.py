"""
SnipShare — Feed Aggregator
===========================

What:  Loads snippets, vote rows and comment counts, and renders the
       filtered, sorted feed for one client session.
How:   FeedAggregator performs the backend reads and vote writes, each under
       its own pool lease. FeedView holds one session's local copy: three
       sections loaded concurrently with asyncio.gather(), filter state with
       a debounced search term, and per-snippet vote rows.
Who:   One FeedAggregator per process; one FeedView per client session.

Filter pipeline (in order):
    language == filters.language
    → snippet.tags ⊇ filters.tags
    → filters.search in title / description / code / tags (case-insensitive)

Vote reload tickets:
    Every vote read (full reload or single-snippet re-read) takes the next
    ticket before it is issued. Rows for a snippet are only replaced by a
    read whose ticket is newer than the last one applied to that snippet,
    so a slow, older read can never overwrite a newer one.
"""

import asyncio
import logging
import uuid
from collections import Counter, defaultdict
from typing import Dict, Iterable, List, Optional

from snipshare.backend.client import BackendClient
from snipshare.config import settings
from snipshare.exceptions import AuthenticationError, BackendError, BackendErrorKind, SnipShareError
from snipshare.models.snippet import LANGUAGES, VOTE_CONFLICT_TARGET, Snippet, Vote, VoteTally
from snipshare.schemas.feed import FeedFilters, FeedItem, FeedResponse, SectionState, SortOrder
from snipshare.services.auth_store import AuthStore
from snipshare.services.debounce import Debouncer
from snipshare.services.pool import LeasePool

logger = logging.getLogger(__name__)

SECTIONS = ("snippets", "votes", "comments")


# ══════════════════════════════════════════════════════════════════════════
# Pure helpers
# ══════════════════════════════════════════════════════════════════════════


def _matches_search(snippet: Snippet, term: str) -> bool:
    haystacks = [snippet.title, snippet.description or "", snippet.code, *snippet.tags]
    return any(term in text.lower() for text in haystacks)


def filter_snippets(snippets: Iterable[Snippet], filters: FeedFilters) -> List[Snippet]:
    """Apply the language → tags → search pipeline, preserving input order."""
    result = list(snippets)
    if filters.language:
        result = [s for s in result if s.language == filters.language]
    if filters.tags:
        wanted = set(filters.tags)
        result = [s for s in result if wanted.issubset(s.tags)]
    term = filters.search.strip().lower()
    if term:
        result = [s for s in result if _matches_search(s, term)]
    return result


def tally_votes(rows: Dict[str, bool], username: Optional[str]) -> VoteTally:
    """Count one snippet's vote rows (username → is_upvote)."""
    upvotes = sum(1 for is_up in rows.values() if is_up)
    return VoteTally(
        upvotes=upvotes,
        downvotes=len(rows) - upvotes,
        user_vote=rows.get(username) if username else None,
    )


def sort_items(items: List[FeedItem], order: SortOrder) -> List[FeedItem]:
    if order == "oldest":
        return sorted(items, key=lambda i: i.snippet.created_at)
    newest = sorted(items, key=lambda i: i.snippet.created_at, reverse=True)
    if order == "top":
        # sorted() is stable: ties stay newest first
        return sorted(newest, key=lambda i: i.score, reverse=True)
    return newest


# ══════════════════════════════════════════════════════════════════════════
# Backend access
# ══════════════════════════════════════════════════════════════════════════


class FeedAggregator:
    """Backend reads and vote writes for the feed. Stateless apart from config."""

    def __init__(
        self,
        backend: BackendClient,
        pool: LeasePool,
        fetch_timeout: Optional[float] = None,
    ):
        self._backend = backend
        self._pool = pool
        self.fetch_timeout = fetch_timeout or settings.feed_fetch_timeout

    async def fetch_snippets(self, access_token: Optional[str] = None) -> List[Snippet]:
        """
        All snippets, newest first.

        Raises:
            BackendError: kind TIMEOUT with "Request timed out" when the read
                does not finish within fetch_timeout.
        """
        query = (
            self._backend.table("snippets", access_token=access_token)
            .select("*")
            .order("created_at", desc=True)
        )
        async with self._pool.lease():
            try:
                rows = await asyncio.wait_for(query.execute(), self.fetch_timeout)
            except asyncio.TimeoutError as exc:
                logger.warning("Snippet fetch exceeded %.1fs", self.fetch_timeout)
                raise BackendError(
                    message="Request timed out",
                    kind=BackendErrorKind.TIMEOUT,
                    context={"timeout": self.fetch_timeout},
                ) from exc
        return [Snippet.model_validate(row) for row in rows or []]

    async def fetch_votes(
        self,
        access_token: Optional[str] = None,
        snippet_id: Optional[uuid.UUID] = None,
    ) -> List[Vote]:
        query = self._backend.table("snippet_votes", access_token=access_token).select(
            "snippet_id,username,is_upvote"
        )
        if snippet_id is not None:
            query = query.eq("snippet_id", snippet_id)
        async with self._pool.lease():
            rows = await query.execute()
        return [Vote.model_validate(row) for row in rows or []]

    async def fetch_comment_counts(self, access_token: Optional[str] = None) -> Counter:
        query = self._backend.table("snippet_comments", access_token=access_token).select(
            "snippet_id"
        )
        async with self._pool.lease():
            rows = await query.execute()
        return Counter(uuid.UUID(str(row["snippet_id"])) for row in rows or [])

    async def write_vote(
        self,
        access_token: str,
        snippet_id: uuid.UUID,
        username: str,
        is_upvote: bool,
        remove: bool = False,
    ) -> None:
        """Delete the user's vote row when `remove`, otherwise upsert it."""
        table = self._backend.table("snippet_votes", access_token=access_token)
        if remove:
            query = table.delete().eq("snippet_id", snippet_id).eq("username", username)
        else:
            query = table.upsert(
                {"snippet_id": str(snippet_id), "username": username, "is_upvote": is_upvote},
                on_conflict=VOTE_CONFLICT_TARGET,
            )
        async with self._pool.lease():
            await query.execute()
        logger.info(
            "Vote %s on %s by %s",
            "removed" if remove else ("up" if is_upvote else "down"),
            snippet_id,
            username,
        )


# ══════════════════════════════════════════════════════════════════════════
# Per-session view
# ══════════════════════════════════════════════════════════════════════════


class FeedView:
    """
    Local feed state of one client session.

    Usage:
        view = FeedView(aggregator, store)
        await view.load()
        view.set_filters(language="go", tags=["cli"])
        page = view.view()
    """

    def __init__(
        self,
        aggregator: FeedAggregator,
        store: AuthStore,
        debounce_ms: Optional[int] = None,
    ):
        self._aggregator = aggregator
        self._store = store
        delay_ms = settings.search_debounce_ms if debounce_ms is None else debounce_ms

        self.filters = FeedFilters()
        self.sections: Dict[str, SectionState] = {name: SectionState() for name in SECTIONS}
        self.filter_pass_count = 0

        self._snippets: List[Snippet] = []
        self._visible: List[Snippet] = []
        self._votes: Dict[uuid.UUID, Dict[str, bool]] = {}
        self._comment_counts: Counter = Counter()
        self._ticket = 0
        self._applied: Dict[uuid.UUID, int] = {}
        self._stale = True
        self._search = Debouncer(delay_ms / 1000.0, self._apply_search)

    @property
    def stale(self) -> bool:
        return self._stale

    @property
    def snippets(self) -> List[Snippet]:
        return list(self._snippets)

    def mark_stale(self) -> None:
        self._stale = True

    def _access_token(self) -> Optional[str]:
        session = self._store.state.session
        return session.access_token if session else None

    def _next_ticket(self) -> int:
        self._ticket += 1
        return self._ticket

    # ── Loading ───────────────────────────────────────────────────────────

    async def load(self) -> None:
        """Fetch all three sections concurrently; a failed section does not block the others."""
        for name in SECTIONS:
            self.sections[name] = SectionState(status="loading")
        token = self._access_token()
        await asyncio.gather(
            self._load_section("snippets", self._load_snippets(token)),
            self._load_section("votes", self._load_votes(token)),
            self._load_section("comments", self._load_comments(token)),
        )
        self._stale = False
        self._refilter()

    async def _load_section(self, name: str, loader) -> None:
        try:
            await loader
        except SnipShareError as exc:
            kind = getattr(exc, "kind", None)
            logger.warning("Feed section '%s' failed: %s", name, exc.message)
            self.sections[name] = SectionState(
                status="error",
                error=exc.message,
                kind=kind.value if kind is not None else None,
            )
        else:
            self.sections[name] = SectionState(status="ready")

    async def _load_snippets(self, token: Optional[str]) -> None:
        self._snippets = await self._aggregator.fetch_snippets(token)

    async def _load_votes(self, token: Optional[str]) -> None:
        ticket = self._next_ticket()
        rows = await self._aggregator.fetch_votes(token)
        self._apply_vote_rows(rows, ticket)

    async def _load_comments(self, token: Optional[str]) -> None:
        self._comment_counts = await self._aggregator.fetch_comment_counts(token)

    def _apply_vote_rows(
        self,
        rows: List[Vote],
        ticket: int,
        snippet_id: Optional[uuid.UUID] = None,
    ) -> None:
        grouped: Dict[uuid.UUID, Dict[str, bool]] = defaultdict(dict)
        for vote in rows:
            grouped[vote.snippet_id][vote.username] = vote.is_upvote

        targets = {snippet_id} if snippet_id is not None else set(grouped) | set(self._votes)
        for target in targets:
            if self._applied.get(target, 0) >= ticket:
                logger.debug("Discarded stale vote rows for %s (ticket %d)", target, ticket)
                continue
            self._votes[target] = grouped.get(target, {})
            self._applied[target] = ticket

    # ── Filtering ─────────────────────────────────────────────────────────

    def _refilter(self) -> None:
        self._visible = filter_snippets(self._snippets, self.filters)
        self.filter_pass_count += 1

    def _apply_search(self, term: str) -> None:
        self.filters = self.filters.model_copy(update={"search": term})
        self._refilter()

    def set_search(self, term: str) -> None:
        """Queue a search term; only the last one inside the debounce window applies."""
        self._search.push(term)

    def flush_search(self) -> None:
        self._search.flush()

    def set_filters(
        self,
        language: Optional[str] = None,
        tags: Optional[List[str]] = None,
        sort: Optional[SortOrder] = None,
        search: Optional[str] = None,
    ) -> FeedFilters:
        """
        Update filters. Language, tags and sort apply immediately; search is
        debounced. An empty language string clears the language filter.
        """
        changes = {}
        if language is not None:
            changes["language"] = language or None
        if tags is not None:
            cleaned: List[str] = []
            for tag in tags:
                tag = tag.strip()
                if tag and tag not in cleaned:
                    cleaned.append(tag)
            changes["tags"] = cleaned
        if sort is not None:
            changes["sort"] = sort
        if changes:
            self.filters = self.filters.model_copy(update=changes)
            self._refilter()
        if search is not None:
            self.set_search(search)
        return self.filters

    # ── Votes & comments ──────────────────────────────────────────────────

    def tally(self, snippet_id: uuid.UUID) -> VoteTally:
        return tally_votes(self._votes.get(snippet_id, {}), self._store.state.username)

    async def vote(self, snippet_id: uuid.UUID, is_upvote: bool) -> VoteTally:
        """
        Cast, switch or withdraw the current user's vote.

        Voting the same polarity again removes the vote. After the write the
        snippet's rows are re-read; if the re-read fails, the local rows are
        updated from the write that succeeded.

        Raises:
            AuthenticationError: no signed-in user with a profile.
            BackendError: the write failed (local state unchanged).
        """
        state = self._store.state
        username = state.username
        if not state.is_authenticated or not username:
            raise AuthenticationError("You must be signed in to vote")

        token = state.session.access_token
        if snippet_id not in self._votes:
            # Feed not loaded for this snippet; the toggle needs the stored row
            ticket = self._next_ticket()
            rows = await self._aggregator.fetch_votes(token, snippet_id)
            self._apply_vote_rows(rows, ticket, snippet_id=snippet_id)
        current = self._votes.get(snippet_id, {}).get(username)
        remove = current is not None and current == is_upvote
        await self._aggregator.write_vote(token, snippet_id, username, is_upvote, remove)

        ticket = self._next_ticket()
        try:
            rows = await self._aggregator.fetch_votes(token, snippet_id)
        except SnipShareError as exc:
            logger.warning("Vote re-read for %s failed, applying write locally: %s", snippet_id, exc.message)
            if self._applied.get(snippet_id, 0) < ticket:
                local = dict(self._votes.get(snippet_id, {}))
                if remove:
                    local.pop(username, None)
                else:
                    local[username] = is_upvote
                self._votes[snippet_id] = local
                self._applied[snippet_id] = ticket
        else:
            self._apply_vote_rows(rows, ticket, snippet_id=snippet_id)
        return self.tally(snippet_id)

    def adjust_comment_count(self, snippet_id: uuid.UUID, delta: int) -> None:
        self._comment_counts[snippet_id] = max(0, self._comment_counts[snippet_id] + delta)

    # ── Rendering ─────────────────────────────────────────────────────────

    def view(self) -> FeedResponse:
        username = self._store.state.username
        items = []
        for snippet in self._visible:
            tally = tally_votes(self._votes.get(snippet.id, {}), username)
            items.append(
                FeedItem(
                    snippet=snippet,
                    upvotes=tally.upvotes,
                    downvotes=tally.downvotes,
                    score=tally.score,
                    user_vote=tally.user_state,
                    comment_count=self._comment_counts.get(snippet.id, 0),
                )
            )
        return FeedResponse(
            items=sort_items(items, self.filters.sort),
            total=len(self._snippets),
            sections=dict(self.sections),
            filters=self.filters,
            pending_search=self._search.pending,
            languages=list(LANGUAGES),
            tags=sorted({tag for s in self._snippets for tag in s.tags}),
        )

    def close(self) -> None:
        self._search.cancel()
