"""
SnipShare — Feed Aggregator Unit Tests
======================================

What we test:
    ✅ Filter pipeline: language → tag subset → case-insensitive search
    ✅ Debounced search runs one filter pass per burst
    ✅ Vote tallies and the current user's vote state
    ✅ Voting toggles, switches and survives a failed re-read
    ✅ Stale vote reloads are discarded per snippet
    ✅ Toggling a snippet the feed has not loaded reads its stored vote first
    ✅ A slow snippet fetch fails with "Request timed out" without
       blocking the other sections
"""

import asyncio
import uuid
from datetime import datetime, timezone

import httpx
import pytest
import pytest_asyncio

from snipshare.exceptions import AuthenticationError, BackendErrorKind
from snipshare.models.snippet import Snippet, Vote
from snipshare.schemas.feed import FeedFilters
from snipshare.services.auth_store import AuthStore
from snipshare.services.feed import FeedAggregator, FeedView, filter_snippets, tally_votes


def _snippet(title, language="go", tags=(), **extra) -> Snippet:
    return Snippet(
        id=uuid.uuid4(),
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        title=title,
        code=extra.pop("code", "fmt.Println()"),
        language=language,
        tags=list(tags),
        username="alice",
        **extra,
    )


@pytest.fixture
def aggregator(backend, pool):
    return FeedAggregator(backend, pool, fetch_timeout=1.0)


@pytest.fixture
def store(backend, pool):
    return AuthStore(backend.auth_client(), backend, pool)


@pytest.fixture
def view(aggregator, store):
    return FeedView(aggregator, store, debounce_ms=30)


class TestFilterPipeline:
    def test_language_and_tag_subset(self):
        a = _snippet("a", "go", ["go"])
        b = _snippet("b", "go", ["go", "cli"])
        c = _snippet("c", "python", ["python"])

        result = filter_snippets([a, b, c], FeedFilters(language="go", tags=["cli"]))
        assert [s.title for s in result] == ["b"]

    def test_search_is_case_insensitive_across_fields(self):
        by_title = _snippet("Parse JSON")
        by_desc = _snippet("x", description="A json helper")
        by_code = _snippet("y", code="json.loads(s)")
        by_tag = _snippet("z", tags=["JSON"])
        other = _snippet("w")

        result = filter_snippets([by_title, by_desc, by_code, by_tag, other], FeedFilters(search="JsOn"))
        assert [s.title for s in result] == ["Parse JSON", "x", "y", "z"]

    def test_tag_then_search_narrows(self):
        go = _snippet("a", "go", ["go"])
        go_cli = _snippet("b", "go", ["go", "cli"])
        py = _snippet("c", "python", ["python"])

        assert filter_snippets([go, go_cli, py], FeedFilters(tags=["go"])) == [go, go_cli]
        assert filter_snippets([go, go_cli, py], FeedFilters(tags=["go"], search="cli")) == [go_cli]

    def test_empty_filters_keep_everything(self):
        snippets = [_snippet("a"), _snippet("b")]
        assert filter_snippets(snippets, FeedFilters()) == snippets


class TestTally:
    def test_counts_and_user_state(self):
        tally = tally_votes({"u1": True, "u2": True, "u3": False}, "u1")
        assert (tally.upvotes, tally.downvotes, tally.score) == (2, 1, 1)
        assert tally.user_state == "upvoted"

    def test_anonymous_user_has_no_vote(self):
        assert tally_votes({"u1": False}, None).user_state is None


class TestFeedLoad:
    @pytest.mark.asyncio
    async def test_load_renders_tallies_and_comment_counts(self, view, store, fake_backend, alice):
        s1 = fake_backend.add_snippet(title="First", username="alice")
        s2 = fake_backend.add_snippet(title="Second", username="bob")
        fake_backend.add_vote(s1["id"], "alice", True)
        fake_backend.add_vote(s1["id"], "bob", False)
        fake_backend.add_vote(s2["id"], "bob", True)
        fake_backend.add_comment(s1["id"], "bob")
        fake_backend.add_comment(s1["id"], "alice")

        await store.start()
        await store.auth.sign_in_with_password("alice@cribl.io", "secret-pw")
        await view.load()
        page = view.view()

        assert [item.snippet.title for item in page.items] == ["Second", "First"]
        first = page.items[1]
        assert (first.upvotes, first.downvotes, first.user_vote) == (1, 1, "upvoted")
        assert first.comment_count == 2
        assert page.items[0].user_vote is None
        assert all(section.status == "ready" for section in page.sections.values())

    @pytest.mark.asyncio
    async def test_snippet_timeout_does_not_block_other_sections(self, backend, pool, store, fake_backend):
        fake_backend.add_snippet(title="Slow")
        fake_backend.delay("GET", "/rest/v1/snippets", 0.3)
        view = FeedView(FeedAggregator(backend, pool, fetch_timeout=0.05), store, debounce_ms=10)

        await view.load()

        assert view.sections["snippets"].status == "error"
        assert view.sections["snippets"].error == "Request timed out"
        assert view.sections["snippets"].kind == BackendErrorKind.TIMEOUT.value
        assert view.sections["votes"].status == "ready"
        assert view.sections["comments"].status == "ready"
        assert pool.stats.active == 0

    @pytest.mark.asyncio
    async def test_failed_section_reports_error(self, view, fake_backend):
        fake_backend.add_snippet(title="Kept")
        fake_backend.fail("GET", "/rest/v1/snippet_comments", status=403, body={"code": "42501", "message": "denied"})

        await view.load()

        assert view.sections["comments"].status == "error"
        assert view.sections["comments"].kind == "permission_denied"
        assert len(view.view().items) == 1

        await view.load()
        assert view.sections["comments"].status == "ready"

    @pytest.mark.asyncio
    async def test_sort_top_uses_score(self, view, fake_backend):
        low = fake_backend.add_snippet(title="Low")
        high = fake_backend.add_snippet(title="High")
        fake_backend.add_snippet(title="Newest")
        fake_backend.add_vote(high["id"], "u1", True)
        fake_backend.add_vote(high["id"], "u2", True)
        fake_backend.add_vote(low["id"], "u1", False)

        await view.load()
        view.set_filters(sort="top")
        assert [i.snippet.title for i in view.view().items] == ["High", "Newest", "Low"]

        view.set_filters(sort="oldest")
        assert [i.snippet.title for i in view.view().items] == ["Low", "High", "Newest"]


class TestFeedFilters:
    @pytest.mark.asyncio
    async def test_tag_filter_through_view(self, view, fake_backend):
        fake_backend.add_snippet(title="go", language="go", tags=["go"])
        fake_backend.add_snippet(title="go-cli", language="go", tags=["go", "cli"])
        fake_backend.add_snippet(title="py", language="python", tags=["python"])
        await view.load()

        view.set_filters(language="go", tags=[" cli ", "cli"])
        page = view.view()

        assert page.filters.tags == ["cli"]
        assert [i.snippet.title for i in page.items] == ["go-cli"]
        assert page.tags == ["cli", "go", "python"]

        view.set_filters(language="")
        assert view.filters.language is None

    @pytest.mark.asyncio
    async def test_debounced_search_runs_one_pass(self, view, fake_backend):
        fake_backend.add_snippet(title="Java streams", language="java")
        fake_backend.add_snippet(title="JavaScript promises", language="javascript")
        await view.load()
        passes = view.filter_pass_count

        view.set_filters(search="java")
        await asyncio.sleep(0.01)
        view.set_filters(search="javascript")
        assert view.view().pending_search is True

        await asyncio.sleep(0.08)

        assert view.filter_pass_count == passes + 1
        assert view.filters.search == "javascript"
        assert [i.snippet.title for i in view.view().items] == ["JavaScript promises"]

    @pytest.mark.asyncio
    async def test_flush_search_applies_now(self, view, fake_backend):
        fake_backend.add_snippet(title="Java streams", language="java")
        fake_backend.add_snippet(title="Rust traits", language="rust")
        await view.load()

        view.set_search("rust")
        view.flush_search()

        assert view.view().pending_search is False
        assert [i.snippet.title for i in view.view().items] == ["Rust traits"]


@pytest_asyncio.fixture
async def signed_in(store, alice):
    await store.start()
    await store.auth.sign_in_with_password("alice@cribl.io", "secret-pw")
    return store


class TestVoting:
    @pytest.mark.asyncio
    async def test_vote_requires_sign_in(self, view, store):
        await store.start()
        with pytest.raises(AuthenticationError):
            await view.vote(uuid.uuid4(), True)

    @pytest.mark.asyncio
    async def test_same_vote_twice_withdraws(self, view, signed_in, fake_backend):
        snippet = fake_backend.add_snippet(title="S")
        sid = uuid.UUID(snippet["id"])
        await view.load()

        tally = await view.vote(sid, True)
        assert (tally.upvotes, tally.user_state) == (1, "upvoted")

        tally = await view.vote(sid, True)
        assert (tally.upvotes, tally.downvotes, tally.user_state) == (0, 0, None)
        assert fake_backend.tables["snippet_votes"] == []

    @pytest.mark.asyncio
    async def test_switching_moves_one_unit(self, view, signed_in, fake_backend):
        snippet = fake_backend.add_snippet(title="S")
        sid = uuid.UUID(snippet["id"])
        fake_backend.add_vote(snippet["id"], "bob", True)
        await view.load()

        await view.vote(sid, True)
        tally = await view.vote(sid, False)

        assert (tally.upvotes, tally.downvotes) == (1, 1)
        assert tally.user_state == "downvoted"
        assert len(fake_backend.tables["snippet_votes"]) == 2

    @pytest.mark.asyncio
    async def test_failed_reread_applies_known_write(self, view, signed_in, fake_backend):
        snippet = fake_backend.add_snippet(title="S")
        sid = uuid.UUID(snippet["id"])
        fake_backend.add_vote(snippet["id"], "alice", True)
        await view.load()

        fake_backend.fail("GET", "/rest/v1/snippet_votes", exc=httpx.ConnectError("down"), times=3)
        tally = await view.vote(sid, False)

        assert (tally.upvotes, tally.downvotes, tally.user_state) == (0, 1, "downvoted")

    @pytest.mark.asyncio
    async def test_stale_reload_is_discarded(self, view):
        sid = uuid.uuid4()
        newer = [Vote(snippet_id=sid, username="u1", is_upvote=True)]
        older = [Vote(snippet_id=sid, username="u1", is_upvote=False)]

        old_ticket = view._next_ticket()
        new_ticket = view._next_ticket()
        view._apply_vote_rows(newer, new_ticket, snippet_id=sid)
        view._apply_vote_rows(older, old_ticket)

        assert view.tally(sid).upvotes == 1
        assert view.tally(sid).downvotes == 0

    @pytest.mark.asyncio
    async def test_toggle_before_feed_load_reads_stored_vote(self, view, signed_in, fake_backend):
        snippet = fake_backend.add_snippet(title="S")
        sid = uuid.UUID(snippet["id"])
        fake_backend.add_vote(snippet["id"], "alice", True)

        tally = await view.vote(sid, True)

        assert (tally.upvotes, tally.user_state) == (0, None)
        assert fake_backend.tables["snippet_votes"] == []
