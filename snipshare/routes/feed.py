"""
SnipShare — Feed, Snippet & Comment Route Handlers
==================================================

What:  The home feed plus every snippet, vote and comment mutation.
How:   The feed is held per client session (FeedView). GET /api/feed loads
       it on first use, after a mutation marked it stale, or on
       ?reload=true (the retry affordance for a failed section).

Caching:
    GET /api/feed is per-user state and is sent with Cache-Control: no-store.
"""

import logging
import uuid

from fastapi import APIRouter, Depends, Query, Response

from snipshare.dependencies import get_flows, get_user_session, require_user
from snipshare.models.snippet import Comment, Snippet
from snipshare.schemas.common import ErrorResponse
from snipshare.schemas.feed import (
    FeedFilters,
    FeedResponse,
    FilterUpdateRequest,
    VoteRequest,
    VoteResponse,
)
from snipshare.schemas.snippet import (
    CommentCreateRequest,
    CommentListResponse,
    SnippetCreateRequest,
    SnippetUpdateRequest,
)
from snipshare.services.forms import FormFlows
from snipshare.services.sessions import UserSession

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Feed"])


# ── Feed ──────────────────────────────────────────────────────────────────


@router.get("/feed", response_model=FeedResponse, summary="Filtered, sorted snippet feed")
async def get_feed(
    response: Response,
    reload: bool = Query(default=False, description="Refetch every section"),
    user_session: UserSession = Depends(get_user_session),
) -> FeedResponse:
    feed = user_session.feed
    if reload or feed.stale:
        await feed.load()
    response.headers["Cache-Control"] = "no-store"
    return feed.view()


@router.put("/feed/filters", response_model=FeedFilters, summary="Update feed filters")
async def update_filters(
    body: FilterUpdateRequest,
    immediate: bool = Query(default=False, description="Apply the search term without waiting out the debounce"),
    user_session: UserSession = Depends(get_user_session),
) -> FeedFilters:
    feed = user_session.feed
    filters = feed.set_filters(
        language=body.language,
        tags=body.tags,
        sort=body.sort,
        search=body.search,
    )
    if immediate:
        feed.flush_search()
        filters = feed.filters
    return filters


# ── Snippets ──────────────────────────────────────────────────────────────


@router.post(
    "/snippets",
    response_model=Snippet,
    status_code=201,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
    summary="Create a snippet",
)
async def create_snippet(
    body: SnippetCreateRequest,
    _: UserSession = Depends(require_user),
    flows: FormFlows = Depends(get_flows),
) -> Snippet:
    return await flows.create_snippet(
        body.title, body.description, body.code, body.language, body.tags
    )


@router.patch(
    "/snippets/{snippet_id}",
    response_model=Snippet,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Edit a snippet (author only)",
)
async def edit_snippet(
    snippet_id: uuid.UUID,
    body: SnippetUpdateRequest,
    _: UserSession = Depends(require_user),
    flows: FormFlows = Depends(get_flows),
) -> Snippet:
    return await flows.edit_snippet(
        snippet_id, body.title, body.description, body.code, body.language, body.tags
    )


@router.delete(
    "/snippets/{snippet_id}",
    status_code=204,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Delete a snippet (author only)",
)
async def delete_snippet(
    snippet_id: uuid.UUID,
    _: UserSession = Depends(require_user),
    flows: FormFlows = Depends(get_flows),
) -> Response:
    await flows.delete_snippet(snippet_id)
    return Response(status_code=204)


@router.post(
    "/snippets/{snippet_id}/vote",
    response_model=VoteResponse,
    responses={401: {"model": ErrorResponse}},
    summary="Up- or downvote; repeating the same vote withdraws it",
)
async def vote(
    snippet_id: uuid.UUID,
    body: VoteRequest,
    user_session: UserSession = Depends(require_user),
) -> VoteResponse:
    tally = await user_session.feed.vote(snippet_id, body.is_upvote)
    return VoteResponse(
        snippet_id=snippet_id,
        upvotes=tally.upvotes,
        downvotes=tally.downvotes,
        score=tally.score,
        user_vote=tally.user_state,
    )


# ── Comments ──────────────────────────────────────────────────────────────


@router.get(
    "/snippets/{snippet_id}/comments",
    response_model=CommentListResponse,
    summary="Comments on a snippet, oldest first",
)
async def list_comments(
    snippet_id: uuid.UUID,
    flows: FormFlows = Depends(get_flows),
) -> CommentListResponse:
    comments = await flows.list_comments(snippet_id)
    return CommentListResponse(items=comments, total=len(comments))


@router.post(
    "/snippets/{snippet_id}/comments",
    response_model=Comment,
    status_code=201,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
    summary="Add a comment",
)
async def add_comment(
    snippet_id: uuid.UUID,
    body: CommentCreateRequest,
    _: UserSession = Depends(require_user),
    flows: FormFlows = Depends(get_flows),
) -> Comment:
    return await flows.add_comment(snippet_id, body.content)


@router.delete(
    "/comments/{comment_id}",
    status_code=204,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Delete a comment (author only)",
)
async def delete_comment(
    comment_id: uuid.UUID,
    _: UserSession = Depends(require_user),
    flows: FormFlows = Depends(get_flows),
) -> Response:
    await flows.delete_comment(comment_id)
    return Response(status_code=204)
