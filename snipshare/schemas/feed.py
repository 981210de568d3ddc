"""
SnipShare — Feed Schemas
========================

What:  Filter state, per-section load status and the rendered feed page.
Who:   Produced by FeedView.view(); returned by GET /api/feed.
"""

import uuid
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from snipshare.models.snippet import Snippet

SortOrder = Literal["newest", "oldest", "top"]
SectionStatus = Literal["idle", "loading", "ready", "error"]


class FeedFilters(BaseModel):
    """Filters currently applied to the feed (search is the debounced term)."""
    language: Optional[str] = Field(default=None, description="Exact language match; null for all")
    tags: List[str] = Field(default_factory=list, description="Snippet must carry every tag")
    search: str = Field(default="", description="Case-insensitive substring")
    sort: SortOrder = "newest"


class FilterUpdateRequest(BaseModel):
    """
    Body of PUT /api/feed/filters. Omitted fields keep their current value.

    `search` is debounced: it takes effect once no newer term arrives within
    the debounce window.
    """
    language: Optional[str] = None
    tags: Optional[List[str]] = None
    search: Optional[str] = None
    sort: Optional[SortOrder] = None

    @field_validator("language")
    @classmethod
    def normalize_language(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v.strip().lower() in ("", "all"):
            return ""
        return v


class SectionState(BaseModel):
    status: SectionStatus = "idle"
    error: Optional[str] = None
    kind: Optional[str] = None


class FeedItem(BaseModel):
    snippet: Snippet
    upvotes: int = 0
    downvotes: int = 0
    score: int = 0
    user_vote: Optional[str] = Field(default=None, description="upvoted, downvoted or null")
    comment_count: int = 0


class FeedResponse(BaseModel):
    items: List[FeedItem]
    total: int = Field(description="Snippets loaded before filtering")
    sections: Dict[str, SectionState]
    filters: FeedFilters
    pending_search: bool = Field(description="A search term is waiting out the debounce window")
    languages: List[str]
    tags: List[str] = Field(description="Every tag present in the loaded snippets")


class VoteRequest(BaseModel):
    is_upvote: bool = Field(alias="isUpvote")

    model_config = {"populate_by_name": True}


class VoteResponse(BaseModel):
    snippet_id: uuid.UUID
    upvotes: int
    downvotes: int
    score: int
    user_vote: Optional[str] = None
