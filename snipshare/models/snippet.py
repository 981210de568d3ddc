"""
SnipShare — Snippet, Vote and Comment Models
============================================

What:  Row shapes of the backend `snippets`, `snippet_votes` and
       `snippet_comments` tables, plus the client-side VoteTally derived
       from vote rows.
Who:   Produced by FeedAggregator and the form flows from table reads.

Table invariants (enforced by the backend, relied on here):
    snippets:          title, code, language NOT NULL; owned by `username`
    snippet_votes:     UNIQUE (snippet_id, username), the upsert conflict target
    snippet_comments:  owned by `username`
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

# Languages offered by the snippet form, in display order
LANGUAGES = (
    "javascript",
    "typescript",
    "python",
    "java",
    "csharp",
    "cpp",
    "go",
    "rust",
    "php",
    "ruby",
    "kql",
    "bash",
    "powershell",
    "other",
)

# Conflict target for vote upserts
VOTE_CONFLICT_TARGET = "snippet_id,username"


class Snippet(BaseModel):
    """A row of `snippets`."""

    id: uuid.UUID
    created_at: datetime
    title: str
    description: Optional[str] = None
    code: str
    language: str
    tags: List[str] = Field(default_factory=list)
    username: str

    model_config = {"extra": "ignore"}


class Vote(BaseModel):
    """A row of `snippet_votes`."""

    snippet_id: uuid.UUID
    username: str
    is_upvote: bool

    model_config = {"extra": "ignore"}


class Comment(BaseModel):
    """A row of `snippet_comments`."""

    id: uuid.UUID
    snippet_id: uuid.UUID
    username: str
    content: str
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = {"extra": "ignore"}


class VoteTally(BaseModel):
    """Up/down counts for one snippet and the viewing user's own vote."""

    upvotes: int = 0
    downvotes: int = 0
    user_vote: Optional[bool] = None

    @property
    def score(self) -> int:
        return self.upvotes - self.downvotes

    @property
    def user_state(self) -> Optional[str]:
        """'upvoted', 'downvoted', or None when the user has not voted."""
        if self.user_vote is None:
            return None
        return "upvoted" if self.user_vote else "downvoted"
