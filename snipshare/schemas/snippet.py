"""
SnipShare — Snippet & Comment Schemas
=====================================

What:  Bodies of the new/edit snippet forms and the comment form.
How:   Tags arrive either as a list or as the comma-separated text the form
       field holds; both are cleaned by the form flow.
"""

from typing import List, Optional, Union

from pydantic import BaseModel, Field

from snipshare.models.snippet import Comment


class SnippetCreateRequest(BaseModel):
    title: str = ""
    description: Optional[str] = None
    code: str = ""
    language: str = ""
    tags: Union[List[str], str] = Field(default_factory=list)


class SnippetUpdateRequest(SnippetCreateRequest):
    pass


class CommentCreateRequest(BaseModel):
    content: str = ""


class CommentListResponse(BaseModel):
    items: List[Comment]
    total: int
