"""
SnipShare — Profile Route Handlers
==================================

What:  The signed-in user's profile page data and profile edits.
How:   Every endpoint depends on require_user, so an anonymous caller gets
       401 with a pointer to the sign-in page instead of profile data.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends

from snipshare.dependencies import get_flows, require_user
from snipshare.exceptions import NotFoundError
from snipshare.models.profile import Profile
from snipshare.models.snippet import Snippet
from snipshare.schemas.auth import ProfileUpdateRequest
from snipshare.schemas.common import ErrorResponse
from snipshare.services.forms import FormFlows
from snipshare.services.sessions import UserSession

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/profile", tags=["Profile"])


@router.get(
    "",
    response_model=Profile,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="The signed-in user's profile",
)
async def get_profile(user_session: UserSession = Depends(require_user)) -> Profile:
    profile = user_session.store.state.profile
    if profile is None:
        raise NotFoundError("Profile")
    return profile


@router.patch(
    "",
    response_model=Profile,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
    summary="Update username and display name",
)
async def update_profile(
    body: ProfileUpdateRequest,
    _: UserSession = Depends(require_user),
    flows: FormFlows = Depends(get_flows),
) -> Profile:
    profile = await flows.update_profile(body.username, body.name)
    if profile is None:
        raise NotFoundError("Profile")
    return profile


@router.get(
    "/snippets",
    response_model=List[Snippet],
    responses={401: {"model": ErrorResponse}},
    summary="Snippets posted by the signed-in user",
)
async def my_snippets(
    _: UserSession = Depends(require_user),
    flows: FormFlows = Depends(get_flows),
) -> List[Snippet]:
    return await flows.list_user_snippets()
