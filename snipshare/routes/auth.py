"""
SnipShare — Auth Route Handlers
===============================

What:  Session check, email-link callback and the register / sign-in /
       sign-out / password forms.
How:   Each handler resolves the caller's client session from the cookie
       and delegates to FormFlows or the session's AuthStore.

Endpoints:
    GET  /api/auth/check      → {authenticated, user?}; 401 on auth error
    GET  /auth/callback       → 302 to `next` (relative only) or "/";
                                302 to the sign-in page on any failure
    POST /api/auth/register   → 201 with the confirmation message
    POST /api/auth/signin     → auth state
    POST /api/auth/signout    → auth state (redirect_to = sign-in page)
    POST /api/auth/password   → confirmation message
    GET  /api/auth/state      → auth state
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse, RedirectResponse

from snipshare.config import settings
from snipshare.dependencies import get_flows, get_user_session, require_user, set_session_cookie
from snipshare.exceptions import BackendError, BackendErrorKind, SnipShareError
from snipshare.schemas.auth import (
    AuthCheckResponse,
    AuthStateResponse,
    PasswordChangeRequest,
    RegisterRequest,
    RegisterResponse,
    SignInRequest,
    UserSummary,
)
from snipshare.schemas.common import ErrorResponse, MessageResponse
from snipshare.services.forms import FormFlows
from snipshare.services.sessions import UserSession

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Auth"])


def _safe_next(next_path: Optional[str]) -> str:
    """Only same-site relative paths are honoured as redirect targets."""
    if next_path and next_path.startswith("/") and not next_path.startswith("//"):
        return next_path
    return "/"


@router.get(
    "/api/auth/check",
    response_model=AuthCheckResponse,
    responses={401: {"model": AuthCheckResponse}, 500: {"model": ErrorResponse}},
    summary="Check whether the caller is signed in",
)
async def check_auth(user_session: UserSession = Depends(get_user_session)):
    try:
        user = await user_session.auth.get_user()
    except BackendError as exc:
        if exc.kind == BackendErrorKind.AUTH:
            return JSONResponse(
                status_code=401,
                content={"authenticated": False, "error": exc.message},
            )
        logger.error("Session check failed: %s", exc.message)
        return JSONResponse(status_code=500, content={"error": "Internal Server Error"})

    if user is None:
        return AuthCheckResponse(authenticated=False)
    return AuthCheckResponse(authenticated=True, user=UserSummary(id=user.id, email=user.email))


@router.get("/auth/callback", summary="Complete an email confirmation link")
async def auth_callback(
    code: Optional[str] = Query(default=None),
    next_path: Optional[str] = Query(default=None, alias="next"),
    user_session: UserSession = Depends(get_user_session),
    flows: FormFlows = Depends(get_flows),
):
    target = _safe_next(next_path)
    if code:
        try:
            await flows.complete_email_link(code)
        except SnipShareError as exc:
            logger.warning("Auth callback failed: %s", exc.message)
            target = settings.signin_path
    else:
        logger.info("Auth callback without code")

    response = RedirectResponse(target, status_code=302)
    set_session_cookie(response, user_session.sid)
    return response


@router.post(
    "/api/auth/register",
    response_model=RegisterResponse,
    status_code=201,
    responses={400: {"model": ErrorResponse}},
    summary="Register a new account",
)
async def register(body: RegisterRequest, flows: FormFlows = Depends(get_flows)) -> RegisterResponse:
    message = await flows.register(
        username=body.username,
        name=body.name,
        email=body.email,
        password=body.password,
        verify_password=body.verify_password,
    )
    return RegisterResponse(message=message, redirect_to=settings.signin_path)


@router.post(
    "/api/auth/signin",
    response_model=AuthStateResponse,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
    summary="Sign in with email and password",
)
async def sign_in(body: SignInRequest, flows: FormFlows = Depends(get_flows)) -> AuthStateResponse:
    state = await flows.sign_in(body.email, body.password)
    return AuthStateResponse.from_state(state)


@router.post("/api/auth/signout", response_model=AuthStateResponse, summary="Sign out")
async def sign_out(
    user_session: UserSession = Depends(get_user_session),
    flows: FormFlows = Depends(get_flows),
) -> AuthStateResponse:
    await flows.sign_out()
    return AuthStateResponse.from_state(user_session.store.state)


@router.post(
    "/api/auth/password",
    response_model=MessageResponse,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
    summary="Change the signed-in user's password",
)
async def change_password(
    body: PasswordChangeRequest,
    _: UserSession = Depends(require_user),
    flows: FormFlows = Depends(get_flows),
) -> MessageResponse:
    message = await flows.change_password(
        body.current_password, body.new_password, body.confirm_password
    )
    return MessageResponse(message=message)


@router.get("/api/auth/state", response_model=AuthStateResponse, summary="Current auth state")
async def auth_state(user_session: UserSession = Depends(get_user_session)) -> AuthStateResponse:
    return AuthStateResponse.from_state(user_session.store.state)
