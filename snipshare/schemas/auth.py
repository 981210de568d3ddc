"""
SnipShare — Auth & Profile Schemas
==================================

What:  Request bodies of the register / sign-in / password / profile forms
       and the auth state returned to clients.
How:   Request models only enforce shape. Business validation (required
       fields, email domain, password match) happens in the form flows so
       the messages match the inline error banners.
"""

import uuid
from typing import Optional

from pydantic import BaseModel, Field

from snipshare.models.profile import Profile
from snipshare.services.auth_store import AuthState


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class RegisterRequest(BaseModel):
    username: str = ""
    name: str = ""
    email: str = ""
    password: str = ""
    verify_password: str = Field(default="", alias="verifyPassword")

    model_config = {"populate_by_name": True}


class SignInRequest(BaseModel):
    email: str = ""
    password: str = ""


class PasswordChangeRequest(BaseModel):
    current_password: str = Field(default="", alias="currentPassword")
    new_password: str = Field(default="", alias="newPassword")
    confirm_password: str = Field(default="", alias="confirmPassword")

    model_config = {"populate_by_name": True}


class ProfileUpdateRequest(BaseModel):
    username: str = ""
    name: str = ""


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class UserSummary(BaseModel):
    id: uuid.UUID
    email: Optional[str] = None


class AuthCheckResponse(BaseModel):
    """Body of GET /api/auth/check."""
    authenticated: bool
    user: Optional[UserSummary] = None
    error: Optional[str] = None


class AuthStateResponse(BaseModel):
    """
    Public view of a client session's AuthState.

    Tokens never leave the server; only identity and UI hints are exposed.
    """
    authenticated: bool
    user: Optional[UserSummary] = None
    profile: Optional[Profile] = None
    loading: bool
    error: Optional[str] = None
    redirect_to: Optional[str] = None

    @classmethod
    def from_state(cls, state: AuthState) -> "AuthStateResponse":
        user = UserSummary(id=state.user.id, email=state.user.email) if state.user else None
        return cls(
            authenticated=state.is_authenticated,
            user=user,
            profile=state.profile,
            loading=state.loading,
            error=state.error,
            redirect_to=state.redirect_to,
        )


class RegisterResponse(BaseModel):
    message: str
    redirect_to: str
