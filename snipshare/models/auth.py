"""
SnipShare — Auth Models
=======================

What:  Pydantic representations of the auth service's user and session
       payloads, plus the auth-change event names the app observes.
Who:   Produced by AuthClient; held by AuthStore.

The auth service owns these objects. The app only reads them and never
mints or extends a session itself.
"""

import time
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class AuthEvent(str, Enum):
    """Auth-change notifications emitted by AuthClient."""

    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"


class User(BaseModel):
    """Auth user as returned by `/auth/v1/user` and token grants."""

    id: uuid.UUID
    email: Optional[str] = None
    email_confirmed_at: Optional[datetime] = None
    user_metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None

    model_config = {"extra": "ignore"}

    @property
    def is_confirmed(self) -> bool:
        return self.email_confirmed_at is not None


class Session(BaseModel):
    """Token pair issued by the auth service, bound to one user."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: Optional[int] = None
    expires_at: Optional[int] = None
    user: User

    model_config = {"extra": "ignore"}

    def model_post_init(self, __context: Any) -> None:
        # Token grants send expires_in; derive the absolute expiry from it
        if self.expires_at is None and self.expires_in is not None:
            self.expires_at = int(time.time()) + self.expires_in

    def is_expired(self, leeway: int = 10) -> bool:
        """True when the access token expires within `leeway` seconds."""
        if self.expires_at is None:
            return False
        return time.time() + leeway >= self.expires_at
