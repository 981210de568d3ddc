"""
SnipShare — Profile Model
=========================

What:  Row shape of the backend `profiles` table.
How:   One row per registered user, created by the register flow with the
       auth user's id. `username` and `email` are unique on the backend.
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class Profile(BaseModel):
    """A row of `profiles`."""

    id: Optional[uuid.UUID] = None
    username: str
    name: Optional[str] = None
    email: str
    created_at: Optional[datetime] = None

    model_config = {"extra": "ignore"}
