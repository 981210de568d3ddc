"""
SnipShare — Shared Response Schemas
===================================

What:  Error and health payloads used by every router.
Who:   Exception handlers in main.py and GET /health.
"""

from typing import Optional

from pydantic import BaseModel, Field

from snipshare.services.pool import PoolStats


class ErrorResponse(BaseModel):
    """
    Standardized error body for all API errors.

    Example:
        {
            "error": "timeout",
            "message": "Operation timed out. Please try again with a smaller snippet.",
            "details": {"kind": "timeout"},
            "request_id": "a1b2c3d4"
        }
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class MessageResponse(BaseModel):
    message: str


class HealthResponse(BaseModel):
    """Service status plus backend reachability and lease pool counters."""
    status: str = Field(description="Overall service status: healthy, degraded")
    version: str = Field(description="Application version")
    backend: str = Field(description="Backend reachability: connected, disconnected")
    pool: PoolStats = Field(description="Lease pool counters")
    sessions: int = Field(description="Client sessions currently held")
    uptime_seconds: float = Field(description="Seconds since service started")
