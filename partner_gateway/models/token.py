"""
Domain models for partner token persistence.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StoredToken(BaseModel):
    """Represents the single token record kept per credential name."""

    name: str = Field(..., description="Unique credential identifier, e.g. 'mykalyan'.")
    partner: Optional[str] = Field(None, description="Partner that issued the token.")
    access_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(
        default_factory=dict,
        description="Token type, issuing user and similar informational fields.",
    )
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class LoginResult(BaseModel):
    """Outcome of a successful partner login handshake."""

    access_token: str
    expires_at: datetime
    metadata: Dict[str, Any] = Field(default_factory=dict)


__all__ = ["LoginResult", "StoredToken", "utcnow"]
