"""Typed failures surfaced by the token lifecycle and partner API clients."""

from __future__ import annotations

from typing import Any, Dict, Optional


class PartnerError(Exception):
    """Base class carrying the partner's HTTP status and response body."""

    kind = "partner_error"

    def __init__(
        self,
        message: str,
        *,
        partner: Optional[str] = None,
        status: Optional[int] = None,
        body: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.partner = partner
        self.status = status
        self.body = body

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.kind,
            "message": self.message,
            "partner": self.partner,
            "status": self.status,
            "body": self.body,
        }


class NotConfigured(PartnerError):
    """Raised before any I/O when required credentials or URLs are missing."""

    kind = "not_configured"


class LoginFailed(PartnerError):
    """Raised when the partner login endpoint rejects or garbles a login."""

    kind = "login_failed"


class LockTimeout(PartnerError):
    """Raised when the refresh lease is unavailable and no valid token appeared."""

    kind = "lock_timeout"


class UpstreamCallFailed(PartnerError):
    """Raised when an authenticated business call returns a non-2xx response."""

    kind = "upstream_call_failed"


__all__ = [
    "LockTimeout",
    "LoginFailed",
    "NotConfigured",
    "PartnerError",
    "UpstreamCallFailed",
]
