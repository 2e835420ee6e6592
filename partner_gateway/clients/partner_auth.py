"""
Login handshakes against the partner authentication endpoints.

Each partner authenticator validates its configuration, performs exactly one
login request and turns the response into a ``LoginResult``. How the absolute
expiry is derived is a pure ``(body, now) -> datetime`` policy injected at
construction time.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from partner_gateway.core.config import DocmanSettings, ThirdPartySettings
from partner_gateway.core.errors import LoginFailed, NotConfigured
from partner_gateway.models.token import LoginResult, utcnow
from partner_gateway.utils.http import join_url, response_body

logger = logging.getLogger(__name__)

ExpiryPolicy = Callable[[Any, datetime], datetime]


_EPOCH_MILLISECONDS_FLOOR = 100_000_000_000


def _parse_created(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # Epoch values this large are milliseconds.
        if abs(value) >= _EPOCH_MILLISECONDS_FLOOR:
            value = value / 1000
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (ValueError, OverflowError, OSError):
            return None
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _coerce_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def thirdparty_expires_at(
    body: Any,
    now: datetime,
    *,
    default_ttl_seconds: int = 1800,
    milliseconds_threshold: int = 1_209_600,
) -> datetime:
    """Expiry from the login payload's ``data.created + data.ttl``.

    The partner does not document the ttl unit. Values above
    ``milliseconds_threshold`` (default: fourteen days in seconds) are read as
    milliseconds. This is a guess about the partner, not a documented contract.
    """
    data = body.get("data") if isinstance(body, dict) else None
    if not isinstance(data, dict):
        data = {}
    ttl = _coerce_int(data.get("ttl"))
    if ttl > milliseconds_threshold:
        ttl = ttl // 1000
    created = _parse_created(data.get("created"))
    if created is not None and ttl > 0:
        try:
            return created + timedelta(seconds=ttl)
        except OverflowError:
            pass
    return now + timedelta(seconds=ttl if ttl > 0 else default_ttl_seconds)


def docman_expires_at(body: Any, now: datetime, *, ttl_days: int = 1) -> datetime:
    """Docman tokens always live ``ttl_days`` from now, whatever the partner reports."""
    return now + timedelta(days=ttl_days)


class PartnerAuthenticator:
    """Shared login flow; subclasses describe the partner's wire format."""

    partner = "partner"
    display_name = "Partner"

    def __init__(
        self,
        *,
        timeout: float,
        expiry_policy: ExpiryPolicy,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._timeout = timeout
        self._expiry_policy = expiry_policy
        self._transport = transport
        self._clock = clock

    def missing_settings(self) -> List[str]:
        raise NotImplementedError

    def _login_request(self) -> Tuple[str, Dict[str, Any]]:
        """Return the login URL and the keyword arguments for ``client.post``."""
        raise NotImplementedError

    def _extract(self, body: Any) -> Tuple[Optional[str], Dict[str, Any]]:
        """Return ``(access_token, metadata)`` from a successful login body."""
        raise NotImplementedError

    def _error_message(self, body: Any) -> Optional[str]:
        return None

    async def login(self) -> LoginResult:
        missing = self.missing_settings()
        if missing:
            raise NotConfigured(
                f"{self.display_name} API not configured. Set in .env: {', '.join(missing)}",
                partner=self.partner,
            )

        url, request_kwargs = self._login_request()
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    url, headers={"Accept": "application/json"}, **request_kwargs
                )
        except httpx.HTTPError as exc:
            logger.warning(
                "%s login request failed: %s", self.display_name, exc, extra={"url": url}
            )
            raise LoginFailed(
                f"{self.display_name} login request failed: {exc}",
                partner=self.partner,
            ) from exc

        body = response_body(response)
        status = response.status_code

        if not response.is_success:
            logger.warning(
                "%s login failed with status %s",
                self.display_name,
                status,
                extra={"url": url, "status": status, "body": body},
            )
            raise LoginFailed(
                self._error_message(body) or f"{self.display_name} login failed",
                partner=self.partner,
                status=status,
                body=body,
            )

        access_token, metadata = self._extract(body)
        if not access_token:
            logger.warning(
                "%s login response missing token",
                self.display_name,
                extra={"status": status, "body": body},
            )
            raise LoginFailed(
                "Invalid login response: missing token.",
                partner=self.partner,
                status=status,
                body=body,
            )

        try:
            expires_at = self._expiry_policy(body, self._clock())
        except (TypeError, ValueError, OverflowError) as exc:
            logger.warning(
                "%s login response has unusable expiry: %s",
                self.display_name,
                exc,
                extra={"status": status},
            )
            raise LoginFailed(
                "Invalid login response: unusable expiry.",
                partner=self.partner,
                status=status,
                body=body,
            ) from exc
        logger.info(
            "%s login succeeded; token expires at %s",
            self.display_name,
            expires_at.isoformat(),
        )
        return LoginResult(access_token=access_token, expires_at=expires_at, metadata=metadata)


class ThirdPartyAuthenticator(PartnerAuthenticator):
    """JSON username/password login against the MyKalyan users endpoint."""

    partner = "thirdparty"
    display_name = "Third-party"

    def __init__(
        self,
        settings: ThirdPartySettings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = utcnow,
        expiry_policy: Optional[ExpiryPolicy] = None,
    ) -> None:
        super().__init__(
            timeout=settings.http_timeout,
            expiry_policy=expiry_policy
            or partial(
                thirdparty_expires_at,
                default_ttl_seconds=settings.default_ttl_seconds,
                milliseconds_threshold=settings.ttl_milliseconds_threshold,
            ),
            transport=transport,
            clock=clock,
        )
        self._settings = settings

    def missing_settings(self) -> List[str]:
        missing = []
        if not self._settings.base_url:
            missing.append("THIRDPARTY_BASE_URL")
        if not self._settings.login_path:
            missing.append("THIRDPARTY_LOGIN_PATH")
        if not self._settings.username:
            missing.append("THIRDPARTY_USERNAME")
        if not self._settings.password:
            missing.append("THIRDPARTY_PASSWORD")
        return missing

    def _login_request(self) -> Tuple[str, Dict[str, Any]]:
        url = join_url(self._settings.base_url, self._settings.login_path)
        payload = {
            "username": self._settings.username,
            "password": self._settings.password,
        }
        return url, {"json": payload}

    def _extract(self, body: Any) -> Tuple[Optional[str], Dict[str, Any]]:
        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict):
            return None, {}
        token = data.get("id")
        metadata: Dict[str, Any] = {
            "created": data.get("created"),
            "ttl": data.get("ttl"),
        }
        if data.get("userId") is not None:
            metadata["user_id"] = _coerce_int(data["userId"])
        return (str(token) if token else None), metadata

    def _error_message(self, body: Any) -> Optional[str]:
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            return body["error"].get("message")
        return None


class DocmanAuthenticator(PartnerAuthenticator):
    """OAuth-style password grant against the Docman India token endpoint."""

    partner = "docman"
    display_name = "Docman"

    def __init__(
        self,
        settings: DocmanSettings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = utcnow,
        expiry_policy: Optional[ExpiryPolicy] = None,
    ) -> None:
        super().__init__(
            timeout=settings.http_timeout,
            expiry_policy=expiry_policy
            or partial(docman_expires_at, ttl_days=settings.token_ttl_days),
            transport=transport,
            clock=clock,
        )
        self._settings = settings

    def missing_settings(self) -> List[str]:
        missing = []
        if not self._settings.base_url:
            missing.append("DOCUMAN_BASE_URL")
        if not self._settings.username:
            missing.append("DOCUMAN_USERNAME")
        if not self._settings.password:
            missing.append("DOCUMAN_PASSWORD")
        return missing

    def _login_request(self) -> Tuple[str, Dict[str, Any]]:
        url = join_url(self._settings.base_url, self._settings.token_path or "token")
        form = {
            "grant_type": "password",
            "username": self._settings.username,
            "password": self._settings.password,
        }
        return url, {"data": form}

    def _extract(self, body: Any) -> Tuple[Optional[str], Dict[str, Any]]:
        if not isinstance(body, dict):
            return None, {}
        token = body.get("access_token")
        if not isinstance(token, str) or not token:
            return None, {}
        expires_in = body.get("expires_in")
        metadata = {
            "token_type": body.get("token_type") or "bearer",
            "expires_in": _coerce_int(expires_in) if expires_in is not None else None,
            "user_name": body.get("userName"),
        }
        return token, metadata

    def _error_message(self, body: Any) -> Optional[str]:
        if isinstance(body, dict):
            return body.get("error_description") or body.get("error")
        return None


__all__ = [
    "DocmanAuthenticator",
    "ExpiryPolicy",
    "PartnerAuthenticator",
    "ThirdPartyAuthenticator",
    "docman_expires_at",
    "thirdparty_expires_at",
]
