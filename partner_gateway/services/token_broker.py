"""
Token lifecycle management for partner credentials.

``TokenBroker`` hands out a valid access token for a named credential. The
common case is a single store read. When the stored token is missing or inside
the refresh buffer, callers serialise on a lease named ``refresh:<partner>:<name>`` and
re-check under it, so concurrent callers across workers trigger exactly one
login.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Protocol

from partner_gateway.clients.lease_lock import LockGuard
from partner_gateway.clients.partner_auth import PartnerAuthenticator
from partner_gateway.core.errors import LockTimeout, PartnerError
from partner_gateway.models.token import StoredToken, utcnow

logger = logging.getLogger(__name__)


class TokenStore(Protocol):
    def get(self, name: str) -> Optional[StoredToken]: ...

    def upsert(self, name: str, fields: Dict[str, Any]) -> StoredToken: ...


class DistributedLock(Protocol):
    async def acquire(
        self, key: str, timeout: float, *, lease_seconds: Optional[float] = None
    ) -> Optional[LockGuard]: ...

    def release(self, guard: LockGuard) -> bool: ...


class TokenBroker:
    """Guarantees a valid bearer token per credential name."""

    def __init__(
        self,
        *,
        store: TokenStore,
        lock: DistributedLock,
        authenticator: PartnerAuthenticator,
        default_name: str,
        buffer_seconds: float = 300,
        lock_timeout_seconds: float = 30,
        lease_seconds: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._lock = lock
        self._auth = authenticator
        self._default_name = default_name
        self._buffer = timedelta(seconds=buffer_seconds)
        self._lock_timeout = lock_timeout_seconds
        # The lease must outlive a login, or a second worker could log in too.
        self._lease_seconds = (
            lease_seconds if lease_seconds is not None else lock_timeout_seconds
        )
        self._clock = clock

    @property
    def partner(self) -> str:
        return self._auth.partner

    @property
    def default_name(self) -> str:
        return self._default_name

    def _resolve_name(self, name: Optional[str]) -> str:
        return (name or "").strip() or self._default_name

    def _lock_key(self, name: str) -> str:
        return f"refresh:{self.partner}:{name}"

    def is_token_valid(self, record: Optional[StoredToken]) -> bool:
        """True when the token exists and outlives now + buffer (strictly)."""
        if record is None or not record.access_token or record.expires_at is None:
            return False
        return record.expires_at > self._clock() + self._buffer

    async def get_valid_token(self, name: Optional[str] = None) -> str:
        """Return a usable token, refreshing it at most once across all workers."""
        name = self._resolve_name(name)

        record = self._store.get(name)
        if self.is_token_valid(record):
            return record.access_token  # type: ignore[union-attr, return-value]

        logger.info("Token %s for %s needs refresh", name, self.partner)
        guard = await self._lock.acquire(
            self._lock_key(name),
            self._lock_timeout,
            lease_seconds=self._lease_seconds,
        )
        if guard is None:
            record = self._store.get(name)
            if self.is_token_valid(record):
                logger.info("Token %s refreshed by another worker during lease wait", name)
                return record.access_token  # type: ignore[union-attr, return-value]
            raise LockTimeout(
                "Could not acquire token (lock timeout).",
                partner=self.partner,
            )

        try:
            record = self._store.get(name)
            if self.is_token_valid(record):
                logger.info("Token %s already refreshed by another worker", name)
                return record.access_token  # type: ignore[union-attr, return-value]
            record = await self._refresh(name)
        finally:
            self._lock.release(guard)

        return record.access_token  # type: ignore[return-value]

    async def force_refresh(self, name: Optional[str] = None) -> StoredToken:
        """Log in and overwrite the record unconditionally, still under the lease."""
        name = self._resolve_name(name)
        guard = await self._lock.acquire(
            self._lock_key(name),
            self._lock_timeout,
            lease_seconds=self._lease_seconds,
        )
        if guard is None:
            raise LockTimeout(
                "Could not acquire token refresh lock (lock timeout).",
                partner=self.partner,
            )
        try:
            return await self._refresh(name)
        finally:
            self._lock.release(guard)

    def token_status(self, name: Optional[str] = None) -> Dict[str, Any]:
        """Describe the stored token without revealing it."""
        name = self._resolve_name(name)
        record = self._store.get(name)
        now = self._clock()
        expires_at = record.expires_at if record else None
        return {
            "partner": self.partner,
            "name": name,
            "present": bool(record and record.access_token),
            "valid": self.is_token_valid(record),
            "expires_at": expires_at.isoformat() if expires_at else None,
            "seconds_remaining": (
                int((expires_at - now).total_seconds()) if expires_at else None
            ),
            "updated_at": record.updated_at.isoformat() if record else None,
            "metadata": dict(record.metadata) if record else {},
        }

    async def _refresh(self, name: str) -> StoredToken:
        # Caller holds the lease for ``name``.
        try:
            result = await self._auth.login()
        except PartnerError as exc:
            logger.warning(
                "Token refresh for %s/%s failed: %s",
                self.partner,
                name,
                exc.message,
                extra={"status": exc.status},
            )
            raise

        record = self._store.upsert(
            name,
            {
                "partner": self.partner,
                "access_token": result.access_token,
                "expires_at": result.expires_at,
                "metadata": result.metadata,
            },
        )
        logger.info(
            "Stored refreshed %s token %s (expires %s)",
            self.partner,
            name,
            result.expires_at.isoformat(),
        )
        return record


__all__ = ["DistributedLock", "TokenBroker", "TokenStore"]
