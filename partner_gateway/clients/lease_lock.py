"""
Named refresh leases shared by every worker process through SQLite.

A lease is a row ``(key, owner, leased_until)``. Taking it is a single
compare-and-swap upsert that succeeds only when the row is absent or its lease
has run out, so the same primitive excludes both threads of one process and
separate processes pointed at the same database file.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

from partner_gateway.clients.token_store import connect, prepare_db_path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LockGuard:
    """Proof of ownership returned by a successful acquire."""

    key: str
    owner: str
    leased_until: float


class SQLiteLeaseLock:
    """Distributed mutual exclusion keyed by name with owner-scoped release."""

    def __init__(
        self,
        db_path: str,
        *,
        lease_seconds: float = 30.0,
        poll_interval_seconds: float = 0.1,
    ) -> None:
        self._db_path = prepare_db_path(db_path)
        self._lease_seconds = lease_seconds
        self._poll_interval = poll_interval_seconds
        self._ensure_schema()

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        conn = connect(self._db_path)
        try:
            yield conn
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        with self._connection() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS refresh_leases (
                    key TEXT PRIMARY KEY,
                    owner TEXT NOT NULL,
                    leased_until REAL NOT NULL
                )
                """
            )

    def try_acquire(self, key: str, *, lease_seconds: Optional[float] = None) -> Optional[LockGuard]:
        """Take the lease once without waiting; ``None`` when someone else holds it."""
        owner = uuid.uuid4().hex
        now = time.time()
        if lease_seconds is None:
            lease_seconds = self._lease_seconds
        leased_until = now + lease_seconds
        with self._connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO refresh_leases (key, owner, leased_until)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    owner = excluded.owner,
                    leased_until = excluded.leased_until
                WHERE refresh_leases.leased_until <= ?
                """,
                (key, owner, leased_until, now),
            )
            acquired = cursor.rowcount == 1
        if not acquired:
            return None
        logger.debug("Lease acquired", extra={"lease_key": key})
        return LockGuard(key=key, owner=owner, leased_until=leased_until)

    async def acquire(
        self,
        key: str,
        timeout: float,
        *,
        lease_seconds: Optional[float] = None,
    ) -> Optional[LockGuard]:
        """Poll for the lease until ``timeout`` seconds pass; ``None`` on timeout."""
        deadline = time.monotonic() + timeout
        while True:
            guard = self.try_acquire(key, lease_seconds=lease_seconds)
            if guard is not None:
                return guard
            if time.monotonic() >= deadline:
                logger.warning("Timed out waiting for lease %s after %.1fs", key, timeout)
                return None
            await asyncio.sleep(self._poll_interval)

    def release(self, guard: LockGuard) -> bool:
        """Drop the lease if ``guard`` still owns it."""
        with self._connection() as conn:
            cursor = conn.execute(
                "DELETE FROM refresh_leases WHERE key = ? AND owner = ?",
                (guard.key, guard.owner),
            )
            released = cursor.rowcount == 1
        if not released:
            logger.warning(
                "Lease %s expired before release; another worker may have taken it",
                guard.key,
            )
        return released


__all__ = ["LockGuard", "SQLiteLeaseLock"]
