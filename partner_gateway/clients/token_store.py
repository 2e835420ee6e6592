"""SQLite-backed store holding one token record per credential name."""

from __future__ import annotations

import json
import logging
import re
import sqlite3
from contextlib import contextmanager
from datetime import timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Iterator, Optional

from partner_gateway.models.token import StoredToken, utcnow

if TYPE_CHECKING:
    from partner_gateway.services.token_cipher import TokenCipherService

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = ("partner", "access_token", "expires_at", "metadata")
_TABLE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def connect(db_path: Path) -> sqlite3.Connection:
    """Open a connection suitable for several processes sharing one file."""
    conn = sqlite3.connect(
        db_path,
        timeout=30.0,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


def prepare_db_path(db_path: str) -> Path:
    path = Path(db_path)
    if path.parent and not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
    return path


class SQLiteTokenStore:
    """Durable ``name -> token`` records that survive restarts.

    Reads are plain selects. Writes run inside ``BEGIN IMMEDIATE`` so the
    read that precedes an upsert and the upsert itself form one atomic unit;
    deciding *whether* to refresh is left to the lease lock held by the broker.
    """

    def __init__(
        self,
        db_path: str,
        *,
        table: str = "partner_tokens",
        cipher: Optional[TokenCipherService] = None,
    ) -> None:
        if not _TABLE_NAME.match(table):
            raise ValueError(f"Invalid token table name: {table!r}")
        self._db_path = prepare_db_path(db_path)
        self._table = table
        self._cipher = cipher
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
                f"""
                CREATE TABLE IF NOT EXISTS {self._table} (
                    name TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )

    def get(self, name: str) -> Optional[StoredToken]:
        with self._connection() as conn:
            row = conn.execute(
                f"SELECT data FROM {self._table} WHERE name = ?",
                (name,),
            ).fetchone()
        if not row:
            return None
        return self._decode(row["data"])

    def upsert(self, name: str, fields: Dict[str, Any]) -> StoredToken:
        """Create the record for ``name`` or overwrite the given fields in place."""
        unknown = set(fields) - set(_UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unsupported token fields: {sorted(unknown)}")

        now = utcnow()
        with self._connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                row = conn.execute(
                    f"SELECT data FROM {self._table} WHERE name = ?",
                    (name,),
                ).fetchone()
                if row:
                    record = self._decode(row["data"])
                    record = record.model_copy(update={**fields, "updated_at": now})
                else:
                    record = StoredToken(name=name, created_at=now, updated_at=now, **fields)
                conn.execute(
                    f"""
                    INSERT INTO {self._table} (name, data, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(name) DO UPDATE SET
                        data = excluded.data,
                        updated_at = excluded.updated_at
                    """,
                    (name, self._encode(record), now.isoformat()),
                )
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        return record

    def _encode(self, record: StoredToken) -> str:
        payload = record.model_dump(mode="json")
        access_token = payload.get("access_token")
        if access_token and self._cipher is not None:
            payload["access_token"] = self._cipher.encrypt(access_token)
        return json.dumps(payload)

    def _decode(self, data: str) -> StoredToken:
        payload = json.loads(data)
        access_token = payload.get("access_token")
        if access_token and self._cipher is not None:
            try:
                payload["access_token"] = self._cipher.decrypt(access_token)
            except ValueError as exc:
                # Unreadable tokens count as missing so the next refresh overwrites them.
                logger.warning(
                    "Discarding unreadable token %s in %s: %s",
                    payload.get("name"),
                    self._table,
                    exc,
                )
                payload["access_token"] = None
        record = StoredToken.model_validate(payload)
        if record.expires_at is not None and record.expires_at.tzinfo is None:
            record.expires_at = record.expires_at.replace(tzinfo=timezone.utc)
        return record


__all__ = ["SQLiteTokenStore", "connect", "prepare_db_path"]
