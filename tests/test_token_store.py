try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import json
import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from partner_gateway.clients.token_store import SQLiteTokenStore
from partner_gateway.services.token_cipher import TokenCipherService

EXPIRY = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def test_upsert_creates_then_overwrites_single_record(tmp_path) -> None:
    store = SQLiteTokenStore(str(tmp_path / "tokens.sqlite3"))

    created = store.upsert(
        "mykalyan",
        {"access_token": "first", "expires_at": EXPIRY, "metadata": {"user_id": 1}},
    )
    updated = store.upsert(
        "mykalyan",
        {"access_token": "second", "expires_at": EXPIRY + timedelta(hours=1)},
    )

    assert updated.created_at == created.created_at
    assert updated.updated_at >= created.updated_at

    stored = store.get("mykalyan")
    assert stored.access_token == "second"
    assert stored.expires_at == EXPIRY + timedelta(hours=1)
    assert stored.metadata == {"user_id": 1}

    with sqlite3.connect(tmp_path / "tokens.sqlite3") as conn:
        count = conn.execute("SELECT COUNT(*) FROM partner_tokens").fetchone()[0]
    assert count == 1


def test_get_unknown_name_returns_none(tmp_path) -> None:
    store = SQLiteTokenStore(str(tmp_path / "tokens.sqlite3"))

    assert store.get("missing") is None


def test_records_survive_a_new_store_instance(tmp_path) -> None:
    db_path = str(tmp_path / "nested" / "tokens.sqlite3")
    SQLiteTokenStore(db_path, table="documan_access_tokens").upsert(
        "default", {"access_token": "persisted", "expires_at": EXPIRY}
    )

    reopened = SQLiteTokenStore(db_path, table="documan_access_tokens")

    assert reopened.get("default").access_token == "persisted"
    assert reopened.get("default").expires_at.tzinfo is not None


def test_partner_tables_are_isolated(tmp_path) -> None:
    db_path = str(tmp_path / "tokens.sqlite3")
    thirdparty = SQLiteTokenStore(db_path, table="third_party_tokens")
    docman = SQLiteTokenStore(db_path, table="documan_access_tokens")

    thirdparty.upsert("default", {"access_token": "tp", "expires_at": EXPIRY})

    assert docman.get("default") is None


def test_access_token_is_encrypted_at_rest(tmp_path) -> None:
    db_path = tmp_path / "tokens.sqlite3"
    cipher = TokenCipherService(secret="store-secret")
    store = SQLiteTokenStore(str(db_path), cipher=cipher)

    store.upsert("mykalyan", {"access_token": "plain-token", "expires_at": EXPIRY})

    with sqlite3.connect(db_path) as conn:
        raw = json.loads(conn.execute("SELECT data FROM partner_tokens").fetchone()[0])
    assert raw["access_token"] != "plain-token"
    assert raw["access_token"].startswith(TokenCipherService.PREFIX)
    assert store.get("mykalyan").access_token == "plain-token"


def test_plaintext_rows_remain_readable_after_enabling_encryption(tmp_path) -> None:
    db_path = str(tmp_path / "tokens.sqlite3")
    SQLiteTokenStore(db_path).upsert("mykalyan", {"access_token": "legacy", "expires_at": EXPIRY})

    store = SQLiteTokenStore(db_path, cipher=TokenCipherService(secret="later-secret"))

    assert store.get("mykalyan").access_token == "legacy"


def test_rejects_unknown_fields_and_table_names(tmp_path) -> None:
    store = SQLiteTokenStore(str(tmp_path / "tokens.sqlite3"))

    with pytest.raises(ValueError):
        store.upsert("mykalyan", {"refresh_token": "nope"})
    with pytest.raises(ValueError):
        SQLiteTokenStore(str(tmp_path / "tokens.sqlite3"), table="tokens; DROP TABLE x")


def test_rotated_secret_reads_as_missing_token_and_can_be_overwritten(tmp_path) -> None:
    db_path = str(tmp_path / "tokens.sqlite3")
    SQLiteTokenStore(db_path, cipher=TokenCipherService(secret="old")).upsert(
        "mykalyan",
        {"access_token": "old-token", "expires_at": EXPIRY, "metadata": {"user_id": 3}},
    )
    store = SQLiteTokenStore(db_path, cipher=TokenCipherService(secret="new"))

    unreadable = store.get("mykalyan")
    assert unreadable is not None
    assert unreadable.access_token is None
    assert unreadable.metadata == {"user_id": 3}

    store.upsert("mykalyan", {"access_token": "new-token", "expires_at": EXPIRY})

    assert store.get("mykalyan").access_token == "new-token"
