try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from partner_gateway.clients.lease_lock import LockGuard, SQLiteLeaseLock
from partner_gateway.clients.token_store import SQLiteTokenStore
from partner_gateway.core.errors import LockTimeout, LoginFailed
from partner_gateway.models.token import LoginResult, StoredToken
from partner_gateway.services.token_broker import TokenBroker

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeStore:
    def __init__(self) -> None:
        self.records: dict[str, StoredToken] = {}
        self.reads = 0

    def get(self, name: str) -> StoredToken | None:
        self.reads += 1
        return self.records.get(name)

    def upsert(self, name: str, fields: dict) -> StoredToken:
        record = StoredToken(name=name, **fields)
        self.records[name] = record
        return record


class CountingLock:
    """In-memory lock that records every acquire/release."""

    def __init__(self, *, grant: bool = True, on_acquire=None) -> None:
        self.grant = grant
        self.on_acquire = on_acquire
        self.acquired: list[str] = []
        self.released: list[str] = []
        self.leases: list = []

    async def acquire(self, key, timeout, *, lease_seconds=None):
        self.acquired.append(key)
        self.leases.append(lease_seconds)
        if self.on_acquire is not None:
            self.on_acquire()
        if not self.grant:
            return None
        return LockGuard(key=key, owner="test", leased_until=0.0)

    def release(self, guard):
        self.released.append(guard.key)
        return True


class FakeAuthenticator:
    partner = "thirdparty"

    def __init__(self, *, token: str = "fresh-token", delay: float = 0.0, error=None) -> None:
        self.token = token
        self.delay = delay
        self.error = error
        self.calls = 0

    async def login(self) -> LoginResult:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return LoginResult(
            access_token=f"{self.token}-{self.calls}",
            expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
            metadata={"user_id": 7},
        )


def _broker(store, lock, auth, *, clock=lambda: NOW, lock_timeout=30) -> TokenBroker:
    return TokenBroker(
        store=store,
        lock=lock,
        authenticator=auth,
        default_name="mykalyan",
        buffer_seconds=300,
        lock_timeout_seconds=lock_timeout,
        clock=clock,
    )


@pytest.mark.asyncio
async def test_valid_token_is_returned_without_lock_or_login() -> None:
    store = FakeStore()
    store.upsert(
        "mykalyan",
        {"access_token": "cached", "expires_at": NOW + timedelta(hours=1)},
    )
    lock = CountingLock()
    auth = FakeAuthenticator()

    token = await _broker(store, lock, auth).get_valid_token()

    assert token == "cached"
    assert lock.acquired == []
    assert auth.calls == 0


@pytest.mark.asyncio
async def test_token_expiring_exactly_at_buffer_is_refreshed() -> None:
    store = FakeStore()
    store.upsert(
        "mykalyan",
        {"access_token": "edge", "expires_at": NOW + timedelta(seconds=300)},
    )
    lock = CountingLock()
    auth = FakeAuthenticator()

    token = await _broker(store, lock, auth).get_valid_token()

    assert token == "fresh-token-1"
    assert auth.calls == 1
    assert lock.acquired == ["refresh:thirdparty:mykalyan"]
    assert lock.released == lock.acquired
    assert store.records["mykalyan"].access_token == "fresh-token-1"


@pytest.mark.asyncio
async def test_missing_or_empty_token_triggers_login() -> None:
    store = FakeStore()
    store.upsert("mykalyan", {"access_token": "", "expires_at": NOW + timedelta(days=1)})
    auth = FakeAuthenticator()

    broker = _broker(store, CountingLock(), auth)

    assert await broker.get_valid_token() == "fresh-token-1"
    assert await broker.get_valid_token("other") == "fresh-token-2"
    assert auth.calls == 2


@pytest.mark.asyncio
async def test_waiting_caller_reuses_token_refreshed_by_lock_holder() -> None:
    store = FakeStore()
    auth = FakeAuthenticator()

    def other_worker_refreshes() -> None:
        store.upsert(
            "mykalyan",
            {"access_token": "from-other-worker", "expires_at": NOW + timedelta(hours=1)},
        )

    lock = CountingLock(on_acquire=other_worker_refreshes)

    token = await _broker(store, lock, auth).get_valid_token()

    assert token == "from-other-worker"
    assert auth.calls == 0
    assert lock.released == ["refresh:thirdparty:mykalyan"]


@pytest.mark.asyncio
async def test_lock_timeout_falls_back_to_concurrently_refreshed_token() -> None:
    store = FakeStore()
    auth = FakeAuthenticator()

    def other_worker_refreshes() -> None:
        store.upsert(
            "mykalyan",
            {"access_token": "late-arrival", "expires_at": NOW + timedelta(hours=1)},
        )

    lock = CountingLock(grant=False, on_acquire=other_worker_refreshes)

    token = await _broker(store, lock, auth).get_valid_token()

    assert token == "late-arrival"
    assert auth.calls == 0


@pytest.mark.asyncio
async def test_lock_timeout_without_valid_token_raises() -> None:
    store = FakeStore()
    store.upsert(
        "mykalyan",
        {"access_token": "stale", "expires_at": NOW - timedelta(minutes=1)},
    )
    auth = FakeAuthenticator()

    with pytest.raises(LockTimeout) as excinfo:
        await _broker(store, CountingLock(grant=False), auth).get_valid_token()

    assert excinfo.value.partner == "thirdparty"
    assert auth.calls == 0


@pytest.mark.asyncio
async def test_login_failure_propagates_and_releases_lease() -> None:
    store = FakeStore()
    lock = CountingLock()
    auth = FakeAuthenticator(
        error=LoginFailed("bad credentials", partner="thirdparty", status=401, body={"x": 1})
    )

    with pytest.raises(LoginFailed) as excinfo:
        await _broker(store, lock, auth).get_valid_token()

    assert excinfo.value.status == 401
    assert lock.released == lock.acquired
    assert "mykalyan" not in store.records


@pytest.mark.asyncio
async def test_force_refresh_logs_in_even_when_token_is_valid() -> None:
    store = FakeStore()
    store.upsert(
        "mykalyan",
        {"access_token": "still-good", "expires_at": NOW + timedelta(hours=5)},
    )
    lock = CountingLock()
    auth = FakeAuthenticator()

    record = await _broker(store, lock, auth).force_refresh()

    assert record.access_token == "fresh-token-1"
    assert auth.calls == 1
    assert lock.acquired == ["refresh:thirdparty:mykalyan"]


@pytest.mark.asyncio
async def test_force_refresh_without_lease_raises_lock_timeout() -> None:
    auth = FakeAuthenticator()

    with pytest.raises(LockTimeout):
        await _broker(FakeStore(), CountingLock(grant=False), auth).force_refresh()

    assert auth.calls == 0


def test_token_status_hides_secret() -> None:
    store = FakeStore()
    store.upsert(
        "mykalyan",
        {
            "access_token": "secret-value",
            "expires_at": NOW + timedelta(minutes=30),
            "metadata": {"user_id": 7},
        },
    )

    status = _broker(store, CountingLock(), FakeAuthenticator()).token_status(" mykalyan ")

    assert status["name"] == "mykalyan"
    assert status["valid"] is True
    assert status["seconds_remaining"] == 1800
    assert status["metadata"] == {"user_id": 7}
    assert "secret-value" not in str(status)


@pytest.mark.asyncio
async def test_concurrent_callers_share_a_single_login(tmp_path) -> None:
    db_path = str(tmp_path / "tokens.sqlite3")
    store = SQLiteTokenStore(db_path)
    lock = SQLiteLeaseLock(db_path, poll_interval_seconds=0.01)
    auth = FakeAuthenticator(delay=0.05)
    broker = _broker(store, lock, auth, clock=lambda: datetime.now(timezone.utc))

    tokens = await asyncio.gather(*(broker.get_valid_token() for _ in range(10)))

    assert auth.calls == 1
    assert set(tokens) == {"fresh-token-1"}
    assert store.get("mykalyan").access_token == "fresh-token-1"


@pytest.mark.asyncio
async def test_refresh_of_one_name_does_not_block_another(tmp_path) -> None:
    db_path = str(tmp_path / "tokens.sqlite3")
    lock = SQLiteLeaseLock(db_path, poll_interval_seconds=0.01)
    store = SQLiteTokenStore(db_path)
    auth = FakeAuthenticator()
    broker = _broker(
        store, lock, auth, clock=lambda: datetime.now(timezone.utc), lock_timeout=0.05
    )

    held = lock.try_acquire("refresh:thirdparty:first")
    assert held is not None

    token = await broker.get_valid_token("second")

    assert token == "fresh-token-1"
    with pytest.raises(LockTimeout):
        await broker.get_valid_token("first")
    lock.release(held)


@pytest.mark.asyncio
async def test_rotated_encryption_secret_triggers_fresh_login(tmp_path) -> None:
    from partner_gateway.services.token_cipher import TokenCipherService

    db_path = str(tmp_path / "tokens.sqlite3")
    SQLiteTokenStore(db_path, cipher=TokenCipherService(secret="old")).upsert(
        "mykalyan",
        {"access_token": "old-token", "expires_at": NOW + timedelta(days=1)},
    )
    store = SQLiteTokenStore(db_path, cipher=TokenCipherService(secret="new"))
    lock = SQLiteLeaseLock(db_path, poll_interval_seconds=0.01)
    auth = FakeAuthenticator()
    broker = _broker(store, lock, auth)

    assert await broker.get_valid_token() == "fresh-token-1"
    record = await broker.force_refresh()

    assert record.access_token == "fresh-token-2"
    assert store.get("mykalyan").access_token == "fresh-token-2"


@pytest.mark.asyncio
async def test_lease_length_is_independent_of_wait_timeout() -> None:
    lock = CountingLock()
    broker = TokenBroker(
        store=FakeStore(),
        lock=lock,
        authenticator=FakeAuthenticator(),
        default_name="mykalyan",
        lock_timeout_seconds=5,
        lease_seconds=20,
        clock=lambda: NOW,
    )

    await broker.get_valid_token()
    await broker.force_refresh()

    assert lock.leases == [20, 20]


@pytest.mark.asyncio
async def test_lease_defaults_to_wait_timeout() -> None:
    lock = CountingLock()

    await _broker(FakeStore(), lock, FakeAuthenticator(), lock_timeout=12).get_valid_token()

    assert lock.leases == [12]
