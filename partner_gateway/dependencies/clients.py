"""
Factory functions to provide shared clients and services as FastAPI dependencies.
"""

from functools import lru_cache
from typing import Dict, Optional

from partner_gateway.clients import (
    DocmanAuthenticator,
    PartnerApiClient,
    SQLiteLeaseLock,
    SQLiteTokenStore,
    ThirdPartyAuthenticator,
)
from partner_gateway.core.config import get_settings
from partner_gateway.services import (
    TokenBroker,
    TokenCipherService,
    TokenRefreshScheduler,
)


LOGIN_LEASE_MARGIN_SECONDS = 5.0


def login_lease_seconds(lock_seconds: float, http_timeout: float) -> float:
    """Lease length that covers the wait budget and a full login round trip."""
    return max(float(lock_seconds), http_timeout + LOGIN_LEASE_MARGIN_SECONDS)


@lru_cache()
def _settings():
    """Internal helper to cache settings for client factories."""
    return get_settings()


@lru_cache()
def get_token_cipher_service() -> Optional[TokenCipherService]:
    """Provide symmetric encryption for stored tokens when a secret is configured."""
    secret = _settings().security.token_encryption_secret
    if not secret:
        return None
    return TokenCipherService(secret=secret)


@lru_cache()
def get_lease_lock() -> SQLiteLeaseLock:
    """Provide the refresh lease shared by every worker on this database."""
    return SQLiteLeaseLock(_settings().storage.db_path)


@lru_cache()
def get_thirdparty_token_store() -> SQLiteTokenStore:
    return SQLiteTokenStore(
        _settings().storage.db_path,
        table="third_party_tokens",
        cipher=get_token_cipher_service(),
    )


@lru_cache()
def get_docman_token_store() -> SQLiteTokenStore:
    return SQLiteTokenStore(
        _settings().storage.db_path,
        table="documan_access_tokens",
        cipher=get_token_cipher_service(),
    )


@lru_cache()
def get_thirdparty_broker() -> TokenBroker:
    """Provide the token broker for the ThirdParty (MyKalyan) API."""
    settings = _settings().thirdparty
    return TokenBroker(
        store=get_thirdparty_token_store(),
        lock=get_lease_lock(),
        authenticator=ThirdPartyAuthenticator(settings),
        default_name=settings.token_name,
        buffer_seconds=settings.token_buffer_seconds,
        lock_timeout_seconds=settings.lock_seconds,
        lease_seconds=login_lease_seconds(settings.lock_seconds, settings.http_timeout),
    )


@lru_cache()
def get_docman_broker() -> TokenBroker:
    """Provide the token broker for the Docman India API."""
    settings = _settings().docman
    return TokenBroker(
        store=get_docman_token_store(),
        lock=get_lease_lock(),
        authenticator=DocmanAuthenticator(settings),
        default_name=settings.default_token_name,
        buffer_seconds=settings.refresh_buffer_minutes * 60,
        lock_timeout_seconds=settings.lock_seconds,
        lease_seconds=login_lease_seconds(settings.lock_seconds, settings.http_timeout),
    )


def get_brokers() -> Dict[str, TokenBroker]:
    """Brokers keyed by partner identifier."""
    return {
        "thirdparty": get_thirdparty_broker(),
        "docman": get_docman_broker(),
    }


@lru_cache()
def get_thirdparty_api_client() -> PartnerApiClient:
    """Authenticated client for MyKalyan business endpoints (customers, schemes, KYC)."""
    settings = _settings().thirdparty
    return PartnerApiClient(
        broker=get_thirdparty_broker(),
        base_url=settings.base_url,
        timeout=settings.api_timeout,
        token_placement=settings.token_placement,
        token_query_param=settings.token_query_param,
    )


@lru_cache()
def get_docman_api_client() -> PartnerApiClient:
    """Authenticated client for Docman document endpoints."""
    settings = _settings().docman
    return PartnerApiClient(
        broker=get_docman_broker(),
        base_url=settings.base_url,
        timeout=settings.http_timeout,
        token_placement=settings.token_placement,
        token_query_param=settings.token_query_param,
    )


@lru_cache()
def get_refresh_scheduler() -> TokenRefreshScheduler:
    """Provide the proactive refresh loop over every configured partner."""
    return TokenRefreshScheduler(
        list(get_brokers().values()),
        interval_seconds=_settings().scheduler.interval_seconds,
    )


__all__ = [
    "get_brokers",
    "get_docman_api_client",
    "get_docman_broker",
    "get_docman_token_store",
    "get_lease_lock",
    "get_refresh_scheduler",
    "get_thirdparty_api_client",
    "get_thirdparty_broker",
    "get_thirdparty_token_store",
    "get_token_cipher_service",
    "login_lease_seconds",
]
