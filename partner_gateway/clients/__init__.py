"""Expose constructed client wrappers."""

from .lease_lock import LockGuard, SQLiteLeaseLock
from .partner_api import PartnerApiClient
from .partner_auth import (
    DocmanAuthenticator,
    PartnerAuthenticator,
    ThirdPartyAuthenticator,
)
from .token_store import SQLiteTokenStore

__all__ = [
    "DocmanAuthenticator",
    "LockGuard",
    "PartnerApiClient",
    "PartnerAuthenticator",
    "SQLiteLeaseLock",
    "SQLiteTokenStore",
    "ThirdPartyAuthenticator",
]
