"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    get_brokers,
    get_docman_api_client,
    get_docman_broker,
    get_docman_token_store,
    get_lease_lock,
    get_refresh_scheduler,
    get_thirdparty_api_client,
    get_thirdparty_broker,
    get_thirdparty_token_store,
    get_token_cipher_service,
)
from .config import SettingsDependency, get_app_settings

__all__ = [
    "SettingsDependency",
    "get_app_settings",
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
]
