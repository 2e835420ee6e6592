"""Pytest configuration shared across the suite."""

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import pytest

from partner_gateway.core.config import get_settings
from partner_gateway.dependencies import clients


@pytest.fixture
def anyio_backend() -> str:
    """Run AnyIO-powered ASGI tests on asyncio only."""
    return "asyncio"


@pytest.fixture(autouse=True)
def reset_cached_factories():
    """Drop cached settings and factory singletons so env changes apply per test."""
    yield
    get_settings.cache_clear()
    for factory in (
        clients._settings,
        clients.get_token_cipher_service,
        clients.get_lease_lock,
        clients.get_thirdparty_token_store,
        clients.get_docman_token_store,
        clients.get_thirdparty_broker,
        clients.get_docman_broker,
        clients.get_thirdparty_api_client,
        clients.get_docman_api_client,
        clients.get_refresh_scheduler,
    ):
        factory.cache_clear()
