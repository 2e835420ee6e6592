"""Service layer exports."""

from .refresh_scheduler import TokenRefreshScheduler
from .token_broker import TokenBroker
from .token_cipher import TokenCipherService

__all__ = [
    "TokenBroker",
    "TokenCipherService",
    "TokenRefreshScheduler",
]
