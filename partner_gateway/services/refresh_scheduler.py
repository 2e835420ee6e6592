"""Periodic loop that keeps partner tokens warm ahead of interactive requests."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional, Sequence

from partner_gateway.core.errors import PartnerError
from partner_gateway.services.token_broker import TokenBroker

logger = logging.getLogger(__name__)


class TokenRefreshScheduler:
    """Call ``get_valid_token`` on every broker once per interval.

    The scheduler goes through the same path as request handlers, so it takes
    part in the same lease and never writes a token on its own.
    """

    def __init__(
        self,
        brokers: Sequence[TokenBroker],
        *,
        interval_seconds: float = 60.0,
    ) -> None:
        self._brokers = list(brokers)
        self._interval = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> Dict[str, bool]:
        """Ensure each partner's default token is valid; report success per partner."""
        outcome: Dict[str, bool] = {}
        for broker in self._brokers:
            try:
                await broker.get_valid_token()
            except PartnerError as exc:
                logger.warning(
                    "Scheduled %s token refresh failed: %s",
                    broker.partner,
                    exc.message,
                    extra={"status": exc.status},
                )
                outcome[broker.partner] = False
            else:
                outcome[broker.partner] = True
        return outcome

    async def run_forever(self) -> None:
        while True:
            try:
                await self.run_once()
            except Exception:  # pragma: no cover - keep the loop alive
                logger.exception("Unexpected error in token refresh loop")
            await asyncio.sleep(self._interval)

    def start(self) -> None:
        if self.running:
            return
        logger.info(
            "Starting token refresh scheduler every %.0fs for %s",
            self._interval,
            ", ".join(broker.partner for broker in self._brokers),
        )
        self._task = asyncio.get_running_loop().create_task(self.run_forever())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Token refresh scheduler stopped")


__all__ = ["TokenRefreshScheduler"]
