"""
FastAPI application entrypoint for the partner credential gateway.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from partner_gateway.api.routes import partner_error_handler, router as api_router
from partner_gateway.core.config import get_settings
from partner_gateway.core.errors import PartnerError
from partner_gateway.core.logging import configure_logging
from partner_gateway.dependencies import get_refresh_scheduler


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    scheduler = get_refresh_scheduler() if settings.scheduler.enabled else None
    if scheduler is not None:
        scheduler.start()
    try:
        yield
    finally:
        if scheduler is not None:
            await scheduler.stop()


def create_app() -> FastAPI:
    """Factory for the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Partner Credential Gateway",
        version="0.1.0",
        description="Brokers ThirdParty and Docman API credentials for partner calls.",
        lifespan=lifespan,
    )
    app.add_exception_handler(PartnerError, partner_error_handler)
    app.include_router(api_router, prefix="/api")
    return app


app = create_app()

__all__ = ["app", "create_app"]
