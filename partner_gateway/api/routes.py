"""
FastAPI routes for operating the partner credential gateway.
"""

from __future__ import annotations

import hmac
import logging
from http import HTTPStatus
from typing import Annotated, Dict, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from partner_gateway.core.errors import (
    LockTimeout,
    LoginFailed,
    NotConfigured,
    PartnerError,
    UpstreamCallFailed,
)
from partner_gateway.dependencies import SettingsDependency, get_brokers
from partner_gateway.services import TokenBroker

router = APIRouter()
logger = logging.getLogger(__name__)


_ERROR_STATUS = {
    NotConfigured: HTTPStatus.SERVICE_UNAVAILABLE,
    LoginFailed: HTTPStatus.BAD_GATEWAY,
    LockTimeout: HTTPStatus.SERVICE_UNAVAILABLE,
}


def status_for_error(exc: PartnerError) -> int:
    """Map a partner failure onto the status code returned to our callers."""
    if isinstance(exc, UpstreamCallFailed):
        if exc.status and 400 <= exc.status < 600:
            return exc.status
        return HTTPStatus.BAD_GATEWAY
    for error_type, status in _ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return status
    return HTTPStatus.BAD_GATEWAY


async def partner_error_handler(request: Request, exc: PartnerError) -> JSONResponse:
    status = status_for_error(exc)
    logger.warning(
        "Request %s %s failed with %s: %s",
        request.method,
        request.url.path,
        exc.kind,
        exc.message,
    )
    return JSONResponse(status_code=status, content=exc.to_dict())


def require_admin_key(
    settings: SettingsDependency,
    x_admin_key: Annotated[Optional[str], Header()] = None,
) -> None:
    """Reject admin calls without the configured key; open when no key is set."""
    expected = settings.security.admin_api_key
    if not expected:
        return
    if not x_admin_key or not hmac.compare_digest(x_admin_key, expected):
        raise HTTPException(
            status_code=HTTPStatus.UNAUTHORIZED,
            detail="Invalid admin key.",
        )


def get_partner_broker(
    partner: str,
    brokers: Annotated[Dict[str, TokenBroker], Depends(get_brokers)],
) -> TokenBroker:
    broker = brokers.get(partner.lower())
    if broker is None:
        raise HTTPException(
            status_code=HTTPStatus.NOT_FOUND,
            detail=f"Unknown partner '{partner}'.",
        )
    return broker


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck() -> dict:
    """Simple health endpoint for monitoring."""
    return {"status": "ok"}


@router.get(
    "/admin/tokens/{partner}",
    status_code=HTTPStatus.OK,
    dependencies=[Depends(require_admin_key)],
)
async def get_token_status(
    broker: Annotated[TokenBroker, Depends(get_partner_broker)],
    name: Optional[str] = Query(default=None, description="Token record name."),
) -> dict:
    """Report presence and expiry of a stored token without exposing it."""
    return broker.token_status(name)


@router.post(
    "/admin/tokens/{partner}/ensure",
    status_code=HTTPStatus.OK,
    dependencies=[Depends(require_admin_key)],
)
async def ensure_token(
    broker: Annotated[TokenBroker, Depends(get_partner_broker)],
    name: Optional[str] = Query(default=None, description="Token record name."),
) -> dict:
    """Run the normal validity check, refreshing only when needed."""
    await broker.get_valid_token(name)
    return broker.token_status(name)


@router.post(
    "/admin/tokens/{partner}/refresh",
    status_code=HTTPStatus.OK,
    dependencies=[Depends(require_admin_key)],
)
async def force_refresh_token(
    broker: Annotated[TokenBroker, Depends(get_partner_broker)],
    name: Optional[str] = Query(default=None, description="Token record name."),
) -> dict:
    """Log in again and overwrite the stored token regardless of its expiry."""
    record = await broker.force_refresh(name)
    logger.info("Operator forced %s token refresh for %s", broker.partner, record.name)
    return broker.token_status(record.name)


__all__ = ["partner_error_handler", "router", "status_for_error"]
