"""
Authenticated HTTP client for partner business APIs.

Every call makes exactly one attempt; failures surface as
``UpstreamCallFailed`` so route handlers decide how to respond.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, Optional

import httpx

from partner_gateway.core.config import TokenPlacement
from partner_gateway.core.errors import UpstreamCallFailed
from partner_gateway.utils.http import join_url, response_body

if TYPE_CHECKING:
    from partner_gateway.services.token_broker import TokenBroker

logger = logging.getLogger(__name__)

_SUPPORTED_METHODS = frozenset({"GET", "POST", "PUT", "PATCH", "DELETE"})


class PartnerApiClient:
    """Attach the broker's token to outbound partner calls."""

    def __init__(
        self,
        *,
        broker: TokenBroker,
        base_url: str,
        timeout: float,
        token_placement: TokenPlacement = "bearer",
        token_query_param: str = "access_token",
        token_name: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._broker = broker
        self._base_url = base_url
        self._timeout = timeout
        self._placement = token_placement
        self._query_param = token_query_param
        self._token_name = token_name
        self._transport = transport

    @property
    def partner(self) -> str:
        return self._broker.partner

    async def call(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        *,
        query: Optional[Dict[str, Any]] = None,
        attach_token: bool = True,
        token_placement: Optional[TokenPlacement] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """Send one request and return the decoded body; raise on non-2xx."""
        verb = method.upper()
        if verb not in _SUPPORTED_METHODS:
            raise ValueError(f"Unsupported HTTP method: {method}")

        url = join_url(self._base_url, path)
        request_headers = {"Accept": "application/json", **(headers or {})}
        params = dict(query or {})

        if attach_token:
            token = await self._broker.get_valid_token(self._token_name)
            if (token_placement or self._placement) == "query":
                params[self._query_param] = token
            else:
                request_headers["Authorization"] = f"Bearer {token}"

        request_kwargs: Dict[str, Any] = {"headers": request_headers}
        if params:
            request_kwargs["params"] = params
        if payload is not None and verb != "GET":
            request_kwargs["json"] = payload

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.request(verb, url, **request_kwargs)
        except httpx.HTTPError as exc:
            logger.warning(
                "%s API request %s %s failed: %s",
                self.partner,
                verb,
                url,
                exc,
            )
            raise UpstreamCallFailed(
                f"{self.partner} API request failed: {exc}",
                partner=self.partner,
            ) from exc

        body = response_body(response)
        if not response.is_success:
            logger.warning(
                "%s API request %s %s returned %s",
                self.partner,
                verb,
                url,
                response.status_code,
                extra={"status": response.status_code, "body": body},
            )
            raise UpstreamCallFailed(
                _error_message(body) or f"{self.partner} API request failed",
                partner=self.partner,
                status=response.status_code,
                body=body,
            )

        if body is None or isinstance(body, str):
            return {}
        return body

    async def get(self, path: str, query: Optional[Dict[str, Any]] = None) -> Any:
        return await self.call("GET", path, query=query)

    async def get_with_token_in_query(
        self, path: str, query: Optional[Dict[str, Any]] = None
    ) -> Any:
        """GET with the token as a query parameter regardless of the default placement."""
        return await self.call("GET", path, query=query, token_placement="query")

    async def post(self, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        return await self.call("POST", path, payload or {})

    async def put(self, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        return await self.call("PUT", path, payload or {})

    async def patch(self, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        return await self.call("PATCH", path, payload or {})

    async def delete(self, path: str) -> Any:
        return await self.call("DELETE", path)


def _error_message(body: Any) -> Optional[str]:
    """Pull a human-readable message out of either partner's error envelope."""
    if not isinstance(body, dict):
        return None
    error = body.get("error")
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    for key in ("Message", "message", "error_description"):
        if body.get(key):
            return str(body[key])
    if isinstance(error, str):
        return error
    return None


__all__ = ["PartnerApiClient"]
