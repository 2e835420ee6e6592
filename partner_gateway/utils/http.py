"""HTTP helpers shared by the partner login and business-call clients."""

from __future__ import annotations

from typing import Any

import httpx


def join_url(base_url: str, path: str) -> str:
    """Join a base URL and a path with exactly one slash between them."""
    base = base_url.rstrip("/")
    suffix = path.lstrip("/")
    if not base:
        return suffix
    return f"{base}/{suffix}"


def response_body(response: httpx.Response) -> Any:
    """Return the decoded JSON body, the raw text when it is not JSON, or None."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


__all__ = ["join_url", "response_body"]
