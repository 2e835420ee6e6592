"""
FastAPI dependency for route handlers that read application settings.
"""

from typing import Annotated

from fastapi import Depends

from partner_gateway.core.config import AppSettings, get_settings


def get_app_settings() -> AppSettings:
    """Return the process-wide settings; tests override this dependency."""
    return get_settings()


SettingsDependency = Annotated[AppSettings, Depends(get_app_settings)]

__all__ = ["SettingsDependency", "get_app_settings"]
