"""
Configuration module for the trust-check service.

Usage:
    from config import get_settings

    settings = get_settings()
    print(settings.job_timeout_seconds)
"""

from .settings import (
    Settings,
    DeploymentMode,
    LogLevel,
    StoreBackend,
    TRANSCRIPT_STRATEGIES,
    get_settings,
)

__all__ = [
    "Settings",
    "DeploymentMode",
    "LogLevel",
    "StoreBackend",
    "TRANSCRIPT_STRATEGIES",
    "get_settings",
]
