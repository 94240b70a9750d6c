"""Core package for the referral tracking service."""

from __future__ import annotations

from typing import Any

from .config import Settings, load_settings
from .directory import UserDirectory


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the API application for a given directory."""

    from .api import create_app as _create_app

    return _create_app(*args, **kwargs)


def create_application(*args: Any, **kwargs: Any):
    """Factory function that loads settings and seeds a new directory."""

    from .application import create_application as _create_application

    return _create_application(*args, **kwargs)


__all__ = [
    "Settings",
    "UserDirectory",
    "create_app",
    "create_application",
    "load_settings",
]
