"""Application factory that wires configuration, directory and API together."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI

from .api import create_app as create_api_app
from .config import Settings, load_settings
from .directory import UserDirectory

logger = logging.getLogger("referrals.application")


def create_application(*, settings: Optional[Settings] = None) -> FastAPI:
    """Create the ASGI application with a freshly seeded user directory."""

    if settings is None:
        settings = load_settings()

    directory = UserDirectory(settings=settings)
    logger.info(
        "Referral directory ready with %d seeded user(s) in %s mode",
        len(directory),
        settings.server.environment,
    )
    return create_api_app(directory=directory, settings=settings)


__all__ = ["create_application"]
