# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""ASGI application entry point for uvicorn.

Settings are loaded from the environment when the factory runs, so a
misconfigured process fails before the port is bound.

Usage:
    uvicorn mail_relay.server:create_server_app --factory --port 8080

or through the CLI, which also honours ``HOST``/``PORT``::

    mail-relay serve
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .api import create_app
from .settings import Settings, load_settings

_logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once for the process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        force=True,  # Force reconfiguration to avoid duplicate handlers
    )


def build_app(settings: Settings) -> FastAPI:
    """Create the application with a lifespan that reports start and stop."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        _logger.info(
            "Mail relay listening on %s, relaying via %s:%s as %s",
            settings.listen_address,
            settings.relay_host,
            settings.relay_port,
            settings.sender_address,
        )
        if not settings.default_recipients:
            _logger.warning("EMAIL_RECIPIENT not set: requests without recipients will be rejected")
        try:
            yield
        finally:
            _logger.info("Mail relay stopped")

    return create_app(settings, lifespan=lifespan)


def create_server_app() -> FastAPI:
    """Uvicorn factory: load settings from the environment and build the app.

    Raises:
        ConfigurationError: Required settings are missing or invalid.
    """
    settings = load_settings()
    configure_logging(settings.log_level)
    return build_app(settings)
