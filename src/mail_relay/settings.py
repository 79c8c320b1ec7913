# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Process-wide settings resolved once at startup.

The service is configured only through environment variables. When
``ENV=dev`` a local ``.env`` file is loaded first, without overriding
variables already present in the process environment.

Environment variables:
    ENV: ``dev`` enables loading of the local ``.env`` file.
    PORT: Listen port (required).
    HOST: Listen interface (default: 0.0.0.0).
    EMAIL_FROM: Sender address, also used as the relay login (required).
    EMAIL_PASSWORD: Sender credential for the relay (required).
    EMAIL_RECIPIENT: Comma separated default recipients.
    EMAIL_SUBJECT: Default subject, already formatted as a header line
        (for example ``Subject: Contact form``).
    SMTP_HOST: Relay hostname (required).
    SMTP_PORT: Relay port (required).
    SMTP_USE_TLS: Set to "1" or "true" for implicit TLS (port 465).
    SMTP_TIMEOUT: Relay timeout in seconds (default: 60).
    LOG_LEVEL: Logging level (default: INFO).

Example:
    Loading settings at startup::

        try:
            settings = load_settings()
        except ConfigurationError as exc:
            sys.exit(str(exc))
"""

from __future__ import annotations

import logging
import math
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_HOST = "0.0.0.0"
DEFAULT_SMTP_TIMEOUT = 60.0
DEFAULT_ENV_FILE = ".env"

REQUIRED_KEYS = ("EMAIL_FROM", "EMAIL_PASSWORD", "SMTP_HOST", "SMTP_PORT", "PORT")


def split_addresses(value: str | None) -> tuple[str, ...]:
    """Split a comma separated address list, dropping blank entries."""
    if not value:
        return ()
    return tuple(part.strip() for part in value.split(",") if part.strip())


def _is_truthy(value: str | None) -> bool:
    """Check if environment variable value is truthy."""
    return value is not None and value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Immutable service configuration.

    Attributes:
        sender_address: Envelope sender and relay login.
        sender_credential: Relay password.
        relay_host: SMTP relay hostname.
        relay_port: SMTP relay port.
        listen_port: HTTP listen port.
        default_recipients: Recipients used when a request names none.
        default_subject: Header line used when a request has no subject.
        listen_host: HTTP listen interface.
        relay_use_tls: Connect with implicit TLS instead of plain/STARTTLS.
        relay_timeout: Timeout in seconds for each relay operation.
        log_level: Name of the root logging level.
    """

    sender_address: str
    sender_credential: str = field(repr=False)
    relay_host: str
    relay_port: int
    listen_port: int
    default_recipients: tuple[str, ...] = ()
    default_subject: str = ""
    listen_host: str = DEFAULT_HOST
    relay_use_tls: bool = False
    relay_timeout: float = DEFAULT_SMTP_TIMEOUT
    log_level: str = "INFO"

    @property
    def listen_address(self) -> str:
        return f"{self.listen_host}:{self.listen_port}"

    def masked(self) -> dict[str, Any]:
        """Return the settings as a dict with the credential hidden."""
        return {
            "sender_address": self.sender_address,
            "sender_credential": "****" if self.sender_credential else "",
            "default_recipients": ", ".join(self.default_recipients),
            "default_subject": self.default_subject,
            "relay": f"{self.relay_host}:{self.relay_port}",
            "relay_use_tls": self.relay_use_tls,
            "relay_timeout": self.relay_timeout,
            "listen_address": self.listen_address,
            "log_level": self.log_level,
        }


def _parse_port(name: str, raw: str, problems: list[str]) -> int:
    try:
        port = int(raw)
    except ValueError:
        problems.append(f"{name} must be an integer (got {raw!r})")
        return 0
    if not 0 < port < 65536:
        problems.append(f"{name} must be between 1 and 65535 (got {port})")
    return port


def load_env_file(environ: Mapping[str, str], env_file: str | os.PathLike[str] = DEFAULT_ENV_FILE) -> bool:
    """Load the local ``.env`` file when running in dev mode.

    Returns:
        ``True`` when the file was loaded, ``False`` outside dev mode.

    Raises:
        ConfigurationError: ``ENV=dev`` but the file is missing.
    """
    if environ.get("ENV") != "dev":
        return False
    path = Path(env_file)
    if not path.is_file():
        raise ConfigurationError(f"ENV=dev but config file {str(path)!r} not found")
    load_dotenv(dotenv_path=path, override=False)
    logger.info("Loaded development configuration from %s", path)
    return True


def load_settings(
    environ: Mapping[str, str] | None = None,
    env_file: str | os.PathLike[str] = DEFAULT_ENV_FILE,
) -> Settings:
    """Build :class:`Settings` from the environment.

    Args:
        environ: Mapping to read from. Defaults to ``os.environ``; the dev
            ``.env`` file is only loaded in that case.
        env_file: Path of the dev configuration file.

    Raises:
        ConfigurationError: One or more required keys are missing or invalid.
            Every problem found is listed, not only the first.
    """
    if environ is None:
        load_env_file(os.environ, env_file)
        environ = os.environ

    problems: list[str] = []
    values = {key: (environ.get(key) or "").strip() for key in REQUIRED_KEYS}
    for key, value in values.items():
        if not value:
            problems.append(f"{key} is required")

    relay_port = _parse_port("SMTP_PORT", values["SMTP_PORT"], problems) if values["SMTP_PORT"] else 0
    listen_port = _parse_port("PORT", values["PORT"], problems) if values["PORT"] else 0

    raw_timeout = environ.get("SMTP_TIMEOUT")
    relay_timeout = DEFAULT_SMTP_TIMEOUT
    if raw_timeout:
        try:
            relay_timeout = float(raw_timeout)
        except ValueError:
            problems.append(f"SMTP_TIMEOUT must be a number (got {raw_timeout!r})")
        else:
            if not (math.isfinite(relay_timeout) and relay_timeout > 0):
                problems.append(f"SMTP_TIMEOUT must be a positive finite number (got {raw_timeout!r})")

    log_level = (environ.get("LOG_LEVEL") or "INFO").strip().upper()
    if not isinstance(logging.getLevelName(log_level), int):
        problems.append(f"LOG_LEVEL {log_level!r} is not a logging level")

    if problems:
        raise ConfigurationError(problems)

    # Passwords may legitimately carry surrounding spaces
    credential = environ.get("EMAIL_PASSWORD", "")

    return Settings(
        sender_address=values["EMAIL_FROM"],
        sender_credential=credential,
        relay_host=values["SMTP_HOST"],
        relay_port=relay_port,
        listen_port=listen_port,
        default_recipients=split_addresses(environ.get("EMAIL_RECIPIENT")),
        default_subject=environ.get("EMAIL_SUBJECT", ""),
        listen_host=(environ.get("HOST") or DEFAULT_HOST).strip(),
        relay_use_tls=_is_truthy(environ.get("SMTP_USE_TLS")),
        relay_timeout=relay_timeout,
        log_level=log_level,
    )
