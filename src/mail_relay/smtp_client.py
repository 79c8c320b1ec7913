# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Single-shot SMTP submission to the upstream relay.

Every call opens a fresh session, authenticates with the PLAIN mechanism,
submits exactly one message to all recipients and quits. Connections are
never reused across calls and nothing is retried: any failure is reported
as :class:`~mail_relay.errors.RelayError` carrying the original exception.

STARTTLS is negotiated whenever the relay advertises it; ``use_tls``
switches to implicit TLS for relays listening on port 465.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

import aiosmtplib

from .errors import RelayError

if TYPE_CHECKING:
    from .dispatch import ResolvedMessage
    from .settings import Settings

logger = logging.getLogger(__name__)


def build_message(subject_line: str, body: str) -> bytes:
    """Return the wire form: the subject header, a blank line, then the body."""
    header = subject_line.rstrip("\r\n")
    if not header:
        return f"\r\n{body}".encode("utf-8")
    return f"{header}\r\n\r\n{body}".encode("utf-8")


async def send(
    sender_address: str,
    sender_credential: str,
    relay_host: str,
    relay_port: int,
    recipients: Sequence[str],
    subject_line: str,
    body: str,
    *,
    use_tls: bool = False,
    timeout: float = 60.0,
) -> None:
    """Submit one message through one authenticated relay session.

    Raises:
        RelayError: Preconditions not met, or the relay could not be
            reached, refused the credentials or refused the message.
    """
    if not recipients:
        raise RelayError("No recipients to address")
    if not relay_host or not relay_port:
        raise RelayError("Relay host and port are required")

    smtp = aiosmtplib.SMTP(
        hostname=relay_host,
        port=relay_port,
        use_tls=use_tls,
        start_tls=False if use_tls else None,
        timeout=timeout,
    )
    payload = build_message(subject_line, body)
    try:
        await smtp.connect()
        try:
            if smtp.is_ehlo_or_helo_needed:
                await smtp.ehlo()
            await smtp.auth_plain(sender_address, sender_credential)
            errors, _ = await smtp.sendmail(sender_address, list(recipients), payload)
        finally:
            if smtp.is_connected:
                try:
                    await smtp.quit()
                except aiosmtplib.SMTPException:
                    smtp.close()
    except (aiosmtplib.SMTPException, OSError, asyncio.TimeoutError) as exc:
        raise RelayError(f"Relay {relay_host}:{relay_port} failed: {exc}", cause=exc) from exc

    if errors:
        # Some recipients refused while others were accepted; the relay took the message
        logger.warning("Relay refused recipients %s", ", ".join(sorted(errors)))
    logger.debug("Relayed message to %d recipient(s) via %s:%s", len(recipients), relay_host, relay_port)


class RelayClient:
    """Bind the relay coordinates and sender identity from :class:`Settings`."""

    def __init__(self, settings: Settings):
        self.settings = settings

    async def send(self, message: ResolvedMessage) -> None:
        """Relay ``message`` with the configured sender and relay settings.

        Args:
            message: Resolved message; its recipients must be non-empty.

        Raises:
            RelayError: The relay did not accept the message.
        """
        s = self.settings
        await send(
            s.sender_address,
            s.sender_credential,
            s.relay_host,
            s.relay_port,
            message.recipients,
            message.subject_line,
            message.body,
            use_tls=s.relay_use_tls,
            timeout=s.relay_timeout,
        )
