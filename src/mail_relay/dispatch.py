# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Send-mail use case: resolve request fields against defaults and relay.

Resolution rules, applied independently:

- Recipients: an empty request value falls back to the configured default
  list, otherwise the request value is split on commas. Blank entries are
  dropped; an empty result or a malformed address is a
  :class:`~mail_relay.errors.RecipientError`.
- Subject: an empty request value falls back to the configured default,
  which is already a complete header line and is used verbatim. Otherwise
  the header line is ``"Subject: " + subject``. A requested subject with a
  line break is a :class:`~mail_relay.errors.RequestDecodeError`.
- Body: used verbatim, empty bodies are allowed.

Example:
    Resolving and sending from a script::

        message = await send_mail(settings, "Hi", "Body", "a@x.com,b@x.com")
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Protocol

from .errors import RecipientError, RequestDecodeError
from .settings import Settings, split_addresses
from .smtp_client import RelayClient

logger = logging.getLogger(__name__)

SUBJECT_PREFIX = "Subject: "

# One "@", non-empty local part and domain, no whitespace
_ADDRESS_RE = re.compile(r"^[^@\s]+@[^@\s]+$")


class Relay(Protocol):
    async def send(self, message: ResolvedMessage) -> None: ...


@dataclass(frozen=True)
class ResolvedMessage:
    """Message ready for the relay, after defaults have been applied."""

    recipients: tuple[str, ...]
    subject_line: str
    body: str


def resolve_recipients(settings: Settings, requested: str) -> tuple[str, ...]:
    """Return the effective recipient list for a request.

    Raises:
        RecipientError: No recipient left after resolution, or an entry is
            not a plausible address.
    """
    if requested:
        recipients = split_addresses(requested)
    else:
        recipients = settings.default_recipients
    if not recipients:
        raise RecipientError("No recipients: request names none and no default is configured")
    invalid = [addr for addr in recipients if not _ADDRESS_RE.match(addr)]
    if invalid:
        raise RecipientError(f"Invalid recipient address(es): {', '.join(invalid)}")
    return tuple(recipients)


def resolve_subject(settings: Settings, requested: str) -> str:
    """Return the subject header line for a request.

    Args:
        settings: Provides the pre-formatted default subject.
        requested: Subject text from the request, empty for the default.

    Raises:
        RequestDecodeError: The requested subject contains a line break,
            which would inject extra headers into the message.
    """
    if not requested:
        return settings.default_subject
    if "\r" in requested or "\n" in requested:
        raise RequestDecodeError("Subject must not contain line breaks")
    return SUBJECT_PREFIX + requested


def resolve_message(settings: Settings, subject: str, message: str, recipients: str) -> ResolvedMessage:
    """Apply the default-substitution rules. Pure: no I/O, no hidden state."""
    return ResolvedMessage(
        recipients=resolve_recipients(settings, recipients),
        subject_line=resolve_subject(settings, subject),
        body=message,
    )


async def send_mail(
    settings: Settings,
    subject: str,
    message: str,
    recipients: str,
    *,
    relay: Relay | None = None,
) -> ResolvedMessage:
    """Resolve the request and submit it as a single relay transaction.

    Args:
        settings: Service settings providing defaults and sender identity.
        subject: Requested subject, empty for the configured default.
        message: Message body.
        recipients: Comma separated recipients, empty for the default list.
        relay: Relay implementation; a :class:`RelayClient` bound to
            ``settings`` when omitted.

    Returns:
        The message that was handed to the relay.

    Raises:
        RecipientError: Resolution failed; the relay was not contacted.
        RelayError: The relay did not accept the message.
    """
    resolved = resolve_message(settings, subject, message, recipients)
    if relay is None:
        relay = RelayClient(settings)
    await relay.send(resolved)
    logger.info("Mail relayed to %s", ", ".join(resolved.recipients))
    return resolved
