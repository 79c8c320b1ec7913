# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Error kinds raised along the request-to-relay path.

Each class carries a short machine ``code`` so the HTTP layer and the CLI
can decide status codes and log verbosity per kind without inspecting
messages.
"""

from __future__ import annotations


class MailRelayError(Exception):
    """Base class for every error raised by the service."""

    code = "mail_relay_error"


class ConfigurationError(MailRelayError):
    """Raised at startup when required settings are missing or invalid.

    Attributes:
        problems: One human readable entry per offending key.
    """

    code = "configuration_error"

    def __init__(self, problems: list[str] | str):
        if isinstance(problems, str):
            problems = [problems]
        self.problems = list(problems)
        super().__init__("Invalid configuration: " + "; ".join(self.problems))


class RequestDecodeError(MailRelayError):
    """Raised when a send request body cannot be decoded."""

    code = "request_decode_error"


class RecipientError(RequestDecodeError):
    """Raised when the resolved recipient list is empty or malformed."""

    code = "invalid_recipients"


class RelayError(MailRelayError):
    """Raised when the mail relay cannot accept the message.

    Wraps connection failures, authentication rejections, timeouts and
    relay-side refusals alike. The original exception is available both as
    ``__cause__`` and ``cause``.
    """

    code = "relay_error"

    def __init__(self, message: str = "Mail relay failure", cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause


class RateLimitExceeded(MailRelayError):
    """Raised when a limiter key has used up its quota for the window."""

    code = "rate_limited"

    def __init__(self, retry_after: int):
        super().__init__("Too many requests")
        self.retry_after = retry_after
