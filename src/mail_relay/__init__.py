# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""HTTP-triggered email relay service.

Features:
    - ``POST /api/send`` relays one message through an authenticated SMTP session
    - Recipient and subject defaults resolved from the environment
    - Per-client fixed-window rate limiting on the send endpoint
    - Prometheus metrics for monitoring

Example::

    from mail_relay.settings import load_settings
    from mail_relay.api import create_app

    settings = load_settings()
    app = create_app(settings)
"""

__version__ = "0.1.0"
