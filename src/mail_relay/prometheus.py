# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Prometheus metrics exposed by the relay service."""

from prometheus_client import CollectorRegistry, Counter, generate_latest


class MailMetrics:
    """Wrapper around the Prometheus registry used by the service."""

    def __init__(self, registry: CollectorRegistry | None = None):
        """Create counters inside the provided registry.

        Args:
            registry: Registry to register the counters in. A private one is
                created when omitted, so several apps can coexist in a process.
        """
        self.registry = registry or CollectorRegistry()
        self.sent = Counter("mr_sent_total", "Messages accepted by the relay", registry=self.registry)
        self.errors = Counter("mr_errors_total", "Relay failures", registry=self.registry)
        self.rejected = Counter(
            "mr_rejected_total", "Send requests rejected before reaching the relay", ["reason"], registry=self.registry
        )
        self.rate_limited = Counter("mr_rate_limited_total", "Send requests refused by the rate limiter", registry=self.registry)

    def inc_sent(self):
        """Increase the ``sent`` counter after the relay accepted a message."""
        self.sent.inc()

    def inc_error(self):
        """Increase the ``errors`` counter after a relay failure."""
        self.errors.inc()

    def inc_rejected(self, reason: str):
        """Increase the ``rejected`` counter.

        Args:
            reason: Error code of the rejection, used as the ``reason`` label.
        """
        self.rejected.labels(reason=reason).inc()

    def inc_rate_limited(self):
        """Increase the ``rate_limited`` counter for a refused send request."""
        self.rate_limited.inc()

    def generate_latest(self) -> bytes:
        """Return the latest metrics snapshot in Prometheus text format."""
        return generate_latest(self.registry)
