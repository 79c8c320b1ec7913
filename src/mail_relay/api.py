# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""FastAPI application factory and HTTP schemas for the relay service.

Endpoints:

- ``GET /`` returns a fixed liveness string for external health checks.
- ``POST /api/send`` relays one message. The body is a JSON object with
  optional ``recipients``, ``subject`` and ``message`` strings.
- ``GET /metrics`` exposes Prometheus counters.

Responses are intentionally coarse: a malformed body, an invalid recipient
list and a relay failure all answer ``400`` with an empty body. Details are
only written to the server log.

The send endpoint is protected by a per-client fixed-window rate limiter
(5 requests per minute by default). Failed responses give their slot back,
so only successful traffic counts toward the quota.

Example:
    Creating and running the API application::

        from mail_relay.settings import load_settings
        from mail_relay.api import create_app

        app = create_app(load_settings())

        # Run with uvicorn
        uvicorn.run(app, host="0.0.0.0", port=8000)
"""

import logging
import time
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import BaseModel, ConfigDict, field_validator

from .dispatch import Relay, send_mail
from .errors import RateLimitExceeded, RelayError, RequestDecodeError
from .prometheus import MailMetrics
from .rate_limit import RateLimiter
from .settings import Settings
from .smtp_client import RelayClient

logger = logging.getLogger(__name__)

HEALTH_MESSAGE = "Service is online!"
SEND_PATH = "/api/send"
TOO_MANY_REQUESTS = {"message": "Too many requests"}


class SendRequest(BaseModel):
    """Body accepted by ``POST /api/send``. Every field defaults to ``""``."""

    model_config = ConfigDict(extra="ignore")

    recipients: str = ""
    subject: str = ""
    message: str = ""

    @field_validator("recipients", "subject", "message", mode="before")
    @classmethod
    def _null_as_empty(cls, value: Any) -> Any:
        return "" if value is None else value


def client_key(request: Request) -> str:
    """Default limiter key: the caller's network address."""
    if request.client is None:
        return "unknown"
    return request.client.host


def _rate_limit_headers(limiter: RateLimiter, remaining: int, reset_after: int) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(limiter.max_requests),
        "X-RateLimit-Remaining": str(remaining),
        "X-RateLimit-Reset": str(reset_after),
    }


def create_app(
    settings: Settings,
    *,
    relay: Relay | None = None,
    limiter: RateLimiter | None = None,
    metrics: MailMetrics | None = None,
    key_func: Callable[[Request], str] = client_key,
    lifespan: Callable[[FastAPI], AbstractAsyncContextManager] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Parameters
    ----------
    settings:
        Resolved service settings. Read-only, shared by every request.
    relay:
        Relay used to submit messages. Defaults to a
        :class:`~mail_relay.smtp_client.RelayClient` bound to ``settings``.
    limiter:
        Rate limiter guarding the send endpoint. Defaults to 5 requests
        per 60 seconds.
    metrics:
        Prometheus metrics holder. A private registry is created by default.
    key_func:
        Maps a request to its limiter key.
    lifespan:
        Optional lifespan context manager for startup/shutdown events.

    Returns
    -------
    FastAPI
        A configured application ready to be served by Uvicorn or any ASGI
        server.
    """
    relay = relay if relay is not None else RelayClient(settings)
    limiter = limiter if limiter is not None else RateLimiter()
    metrics = metrics if metrics is not None else MailMetrics()

    api = FastAPI(title="Mail Relay", lifespan=lifespan)
    api.state.settings = settings
    api.state.relay = relay
    api.state.limiter = limiter
    api.state.metrics = metrics

    @api.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Answer undecodable bodies with a bare 400."""
        logger.warning("Error parsing request body on %s %s: %s", request.method, request.url.path, exc.errors())
        metrics.inc_rejected(RequestDecodeError.code)
        return Response(status_code=400)

    @api.exception_handler(RequestDecodeError)
    async def request_error_handler(request: Request, exc: RequestDecodeError):
        logger.warning("Rejected send request: %s", exc)
        metrics.inc_rejected(exc.code)
        return Response(status_code=400)

    @api.exception_handler(RelayError)
    async def relay_error_handler(request: Request, exc: RelayError):
        # The caller only sees 400, the cause stays in the log
        logger.error("Error sending email: %s", exc)
        metrics.inc_error()
        return Response(status_code=400)

    @api.middleware("http")
    async def rate_limit(request: Request, call_next):
        """Reserve a quota slot for send requests, returning it on failure."""
        if request.method != "POST" or request.url.path != SEND_PATH:
            return await call_next(request)

        key = key_func(request)
        try:
            quota = await limiter.acquire(key)
        except RateLimitExceeded as exc:
            metrics.inc_rate_limited()
            headers = _rate_limit_headers(limiter, 0, exc.retry_after)
            headers["Retry-After"] = str(exc.retry_after)
            return JSONResponse(status_code=429, content=TOO_MANY_REQUESTS, headers=headers)

        try:
            response = await call_next(request)
        except Exception:
            await limiter.release_slot(key, quota.window_opened_at)
            raise

        remaining = quota.remaining
        if response.status_code >= 400:
            await limiter.release_slot(key, quota.window_opened_at)
            remaining += 1
        response.headers.update(_rate_limit_headers(limiter, remaining, quota.reset_after))
        return response

    @api.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "%s %s %s -> %d (%.1f ms)",
            client_key(request),
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
        )
        return response

    api.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "HEAD", "PUT", "DELETE", "PATCH"],
        allow_headers=["*"],
    )

    @api.get("/", response_class=PlainTextResponse)
    async def health():
        """Liveness check. Never rate limited."""
        return HEALTH_MESSAGE

    @api.post(SEND_PATH, response_class=Response)
    async def send(payload: SendRequest):
        """Relay one message, falling back to the configured defaults."""
        await send_mail(
            settings,
            payload.subject,
            payload.message,
            payload.recipients,
            relay=relay,
        )
        metrics.inc_sent()
        return Response(status_code=200)

    @api.get("/metrics")
    async def metrics_endpoint():
        """Expose Prometheus metrics collected by the service."""
        return Response(content=metrics.generate_latest(), media_type="text/plain; version=0.0.4")

    return api
