# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Command-line interface for mail-relay.

Usage:
    mail-relay serve                      # run the HTTP service
    mail-relay check-config               # show resolved settings
    mail-relay send -t a@x.com -s Hi -m "Body"

Every command reads the same environment variables as the service. With
``ENV=dev`` the ``.env`` file (or the one given with ``--env-file``) is
loaded first.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import sys
from typing import Any

import click
from rich.console import Console
from rich.table import Table

from .dispatch import send_mail
from .errors import ConfigurationError, RecipientError, RelayError
from .settings import DEFAULT_ENV_FILE, Settings, load_settings

console = Console()
err_console = Console(stderr=True)


def run_async(coro):
    """Execute an async coroutine synchronously from CLI context."""
    return asyncio.run(coro)


def print_error(message: str) -> None:
    """Print a formatted error message to stderr."""
    err_console.print(f"[red]Error:[/red] {message}")


def print_success(message: str) -> None:
    """Print a formatted success message with checkmark."""
    console.print(f"[green]✓[/green] {message}")


def print_json(data: Any) -> None:
    console.print_json(json.dumps(data, indent=2, default=str))


def _load_or_exit(env_file: str) -> Settings:
    """Load settings, printing every configuration problem before exiting."""
    try:
        return load_settings(env_file=env_file)
    except ConfigurationError as exc:
        print_error("invalid configuration")
        for problem in exc.problems:
            err_console.print(f"  - {problem}")
        sys.exit(1)


env_file_option = click.option(
    "--env-file",
    default=DEFAULT_ENV_FILE,
    show_default=True,
    help="Configuration file loaded when ENV=dev.",
)


@click.group()
@click.version_option(package_name="mail-relay")
def main() -> None:
    """HTTP-triggered email relay."""


@main.command("serve")
@env_file_option
@click.option("--host", "-h", default=None, help="Host to bind to (default: HOST or 0.0.0.0).")
@click.option("--port", "-p", type=int, default=None, help="Port to listen on (default: PORT).")
def serve(env_file: str, host: str | None, port: int | None) -> None:
    """Run the HTTP service until interrupted."""
    import uvicorn

    from .server import build_app, configure_logging

    settings = _load_or_exit(env_file)
    overrides: dict[str, Any] = {}
    if host:
        overrides["listen_host"] = host
    if port:
        overrides["listen_port"] = port
    if overrides:
        settings = dataclasses.replace(settings, **overrides)

    configure_logging(settings.log_level)
    console.print("\n[bold cyan]Starting mail-relay[/bold cyan]")
    console.print(f"  Relay:   {settings.relay_host}:{settings.relay_port}")
    console.print(f"  Listen:  {settings.listen_address}")
    console.print()

    uvicorn.run(
        build_app(settings),
        host=settings.listen_host,
        port=settings.listen_port,
        log_level=settings.log_level.lower(),
    )


@main.command("check-config")
@env_file_option
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
def check_config(env_file: str, as_json: bool) -> None:
    """Validate the configuration and show the resolved settings."""
    settings = _load_or_exit(env_file)
    data = settings.masked()
    if as_json:
        print_json(data)
        return

    table = Table(title="Mail Relay Settings")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for key, value in data.items():
        table.add_row(key, str(value) if value not in ("", None) else "-")
    console.print(table)


@main.command("send")
@env_file_option
@click.option("--to", "-t", "recipients", default="", help="Comma separated recipients (default: EMAIL_RECIPIENT).")
@click.option("--subject", "-s", default="", help="Subject (default: EMAIL_SUBJECT).")
@click.option("--message", "-m", default=None, help="Message body. Read from stdin when omitted.")
def send(env_file: str, recipients: str, subject: str, message: str | None) -> None:
    """Relay one message using the service configuration."""
    settings = _load_or_exit(env_file)
    if message is None:
        message = click.get_text_stream("stdin").read()

    try:
        resolved = run_async(send_mail(settings, subject, message, recipients))
    except RecipientError as exc:
        print_error(str(exc))
        sys.exit(2)
    except RelayError as exc:
        print_error(str(exc))
        sys.exit(1)
    print_success(f"Message relayed to {', '.join(resolved.recipients)}")


if __name__ == "__main__":
    main()
