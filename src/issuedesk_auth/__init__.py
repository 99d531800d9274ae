#!/usr/bin/env python3
"""
IssueDesk Auth
GitHub App device-flow login and installation token management

Two halves share this package:
- the credential issuance service (``serve``), a Starlette app holding the
  GitHub App private key
- the desktop-side channel (``login``/``status``/``logout``) that drives the
  device flow and keeps the encrypted session

All logging goes to stderr; stdout is reserved for command output.
"""

import asyncio
import json
import logging
import os
import sys

from dotenv import load_dotenv

logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)

__version__ = "1.0.0"
__all__ = ["create_app", "build_channel", "serve_main", "cli_main"]


def create_app(*args, **kwargs):
    """Create the issuance service app (see ``transports.http_server.create_app``)."""
    from .transports.http_server import create_app as _create_app

    return _create_app(*args, **kwargs)


def build_channel(*args, **kwargs):
    """Build the desktop auth channel (see ``tools.channel.build_channel``)."""
    from .tools.channel import build_channel as _build_channel

    return _build_channel(*args, **kwargs)


def serve_main(host: str | None = None, port: int | None = None) -> None:
    """Run the issuance service under uvicorn.

    Args:
        host: Host to bind to (default: AUTH_HTTP_HOST or 127.0.0.1)
        port: Port to bind to (default: AUTH_HTTP_PORT or 8787)
    """
    import uvicorn

    from .config import ServiceConfig
    from .errors import ConfigurationError

    load_dotenv()
    config = ServiceConfig()
    host = host or config.host
    port = port or config.port

    try:
        app = create_app(config)
    except ConfigurationError as e:
        logger.error(f"Refusing to start: {e.message}")
        sys.exit(1)

    logger.info(f"Starting IssueDesk auth service on {host}:{port}")
    try:
        uvicorn.run(app, host=host, port=port, log_level="info")
    except KeyboardInterrupt:
        logger.info("Server shutdown requested")


def _print_user_code(event: str, payload: dict) -> None:
    if event == "auth:user-code":
        print(f"\nOpen {payload['verification_uri']} and enter code: {payload['user_code']}")
        print(f"The code expires in {payload['expires_in'] // 60} minutes.\n")


async def _run_command(command: str, open_browser: bool) -> dict:
    from .config import ClientConfig

    def notify(event: str, payload: dict) -> None:
        _print_user_code(event, payload)
        if event == "auth:user-code" and open_browser:
            channel.orchestrator.open_verification_uri()

    channel = build_channel(ClientConfig(), notify=notify)
    try:
        if command == "login":
            return await channel.login()
        if command == "status":
            return await channel.get_session()
        return await channel.logout()
    finally:
        await channel.aclose()


def cli_main(argv: list[str] | None = None) -> int:
    """Drive the auth channel from a terminal: login, status or logout."""
    import argparse

    load_dotenv()
    parser = argparse.ArgumentParser(prog="issuedesk-auth", description="IssueDesk GitHub login")
    parser.add_argument("command", choices=["login", "status", "logout"])
    parser.add_argument("--open", action="store_true", help="Open the verification URL in a browser")
    args = parser.parse_args(argv)

    try:
        result = asyncio.run(_run_command(args.command, args.open))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130

    print(json.dumps(result, indent=2))
    return 0 if result.get("success") else 1
