"""Command-line entry point for the Promptomatic MCP server.

``promptomatic-server`` (or ``python -m promptomatic.core.server.main``)
serves over Streamable HTTP by default; ``--transport stdio`` runs it as a
subprocess-style MCP server for desktop clients. Flags override the
matching ``PROMPTOMATIC_*`` settings.
"""

from __future__ import annotations

import argparse
import logging
from ipaddress import ip_address
from typing import Sequence

from promptomatic.core.config.settings import get_settings
from promptomatic.core.server.app import SERVER_NAME, SERVER_VERSION, create_app

logger = logging.getLogger(__name__)

TRANSPORTS = ("streamable-http", "stdio")


class InsecureBindError(RuntimeError):
    """HTTP transport asked to listen beyond loopback without opting in."""


def is_loopback_host(host: str) -> bool:
    if host == "localhost":
        return True
    try:
        return ip_address(host).is_loopback
    except ValueError:
        return False


def check_bind(host: str, allow_insecure: bool) -> None:
    """Refuse a non-loopback HTTP bind: the server has no auth layer."""
    if allow_insecure or is_loopback_host(host):
        return
    raise InsecureBindError(
        f"Refusing to serve Promptomatic on {host}: it has no authentication. "
        "Pass --allow-insecure-bind or set PROMPTOMATIC_ALLOW_INSECURE_BIND=true."
    )


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(
        prog="promptomatic-server",
        description=f"{SERVER_NAME} {SERVER_VERSION}: structured prompts for language teachers",
    )
    parser.add_argument(
        "--transport",
        choices=TRANSPORTS,
        default="streamable-http",
        help="MCP transport (default: streamable-http)",
    )
    parser.add_argument(
        "--host",
        default=settings.promptomatic_host,
        help=f"HTTP bind address (default: {settings.promptomatic_host})",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=settings.promptomatic_port,
        help=f"HTTP port (default: {settings.promptomatic_port})",
    )
    parser.add_argument(
        "--log-level",
        default=settings.promptomatic_log_level,
        help=f"Logging level (default: {settings.promptomatic_log_level})",
    )
    parser.add_argument(
        "--allow-insecure-bind",
        action="store_true",
        default=settings.promptomatic_allow_insecure_bind,
        help="Allow HTTP on a non-loopback address",
    )
    return parser


def run(argv: Sequence[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.transport == "stdio":
        logger.info("Starting %s %s on stdio", SERVER_NAME, SERVER_VERSION)
        create_app().run(transport="stdio")
        return

    check_bind(args.host, args.allow_insecure_bind)
    logger.info("Starting %s %s on %s:%d", SERVER_NAME, SERVER_VERSION, args.host, args.port)
    create_app().run(transport="streamable-http", host=args.host, port=args.port)


if __name__ == "__main__":
    run()
