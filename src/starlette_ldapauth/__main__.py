"""CLI entry point: python -m starlette_ldapauth."""

from __future__ import annotations

import argparse
import logging
import os
import sys

import uvicorn
from ldap3 import Tls
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse
from starlette.routing import Route

from starlette_ldapauth.callbacks import skip_paths
from starlette_ldapauth.config import ENV_PREFIX, LDAPAuthConfig
from starlette_ldapauth.middleware import LDAPAuthMiddleware

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the demo server CLI."""
    parser = argparse.ArgumentParser(
        prog="python -m starlette_ldapauth",
        description="Launch a demo Starlette app protected by LDAP bind authentication.",
    )

    # Directory options
    parser.add_argument(
        "--url",
        required=True,
        help="LDAP server URL, e.g. ldap://localhost:389.",
    )
    parser.add_argument(
        "--bind-dn",
        default="",
        help="Service account DN for the initial bind.",
    )
    parser.add_argument(
        "--bind-credentials",
        default=None,
        help=f"Service account password (default: ${ENV_PREFIX}BIND_CREDENTIALS, empty for unauthenticated bind).",
    )
    parser.add_argument(
        "--search-base",
        default="",
        help="Base DN for the user search. Omit together with --search-filter for service-bind-only mode.",
    )
    parser.add_argument(
        "--search-filter",
        default="",
        help='User search filter, e.g. "(uid={{username}})".',
    )
    parser.add_argument(
        "--starttls",
        action="store_true",
        default=False,
        help="Issue StartTLS before binding.",
    )

    # HTTP options
    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host address to listen on (default: 127.0.0.1).",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=3000,
        help="Port to listen on (default: 3000, range: 1-65535).",
    )
    parser.add_argument(
        "--exempt-paths",
        default="/health",
        help="Comma-separated paths exempt from auth (default: /health).",
    )

    # Logging
    parser.add_argument(
        "--log-level",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        default="INFO",
        help="Logging level (default: INFO).",
    )

    return parser


def _validate_port(port: int, parser: argparse.ArgumentParser) -> None:
    """Validate port is in range 1-65535."""
    if port < 1 or port > 65535:
        parser.error(f"--port must be in range 1-65535, got {port}")


async def _hello(request: Request) -> PlainTextResponse:
    return PlainTextResponse("Hello, World!")


async def _health(request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok"})


def build_app(config: LDAPAuthConfig) -> Starlette:
    """Build the demo app: ``/`` behind the middleware, ``/health`` as a probe."""
    return Starlette(
        routes=[
            Route("/", endpoint=_hello, methods=["GET", "POST"]),
            Route("/health", endpoint=_health, methods=["GET"]),
        ],
        middleware=[Middleware(LDAPAuthMiddleware, config=config)],
    )


def main() -> None:
    """CLI entry point for the demo server.

    Exit codes:
        0 - Normal shutdown
        1 - Invalid configuration
        2 - Startup failure (argparse error, server exception)
    """
    parser = _build_parser()
    args = parser.parse_args()

    _validate_port(args.port, parser)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    # Resolve bind credentials: --bind-credentials → env var
    bind_credentials = args.bind_credentials
    if bind_credentials is None:
        bind_credentials = os.environ.get(f"{ENV_PREFIX}BIND_CREDENTIALS", "")

    exempt = [p.strip() for p in args.exempt_paths.split(",") if p.strip()]

    try:
        config = LDAPAuthConfig(
            url=args.url,
            bind_dn=args.bind_dn,
            bind_credentials=bind_credentials,
            search_base=args.search_base,
            search_filter=args.search_filter,
            tls=Tls() if args.starttls else None,
            skip=skip_paths(exempt) if exempt else None,
        )
    except (TypeError, ValueError) as exc:
        print(f"Error: {exc}.", file=sys.stderr)
        sys.exit(1)

    mode = "search and user bind" if config.search_enabled else "service bind only"
    logger.info("LDAP authentication against %s (%s)", config.url, mode)

    try:
        uvicorn.run(build_app(config), host=args.host, port=args.port, log_level=args.log_level.lower())
    except Exception:
        logger.exception("Server startup failed.")
        sys.exit(2)


if __name__ == "__main__":
    main()
