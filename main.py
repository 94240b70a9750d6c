"""Command-line interface for the referral tracking service."""

from __future__ import annotations
import argparse
import logging
import os
import sys
from typing import Sequence

import httpx

from app.config import Settings, load_settings

logger = logging.getLogger("referrals.main")

_DEFAULT_SERVICE_URL = "http://localhost:3000"


def _parse_args(argv: Sequence[str] | None, settings: Settings | None = None) -> argparse.Namespace:
    settings = settings or Settings()
    parser = argparse.ArgumentParser(description="Referral system utilities")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP referral service")
    serve_parser.add_argument("--host", default=settings.server.host, help="Bind address for the API")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=settings.server.port,
        help=f"Port for the HTTP API (default: {settings.server.port})",
    )

    for name, help_text in (
        ("users", "List registered users from a running service"),
        ("stats", "Show referral statistics from a running service"),
    ):
        command_parser = subparsers.add_parser(name, help=help_text)
        command_parser.add_argument(
            "--service-url",
            default=None,
            help=(
                "Base URL of a running referral service. Defaults to the REFERRAL_SERVICE_URL "
                f"environment variable, then {_DEFAULT_SERVICE_URL}."
            ),
        )

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "users", "stats"}

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in known_commands:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(args_list)
            args_list = ["serve", *args_list]

    return parser.parse_args(args_list)


def _configure_logging(settings: Settings) -> None:
    level = logging.INFO if settings.server.is_production else logging.DEBUG
    logging.basicConfig(level=level, format="%(asctime)s [%(levelname)s] %(message)s")


def _serve(*, settings: Settings, host: str, port: int) -> None:
    from app.application import create_application
    import uvicorn

    logger.info("Starting referral API on http://%s:%s (%s)", host, port, settings.server.environment)

    app = create_application(settings=settings)
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info",
    )


def _resolve_service_url(value: str | None) -> str:
    return (value or os.getenv("REFERRAL_SERVICE_URL") or _DEFAULT_SERVICE_URL).rstrip("/")


def _fetch(service_url: str, path: str) -> dict | None:
    endpoint = service_url + path
    try:
        response = httpx.get(endpoint, timeout=10.0)
    except httpx.HTTPError as exc:
        print(f"Failed to contact referral service: {exc}")
        return None

    if response.status_code != 200:
        print(f"Service responded with {response.status_code}: {response.text.strip()}")
        return None

    try:
        return response.json()
    except ValueError:
        print("Service returned an unexpected response format.")
        return None


def _list_users(service_url: str) -> int:
    payload = _fetch(service_url, "/api/users")
    if payload is None:
        return 1

    users = payload.get("users", [])
    if not users:
        print("No users are currently registered.")
        return 0

    print(f"{len(users)} user(s) found:")
    print(f"{'ID':>4}  {'Name':<24}  {'Email':<32}  {'Code':<6}  {'Points':>6}")
    print("-" * 80)
    for user in users:
        print(
            f"{user.get('id', '?'):>4}  {user.get('name', ''):<24}  {user.get('email', ''):<32}  "
            f"{user.get('referralCode', ''):<6}  {user.get('points', 0):>6}"
        )
    return 0


def _show_statistics(service_url: str) -> int:
    payload = _fetch(service_url, "/api/stats")
    if payload is None:
        return 1

    stats = payload.get("statistics", {})
    print(f"Total users:    {stats.get('totalUsers', 0)}")
    print(f"Total points:   {stats.get('totalPoints', 0)}")
    print(f"Average points: {stats.get('averagePoints', 0)}")

    top_users = stats.get("topUsers", [])
    if top_users:
        print("\nTop users:")
        for rank, entry in enumerate(top_users, start=1):
            print(f"  {rank}. {entry.get('name')} <{entry.get('email')}> - {entry.get('points')} points")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    settings = load_settings()
    _configure_logging(settings)

    args = _parse_args(argv, settings)

    if args.command == "serve":
        _serve(settings=settings, host=args.host, port=args.port)
        return 0
    if args.command == "users":
        return _list_users(_resolve_service_url(args.service_url))
    if args.command == "stats":
        return _show_statistics(_resolve_service_url(args.service_url))
    return 0


if __name__ == "__main__":
    sys.exit(main())
