"""Command-line access to the backends through a persisted session.

This module serves as a CLI wrapper around access_client.core.session:
consecutive invocations share credentials through a JSON credentials file.

Examples:
    python scripts/session_cli.py login --email master@example.com
    python scripts/session_cli.py get /api/appointments
    python scripts/session_cli.py listen --user-id 42
"""
from __future__ import annotations
import argparse
import asyncio
import dataclasses
import getpass
import json
import logging
import os
import sys
from pathlib import Path

SCRIPT_DIR = Path(__file__).parent
PROJECT_ROOT = SCRIPT_DIR.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import httpx

from access_client.config import load_settings
from access_client.core.session import (
    PRIMARY,
    SECONDARY,
    AccessClientError,
    AccessSession,
    mask_token,
)

DEFAULT_CREDENTIALS_FILE = Path.home() / ".access_client" / "credentials.json"


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def _redirect_to_login(login_url: str) -> None:
    print(f"Session ended. Log in again (login surface: {login_url})", file=sys.stderr)


async def _run(args: argparse.Namespace) -> int:
    config = load_settings()
    credentials_file = args.credentials_file or config.credentials_file or str(DEFAULT_CREDENTIALS_FILE)
    config = dataclasses.replace(config, credentials_file=credentials_file)

    async with AccessSession.from_settings(config, redirect=_redirect_to_login) as session:
        if args.cmd == "login":
            password = args.password or os.environ.get("ACCESS_LOGIN_PASSWORD") or getpass.getpass("Password: ")
            result = await session.auth.login(args.email, password)
            if not result.success:
                print(f"[login] Error: {result.message}", file=sys.stderr)
                return 1
            print(f"Logged in as {result.identity_class.value if result.identity_class else 'unknown'}")
            if result.user:
                _print_json(result.user)
            return 0

        if args.cmd == "logout":
            await session.auth.logout()
            print("Logged out")
            return 0

        if args.cmd == "whoami":
            user = await session.auth.current_user()
            if user is None:
                print("Not authenticated", file=sys.stderr)
                return 1
            _print_json(user)
            return 0

        if args.cmd == "refresh":
            token = await session.coordinator.refresh()
            print(f"Access token refreshed: {mask_token(token)}")
            return 0

        if args.cmd == "get":
            client = session.primary if args.backend == PRIMARY else session.secondary
            _print_json(await client.get_json(args.path))
            return 0

        if args.cmd == "listen":
            channel = session.realtime_channel(args.user_id, role=args.role)
            channel.add_listener(_print_json)
            channel.connect()
            try:
                if args.duration:
                    await asyncio.sleep(args.duration)
                else:
                    await asyncio.Event().wait()
            finally:
                await channel.close()
            return 0

    return 2


def main() -> None:
    """Command-line entry point."""
    parser = argparse.ArgumentParser(description="Access layer session helper")
    parser.add_argument("--credentials-file", default=None,
                        help=f"Where the session is persisted (default: {DEFAULT_CREDENTIALS_FILE})")
    parser.add_argument("--log-level", default=os.environ.get("LOG_LEVEL", "WARNING"),
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])

    sub = parser.add_subparsers(dest="cmd")

    sl = sub.add_parser("login")
    sl.add_argument("--email", required=True)
    sl.add_argument("--password", default=None, help="Prompted for when omitted")

    sub.add_parser("logout")
    sub.add_parser("whoami")
    sub.add_parser("refresh")

    sg = sub.add_parser("get")
    sg.add_argument("path")
    sg.add_argument("--backend", choices=[PRIMARY, SECONDARY], default=PRIMARY)

    sr = sub.add_parser("listen")
    sr.add_argument("--user-id", required=True)
    sr.add_argument("--role", default=None)
    sr.add_argument("--duration", type=float, default=None, help="Stop after this many seconds")

    args = parser.parse_args()

    if not args.cmd:
        parser.print_help()
        return

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        code = asyncio.run(_run(args))
    except KeyboardInterrupt:
        code = 130
    except (AccessClientError, httpx.HTTPError, RuntimeError, ValueError) as e:
        print(f"[{args.cmd}] Error: {e}", file=sys.stderr)
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
