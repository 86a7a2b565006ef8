#!/usr/bin/env python3
"""Inspect and manage lockouts and sessions in the shared store.

Usage:
    # Is an IP, device or email currently locked?
    python scripts/lockout_admin.py status ip 203.0.113.7

    # Lock or unlock an identifier by hand
    python scripts/lockout_admin.py lock email abuser@example.com
    python scripts/lockout_admin.py unlock device "curl/8.0"

    # Sign a user out everywhere
    python scripts/lockout_admin.py end-sessions 6f1c0c8e-...

Environment Variables:
    REDIS_URL: Redis connection string
    KEY_NAMESPACE: Key prefix shared with the running service
"""
from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from trustgate.service.brute_force import IdentifierSpace  # noqa: E402
from trustgate.service.runtime import Runtime  # noqa: E402
from trustgate.storage.errors import BackendUnavailable  # noqa: E402


async def run_command(runtime: Runtime, command: str, space: str | None, identifier: str) -> dict:
    """Run one admin command against ``runtime`` and describe the outcome."""
    if command == "end-sessions":
        destroyed = await runtime.sessions.destroy_all_user_sessions(identifier)
        return {"user_id": identifier, "sessions_destroyed": destroyed}

    guard = runtime.guards.for_space(IdentifierSpace(space))
    if command == "lock":
        await guard.lock(identifier)
    elif command == "unlock":
        await guard.clear_attempts(identifier)
    elif command != "status":
        raise ValueError(f"unknown command {command!r}")
    return {
        "space": space,
        "identifier": identifier,
        "blocked": await guard.is_blocked(identifier),
        "remaining_attempts": await guard.remaining_attempts(identifier),
    }


async def _main_async(args: argparse.Namespace) -> dict:
    runtime = Runtime.from_settings()
    try:
        return await run_command(runtime, args.command, args.space, args.identifier)
    finally:
        await runtime.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Manage lockouts and sessions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    sub = parser.add_subparsers(dest="command", required=True)
    spaces = [space.value for space in IdentifierSpace]
    for name in ("status", "lock", "unlock"):
        cmd = sub.add_parser(name)
        cmd.add_argument("space", choices=spaces)
        cmd.add_argument("identifier")
    end = sub.add_parser("end-sessions", help="destroy every session of a user")
    end.add_argument("identifier", metavar="user_id")
    end.set_defaults(space=None)
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    try:
        result = asyncio.run(_main_async(args))
    except BackendUnavailable as e:
        print(f"Error: {e.message}")
        sys.exit(1)
    for key, value in result.items():
        print(f"  {key}: {value}")


if __name__ == "__main__":
    main()
