"""
Command line interface for puff sync.

Usage:
    puff-sync record              # log a puff now and try to sync it
    puff-sync status              # show counts and connection state
    puff-sync sync                # run one reconciliation
    puff-sync login EMAIL         # prompts for the password
    puff-sync register NAME EMAIL
    puff-sync logout [--reset]
    puff-sync serve --port 3000   # in-memory reference server
"""

from __future__ import annotations

import argparse
import asyncio
import getpass
import logging
import sys
from pathlib import Path

from .client import PuffSyncClient
from .config import load_config
from .exceptions import PuffSyncError
from .logging_utils import configure_structured_logging


async def _record(client: PuffSyncClient) -> int:
    await client.start(auto_sync=False)
    try:
        event = await client.record_puff()
        print(f"Recorded {client.config.tracking_mode.unit_name} at {event.timestamp.isoformat()}")
        if client.channel.is_connected:
            result = await client.sync_now()
            print(f"Sync: {result.outcome.value} (sent={result.sent})")
    finally:
        await client.stop()
    return 0


async def _status(client: PuffSyncClient) -> int:
    await client.start(auto_sync=False)
    try:
        status = client.status()
        stats = client.stats()
        print(f"Connection:     {status.connection.value}")
        if status.has_error:
            print(f"Error:          {status.error}")
        print(f"Today:          {status.today_count}")
        print(f"Unsynced:       {status.unsynced}")
        print(f"Streak (days):  {status.streak}")
        print(f"Avg per day:    {stats.average_per_day():.1f}")
        print(f"Withdrawal:     {stats.withdrawal_stage.status}")
        goal = stats.goal_progress
        print(f"Daily goal:     {goal.percentage}% ({goal.status})")
        print(f"Peak time:      {stats.time_of_day_pattern.peak}")
        weekly = stats.weekly_comparison
        print(f"This week:      {weekly.this_week_avg:.1f}/day ({weekly.percentage:+d}% vs last week)")
        print(f"Saved monthly:  {stats.financials.money_saved:.2f}")
        next_milestone = next((m for m in stats.milestones if not m.achieved), None)
        if next_milestone is not None:
            print(f"Next milestone: {next_milestone.title} ({next_milestone.days} days)")
        if client.snapshot is not None:
            print(f"Account:        {client.snapshot.user.name} ({client.snapshot.user.id})")
            print(f"Friends:        {len(client.snapshot.friends)}")
    finally:
        await client.stop()
    return 0


async def _sync(client: PuffSyncClient) -> int:
    await client.start(auto_sync=False)
    try:
        result = await client.sync_now()
        print(f"{result.outcome.value}: sent={result.sent} confirmed={result.confirmed}")
        if result.error:
            print(f"Error: {result.error}", file=sys.stderr)
        return 0 if result.success else 1
    finally:
        await client.stop()


async def _login(client: PuffSyncClient, email: str) -> int:
    await client.ledger.load()
    try:
        status = await client.login(email, getpass.getpass("Password: "))
        print(f"Logged in; channel {status.value}")
        return 0
    finally:
        await client.stop()


async def _register(client: PuffSyncClient, name: str, email: str) -> int:
    await client.ledger.load()
    try:
        status = await client.register(name, email, getpass.getpass("Password: "))
        print(f"Registered; channel {status.value}")
        return 0
    finally:
        await client.stop()


async def _logout(client: PuffSyncClient, reset: bool) -> int:
    await client.ledger.load()
    await client.logout(reset_ledger=reset)
    print("Logged out" + (" and cleared local puffs" if reset else ""))
    return 0


def _serve(host: str, port: int, report_ids: bool) -> int:
    from aiohttp import web

    from .server import PuffSyncServer

    server = PuffSyncServer(report_ids=report_ids)
    web.run_app(server.create_app(), host=host, port=port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="puff-sync", description="Local-first puff tracking with server sync")
    parser.add_argument("--config", type=Path, help="Settings file (default: ~/.pufftrack/settings.yaml)")
    parser.add_argument("--server-url", help="Override the sync server URL")
    parser.add_argument("--data-dir", type=Path, help="Override the data directory")
    parser.add_argument("--json-logs", action="store_true", help="Emit structured JSON logs")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("record", help="Log a puff now")
    sub.add_parser("status", help="Show counts and connection state")
    sub.add_parser("sync", help="Run one reconciliation")

    login = sub.add_parser("login", help="Log in and store the token")
    login.add_argument("email")

    register = sub.add_parser("register", help="Create an account")
    register.add_argument("name")
    register.add_argument("email")

    logout = sub.add_parser("logout", help="Forget the stored token")
    logout.add_argument("--reset", action="store_true", help="Also delete local puffs")

    serve = sub.add_parser("serve", help="Run the in-memory reference server")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=3000)
    serve.add_argument("--count-only", action="store_true", help="Reply to getPuffCount with a bare count")

    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.WARNING
    if args.json_logs:
        configure_structured_logging(level=level)
    else:
        logging.basicConfig(level=level)

    if args.command == "serve":
        return _serve(args.host, args.port, report_ids=not args.count_only)

    try:
        config = load_config(args.config, server_url=args.server_url, data_dir=args.data_dir)
        client = PuffSyncClient.create(config)

        if args.command == "record":
            return asyncio.run(_record(client))
        if args.command == "status":
            return asyncio.run(_status(client))
        if args.command == "sync":
            return asyncio.run(_sync(client))
        if args.command == "login":
            return asyncio.run(_login(client, args.email))
        if args.command == "register":
            return asyncio.run(_register(client, args.name, args.email))
        if args.command == "logout":
            return asyncio.run(_logout(client, args.reset))
    except PuffSyncError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    return 2


if __name__ == "__main__":
    sys.exit(main())
