#!/usr/bin/env python3
"""
lawline CLI.

Every command has a short name and standard aliases:

    COMMAND         ALIASES             WHAT IT DOES
    -------         -------             ----------------------------------
    dial            start, serve        Start the lawline server
    ring            status, ping        Ping a running instance
    tally           stats, weekly       Print this week's query count
    enroll          adduser             Register an account
    model           use                 Show, set or clear the model override
"""

import argparse
import sys

from lawline import __version__


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_dial(args):
    """Start the lawline server."""
    import uvicorn
    from lawline.config import get_config

    cfg = get_config()
    host = args.host or cfg["server"]["host"]
    port = args.port or cfg["server"]["port"]

    print(f"  lawline {__version__} dialing up on {host}:{port}")
    print(f"  Provider: {cfg['provider']['url']}")
    print(f"  Model: {cfg['provider']['model']}")
    print()

    uvicorn.run(
        "lawline.main:app",
        host=host,
        port=port,
        reload=args.reload,
        log_level="info",
    )


def cmd_ring(args):
    """Ping a running lawline instance."""
    import httpx

    url = (args.url or "http://localhost:8000").rstrip("/")
    try:
        resp = httpx.get(f"{url}/api/health", timeout=5)
        if resp.status_code != 200:
            print(f"  ✗  No answer — got HTTP {resp.status_code}")
            return 1
        health = resp.json()
        print(f"  ☎  {url} is UP (v{health.get('version', '?')}, model {health.get('model', '?')})")

        stats = httpx.get(f"{url}/api/stats", timeout=5).json()
        queries = stats.get("queries", {})
        print(f"  Accounts: {stats.get('accounts', 0)}")
        print(f"  Conversations: {stats.get('conversations', 0)}")
        print(f"  Queries logged: {queries.get('total', 0)} (guest: {queries.get('guest', 0)})")
    except httpx.ConnectError:
        print(f"  ✗  Dead line — nothing at {url}")
        return 1
    except httpx.HTTPError as e:
        print(f"  ✗  Error: {e}")
        return 1
    return 0


def cmd_tally(args):
    """Print the number of queries since Monday 00:00 local time."""
    from lawline.config import get_config
    from lawline.stats import WeeklyUsageReporter, start_of_week
    from lawline.storage.sqlite_store import SQLiteStore

    cfg = get_config()
    store = SQLiteStore(cfg["storage"]["sqlite_path"])
    count = WeeklyUsageReporter(store).weekly_count()
    since = start_of_week()
    print(f"  {count} queries since {since:%Y-%m-%d %H:%M} (local)")
    return 0


def cmd_enroll(args):
    """Register an account so the user can keep server-side history."""
    from lawline.config import get_config
    from lawline.storage.models import Account
    from lawline.storage.sqlite_store import SQLiteStore

    cfg = get_config()
    store = SQLiteStore(cfg["storage"]["sqlite_path"])
    if store.find_account(args.username):
        print(f"  ✗  Account '{args.username}' already exists")
        return 1
    account = store.create_account(Account(username=args.username, name=args.name or ""))
    print(f"  ✓  Enrolled {account.username} ({account.id})")
    return 0


def cmd_model(args):
    """Show, set or clear the model override in override.yaml."""
    from lawline.config import get_config, model_override, set_model_override

    if args.clear:
        if set_model_override(None):
            print(f"  ✓  Override cleared, using {get_config()['provider']['model']}")
            return 0
        print("  ✗  Could not remove override.yaml")
        return 1

    if not args.name:
        current = model_override()
        if current:
            print(f"  Model: {current} (override)")
        else:
            print(f"  Model: {get_config()['provider']['model']}")
        return 0

    if set_model_override(args.name):
        print(f"  ✓  Model override set to {args.name} (takes effect on the next request)")
        return 0
    print("  ✗  Could not write override.yaml")
    return 1


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

def _add_command(subparsers, names, help_text, func, setup_fn=None):
    """Register a command under multiple names."""
    p = subparsers.add_parser(names[0], help=help_text, aliases=names[1:])
    p.set_defaults(func=func)
    if setup_fn:
        setup_fn(p)
    return p


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lawline",
        description="lawline — legal-aid chat relay.",
        epilog="Run 'lawline <command> --help' for command-specific options.",
    )
    parser.add_argument(
        "--version", "-V", action="version",
        version=f"lawline {__version__}",
    )

    sub = parser.add_subparsers(dest="command", metavar="<command>")

    def setup_dial(p):
        p.add_argument("--host", default=None, help="Override listen host")
        p.add_argument("--port", "-p", type=int, default=None, help="Override listen port")
        p.add_argument("--reload", action="store_true", help="Auto-reload on code changes (dev)")

    _add_command(sub, ["dial", "start", "serve"],
                 "Start the lawline server", cmd_dial, setup_dial)

    def setup_ring(p):
        p.add_argument("--url", "-u", default=None, help="lawline URL (default: http://localhost:8000)")

    _add_command(sub, ["ring", "status", "ping"],
                 "Ping a running lawline instance", cmd_ring, setup_ring)

    _add_command(sub, ["tally", "stats", "weekly"],
                 "Print this week's query count", cmd_tally)

    def setup_enroll(p):
        p.add_argument("username", help="Login name")
        p.add_argument("--name", "-n", default=None, help="Display name (also accepted for lookup)")

    _add_command(sub, ["enroll", "adduser"],
                 "Register an account", cmd_enroll, setup_enroll)

    def setup_model(p):
        p.add_argument("name", nargs="?", default=None, help="Model to use (omit to show current)")
        p.add_argument("--clear", action="store_true", help="Drop the override, use provider.model")

    _add_command(sub, ["model", "use"],
                 "Show, set or clear the model override", cmd_model, setup_model)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 0
    return args.func(args) or 0


if __name__ == "__main__":
    sys.exit(main())
