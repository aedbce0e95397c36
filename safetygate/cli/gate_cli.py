#!/usr/bin/env python3
"""
SafetyGate CLI
==============

Command-line interface for running the gate server and working with
enforcement session tokens.

Usage:
    safetygate serve [--host HOST] [--port PORT]
    safetygate discover TASK [--keyword KW ...] [--file PATH ...] [--json]
    safetygate status TOKEN [--json]
    safetygate sweep
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from safetygate.config import SafetyConfig
from safetygate.db import dispose_db, init_db
from safetygate.errors import MalformedInput
from safetygate.output import (
    console,
    create_table,
    print_error,
    print_gate_table,
    print_info,
    print_issues,
    print_json_data,
    print_key_value,
    print_list,
    print_muted,
    print_success,
    print_table,
    print_warning,
    setup_rich_logging,
)
from safetygate.service import SafetyService


def get_config(args) -> SafetyConfig:
    """Load config, honouring --config and --data-dir."""
    config = SafetyConfig.load(Path(args.config) if args.config else None)
    if getattr(args, "data_dir", None):
        config.data_dir = args.data_dir
    return config


async def _with_db(config: SafetyConfig, work):
    await init_db(Path(config.data_dir), config.db_url)
    try:
        return await work(SafetyService(config))
    finally:
        await dispose_db()


def cmd_serve(args):
    """Run the HTTP API."""
    import uvicorn
    from safetygate.web.backend.main import create_app

    config = get_config(args)
    host = args.host or config.host
    port = args.port or config.port
    print_info(f"Starting SafetyGate on http://{host}:{port}")
    uvicorn.run(create_app(config), host=host, port=port, log_config=None)


def cmd_discover(args):
    """Open an enforcement session for a task."""
    config = get_config(args)
    payload = {"task": args.task, "keywords": args.keyword or None, "files": args.file or None}

    try:
        result = asyncio.run(_with_db(config, lambda s: s.dispatch("discover_patterns", payload)))
    except MalformedInput as e:
        print_error(e.message)
        sys.exit(2)

    if args.json:
        print_json_data(result)
        return

    print_success(f"Session token: {result['sessionToken']}")
    print_key_value("Expires", result["expiresAt"])
    print_key_value("Keywords", ", ".join(result["keywords"]) or "(none)")
    console.print()
    console.print("[sg.accent]Patterns[/]")
    print_list(result["patterns"], numbered=True)
    if not result["hasExactMatch"]:
        print_warning("No exact keyword match; returned the default modules.")
        for suggestion in result.get("relatedSuggestions") or []:
            print_muted(f"  {suggestion['category']}: {', '.join(suggestion['modules'])}")


def cmd_status(args):
    """Show an enforcement token's status."""
    config = get_config(args)
    session = asyncio.run(_with_db(config, lambda s: s.enforcement.get_session(args.token)))

    if session is None:
        print_error(f"No enforcement session for token {args.token}")
        sys.exit(1)

    if args.json:
        print_json_data(session)
        return

    table = create_table(title=f"Session {session['sessionToken']}", columns=["Field", "Value"])
    for key in ("task", "status", "safetyScore", "createdAt", "expiresAt", "endGateAt"):
        value = session.get(key)
        table.add_row(key, "-" if value is None else str(value))
    print_table(table)
    print_gate_table({
        "startGate": bool(session["startGatePassed"]),
        "endGate": bool(session["endGatePassed"]),
    }, title="Enforcement Gates")
    if session["isExpired"]:
        print_warning("This token has expired.")
    if session["issues"]:
        print_issues(session["issues"])


def cmd_sweep(args):
    """Mark expired active tokens."""
    config = get_config(args)
    count = asyncio.run(_with_db(config, lambda s: s.enforcement.expire_stale()))
    if count:
        print_success(f"Expired {count} stale session(s)")
    else:
        print_muted("No stale sessions")


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="safetygate",
        description="SafetyGate CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Run the API on the configured host/port
    safetygate serve

    # Open an enforcement session for a task
    safetygate discover "Add a login form" --file src/components/LoginForm.tsx

    # Check a token
    safetygate status ses_0123abcd...

    # Expire stale tokens
    safetygate sweep
        """
    )
    parser.add_argument("--config", "-c", help="Config file (default: safetygate_config.json)")
    parser.add_argument("--data-dir", help="Directory for the enforcement database")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", help="Bind address")
    serve_parser.add_argument("--port", type=int, help="Port")

    # Discover command
    discover_parser = subparsers.add_parser("discover", help="Open an enforcement session")
    discover_parser.add_argument("task", help="What is being built")
    discover_parser.add_argument("--keyword", "-k", action="append", help="Explicit keyword (repeatable)")
    discover_parser.add_argument("--file", "-f", action="append", help="Planned file (repeatable)")
    discover_parser.add_argument("--json", action="store_true", help="Print raw JSON")

    # Status command
    status_parser = subparsers.add_parser("status", help="Show a token's status")
    status_parser.add_argument("token", help="Session token from discover")
    status_parser.add_argument("--json", action="store_true", help="Print raw JSON")

    # Sweep command
    subparsers.add_parser("sweep", help="Expire stale sessions")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    setup_rich_logging(logging.DEBUG if args.verbose else logging.INFO)

    commands = {
        "serve": cmd_serve,
        "discover": cmd_discover,
        "status": cmd_status,
        "sweep": cmd_sweep,
    }

    commands[args.command](args)


if __name__ == "__main__":
    main()
