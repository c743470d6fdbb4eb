#!/usr/bin/env python3
"""Main entry point for gsh."""

from __future__ import annotations

import argparse
import asyncio
import sys

from .config import Config, build_config, load_defaults
from .dashboard import Dashboard
from .dispatcher import run_batch
from .errors import GshError
from .logging_setup import resolve_level, setup_logging

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gsh",
        description="Run one shell command on many SSH hosts in parallel",
    )
    parser.add_argument("--user", help="Username for hosts without a user@ prefix")
    parser.add_argument("--hosts", default="", help="Comma separated list of hosts")
    parser.add_argument(
        "-g",
        dest="group",
        metavar="GROUP",
        help="Read hosts from the host group file ~/.gsh/GROUP",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        help="Seconds to wait for all hosts (default: 90)",
    )
    parser.add_argument(
        "--buffer",
        action="store_true",
        help="Collect each host's output and print it prefixed with the host",
    )
    parser.add_argument(
        "--dashboard",
        action="store_true",
        help="Show results in the TUI dashboard",
    )
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=LOG_LEVELS,
        help="Log level for diagnostics on stderr (default: WARNING)",
    )
    parser.add_argument("command", nargs=argparse.REMAINDER, help="Command to run")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.hosts and not args.group:
        parser.print_usage(sys.stderr)
        return 2

    # Load configuration
    try:
        defaults = load_defaults()
        setup_logging(resolve_level(args.log_level, defaults.log_level))
        config = build_config(
            args.command,
            hosts_arg=args.hosts,
            group=args.group,
            user=args.user,
            timeout=args.timeout,
            buffer=args.buffer,
            defaults=defaults,
        )
    except GshError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    if not args.dashboard:
        return _run_headless(config)

    return _run_dashboard(config)


def _run_headless(config: Config) -> int:
    """Run the batch, printing host output to stdout as it arrives."""
    try:
        outcome = asyncio.run(run_batch(config))
    except GshError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return outcome.exit_code


def _run_dashboard(config: Config) -> int:
    """Run the batch inside the TUI dashboard."""
    # Streamed output would draw over the dashboard
    config.buffer = True

    app = Dashboard(config)
    app.run()

    if app.error:
        print(f"Error: {app.error}", file=sys.stderr)
        return 1
    if app.outcome is None:
        print("Batch interrupted", file=sys.stderr)
        return 1

    if app.failed_hosts:
        print(f"\nFailed hosts: {', '.join(app.failed_hosts)}", file=sys.stderr)
    if app.outcome.timed_out:
        print(
            f"Timed out: {app.outcome.received}/{app.outcome.attempted} hosts reported",
            file=sys.stderr,
        )

    return app.outcome.exit_code


if __name__ == "__main__":
    sys.exit(main())
