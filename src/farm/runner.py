#!/usr/bin/env python3
"""Main entry point for farm."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from .config import TRANSPORTS, Config, default_config, load_config
from .dashboard import Dashboard
from .executor import make_job
from .hosts import parse_hosts, read_hosts_file
from .logging import configure_logging
from .results import ResultEmitter
from .scheduler import Scheduler


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="farm",
        description="Run one shell command on many SSH hosts, a few at a time",
    )
    parser.add_argument("command", nargs="+", help="Command to run on every host")
    parser.add_argument("-c", "--config", type=Path, help="Path to YAML configuration file")
    hosts = parser.add_mutually_exclusive_group()
    hosts.add_argument("-H", "--hosts", help="Hosts separated by commas or spaces")
    hosts.add_argument("-f", "--hosts-file", type=Path, help="File with one host per line")
    parser.add_argument("-j", "--jobs", type=int, help="Maximum simultaneous connections")
    parser.add_argument("--user", help="Remote user name")
    parser.add_argument("--port", type=int, help="Remote SSH port")
    parser.add_argument("--key", type=Path, help="Override SSH key path from config")
    parser.add_argument("--connect-timeout", type=int, help="SSH connect timeout in seconds")
    parser.add_argument("--transport", choices=TRANSPORTS, help="SSH implementation to use")
    parser.add_argument("--tick", type=float, help="Seconds to wait when no progress is possible")
    parser.add_argument(
        "--no-logs",
        action="store_true",
        help="Disable logging to files",
    )
    parser.add_argument(
        "--dashboard",
        action="store_true",
        help="Run with the TUI dashboard",
    )
    parser.add_argument("--debug", action="store_true", help="Print progress to stderr")
    return parser


def _apply_overrides(config: Config, args: argparse.Namespace) -> None:
    """Let command-line flags win over the configuration file."""
    if args.hosts is not None:
        config.hosts = parse_hosts(args.hosts)
    elif args.hosts_file is not None:
        config.hosts = read_hosts_file(args.hosts_file)
    if args.jobs is not None:
        config.max_jobs = args.jobs
    if args.user:
        config.defaults.user = args.user
    if args.port:
        config.defaults.port = args.port
    if args.key:
        config.defaults.ssh_key = args.key.expanduser()
    if args.connect_timeout is not None:
        config.defaults.connect_timeout = args.connect_timeout
    if args.transport:
        config.transport = args.transport
    if args.tick is not None:
        config.tick = args.tick
    if args.no_logs:
        config.log_dir = None


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    configure_logging(args.debug)

    command = " ".join(args.command).strip()
    if not command:
        print("Error: empty command", file=sys.stderr)
        return 1

    # Load configuration
    try:
        config = load_config(args.config) if args.config else default_config()
        _apply_overrides(config, args)
        config.validate()
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    # Validate the SSH key exists
    ssh_key = config.defaults.ssh_key
    if ssh_key is not None and not ssh_key.exists():
        print(f"Error: SSH key not found: {ssh_key}", file=sys.stderr)
        return 1

    if args.dashboard:
        return _run_dashboard(config, command)
    return _run_headless(config, command)


def _run_headless(config: Config, command: str) -> int:
    """Run the scheduler, printing one JSON line per host."""
    emitter = ResultEmitter(log_dir=config.log_dir, source_path=config.source_path)
    scheduler = Scheduler(
        config.hosts,
        command,
        config.max_jobs,
        job=make_job(config),
        emit=emitter,
        tick=config.tick,
    )
    scheduler.run()
    return 0


def _run_dashboard(config: Config, command: str) -> int:
    """Run with the dashboard; records are printed once it closes."""
    emitter = ResultEmitter(log_dir=config.log_dir, source_path=config.source_path)
    app = Dashboard(config, command)
    app.run()

    for record in app.records:
        emitter(record)
    return 1 if app.returncode else 0


if __name__ == "__main__":
    sys.exit(main())
