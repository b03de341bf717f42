"""
Command-line entry point for the tModLoader server updater.

Usage: tmod-updater {check,pcheck,upgrade}

Exit codes:
- 0: no update available
- 42: update available (check, pcheck)
- 88: upgrade executed
- 1: fatal error (network, filesystem, parse, archive, configuration)
- 2: usage error

This is the only place that turns errors into exit codes; everything below
raises UpgradeError subclasses.
"""

from __future__ import annotations

import argparse
import cProfile
import sys
from collections.abc import Callable
from typing import NoReturn, TextIO

import httpx

from tmod_updater.config import AppConfig, UpgradeConfig, load_config
from tmod_updater.errors import (
    FilesystemError,
    StepFailedError,
    UpgradeError,
    UsageError,
)
from tmod_updater.logging import get_logger, setup_logging
from tmod_updater.updates.state_machine import (
    StepEvent,
    StepStatus,
    UpgradeOrchestrator,
)

logger = get_logger(__name__)

EXIT_NO_UPDATE = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2
EXIT_UPDATE_AVAILABLE = 42
EXIT_UPGRADED = 88


class UsageArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that raises UsageError instead of exiting."""

    def error(self, message: str) -> NoReturn:
        raise UsageError(message, details={"usage": self.format_usage()})


def build_parser() -> UsageArgumentParser:
    """Create the argument parser with the three subcommands."""
    parser = UsageArgumentParser(
        prog="tmod-updater",
        add_help=False,
        description="Check for and install tModLoader server releases",
    )
    subparsers = parser.add_subparsers(
        dest="command",
        metavar="{check,pcheck,upgrade}",
        required=True,
        parser_class=UsageArgumentParser,
    )
    subparsers.add_parser(
        "check", help="Report whether a newer release exists", add_help=False
    )
    subparsers.add_parser(
        "pcheck", help="Like check, with cProfile instrumentation", add_help=False
    )
    subparsers.add_parser(
        "upgrade", help="Upgrade the server if a newer release exists", add_help=False
    )
    return parser


def _flag(value: bool) -> str:
    return "true" if value else "false"


class ProgressReport:
    """Prints one ``<label>: OK`` line per upgrade step."""

    def __init__(self, stream: TextIO | None = None) -> None:
        # None means the current sys.stdout at print time
        self.stream = stream

    def __call__(self, event: StepEvent) -> None:
        if event.status is StepStatus.STARTED:
            print(f"{event.label:<18}: ", end="", file=self.stream, flush=True)
        elif event.status is StepStatus.COMPLETED:
            print("OK", file=self.stream)
        else:
            print("FAILED", file=self.stream)


def cmd_check(orchestrator: UpgradeOrchestrator, config: UpgradeConfig) -> int:
    """Report installed and latest versions."""
    run = orchestrator.check()

    print(f"\nInstalled Release : {run.installed_version}")
    print(f"Latest Release    : {run.latest_version}")
    print(f"Update Available  : {_flag(run.update_available)}\n")

    return EXIT_UPDATE_AVAILABLE if run.update_available else EXIT_NO_UPDATE


def cmd_pcheck(orchestrator: UpgradeOrchestrator, config: UpgradeConfig) -> int:
    """Run ``check`` under cProfile and write the stats to ``profile_path``."""
    profiler = cProfile.Profile()
    exit_code = profiler.runcall(cmd_check, orchestrator, config)

    try:
        profiler.dump_stats(str(config.profile_path))
    except OSError as e:
        raise FilesystemError(
            f"Error creating profile file {config.profile_path}: {e}",
            details={"path": str(config.profile_path), "error": str(e)},
        ) from e

    logger.info("Profile written", extra={"path": str(config.profile_path)})
    return exit_code


def cmd_upgrade(orchestrator: UpgradeOrchestrator, config: UpgradeConfig) -> int:
    """Upgrade the installation when a newer release exists."""
    run = orchestrator.resolve()

    print(f"\nLatest Release    : {run.latest_version}")
    print(f"Installed Release : {run.installed_version}")
    print(f"Update Status     : {_flag(run.update_available)}")

    if not run.update_available:
        print()
        return EXIT_NO_UPDATE

    print("Starting upgrade...")
    orchestrator.add_progress_callback(ProgressReport())
    orchestrator.upgrade(run)
    print("You can now reboot\n")
    return EXIT_UPGRADED


COMMANDS: dict[str, Callable[[UpgradeOrchestrator, UpgradeConfig], int]] = {
    "check": cmd_check,
    "pcheck": cmd_pcheck,
    "upgrade": cmd_upgrade,
}


def main(
    argv: list[str] | None = None,
    *,
    config: AppConfig | None = None,
    transport: httpx.BaseTransport | None = None,
) -> int:
    """
    Run the updater and return the process exit code.

    Args:
        argv: Command-line arguments without the program name. Defaults to
            sys.argv[1:].
        config: Pre-built configuration; loaded from file/env when omitted.
        transport: Optional httpx transport for all network calls.

    Returns:
        The exit code (see module docstring).
    """
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except UsageError as e:
        print(e.details.get("usage", parser.format_usage()), end="", file=sys.stderr)
        print(f"{parser.prog}: error: {e.message}", file=sys.stderr)
        return EXIT_USAGE

    try:
        if config is None:
            config = load_config()
        setup_logging(config.logging)
    except UpgradeError as e:
        print(f"Error loading configuration: {e.message}", file=sys.stderr)
        return EXIT_FAILURE

    orchestrator = UpgradeOrchestrator(config.upgrade, transport=transport)

    try:
        return COMMANDS[args.command](orchestrator, config.upgrade)
    except StepFailedError as e:
        logger.error(
            f"Upgrade failed during {e.step}",
            extra={"command": args.command, "error": e.to_dict()},
        )
        print(f"Error during {e.label}: {e.message}", file=sys.stderr)
        return EXIT_FAILURE
    except UpgradeError as e:
        logger.error(
            f"{args.command} failed",
            extra={"command": args.command, "error": e.to_dict()},
        )
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_FAILURE


def run() -> None:
    """Console script entry point."""
    sys.exit(main())
