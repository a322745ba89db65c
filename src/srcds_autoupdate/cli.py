"""
Command line entry point.

Usage:
    srcds-autoupdate [--config PATH] [--log-level LEVEL] [--debug] watch PID
    srcds-autoupdate check
    srcds-autoupdate extend

``watch`` is started by the container entrypoint next to the server process
and runs one update cycle. Its exit status is 0 for every runtime outcome;
only a configuration error (status 2) keeps it from running.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Any

from srcds_autoupdate import __version__
from srcds_autoupdate.config import AppConfig, UpdateMode, load_config
from srcds_autoupdate.errors import ConfigurationError
from srcds_autoupdate.logging import get_logger, setup_logging
from srcds_autoupdate.process_handle import PsutilProcessHandle
from srcds_autoupdate.updates.manifest import ManifestStore
from srcds_autoupdate.updates.orchestrator import (
    OrchestratorOutcome,
    OrchestratorResult,
    UpdateOrchestrator,
)
from srcds_autoupdate.updates.registry import create_registry
from srcds_autoupdate.updates.signals import FileMarkerSignal
from srcds_autoupdate.updates.version import DriftStatus, VersionOracle

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_DRIFTED = 1
EXIT_CONFIG_ERROR = 2
EXIT_UNKNOWN = 3


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="srcds-autoupdate",
        description="Background update orchestrator for Source dedicated servers",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", "-c", type=str, help="Path to configuration file")
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "warning", "error"],
        help="Override log level",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    watch = subparsers.add_parser("watch", help="Watch a server process for updates")
    watch.add_argument("pid", type=int, help="PID of the game server process")
    watch.add_argument(
        "--mode",
        choices=[m.value for m in UpdateMode],
        help="Override update mode",
    )
    watch.add_argument("--interval", type=int, help="Override poll interval in seconds")
    watch.add_argument(
        "--grace-period", type=int, help="Override grace period in seconds"
    )

    subparsers.add_parser("check", help="Report drift for every tracked package once")
    subparsers.add_parser("extend", help="Delay a running graceful countdown")

    return parser


def _cli_overrides(args: argparse.Namespace) -> dict[str, Any]:
    """Translate parsed arguments into a nested config override dictionary."""
    overrides: dict[str, Any] = {}

    if args.log_level:
        overrides.setdefault("logging", {})["level"] = args.log_level
    if args.debug:
        overrides.setdefault("logging", {})["level"] = "debug"

    updater: dict[str, Any] = {}
    if getattr(args, "mode", None):
        updater["mode"] = args.mode
    if getattr(args, "interval", None) is not None:
        updater["poll_interval_seconds"] = args.interval
    if getattr(args, "grace_period", None) is not None:
        updater["grace_period_seconds"] = args.grace_period
    if updater:
        overrides["updater"] = updater

    return overrides


async def run_watch(config: AppConfig, pid: int) -> OrchestratorResult:
    """Run one orchestrator cycle against the given server process."""
    process = PsutilProcessHandle(pid)
    try:
        orchestrator = UpdateOrchestrator.from_config(config, process)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e.message}", extra={"details": e.details})
        return OrchestratorResult(OrchestratorOutcome.CONFIG_ERROR)
    return await orchestrator.run()


async def run_check(config: AppConfig) -> int:
    """
    Check every tracked package once and print a report.

    Returns:
        EXIT_OK if all are up to date, EXIT_DRIFTED if any drifted,
        EXIT_UNKNOWN if any could not be checked and none drifted.
    """
    oracle = VersionOracle(
        manifests=ManifestStore(config.steam.resolved_manifest_dirs()),
        registry=create_registry(config.steam),
    )

    statuses: list[DriftStatus] = []
    for package in config.tracked_packages():
        result = await oracle.check_drift(package)
        statuses.append(result.status)
        detail = result.reason or f"local={result.local} remote={result.remote}"
        print(f"{package.app_id:>10}  {result.status.value:<10}  {package.label}  ({detail})")

    if DriftStatus.DRIFTED in statuses:
        return EXIT_DRIFTED
    if DriftStatus.UNKNOWN in statuses:
        return EXIT_UNKNOWN
    return EXIT_OK


def run_extend(config: AppConfig) -> int:
    """Raise the extension signal for a running countdown."""
    marker = FileMarkerSignal(config.updater.extend_marker_path)
    try:
        marker.raise_signal()
    except OSError as e:
        print(f"Cannot create extension marker {marker.path}: {e}", file=sys.stderr)
        return 1
    print(
        f"Restart delayed by {config.updater.grace_period_seconds}s "
        "(if a countdown is running)"
    )
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    """
    Entry point for the srcds-autoupdate command.

    Args:
        argv: Command-line arguments. If None, uses sys.argv.

    Returns:
        Process exit status.
    """
    args = build_parser().parse_args(argv)

    try:
        config = load_config(config_path=args.config, cli_overrides=_cli_overrides(args))
    except ConfigurationError as e:
        setup_logging(level="INFO", json_format=False)
        logger.error(f"Configuration error: {e.message}", extra={"details": e.details})
        return EXIT_CONFIG_ERROR

    setup_logging(config.logging)

    if args.command == "watch":
        result = asyncio.run(run_watch(config, args.pid))
        return result.exit_code
    if args.command == "check":
        return asyncio.run(run_check(config))
    return run_extend(config)


if __name__ == "__main__":
    sys.exit(main())
