"""
Update orchestrator for a supervised game server.

The orchestrator runs next to the game server for the server's whole
lifetime. It sleeps for the poll interval, checks that the server is still
running, and asks the version oracle about every tracked package in a fixed
order. The first drifted package ends polling and the configured mode
decides what happens next:

- immediate: request termination of the server straight away
- graceful: run the grace countdown, then request termination
- announce: broadcast a single notice and wait for an operator restart

Whatever the branch, the orchestrator then exits. It never goes back to
polling: once the server stops, the host supervisor restarts it, the
entrypoint syncs the new build, and a fresh orchestrator starts alongside
the new server process.

State machine states:
- starting: captured the process handle, not yet polling
- polling: periodically checking the registry
- countdown: graceful countdown in progress
- announced: notice sent, waiting for the server to exit
- terminating: termination requested
- done: orchestrator finished
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from enum import Enum
from typing import TYPE_CHECKING

from srcds_autoupdate.config import UpdateMode
from srcds_autoupdate.console import create_command_sink
from srcds_autoupdate.errors import ConfigurationError
from srcds_autoupdate.logging import get_logger
from srcds_autoupdate.updates.countdown import CountdownState, GraceCountdown, SleepFunc
from srcds_autoupdate.updates.manifest import ManifestStore
from srcds_autoupdate.updates.registry import create_registry
from srcds_autoupdate.updates.signals import FileMarkerSignal
from srcds_autoupdate.updates.version import DriftResult, PackageRef, VersionOracle

if TYPE_CHECKING:
    from srcds_autoupdate.config import AppConfig
    from srcds_autoupdate.console import CommandSink
    from srcds_autoupdate.process_handle import ProcessHandle
    from srcds_autoupdate.updates.signals import ExtensionSignal

logger = get_logger(__name__)

__all__ = [
    "OrchestratorOutcome",
    "OrchestratorResult",
    "OrchestratorState",
    "UpdateMode",
    "UpdateOrchestrator",
]


class OrchestratorState(str, Enum):
    """
    States for the orchestrator.

    State transitions:
    - starting -> polling (server alive at startup)
    - starting -> done (server not running)
    - polling -> terminating (drift, immediate mode)
    - polling -> countdown (drift, graceful mode)
    - polling -> announced (drift, announce mode)
    - polling -> done (server exited)
    - countdown -> terminating (countdown expired)
    - countdown -> done (server exited during countdown)
    - announced -> done (server exited)
    - terminating -> done
    """

    STARTING = "starting"
    POLLING = "polling"
    COUNTDOWN = "countdown"
    ANNOUNCED = "announced"
    TERMINATING = "terminating"
    DONE = "done"


_VALID_TRANSITIONS: dict[OrchestratorState, set[OrchestratorState]] = {
    OrchestratorState.STARTING: {OrchestratorState.POLLING, OrchestratorState.DONE},
    OrchestratorState.POLLING: {
        OrchestratorState.TERMINATING,
        OrchestratorState.COUNTDOWN,
        OrchestratorState.ANNOUNCED,
        OrchestratorState.DONE,
    },
    OrchestratorState.COUNTDOWN: {OrchestratorState.TERMINATING, OrchestratorState.DONE},
    OrchestratorState.ANNOUNCED: {OrchestratorState.DONE},
    OrchestratorState.TERMINATING: {OrchestratorState.DONE},
    OrchestratorState.DONE: set(),
}


class OrchestratorOutcome(str, Enum):
    """
    Why the orchestrator exited.

    The outer supervisor treats the first two the same way; the distinction
    exists for logs.
    """

    UPDATE_TRIGGERED = "update_triggered"
    PROCESS_DIED = "process_died"
    CONFIG_ERROR = "config_error"


class OrchestratorResult:
    """Summary of one orchestrator run."""

    def __init__(
        self,
        outcome: OrchestratorOutcome,
        mode: UpdateMode | None = None,
        drift: DriftResult | None = None,
        polls: int = 0,
        countdown_state: CountdownState | None = None,
    ) -> None:
        self.outcome = outcome
        self.mode = mode
        self.drift = drift
        self.polls = polls
        self.countdown_state = countdown_state

    @property
    def exit_code(self) -> int:
        """Process exit status: 0 for every runtime outcome, 2 for configuration errors."""
        return 2 if self.outcome == OrchestratorOutcome.CONFIG_ERROR else 0

    def to_dict(self) -> dict[str, object]:
        """Convert to dictionary."""
        return {
            "outcome": self.outcome.value,
            "mode": self.mode.value if self.mode else None,
            "drift": self.drift.to_dict() if self.drift else None,
            "polls": self.polls,
            "countdown_state": self.countdown_state.value if self.countdown_state else None,
        }


class UpdateOrchestrator:
    """
    Watches the server and stops it when a new build is published.

    One instance handles exactly one update cycle; run() returns after the
    first drift has been handled or as soon as the server is gone.

    Attributes:
        state: Current orchestrator state.
        mode: Reaction to a detected update.
        poll_interval: Seconds between registry checks.
        grace_period: Countdown length in graceful mode.
        packages: Packages checked on each poll, in order.
    """

    # How often announce mode re-checks whether the server has exited
    ANNOUNCE_LIVENESS_INTERVAL = 5.0

    def __init__(
        self,
        process: ProcessHandle,
        oracle: VersionOracle,
        sink: CommandSink,
        packages: Sequence[PackageRef],
        *,
        mode: UpdateMode = UpdateMode.IMMEDIATE,
        poll_interval: float = 300,
        grace_period: int = 60,
        extension: ExtensionSignal | None = None,
        broadcast_command: str = "say",
        expire_pause_seconds: float = 3.0,
        announce_liveness_interval: float | None = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            process: Handle on the supervised server.
            oracle: Drift detector.
            sink: Console used for player broadcasts.
            packages: Packages to check, in order.
            mode: Reaction to a detected update.
            poll_interval: Seconds between registry checks.
            grace_period: Countdown length and extension step in graceful mode.
            extension: Extension signal for the graceful countdown.
            broadcast_command: Console command prefixed to broadcasts.
            expire_pause_seconds: Pause after the final countdown broadcast.
            announce_liveness_interval: Liveness poll interval in announce mode.
            sleep: Awaitable sleep, replaceable in tests.

        Raises:
            ConfigurationError: If an interval or the grace period is invalid.
        """
        if poll_interval <= 0:
            raise ConfigurationError(
                "Poll interval must be positive",
                details={"poll_interval": poll_interval},
            )
        if grace_period < 1:
            raise ConfigurationError(
                "Grace period must be at least one second",
                details={"grace_period": grace_period},
            )
        if mode == UpdateMode.GRACEFUL and extension is None:
            raise ConfigurationError("Graceful mode requires an extension signal")

        self.process = process
        self.oracle = oracle
        self.sink = sink
        self.packages = list(packages)
        self.mode = UpdateMode(mode)
        self.poll_interval = poll_interval
        self.grace_period = grace_period
        self.extension = extension
        self.broadcast_command = broadcast_command
        self.expire_pause_seconds = expire_pause_seconds
        self.announce_liveness_interval = (
            announce_liveness_interval
            if announce_liveness_interval is not None
            else self.ANNOUNCE_LIVENESS_INTERVAL
        )
        self._sleep = sleep

        self.state = OrchestratorState.STARTING
        self.polls = 0

    @classmethod
    def from_config(cls, config: AppConfig, process: ProcessHandle) -> UpdateOrchestrator:
        """
        Build an orchestrator and its production collaborators from configuration.

        Args:
            config: Application configuration.
            process: Handle on the supervised server.

        Returns:
            Configured UpdateOrchestrator.
        """
        oracle = VersionOracle(
            manifests=ManifestStore(config.steam.resolved_manifest_dirs()),
            registry=create_registry(config.steam),
        )
        return cls(
            process=process,
            oracle=oracle,
            sink=create_command_sink(config.console),
            packages=config.tracked_packages(),
            mode=config.updater.mode,
            poll_interval=config.updater.poll_interval_seconds,
            grace_period=config.updater.grace_period_seconds,
            extension=FileMarkerSignal(config.updater.extend_marker_path),
            broadcast_command=config.updater.broadcast_command,
            expire_pause_seconds=config.updater.expire_pause_seconds,
        )

    def _transition_to(self, new_state: OrchestratorState) -> None:
        """
        Transition to a new state.

        Raises:
            RuntimeError: If the transition is not valid.
        """
        current = self.state
        if new_state not in _VALID_TRANSITIONS[current]:
            raise RuntimeError(
                f"Invalid state transition from {current.value} to {new_state.value}"
            )

        logger.debug(
            f"State transition: {current.value} -> {new_state.value}",
            extra={"old_state": current.value, "new_state": new_state.value},
        )
        self.state = new_state

    def _finish(
        self,
        outcome: OrchestratorOutcome,
        drift: DriftResult | None = None,
        countdown_state: CountdownState | None = None,
    ) -> OrchestratorResult:
        self._transition_to(OrchestratorState.DONE)
        result = OrchestratorResult(
            outcome=outcome,
            mode=self.mode,
            drift=drift,
            polls=self.polls,
            countdown_state=countdown_state,
        )
        logger.info("Orchestrator finished", extra=result.to_dict())
        return result

    async def poll_once(self) -> DriftResult | None:
        """
        Check every tracked package once, in order.

        Returns:
            The first Drifted result, or None if nothing drifted.
        """
        self.polls += 1
        for package in self.packages:
            result = await self.oracle.check_drift(package)
            if result.is_drifted:
                return result
        return None

    async def run(self) -> OrchestratorResult:
        """
        Run one update cycle.

        Returns:
            The outcome of the run. Never raises for runtime failures.
        """
        if not self.process.is_alive():
            return self._finish(OrchestratorOutcome.PROCESS_DIED)

        logger.info(
            f"Started (checking every {self.poll_interval}s)",
            extra={
                "mode": self.mode.value,
                "packages": [p.app_id for p in self.packages],
            },
        )
        if not self.packages:
            logger.info("Game file tracking disabled, only watching the server process")

        self._transition_to(OrchestratorState.POLLING)

        while True:
            await self._sleep(self.poll_interval)

            if not self.process.is_alive():
                logger.info("Server no longer running, exiting")
                return self._finish(OrchestratorOutcome.PROCESS_DIED)

            drift = await self.poll_once()
            if drift is not None:
                break

        if self.mode == UpdateMode.GRACEFUL:
            return await self._handle_graceful(drift)
        if self.mode == UpdateMode.ANNOUNCE:
            return await self._handle_announce(drift)
        return self._handle_immediate(drift)

    def _request_termination(self) -> None:
        self._transition_to(OrchestratorState.TERMINATING)
        try:
            self.process.request_termination()
        except Exception:
            # The supervisor will still notice the server when it exits
            logger.exception("Termination request failed")

    def _handle_immediate(self, drift: DriftResult) -> OrchestratorResult:
        logger.warning(
            "Stopping server for update, the supervisor will restart it",
            extra={"app_id": drift.package.app_id},
        )
        self._request_termination()
        return self._finish(OrchestratorOutcome.UPDATE_TRIGGERED, drift)

    async def _handle_graceful(self, drift: DriftResult) -> OrchestratorResult:
        if self.extension is None:
            raise ConfigurationError("Graceful mode requires an extension signal")
        self._transition_to(OrchestratorState.COUNTDOWN)

        countdown = GraceCountdown(
            sink=self.sink,
            process=self.process,
            extension=self.extension,
            base_seconds=self.grace_period,
            broadcast_command=self.broadcast_command,
            expire_pause_seconds=self.expire_pause_seconds,
            sleep=self._sleep,
        )
        state = await countdown.run()

        if state == CountdownState.ABORTED:
            return self._finish(OrchestratorOutcome.PROCESS_DIED, drift, state)

        logger.warning(
            "Countdown finished, stopping server for update",
            extra={"app_id": drift.package.app_id, "extensions": countdown.extensions},
        )
        self._request_termination()
        return self._finish(OrchestratorOutcome.UPDATE_TRIGGERED, drift, state)

    async def _handle_announce(self, drift: DriftResult) -> OrchestratorResult:
        self._transition_to(OrchestratorState.ANNOUNCED)

        label = drift.package.label or drift.package.app_id
        message = (
            f"A game update for {label} is available. "
            "The server will update the next time it restarts."
        )
        line = f"{self.broadcast_command} {message}" if self.broadcast_command else message
        try:
            await self.sink.send(line)
        except Exception as e:
            logger.warning(f"Announcement failed: {e}", extra={"line": line})

        logger.warning(
            "Update announced, waiting for an operator restart",
            extra={"app_id": drift.package.app_id, "remote_build": drift.remote},
        )

        while self.process.is_alive():
            await self._sleep(self.announce_liveness_interval)

        logger.info("Server exited after update announcement")
        return self._finish(OrchestratorOutcome.UPDATE_TRIGGERED, drift)
