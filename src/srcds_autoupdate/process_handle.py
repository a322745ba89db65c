"""
Handle on the supervised game server process.

The orchestrator only needs two things from the server process: whether it is
still running and a way to ask it to stop. ProcessHandle captures that
contract so the state machine does not depend on how the server was launched.

The handle is captured once at startup. psutil remembers the process
creation time, so a recycled PID is reported as dead rather than
mistaken for the original server.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import psutil

from srcds_autoupdate.logging import get_logger

logger = get_logger(__name__)


@runtime_checkable
class ProcessHandle(Protocol):
    """Liveness and termination capability for the supervised process."""

    def is_alive(self) -> bool:
        """Return True while the supervised process is running."""
        ...

    def request_termination(self) -> None:
        """Ask the process to stop gracefully, without waiting for it."""
        ...


class PsutilProcessHandle:
    """
    ProcessHandle backed by psutil.

    Attributes:
        pid: Process id captured at construction.
    """

    def __init__(self, pid: int) -> None:
        """
        Capture the process with the given PID.

        A PID that does not exist yields a handle that is never alive.

        Args:
            pid: Process id of the game server.
        """
        self.pid = pid
        self._proc: psutil.Process | None
        try:
            self._proc = psutil.Process(pid)
        except (psutil.NoSuchProcess, ValueError):
            logger.debug("Process not found at capture", extra={"pid": pid})
            self._proc = None

    def is_alive(self) -> bool:
        """Return True if the captured process is still running and not a zombie."""
        if self._proc is None:
            return False
        try:
            if not self._proc.is_running():
                return False
            return self._proc.status() != psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            return False
        except psutil.AccessDenied:
            # The process exists; we just cannot inspect it
            return True

    def request_termination(self) -> None:
        """
        Send SIGTERM to the captured process.

        A process that is already gone counts as terminated. Permission
        errors are logged; the orchestrator exits either way.
        """
        if self._proc is None:
            logger.info("Process already gone, nothing to terminate", extra={"pid": self.pid})
            return
        try:
            self._proc.terminate()
            logger.info("Sent SIGTERM to server process", extra={"pid": self.pid})
        except psutil.NoSuchProcess:
            logger.info("Process already gone, nothing to terminate", extra={"pid": self.pid})
        except psutil.AccessDenied as e:
            logger.error(
                f"Not permitted to terminate server process: {e}",
                extra={"pid": self.pid},
            )

    def __repr__(self) -> str:
        return f"PsutilProcessHandle(pid={self.pid})"
