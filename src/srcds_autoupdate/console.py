"""
Command sink for the game server console.

The server console runs inside a tmux session; sending a line is the same as
typing it into that console and pressing Enter. Delivery is best effort: a
missed chat warning must never hold up the countdown or the restart, so
every failure is logged and swallowed here.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from srcds_autoupdate.errors import UnavailableError
from srcds_autoupdate.logging import get_logger

if TYPE_CHECKING:
    from srcds_autoupdate.config import ConsoleConfig

logger = get_logger(__name__)


@runtime_checkable
class CommandSink(Protocol):
    """Fire-and-forget line-oriented control channel into the server."""

    async def send(self, line: str) -> None:
        """Deliver one console line. Never raises."""
        ...


class LogCommandSink:
    """CommandSink that only logs, for deployments without a console channel."""

    async def send(self, line: str) -> None:
        logger.info("Console delivery disabled, message dropped", extra={"line": line})


class TmuxCommandSink:
    """
    CommandSink that types lines into a tmux pane.

    Attributes:
        target: tmux target (session, window or pane).
        tmux_binary: tmux executable.
        timeout: Seconds to wait for each tmux invocation.
    """

    def __init__(
        self,
        target: str = "srcds",
        tmux_binary: str = "tmux",
        timeout: float = 5.0,
    ) -> None:
        self.target = target
        self.tmux_binary = tmux_binary
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: ConsoleConfig) -> TmuxCommandSink:
        """Create a TmuxCommandSink from configuration."""
        return cls(
            target=config.target,
            tmux_binary=config.tmux_binary,
            timeout=config.send_timeout_seconds,
        )

    async def _run_tmux(self, *args: str) -> tuple[int, str]:
        """
        Run a tmux command.

        Returns:
            Tuple of (return_code, stderr).

        Raises:
            UnavailableError: If tmux is missing or does not answer in time.
        """
        try:
            proc = await asyncio.create_subprocess_exec(
                self.tmux_binary,
                *args,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise UnavailableError(
                f"{self.tmux_binary} not available",
                details={"binary": self.tmux_binary},
            ) from exc

        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except TimeoutError as exc:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            raise UnavailableError(
                f"tmux command timed out after {self.timeout}s",
                details={"args": args},
            ) from exc

        return proc.returncode or 0, stderr.decode(errors="replace") if stderr else ""

    async def send(self, line: str) -> None:
        """
        Type a line into the console followed by Enter.

        The text is sent literally (-l) so tmux does not interpret key names
        inside chat messages.
        """
        try:
            returncode, stderr = await self._run_tmux(
                "send-keys", "-t", self.target, "-l", line
            )
            if returncode == 0:
                returncode, stderr = await self._run_tmux(
                    "send-keys", "-t", self.target, "Enter"
                )
        except UnavailableError as e:
            logger.warning(
                f"Console delivery failed: {e.message}",
                extra={"target": self.target, "line": line},
            )
            return
        except OSError as e:
            logger.warning(
                f"Console delivery failed: {e}",
                extra={"target": self.target, "line": line},
            )
            return

        if returncode != 0:
            logger.warning(
                f"Console delivery failed: {stderr.strip() or 'tmux exited with ' + str(returncode)}",
                extra={"target": self.target, "line": line},
            )
            return

        logger.debug("Console line sent", extra={"target": self.target, "line": line})


def create_command_sink(config: ConsoleConfig) -> CommandSink:
    """Build the configured command sink."""
    if not config.enabled:
        return LogCommandSink()
    return TmuxCommandSink.from_config(config)
