"""
Grace countdown for graceful updates.

Before the server is stopped, players get a countdown in chat:

- an opening broadcast announcing the total delay
- a warning whenever the remaining time hits 300, 120, 60, 30 or 10 seconds
- a warning for each of the last five seconds
- a final "restarting now" broadcast

The countdown ticks once per second. On every tick it checks that the server
is still running (if not, it stops silently; there is nobody left to warn and
nothing left to stop) and whether an extension was requested. Each extension
adds one full grace period to the remaining time, so extensions compound.
Thresholds fire again whenever the remaining time re-enters them.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TYPE_CHECKING

from srcds_autoupdate.logging import get_logger

if TYPE_CHECKING:
    from srcds_autoupdate.console import CommandSink
    from srcds_autoupdate.process_handle import ProcessHandle
    from srcds_autoupdate.updates.signals import ExtensionSignal

logger = get_logger(__name__)

WARNING_THRESHOLDS: frozenset[int] = frozenset({300, 120, 60, 30, 10})
FINAL_COUNTDOWN: frozenset[int] = frozenset({5, 4, 3, 2, 1})

SleepFunc = Callable[[float], Awaitable[None]]


class CountdownState(str, Enum):
    """
    States of the grace countdown.

    - pending: not started
    - running: ticking down
    - expired: reached zero; the caller should stop the server
    - aborted: the server exited on its own during the countdown
    """

    PENDING = "pending"
    RUNNING = "running"
    EXPIRED = "expired"
    ABORTED = "aborted"


class CountdownEventKind(str, Enum):
    """Kinds of player-visible countdown broadcasts."""

    STARTED = "started"
    EXTENDED = "extended"
    WARNING = "warning"
    EXPIRED = "expired"


class CountdownEvent:
    """A broadcast emitted by the countdown."""

    def __init__(self, kind: CountdownEventKind, remaining: int, message: str) -> None:
        self.kind = kind
        self.remaining = remaining
        self.message = message

    def __repr__(self) -> str:
        return f"CountdownEvent({self.kind.value!r}, remaining={self.remaining})"


def format_duration(seconds: int) -> str:
    """Render a duration for chat, e.g. "2 minutes", "1 minute 30 seconds"."""
    minutes, secs = divmod(max(seconds, 0), 60)
    parts = []
    if minutes:
        parts.append(f"{minutes} minute{'s' if minutes != 1 else ''}")
    if secs or not minutes:
        parts.append(f"{secs} second{'s' if secs != 1 else ''}")
    return " ".join(parts)


def start_message(total: int) -> str:
    return f"Game update available! Server restarting in {format_duration(total)}."


def extension_message(total: int) -> str:
    return f"Restart delayed. Server now restarting in {format_duration(total)}."


def warning_message(remaining: int) -> str:
    if remaining in FINAL_COUNTDOWN:
        return f"Restarting in {remaining}..."
    return f"Server restarting for update in {format_duration(remaining)}."


def expired_message() -> str:
    return "Server restarting for update NOW!"


class GraceCountdown:
    """
    Cancellable, extensible countdown with player warnings.

    Attributes:
        base_seconds: Configured grace period; also the extension step.
        state: Current countdown state.
        remaining: Seconds left.
        extensions: Number of extensions applied.
    """

    def __init__(
        self,
        sink: CommandSink,
        process: ProcessHandle,
        extension: ExtensionSignal,
        base_seconds: int = 60,
        *,
        broadcast_command: str = "say",
        expire_pause_seconds: float = 3.0,
        tick_seconds: float = 1.0,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        """
        Initialize the countdown.

        Args:
            sink: Console used for player broadcasts.
            process: Handle whose liveness is checked each tick.
            extension: Signal polled each tick for extension requests.
            base_seconds: Grace period in whole seconds.
            broadcast_command: Console command prefixed to each message.
            expire_pause_seconds: Pause after the final broadcast.
            tick_seconds: Wall-clock length of one tick.
            sleep: Awaitable sleep, replaceable in tests.
        """
        if base_seconds < 1:
            raise ValueError("base_seconds must be at least 1")

        self.sink = sink
        self.process = process
        self.extension = extension
        self.base_seconds = base_seconds
        self.broadcast_command = broadcast_command
        self.expire_pause_seconds = expire_pause_seconds
        self.tick_seconds = tick_seconds
        self._sleep = sleep

        self.state = CountdownState.PENDING
        self.remaining = base_seconds
        self.extensions = 0
        self._callbacks: list[Callable[[CountdownEvent], None]] = []

    def add_event_callback(self, callback: Callable[[CountdownEvent], None]) -> None:
        """Add a callback notified of every broadcast."""
        self._callbacks.append(callback)

    def extend(self) -> int:
        """
        Add one full grace period to the remaining time.

        Returns:
            The new remaining time.
        """
        self.remaining += self.base_seconds
        self.extensions += 1
        return self.remaining

    async def _emit(self, kind: CountdownEventKind, message: str) -> None:
        event = CountdownEvent(kind, self.remaining, message)

        for callback in self._callbacks:
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Countdown callback failed: {e}")

        line = f"{self.broadcast_command} {message}" if self.broadcast_command else message
        try:
            await self.sink.send(line)
        except Exception as e:
            logger.warning(f"Broadcast failed: {e}", extra={"line": line})

    def _abort(self) -> CountdownState:
        self.state = CountdownState.ABORTED
        logger.info(
            "Server exited during countdown, nothing left to stop",
            extra={"remaining": self.remaining},
        )
        return self.state

    async def run(self) -> CountdownState:
        """
        Run the countdown to completion.

        Returns:
            CountdownState.EXPIRED when the caller should stop the server,
            CountdownState.ABORTED when the server already exited.
        """
        if self.state != CountdownState.PENDING:
            raise RuntimeError(f"Countdown already {self.state.value}")

        self.state = CountdownState.RUNNING
        self.remaining = self.base_seconds
        logger.info(
            "Starting graceful restart countdown",
            extra={"grace_period": self.base_seconds},
        )
        await self._emit(CountdownEventKind.STARTED, start_message(self.remaining))

        while self.remaining > 0:
            if not self.process.is_alive():
                return self._abort()

            if self.extension.consume():
                self.extend()
                logger.info(
                    "Countdown extended",
                    extra={"remaining": self.remaining, "extensions": self.extensions},
                )
                await self._emit(
                    CountdownEventKind.EXTENDED, extension_message(self.remaining)
                )

            if self.remaining in WARNING_THRESHOLDS or self.remaining in FINAL_COUNTDOWN:
                await self._emit(
                    CountdownEventKind.WARNING, warning_message(self.remaining)
                )

            await self._sleep(self.tick_seconds)
            self.remaining -= 1

        if not self.process.is_alive():
            return self._abort()

        await self._emit(CountdownEventKind.EXPIRED, expired_message())
        await self._sleep(self.expire_pause_seconds)
        self.state = CountdownState.EXPIRED
        logger.info("Countdown expired", extra={"extensions": self.extensions})
        return self.state
