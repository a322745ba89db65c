"""
Pytest configuration and shared test doubles for srcds-autoupdate tests.

The orchestrator talks to the outside world only through small capability
interfaces (process handle, command sink, registry, extension signal, sleep),
so the doubles here let the whole state machine run instantly and
deterministically.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator
from pathlib import Path

import pytest

from srcds_autoupdate.errors import UnavailableError


# =============================================================================
# Test doubles
# =============================================================================


class FakeProcess:
    """ProcessHandle double with scriptable liveness."""

    def __init__(self, alive: bool = True) -> None:
        self.alive = alive
        self.termination_requests = 0
        self.liveness_checks = 0

    def is_alive(self) -> bool:
        self.liveness_checks += 1
        return self.alive

    def request_termination(self) -> None:
        self.termination_requests += 1
        self.alive = False


class RecordingSink:
    """CommandSink double that records every line."""

    def __init__(self) -> None:
        self.lines: list[str] = []

    async def send(self, line: str) -> None:
        self.lines.append(line)


class ScriptedRegistry:
    """
    BuildRegistry double.

    Each app id maps to a list of responses consumed one per query; the last
    response repeats. A response that is an exception instance is raised.
    """

    def __init__(self, responses: dict[str, list[str | Exception]]) -> None:
        self.responses = {k: list(v) for k, v in responses.items()}
        self.calls: list[str] = []

    async def fetch_build_id(self, app_id: str) -> str:
        self.calls.append(app_id)
        queue = self.responses.get(app_id)
        if not queue:
            raise UnavailableError("no scripted response", details={"app_id": app_id})
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, Exception):
            raise response
        return response


class ManualSignal:
    """ExtensionSignal double raised explicitly by tests."""

    def __init__(self) -> None:
        self.pending = False
        self.consumed = 0

    def raise_signal(self) -> None:
        self.pending = True

    def consume(self) -> bool:
        if self.pending:
            self.pending = False
            self.consumed += 1
            return True
        return False


class FakeClock:
    """
    Instant replacement for asyncio.sleep.

    Records requested durations and runs an optional hook on every sleep so
    tests can change the world between ticks.
    """

    def __init__(self) -> None:
        self.sleeps: list[float] = []
        self.hooks: list[Callable[[FakeClock], None]] = []

    @property
    def elapsed(self) -> float:
        return sum(self.sleeps)

    def on_sleep(self, hook: Callable[[FakeClock], None]) -> None:
        self.hooks.append(hook)

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        for hook in list(self.hooks):
            hook(self)


def write_manifest(directory: Path, app_id: str, build_id: str, state_flags: int = 4) -> Path:
    """Write a minimal SteamCMD app manifest."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"appmanifest_{app_id}.acf"
    path.write_text(
        "\n".join(
            [
                '"AppState"',
                "{",
                f'\t"appid"\t\t"{app_id}"',
                '\t"Universe"\t\t"1"',
                f'\t"StateFlags"\t\t"{state_flags}"',
                '\t"installdir"\t\t"server"',
                f'\t"buildid"\t\t"{build_id}"',
                '\t"InstalledDepots"',
                "\t{",
                '\t\t"232256"',
                "\t\t{",
                '\t\t\t"manifest"\t\t"5710953542218936484"',
                "\t\t}",
                "\t}",
                "}",
                "",
            ]
        )
    )
    return path


def steamcmd_app_info_output(app_id: str, branches: dict[str, str]) -> str:
    """Render steamcmd +app_info_print output including banner noise."""
    branch_lines: list[str] = []
    for name, build_id in branches.items():
        branch_lines.extend(
            [
                f'\t\t\t"{name}"',
                "\t\t\t{",
                f'\t\t\t\t"buildid"\t\t"{build_id}"',
                '\t\t\t\t"timeupdated"\t\t"1712345678"',
                "\t\t\t}",
            ]
        )
    return "\n".join(
        [
            "Redirecting stderr to '/home/srcds/Steam/logs/stderr.txt'",
            "[  0%] Checking for available updates...",
            "Steam Console Client (c) Valve Corporation - version 1712345678",
            "Loading Steam API...OK",
            "Connecting anonymously to Steam Public...OK",
            "Waiting for client config...OK",
            f"AppID : {app_id}, change number : 23456789/0, last change : Mon Apr  1 12:00:00 2024 ",
            f'"{app_id}"',
            "{",
            '\t"common"',
            "\t{",
            '\t\t"name"\t\t"Dedicated Server"',
            '\t\t"type"\t\t"Tool"',
            "\t}",
            '\t"depots"',
            "\t{",
            '\t\t"branches"',
            "\t\t{",
            *branch_lines,
            "\t\t}",
            "\t}",
            "}",
            "Unloading Steam API...OK",
            "",
        ]
    )


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def fake_process() -> FakeProcess:
    """A live fake server process."""
    return FakeProcess()


@pytest.fixture
def sink() -> RecordingSink:
    """A recording command sink."""
    return RecordingSink()


@pytest.fixture
def signal() -> ManualSignal:
    """A manual extension signal."""
    return ManualSignal()


@pytest.fixture
def clock() -> FakeClock:
    """An instant sleep replacement."""
    return FakeClock()


@pytest.fixture
def manifest_dir(tmp_path: Path) -> Path:
    """An empty steamapps directory."""
    path = tmp_path / "steamapps"
    path.mkdir()
    return path


@pytest.fixture(autouse=True)
def _cleanup_loggers() -> Iterator[None]:
    """Reset the package logger after each test (autouse fixture)."""
    yield
    logger = logging.getLogger("srcds_autoupdate")
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


def drain(items: Iterable[str]) -> list[str]:
    """Strip the broadcast command prefix from recorded sink lines."""
    return [item.split(" ", 1)[1] if item.startswith("say ") else item for item in items]
