"""
Tests for the server console command sinks.
"""

from __future__ import annotations

import asyncio
import logging
from unittest import mock

import pytest

from srcds_autoupdate.config import ConsoleConfig
from srcds_autoupdate.console import (
    CommandSink,
    LogCommandSink,
    TmuxCommandSink,
    create_command_sink,
)


def mock_process(returncode: int = 0, stderr: bytes = b"") -> mock.MagicMock:
    proc = mock.MagicMock()
    proc.communicate = mock.AsyncMock(return_value=(None, stderr))
    proc.returncode = returncode
    return proc


class TestTmuxCommandSink:
    """Tests for TmuxCommandSink."""

    def test_satisfies_protocol(self) -> None:
        """Test that the sink implements CommandSink."""
        assert isinstance(TmuxCommandSink(), CommandSink)

    def test_from_config(self) -> None:
        """Test construction from configuration."""
        sink = TmuxCommandSink.from_config(
            ConsoleConfig(target="tf2:0.0", tmux_binary="/usr/bin/tmux")
        )

        assert sink.target == "tf2:0.0"
        assert sink.tmux_binary == "/usr/bin/tmux"
        assert sink.timeout == 5.0

    @pytest.mark.asyncio
    async def test_send_types_line_then_enter(self) -> None:
        """Test the literal text and Enter key invocations."""
        sink = TmuxCommandSink(target="srcds")

        with mock.patch(
            "asyncio.create_subprocess_exec",
            mock.AsyncMock(return_value=mock_process()),
        ) as exec_mock:
            await sink.send("say Restarting in 5...")

        calls = [c.args for c in exec_mock.call_args_list]
        assert calls == [
            ("tmux", "send-keys", "-t", "srcds", "-l", "say Restarting in 5..."),
            ("tmux", "send-keys", "-t", "srcds", "Enter"),
        ]

    @pytest.mark.asyncio
    async def test_failed_send_skips_enter(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test that a missing session is logged and Enter is not sent."""
        sink = TmuxCommandSink()

        with mock.patch(
            "asyncio.create_subprocess_exec",
            mock.AsyncMock(
                return_value=mock_process(1, b"can't find session: srcds\n")
            ),
        ) as exec_mock:
            with caplog.at_level(logging.WARNING, logger="srcds_autoupdate"):
                await sink.send("say hello")

        assert exec_mock.call_count == 1
        assert "can't find session" in caplog.text

    @pytest.mark.asyncio
    async def test_missing_tmux_is_swallowed(self) -> None:
        """Test that a missing tmux binary never raises."""
        sink = TmuxCommandSink(tmux_binary="/nonexistent/tmux")

        with mock.patch(
            "asyncio.create_subprocess_exec",
            mock.AsyncMock(side_effect=FileNotFoundError("tmux")),
        ):
            await sink.send("say hello")

    @pytest.mark.asyncio
    async def test_timeout_is_swallowed(self) -> None:
        """Test that a hung tmux never blocks the caller."""
        sink = TmuxCommandSink(timeout=0.01)
        proc = mock.MagicMock()
        proc.returncode = None
        proc.wait = mock.AsyncMock(return_value=-9)

        async def hang() -> tuple[None, bytes]:
            await asyncio.sleep(10)
            return None, b""

        proc.communicate = hang

        with mock.patch(
            "asyncio.create_subprocess_exec", mock.AsyncMock(return_value=proc)
        ) as mock_exec:
            await sink.send("say hello")

        # The hung child is killed and reaped, and Enter is never sent
        proc.kill.assert_called_once()
        proc.wait.assert_awaited_once()
        assert mock_exec.await_count == 1


class TestLogCommandSink:
    """Tests for LogCommandSink."""

    @pytest.mark.asyncio
    async def test_logs_line(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test that lines are logged instead of delivered."""
        with caplog.at_level(logging.INFO, logger="srcds_autoupdate"):
            await LogCommandSink().send("say hello")

        assert "message dropped" in caplog.text


class TestCreateCommandSink:
    """Tests for sink selection."""

    def test_enabled(self) -> None:
        """Test that tmux is used by default."""
        assert isinstance(create_command_sink(ConsoleConfig()), TmuxCommandSink)

    def test_disabled(self) -> None:
        """Test the log-only sink."""
        assert isinstance(
            create_command_sink(ConsoleConfig(enabled=False)), LogCommandSink
        )
