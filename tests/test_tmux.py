"""Tests for the tmux backend (termpool/tmux.py).

tmux itself is never invoked: _exec and capture_lines are replaced with
AsyncMocks that replay pane snapshots.
"""

import asyncio
import uuid
from unittest.mock import AsyncMock, MagicMock, call, patch

import pytest

from tests.conftest import FakeClipboard
from termpool.contents import get_terminal_contents
from termpool.errors import TmuxError
from termpool.session import TerminalSession
from termpool.tmux import (
    TmuxClipboard,
    TmuxSelection,
    TmuxTerminal,
    detect_buffer_shift,
    tmux_exec,
    wrap_command,
)
from termpool.types import ExitCodeDetails

MARKER = "__termpool_exit_deadbeef_"
FIXED_UUID = uuid.UUID("deadbeef-0000-0000-0000-000000000000")


def _echo(command: str, marker: str = MARKER) -> str:
    """The pane line showing a typed command after the prompt."""
    return "$ " + wrap_command(command, marker)


class RecordingListener:
    def __init__(self):
        self.streams = []
        self.completed = []
        self.stream_set = asyncio.Event()

    def set_active_stream(self, stream):
        self.streams.append(stream)
        if stream is not None:
            self.stream_set.set()

    def shell_execution_complete(self, exit_details):
        self.completed.append(exit_details)


def _terminal(*snapshots) -> TmuxTerminal:
    terminal = TmuxTerminal("t", capture_interval=0)
    terminal._exec = AsyncMock(return_value="")
    terminal.capture_lines = AsyncMock(side_effect=list(snapshots))
    return terminal


async def _collect(stream) -> list[str]:
    return [chunk async for chunk in stream]


class TestWrapCommand:
    def test_plain(self):
        assert wrap_command("ls", "M_") == "ls; printf '%s%s\\n' 'M_' \"$?\""

    def test_trailing_semicolon(self):
        assert wrap_command("ls; ", "M_") == "ls; printf '%s%s\\n' 'M_' \"$?\""

    def test_background(self):
        assert wrap_command("sleep 1 &", "M_") == "sleep 1 & printf '%s%s\\n' 'M_' \"$?\""


class TestBufferShift:
    """Test sliding buffer detection for full tmux scrollback."""

    def test_basic_shift(self):
        # Buffer was [A, B, C, D, E], now [C, D, E, F, G] (2 lines fell off)
        assert detect_buffer_shift(["A", "B", "C", "D", "E"], ["C", "D", "E", "F", "G"]) == 2

    def test_no_shift(self):
        lines = ["A", "B", "C"]
        assert detect_buffer_shift(lines, lines) == 0

    def test_no_overlap(self):
        assert detect_buffer_shift(["A", "B", "C"], ["X", "Y", "Z"]) == 3

    def test_empty_old(self):
        assert detect_buffer_shift([], ["A", "B"]) == 2

    def test_repeated_lines_verified(self):
        # "A" repeats; only the second occurrence is followed by the right lines
        assert detect_buffer_shift(["A", "X", "A", "B"], ["A", "B", "C", "D"]) == 2


class TestTmuxExec:
    async def test_returns_stdout(self):
        proc = MagicMock(returncode=0)
        proc.communicate = AsyncMock(return_value=(b"hello\n", b""))
        with patch("termpool.tmux.asyncio.create_subprocess_exec", AsyncMock(return_value=proc)) as spawn:
            assert await tmux_exec("show-buffer") == "hello\n"
        assert spawn.call_args.args == ("tmux", "show-buffer")

    async def test_container(self):
        proc = MagicMock(returncode=0)
        proc.communicate = AsyncMock(return_value=(b"", b""))
        with patch("termpool.tmux.asyncio.create_subprocess_exec", AsyncMock(return_value=proc)) as spawn:
            await tmux_exec("has-session", "-t", "x", container="box")
        assert spawn.call_args.args == ("podman", "exec", "box", "tmux", "has-session", "-t", "x")

    async def test_failure_raises(self):
        proc = MagicMock(returncode=1)
        proc.communicate = AsyncMock(return_value=(b"", b"no server running\n"))
        with patch("termpool.tmux.asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            with pytest.raises(TmuxError, match="no server running") as exc_info:
                await tmux_exec("list-sessions")
        assert exc_info.value.returncode == 1


class TestTmuxClipboard:
    async def test_read(self):
        with patch("termpool.tmux.tmux_exec", AsyncMock(return_value="copied")) as tx:
            assert await TmuxClipboard().read_text() == "copied"
        tx.assert_awaited_once_with("show-buffer", "-b", "termpool", container=None)

    async def test_read_without_buffer(self):
        with patch("termpool.tmux.tmux_exec", AsyncMock(side_effect=TmuxError("no buffers"))):
            assert await TmuxClipboard().read_text() == ""

    async def test_write_named_buffer(self):
        with patch("termpool.tmux.tmux_exec", AsyncMock(return_value="")) as tx:
            await TmuxClipboard("box", buffer_name="agent").write_text("-n text")
        tx.assert_awaited_once_with("set-buffer", "-b", "agent", "--", "-n text", container="box")

    async def test_write_top_buffer(self):
        with patch("termpool.tmux.tmux_exec", AsyncMock(return_value="")) as tx:
            await TmuxClipboard(buffer_name=None).write_text("text")
        tx.assert_awaited_once_with("set-buffer", "--", "text", container=None)

    async def test_contents_round_trip_stays_in_own_buffer(self):
        """Copy and restore only ever touch the named buffer."""
        clipboard = TmuxClipboard()
        terminal = _terminal()
        terminal.capture_lines = AsyncMock(return_value=["$ ls", "foo", "$"])
        with patch("termpool.tmux.tmux_exec", AsyncMock(return_value="")) as tx:
            await get_terminal_contents(TmuxSelection(terminal, clipboard), clipboard)
        assert tx.await_count > 0
        for awaited in tx.await_args_list:
            assert awaited.args[1:3] == ("-b", "termpool")

    async def test_write_empty_deletes_buffer(self):
        with patch("termpool.tmux.tmux_exec", AsyncMock(side_effect=TmuxError("no buffers"))) as tx:
            await TmuxClipboard().write_text("")
        tx.assert_awaited_once_with("delete-buffer", "-b", "termpool", container=None)


class TestTmuxSelection:
    LINES = [
        _echo("ls", "__termpool_exit_aaaa0000_"),
        "a.txt",
        "__termpool_exit_aaaa0000_0",
        _echo("pwd", "__termpool_exit_bbbb1111_"),
        "/tmp",
        "__termpool_exit_bbbb1111_0",
        "$",
    ]

    def _selection(self):
        terminal = _terminal()
        terminal.capture_lines = AsyncMock(return_value=list(self.LINES))
        clipboard = FakeClipboard("saved")
        return TmuxSelection(terminal, clipboard), clipboard

    async def test_select_all(self):
        selection, clipboard = self._selection()
        await selection.select_all()
        await selection.copy_selection()
        assert clipboard.text == "\n".join(self.LINES)

    async def test_previous_commands(self):
        selection, clipboard = self._selection()
        await selection.select_to_previous_command()
        await selection.copy_selection()
        assert clipboard.text == "\n".join(self.LINES[3:])

        await selection.select_to_previous_command()
        await selection.copy_selection()
        assert clipboard.text == "\n".join(self.LINES)

    async def test_beyond_first_command_selects_everything(self):
        selection, clipboard = self._selection()
        for _ in range(3):
            await selection.select_to_previous_command()
        await selection.copy_selection()
        assert clipboard.text == "\n".join(self.LINES)

    async def test_copy_without_selection(self):
        selection, clipboard = self._selection()
        await selection.copy_selection()
        assert clipboard.writes == []

    async def test_clear_resets_count(self):
        selection, clipboard = self._selection()
        await selection.select_to_previous_command()
        await selection.clear_selection()
        await selection.copy_selection()
        assert clipboard.writes == []

        await selection.select_to_previous_command()
        await selection.copy_selection()
        assert clipboard.text == "\n".join(self.LINES[3:])

    async def test_contents_of_last_command(self):
        selection, clipboard = self._selection()
        contents = await get_terminal_contents(selection, clipboard, commands_back=1)
        assert contents.startswith("$ pwd")
        assert "/tmp" in contents
        assert "a.txt" not in contents
        assert clipboard.text == "saved"


class TestLifecycle:
    async def test_start_creates_session_and_probes(self):
        terminal = _terminal(["$"])
        terminal._exec = AsyncMock(side_effect=[TmuxError("no session"), "", ""])

        await terminal.start()
        await asyncio.wait_for(terminal._probe_task, 1)

        assert terminal.shell_integration_ready
        assert terminal._exec.await_args_list[1] == call("new-session", "-d", "-s", "t", "-x", "120", "-y", "40")
        assert terminal._exec.await_args_list[2] == call("set-option", "-t", "t", "history-limit", "5000")

    async def test_start_reconnects(self):
        terminal = _terminal(["$"])
        await terminal.start()
        await asyncio.wait_for(terminal._probe_task, 1)
        terminal._exec.assert_awaited_once_with("has-session", "-t", "t")

    async def test_close(self):
        terminal = _terminal()
        terminal._ready = True
        await terminal.close()
        assert not terminal.shell_integration_ready
        terminal._exec.assert_awaited_once_with("kill-session", "-t", "t")

    async def test_close_dead_session(self):
        terminal = _terminal()
        terminal._exec = AsyncMock(side_effect=TmuxError("no session"))
        await terminal.close()


@patch("termpool.tmux.uuid.uuid4", return_value=FIXED_UUID)
class TestExecuteCommand:
    async def test_streams_output_and_exit_code(self, _uuid):
        terminal = _terminal(
            ["$"],
            [_echo("ls"), "a.txt"],
            [_echo("ls"), "a.txt", "b.txt", MARKER + "0", "$"],
        )
        listener = RecordingListener()
        terminal.add_listener(listener)

        await terminal.execute_command("ls")
        await asyncio.wait_for(listener.stream_set.wait(), 1)
        output = await _collect(listener.streams[0])
        await asyncio.wait_for(terminal._watch_task, 1)

        assert output == ["a.txt\n", "b.txt\n"]
        assert listener.streams[-1] is None
        assert listener.completed == [ExitCodeDetails(exit_code=0)]
        assert terminal._exec.await_args_list == [
            call("send-keys", "-t", "t", "-l", wrap_command("ls", MARKER)),
            call("send-keys", "-t", "t", "Enter"),
        ]

    async def test_echo_drawn_after_first_capture(self, _uuid):
        terminal = _terminal(
            ["$"],
            ["$"],
            [_echo("ls"), "a.txt", MARKER + "0", "$"],
        )
        listener = RecordingListener()
        terminal.add_listener(listener)

        await terminal.execute_command("ls")
        await asyncio.wait_for(listener.stream_set.wait(), 1)
        output = await asyncio.wait_for(_collect(listener.streams[0]), 1)
        await asyncio.wait_for(terminal._watch_task, 1)

        assert output == ["a.txt\n"]
        assert listener.completed == [ExitCodeDetails(exit_code=0)]

    async def test_unterminated_output_and_signal(self, _uuid):
        terminal = _terminal(
            ["old output", "$"],
            ["old output", _echo("cat f"), "no newline" + MARKER + "130", "$"],
        )
        listener = RecordingListener()
        terminal.add_listener(listener)

        await terminal.execute_command("cat f")
        await asyncio.wait_for(listener.stream_set.wait(), 1)
        output = await _collect(listener.streams[0])
        await asyncio.wait_for(terminal._watch_task, 1)

        assert output == ["no newline\n"]
        assert listener.completed[0].signal_name == "SIGINT"

    async def test_capture_failure(self, _uuid):
        terminal = _terminal(["$"], TmuxError("pane gone"))
        listener = RecordingListener()
        terminal.add_listener(listener)

        await terminal.execute_command("ls")
        await asyncio.wait_for(listener.stream_set.wait(), 1)
        with pytest.raises(TmuxError, match="pane gone"):
            await _collect(listener.streams[0])
        await asyncio.wait_for(terminal._watch_task, 1)

        assert listener.completed == [ExitCodeDetails(exit_code=None)]

    async def test_rejects_overlapping_command(self, _uuid):
        terminal = _terminal(["$"])
        terminal.add_listener(RecordingListener())
        await terminal.execute_command("sleep 10")

        with pytest.raises(TmuxError, match="already executing"):
            await terminal.execute_command("ls")
        await terminal.close()

    async def test_drives_session(self, _uuid):
        terminal = _terminal(
            ["$"],
            [_echo("ls"), "a.txt", MARKER + "0", "$"],
        )
        terminal._ready = True
        session = TerminalSession(1, terminal, poll_interval=0.01, stream_timeout=1)
        terminal.add_listener(session)

        handle = session.run_command("ls")
        result = await asyncio.wait_for(handle.result, 1)

        assert result.succeeded
        assert handle.process.get_unretrieved_output() == "a.txt\n"
        assert session.busy is False
        assert session.process is None
