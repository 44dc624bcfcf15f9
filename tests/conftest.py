"""Shared fixtures for termpool tests.

Fake collaborators stand in for the host terminal: FakeTerminal reports
command lifecycle to its listeners the way a real backend does, and
FakeSelection/FakeClipboard emulate selection + clipboard copy.
"""

import asyncio
import contextlib

import pytest

import termpool.config as config
from termpool.pool import SessionPool
from termpool.session import TerminalSession
from termpool.types import ExitCodeDetails


async def chunks(*parts: str, finished: asyncio.Event | None = None):
    """Async output stream yielding the given chunks, then setting finished."""
    for part in parts:
        yield part
    if finished is not None:
        finished.set()


class FakeClipboard:
    def __init__(self, text: str = ""):
        self.text = text
        self.writes: list[str] = []

    async def read_text(self) -> str:
        return self.text

    async def write_text(self, text: str) -> None:
        self.writes.append(text)
        self.text = text


class FakeSelection:
    """Copies `captured` to the clipboard on copy_selection (if anything is selected)."""

    def __init__(self, clipboard: FakeClipboard, captured: str = "", fail_on: str | None = None):
        self.clipboard = clipboard
        self.captured = captured
        self.fail_on = fail_on
        self.calls: list[str] = []
        self._selected = False

    def _record(self, name: str) -> None:
        self.calls.append(name)
        if name == self.fail_on:
            raise RuntimeError(f"{name} failed")

    async def select_all(self) -> None:
        self._record("select_all")
        self._selected = True

    async def select_to_previous_command(self) -> None:
        self._record("select_to_previous_command")
        self._selected = True

    async def copy_selection(self) -> None:
        if self._selected:
            await self.clipboard.write_text(self.captured)
        self._record("copy_selection")

    async def clear_selection(self) -> None:
        self._record("clear_selection")
        self._selected = False


class FakeTerminal:
    """In-memory ShellTerminal.

    With `output` set, each executed command streams those chunks to the
    listeners and then completes with `exit_code`. Without it, the command
    hangs until the test drives the listeners itself.
    """

    def __init__(self, ready: bool = True, output: list[str] | None = None, exit_code: int = 0):
        self.shell_integration_ready = ready
        self.output = output
        self.exit_code = exit_code
        self.error: Exception | None = None
        self.commands: list[str] = []
        self.listeners: list = []
        self.executed = asyncio.Event()
        self.closed = False
        self.clipboard = FakeClipboard()
        self.selection = FakeSelection(self.clipboard)
        self._play_task: asyncio.Task | None = None

    def add_listener(self, listener) -> None:
        self.listeners.append(listener)

    async def execute_command(self, command: str) -> None:
        self.commands.append(command)
        self.executed.set()
        if self.error is not None:
            raise self.error
        if self.output is not None:
            self._play_task = asyncio.create_task(self._play())

    async def _play(self) -> None:
        finished = asyncio.Event()
        stream = chunks(*self.output, finished=finished)
        for listener in self.listeners:
            listener.set_active_stream(stream)
        await finished.wait()
        for listener in self.listeners:
            listener.set_active_stream(None)
            listener.shell_execution_complete(ExitCodeDetails.from_exit_code(self.exit_code))

    async def close(self) -> None:
        self.closed = True


async def cancel_pending(session: TerminalSession) -> None:
    """Cancel a session's command task left hanging by a test."""
    task = session._run_task
    if task is not None and not task.done():
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task


@pytest.fixture
def terminal():
    return FakeTerminal()


@pytest.fixture
async def session(terminal):
    """A session with short timeouts over a FakeTerminal."""
    s = TerminalSession(
        1,
        terminal,
        shell_integration_timeout=0.2,
        poll_interval=0.01,
        stream_timeout=0.2,
    )
    yield s
    await cancel_pending(s)


@pytest.fixture
async def fake_pool():
    """A SessionPool whose sessions run on FakeTerminals (exposed as pool.terminals)."""
    terminals: list[FakeTerminal] = []

    async def _factory(session_id: int) -> FakeTerminal:
        terminal = FakeTerminal(output=["hello\n"])
        terminals.append(terminal)
        return terminal

    pool = SessionPool(
        terminal_factory=_factory,
        clipboard=FakeClipboard("saved"),
        max_sessions=3,
        shell_integration_timeout=0.1,
        poll_interval=0.01,
        stream_timeout=0.1,
    )
    pool.terminals = terminals
    yield pool
    for s in list(pool.sessions.values()):
        await cancel_pending(s)
    await pool.close_all()


@pytest.fixture
def config_dir(tmp_path):
    """Initialize config against a temporary directory."""
    d = tmp_path / "config"
    d.mkdir()
    config.init(d)
    yield d
    config._config_dir = None
    config._pool_config_cache = None
