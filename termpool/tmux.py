"""tmux-backed terminals.

Each TmuxTerminal is a tmux session (on the host, or inside a podman
container). Commands are typed with send-keys followed by an exit-status
sentinel:

    <command>; printf '%s%s\\n' '__termpool_exit_<nonce>_' "$?"

The pane is polled with capture-pane; lines after the echoed command are
streamed to the listening session until the sentinel line reports the exit
status. Selection and clipboard are emulated on top of capture-pane and tmux
paste buffers.
"""

from __future__ import annotations

import asyncio
import re
import uuid
from collections.abc import AsyncIterator

from .errors import TmuxError
from .logging_config import get_logger
from .terminal import ShellExecutionListener
from .types import ExitCodeDetails

logger = get_logger(__name__)

CAPTURE_INTERVAL = 0.25  # How often a running command's pane is captured
READY_PROBE_INTERVAL = 0.1
SCROLLBACK_LINES = 5000  # tmux scrollback buffer size
DEFAULT_ROWS = 40
DEFAULT_COLS = 120
CLIPBOARD_BUFFER = "termpool"

EXIT_MARK_PREFIX = "__termpool_exit_"
# Matches the echoed command line, where the marker is followed by a quote
_ECHO_RE = re.compile(re.escape(EXIT_MARK_PREFIX) + r"[0-9a-f]+_'")


async def tmux_exec(*args: str, container: str | None = None) -> str:
    """Run a tmux command (inside the container if given), return stdout."""
    cmd = ["tmux", *args]
    if container:
        cmd = ["podman", "exec", container, *cmd]
    proc = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await proc.communicate()
    if proc.returncode != 0:
        err = stderr.decode("utf-8", errors="replace").strip()
        raise TmuxError(f"tmux {args[0] if args else ''} failed ({proc.returncode}): {err}", proc.returncode)
    return stdout.decode("utf-8", errors="replace")


def detect_buffer_shift(old_lines: list[str], new_lines: list[str]) -> int:
    """Detect how many lines fell off the top of a full tmux buffer.

    When the buffer is full, new output pushes old lines off the top.
    If new_lines[0] == old_lines[k], then k lines fell off.
    """
    if not old_lines or not new_lines:
        return len(new_lines)

    target = new_lines[0]
    for i, line in enumerate(old_lines):
        if line == target:
            # Verify a few more lines to avoid false matches on repeated content
            verify = min(5, len(new_lines), len(old_lines) - i)
            if all(new_lines[j] == old_lines[i + j] for j in range(1, verify)):
                return i

    # No overlap found, entire buffer is new
    return len(new_lines)


def wrap_command(command: str, marker: str) -> str:
    """Append the exit-status sentinel to a command line."""
    command = command.rstrip().rstrip(";").rstrip()
    separator = " " if command.endswith("&") else "; "
    return f"{command}{separator}printf '%s%s\\n' '{marker}' \"$?\""


class TmuxClipboard:
    """Clipboard backed by a named tmux paste buffer.

    buffer_name=None uses the top of the paste-buffer stack; writing to it
    then pushes a new automatic buffer instead of replacing the top one.
    """

    def __init__(self, container: str | None = None, buffer_name: str | None = CLIPBOARD_BUFFER):
        self.container = container
        self.buffer_name = buffer_name

    def _buffer_args(self) -> list[str]:
        return ["-b", self.buffer_name] if self.buffer_name else []

    async def read_text(self) -> str:
        try:
            return await tmux_exec("show-buffer", *self._buffer_args(), container=self.container)
        except TmuxError:
            # No buffer yet
            return ""

    async def write_text(self, text: str) -> None:
        if not text:
            try:
                await tmux_exec("delete-buffer", *self._buffer_args(), container=self.container)
            except TmuxError as e:
                logger.debug("delete-buffer failed (no buffer?): %s", e)
            return
        await tmux_exec("set-buffer", *self._buffer_args(), "--", text, container=self.container)


class TmuxSelection:
    """Selection over a terminal's captured scrollback.

    Command boundaries are the echoed command lines carrying the exit marker.
    """

    def __init__(self, terminal: TmuxTerminal, clipboard: TmuxClipboard):
        self._terminal = terminal
        self._clipboard = clipboard
        self._selected: list[str] | None = None
        self._commands_back = 0

    async def select_all(self) -> None:
        self._selected = await self._terminal.capture_lines()

    async def select_to_previous_command(self) -> None:
        self._commands_back += 1
        lines = await self._terminal.capture_lines()
        starts = [i for i, line in enumerate(lines) if _ECHO_RE.search(line)]
        start = starts[-self._commands_back] if self._commands_back <= len(starts) else 0
        self._selected = lines[start:]

    async def copy_selection(self) -> None:
        if self._selected is None:
            return
        await self._clipboard.write_text("\n".join(self._selected))

    async def clear_selection(self) -> None:
        self._selected = None
        self._commands_back = 0


class TmuxTerminal:
    """A shell running in a tmux session, reporting command lifecycle to listeners."""

    def __init__(
        self,
        name: str,
        container: str | None = None,
        capture_interval: float = CAPTURE_INTERVAL,
        scrollback_lines: int = SCROLLBACK_LINES,
        clipboard: TmuxClipboard | None = None,
    ):
        self.name = name
        self.container = container
        self.capture_interval = capture_interval
        self.scrollback_lines = scrollback_lines
        self.clipboard = clipboard or TmuxClipboard(container)
        self._selection = TmuxSelection(self, self.clipboard)
        self._listeners: list[ShellExecutionListener] = []
        self._ready = False
        self._probe_task: asyncio.Task | None = None
        self._watch_task: asyncio.Task | None = None

    @property
    def shell_integration_ready(self) -> bool:
        return self._ready

    @property
    def selection(self) -> TmuxSelection:
        return self._selection

    def add_listener(self, listener: ShellExecutionListener) -> None:
        self._listeners.append(listener)

    async def _exec(self, *args: str) -> str:
        return await tmux_exec(*args, container=self.container)

    async def _session_exists(self) -> bool:
        try:
            await self._exec("has-session", "-t", self.name)
            return True
        except TmuxError:
            return False

    async def start(self) -> None:
        """Create the tmux session (or reattach to a surviving one) and probe for a prompt."""
        if await self._session_exists():
            logger.info(f"Terminal '{self.name}': reconnecting to surviving tmux session")
        else:
            logger.info(f"Terminal '{self.name}': creating tmux session")
            await self._exec(
                "new-session",
                "-d",
                "-s",
                self.name,
                "-x",
                str(DEFAULT_COLS),
                "-y",
                str(DEFAULT_ROWS),
            )
            try:
                await self._exec("set-option", "-t", self.name, "history-limit", str(self.scrollback_lines))
            except TmuxError as e:
                logger.debug("Terminal '%s': set history-limit failed: %s", self.name, e)

        self._probe_task = asyncio.create_task(self._probe_ready())

    async def _probe_ready(self) -> None:
        """Mark the terminal ready once the shell has drawn something (its prompt)."""
        while not self._ready:
            try:
                if await self.capture_lines():
                    self._ready = True
                    return
            except TmuxError as e:
                logger.debug("Terminal '%s': ready probe failed: %s", self.name, e)
            await asyncio.sleep(READY_PROBE_INTERVAL)

    async def capture_lines(self) -> list[str]:
        """Scrollback plus visible pane, wrapped lines joined, trailing blanks stripped."""
        content = await self._exec(
            "capture-pane",
            "-p",
            "-J",
            "-t",
            self.name,
            "-S",
            f"-{self.scrollback_lines}",
        )
        lines = content.split("\n")
        while lines and not lines[-1].strip():
            lines.pop()
        return lines

    async def execute_command(self, command: str) -> None:
        """Type the command and start watching the pane for its output and exit status."""
        if self._watch_task is not None and not self._watch_task.done():
            raise TmuxError(f"Terminal '{self.name}' is already executing a command")

        marker = f"{EXIT_MARK_PREFIX}{uuid.uuid4().hex[:8]}_"
        baseline = await self.capture_lines()

        await self._exec("send-keys", "-t", self.name, "-l", wrap_command(command, marker))
        await self._exec("send-keys", "-t", self.name, "Enter")

        self._watch_task = asyncio.create_task(self._watch(marker, baseline))

    async def _watch(self, marker: str, baseline: list[str]) -> None:
        done: asyncio.Future[int] = asyncio.get_running_loop().create_future()
        stream = self._stream_output(marker, baseline, done)
        for listener in self._listeners:
            listener.set_active_stream(stream)

        exit_code: int | None
        try:
            exit_code = await done
        except TmuxError as e:
            logger.warning(f"Terminal '{self.name}': lost track of command: {e}")
            exit_code = None

        details = ExitCodeDetails.from_exit_code(exit_code)
        for listener in self._listeners:
            listener.set_active_stream(None)
            listener.shell_execution_complete(details)

    async def _stream_output(
        self,
        marker: str,
        baseline: list[str],
        done: asyncio.Future[int],
    ) -> AsyncIterator[str]:
        """Yield the command's output lines until its exit sentinel appears.

        The last pane line is held back until a newer one follows it, since
        it may still be written to.
        """
        exit_re = re.compile(re.escape(marker) + r"(\d+)$")
        echo_mark = marker + "'"
        previous = baseline
        # The prompt line the command is typed on is the last baseline line
        start = max(0, len(baseline) - 1)
        echo_seen = False

        try:
            while True:
                lines = await self.capture_lines()
                if len(lines) < start:
                    # Screen cleared or buffer shrunk, rescan from the top
                    start = 0
                elif previous and len(lines) == len(previous) and lines != previous:
                    start = max(0, start - detect_buffer_shift(previous, lines))
                previous = lines

                for idx in range(start, len(lines)):
                    line = lines[idx]
                    if not echo_seen:
                        if echo_mark in line:
                            echo_seen = True
                        elif idx == len(lines) - 1:
                            # The shell may not have drawn the typed command yet
                            break
                        start = idx + 1
                        continue

                    match = exit_re.search(line)
                    if match:
                        prefix = line[: match.start()]
                        if prefix:
                            yield prefix + "\n"
                        done.set_result(int(match.group(1)))
                        return

                    if idx == len(lines) - 1:
                        break
                    yield line + "\n"
                    start = idx + 1

                await asyncio.sleep(self.capture_interval)
        except TmuxError as e:
            if not done.done():
                done.set_exception(e)
            raise

    async def close(self) -> None:
        for task in (self._probe_task, self._watch_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._ready = False
        try:
            await self._exec("kill-session", "-t", self.name)
        except TmuxError as e:
            logger.debug("Terminal '%s': kill-session failed (already dead?): %s", self.name, e)
