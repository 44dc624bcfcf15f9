"""Terminal sessions: one logical terminal, at most one command at a time.

A session binds its terminal to the process of the command currently
executing, forwards the output stream and exit status to that process, and
keeps finished processes whose output nobody has read yet in a queue (most
recent first). The queue prunes itself: entries whose output has been fully
retrieved are dropped on every clean pass.

State flags:
  busy     set on run_command(), cleared when the command's result settles
  running  set while an output stream is attached
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterable, Callable
from dataclasses import dataclass

from .contents import get_terminal_contents
from .errors import ContractViolation
from .events import Continue, ExecutionComplete, NoShellIntegration, ProcessFailed, StreamAvailable
from .logging_config import get_logger
from .process import STREAM_TIMEOUT, TerminalProcess
from .terminal import Clipboard, SelectionService, ShellTerminal
from .types import CommandResult, ExitCodeDetails

logger = get_logger(__name__)

SHELL_INTEGRATION_TIMEOUT = 4.0  # Max wait for the terminal's shell integration
SHELL_INTEGRATION_POLL_INTERVAL = 0.02


@dataclass
class CommandHandle:
    """What run_command() hands back: the live process and its eventual result.

    Subscribe to process.events for live notifications; await result for the
    outcome. result raises if the process reported a failure.
    """

    process: TerminalProcess
    result: asyncio.Future[CommandResult]


async def _wait_until(predicate: Callable[[], bool], timeout: float, interval: float) -> None:
    """Poll predicate until it holds. Raises asyncio.TimeoutError after timeout."""

    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(interval)

    await asyncio.wait_for(_poll(), timeout=timeout)


class TerminalSession:
    """A logical terminal coordinating one command process at a time."""

    def __init__(
        self,
        session_id: int,
        terminal: ShellTerminal,
        shell_integration_timeout: float = SHELL_INTEGRATION_TIMEOUT,
        poll_interval: float = SHELL_INTEGRATION_POLL_INTERVAL,
        stream_timeout: float = STREAM_TIMEOUT,
    ):
        self.id = session_id
        self.terminal = terminal
        self.busy: bool = False
        self.running: bool = False
        self.process: TerminalProcess | None = None
        self.task_id: str | None = None
        self.completed_processes: list[TerminalProcess] = []

        self._stream: AsyncIterable[str] | None = None
        self._stream_closed: bool = False
        self._shell_integration_timeout = shell_integration_timeout
        self._poll_interval = poll_interval
        self._stream_timeout = stream_timeout
        self._run_task: asyncio.Task | None = None

    def get_stream(self) -> AsyncIterable[str] | None:
        return self._stream

    def is_stream_closed(self) -> bool:
        return self._stream_closed

    def set_active_stream(self, stream: AsyncIterable[str] | None) -> None:
        """Attach the output stream of the active process, or None to detach it.

        Raises ContractViolation if a stream arrives while no process is active.
        """
        if stream is not None:
            if self.process is None:
                raise ContractViolation(
                    f"Cannot set active stream on terminal {self.id}: no process to notify"
                )
            self._stream = stream
            self._stream_closed = False
            self.running = True
            self.process.events.publish(StreamAvailable(self.id, stream))
        else:
            self._stream = None
            self._stream_closed = True
            self.running = False

    def shell_execution_complete(self, exit_details: ExitCodeDetails) -> None:
        """Record that the terminal finished executing the active process's command."""
        self.running = False

        process = self.process
        if process is None:
            return

        if process.has_unretrieved_output():
            self.completed_processes.insert(0, process)

        process.events.publish(ExecutionComplete(self.id, exit_details))
        self.process = None

    def get_last_command(self) -> str:
        """Command of the active process, else of the most recently completed one."""
        if self.process is not None:
            return self.process.command or ""
        if self.completed_processes:
            return self.completed_processes[0].command or ""
        return ""

    def clean_completed_process_queue(self) -> None:
        self.completed_processes = [p for p in self.completed_processes if p.has_unretrieved_output()]

    def get_processes_with_output(self) -> list[TerminalProcess]:
        """Completed processes still holding unread output, newest first (a copy)."""
        self.clean_completed_process_queue()
        return list(self.completed_processes)

    def command_stalled(self) -> bool:
        """True if the last command gave up waiting for shell integration.

        Its task has ended but the result will never settle, so busy stays set.
        """
        return self.busy and self._run_task is not None and self._run_task.done()

    def run_command(self, command: str) -> CommandHandle:
        """Submit a command. Must be called from inside a running event loop.

        The command executes once the terminal's shell integration is ready.
        If it isn't ready within the timeout, NoShellIntegration is published
        on the process and the result stays pending.
        """
        self.busy = True

        process = TerminalProcess(self.terminal, stream_timeout=self._stream_timeout)
        process.command = command
        self.process = process

        loop = asyncio.get_running_loop()
        result: asyncio.Future[CommandResult] = loop.create_future()

        def _on_continue(_event: Continue) -> None:
            self.busy = False
            if not result.done():
                result.set_result(CommandResult(command=command, exit_details=process.exit_details))

        def _on_error(event: ProcessFailed) -> None:
            logger.error(f"Error in terminal {self.id}: {event.error}")
            self.busy = False
            if not result.done():
                result.set_exception(event.error)

        process.events.subscribe(Continue, _on_continue, once=True)
        process.events.subscribe(ProcessFailed, _on_error, once=True)

        self._run_task = loop.create_task(self._run_when_ready(process, command))
        return CommandHandle(process=process, result=result)

    async def _run_when_ready(self, process: TerminalProcess, command: str) -> None:
        try:
            await _wait_until(
                lambda: self.terminal.shell_integration_ready,
                timeout=self._shell_integration_timeout,
                interval=self._poll_interval,
            )
        except asyncio.TimeoutError:
            logger.info(f"Terminal {self.id}: shell integration not available, command execution aborted")
            process.events.publish(NoShellIntegration())
            return

        await process.run(command)

    @staticmethod
    async def get_terminal_contents(
        selection: SelectionService,
        clipboard: Clipboard,
        commands_back: int = -1,
    ) -> str:
        """Scrape the pane through selection + clipboard. See contents.get_terminal_contents."""
        return await get_terminal_contents(selection, clipboard, commands_back)
