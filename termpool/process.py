"""A single command executing inside a terminal session.

The process asks its terminal to execute the command, then waits for the
owning session to hand it the output stream (StreamAvailable) and, later, the
exit status (ExecutionComplete). Output is buffered so it can be harvested
after the fact; last_retrieved_index marks how much the caller has seen.
"""

from __future__ import annotations

import asyncio

from .errors import ProcessError, TermpoolError
from .events import (
    Completed,
    Continue,
    ExecutionComplete,
    NoShellIntegration,
    NotificationChannel,
    OutputLine,
    ProcessFailed,
    StreamAvailable,
)
from .logging_config import get_logger
from .terminal import ShellTerminal
from .types import ExitCodeDetails

logger = get_logger(__name__)

STREAM_TIMEOUT = 3.0  # Max wait for the session to attach a stream after execute


def _as_termpool_error(error: Exception) -> TermpoolError:
    """Errors from outside termpool (OSError, ...) are reported as ProcessError."""
    if isinstance(error, TermpoolError):
        return error
    wrapped = ProcessError(str(error) or type(error).__name__)
    wrapped.__cause__ = error
    return wrapped


class TerminalProcess:
    """One command's lifecycle: execute, stream, complete."""

    def __init__(self, terminal: ShellTerminal, stream_timeout: float = STREAM_TIMEOUT):
        self.command: str = ""
        self.events = NotificationChannel()
        self.full_output: str = ""
        self.last_retrieved_index: int = 0
        self.is_hot: bool = False  # True while output is still streaming
        self.exit_details: ExitCodeDetails | None = None
        self._terminal = terminal
        self._stream_timeout = stream_timeout
        self._partial_line: str = ""

    async def run(self, command: str) -> None:
        """Execute the command and publish its output until completion.

        Never raises: failures are published as ProcessFailed.
        """
        self.command = command
        stream_ready = self.events.next_event(StreamAvailable)
        completed = self.events.next_event(ExecutionComplete)

        try:
            await self._terminal.execute_command(command)

            try:
                available = await asyncio.wait_for(stream_ready, timeout=self._stream_timeout)
            except asyncio.TimeoutError:
                logger.info(f"No output stream for '{command}' after {self._stream_timeout}s")
                completed.cancel()
                self.events.publish(NoShellIntegration())
                self.events.publish(Completed(self.full_output))
                self.events.publish(Continue())
                return

            self.is_hot = True
            async for chunk in available.stream:
                self._append_output(chunk)

            complete = await completed
            self.exit_details = complete.exit_details
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.is_hot = False
            self.events.publish(ProcessFailed(_as_termpool_error(e)))
            return

        self.is_hot = False
        if self._partial_line:
            self.events.publish(OutputLine(self._partial_line))
            self._partial_line = ""
        self.events.publish(Completed(self.full_output))
        self.events.publish(Continue())

    def _append_output(self, chunk: str) -> None:
        self.full_output += chunk
        lines = (self._partial_line + chunk).split("\n")
        self._partial_line = lines.pop()
        for line in lines:
            self.events.publish(OutputLine(line.rstrip("\r")))

    def has_unretrieved_output(self) -> bool:
        return self.last_retrieved_index < len(self.full_output)

    def get_unretrieved_output(self) -> str:
        """Return output not yet retrieved and mark it retrieved.

        While the process is hot, a trailing partial line is held back until
        it is terminated.
        """
        end = len(self.full_output)
        if self.is_hot:
            newline = self.full_output.rfind("\n", self.last_retrieved_index)
            end = newline + 1 if newline >= 0 else self.last_retrieved_index
        output = self.full_output[self.last_retrieved_index : end]
        self.last_retrieved_index = end
        return output
