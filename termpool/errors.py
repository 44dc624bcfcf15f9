"""Error taxonomy for terminal sessions and their backends.

Contract violations are programming errors and propagate to the caller.
Everything a tool call can reasonably recover from is classified by
classify_exception() so the agent gets a consistent message.
"""

import asyncio
from dataclasses import dataclass


class TermpoolError(Exception):
    """Base class for termpool errors."""


class ContractViolation(TermpoolError, RuntimeError):
    """A session method was called out of sequence (e.g. a stream with no process)."""


class ProcessError(TermpoolError):
    """The command's process reported a failure."""


class TmuxError(TermpoolError, RuntimeError):
    """A tmux invocation exited non-zero."""

    def __init__(self, message: str, returncode: int | None = None):
        super().__init__(message)
        self.returncode = returncode


@dataclass
class ErrorInfo:
    """Structured error classification."""

    category: str  # "contract", "tmux", "timeout", "process", "unknown"
    text: str
    recoverable: bool


def classify_exception(error: BaseException) -> ErrorInfo:
    """Classify an exception raised while driving a session."""
    text = str(error) or type(error).__name__

    if isinstance(error, ContractViolation):
        return ErrorInfo(category="contract", text=text, recoverable=False)
    if isinstance(error, TmuxError):
        return ErrorInfo(category="tmux", text=text, recoverable=True)
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return ErrorInfo(category="timeout", text=text, recoverable=True)
    if isinstance(error, ProcessError):
        return ErrorInfo(category="process", text=text, recoverable=True)

    if "timeout" in text.lower() or "timed out" in text.lower():
        return ErrorInfo(category="timeout", text=text, recoverable=True)
    return ErrorInfo(category="unknown", text=text, recoverable=True)
