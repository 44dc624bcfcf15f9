"""Collaborator protocols for the host terminal.

A ShellTerminal runs commands and reports their lifecycle to its listeners:
set_active_stream(stream) once output starts flowing, set_active_stream(None)
when it stops, and shell_execution_complete(details) when the command ends.
"""

from __future__ import annotations

from collections.abc import AsyncIterable
from typing import Protocol

from .types import ExitCodeDetails


class ShellExecutionListener(Protocol):
    def set_active_stream(self, stream: AsyncIterable[str] | None) -> None: ...

    def shell_execution_complete(self, exit_details: ExitCodeDetails) -> None: ...


class SelectionService(Protocol):
    """Selection primitives of the terminal pane."""

    async def select_all(self) -> None: ...

    async def select_to_previous_command(self) -> None: ...

    async def copy_selection(self) -> None: ...

    async def clear_selection(self) -> None: ...


class Clipboard(Protocol):
    async def read_text(self) -> str: ...

    async def write_text(self, text: str) -> None: ...


class ShellTerminal(Protocol):
    @property
    def shell_integration_ready(self) -> bool: ...

    @property
    def selection(self) -> SelectionService: ...

    async def execute_command(self, command: str) -> None: ...

    def add_listener(self, listener: ShellExecutionListener) -> None: ...

    async def close(self) -> None: ...
