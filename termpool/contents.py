"""Recover command output from the terminal's visible text.

Terminal selection gives no command/output boundaries. When the last
rendered line is copied it usually also appears earlier in the buffer, so
the closest earlier line starting with that last line marks where the
output of interest begins.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from .terminal import Clipboard, SelectionService


def extract_command_output(captured: str, previous_clipboard: str) -> str:
    """Trim leading noise from copied terminal text.

    Returns "" if nothing new was copied (empty capture, or capture equal to
    what the clipboard already held). Otherwise drops the trailing anchor line
    and everything before the closest earlier line that starts with it.
    """
    contents = captured.strip()
    if not contents or contents == previous_clipboard:
        return ""

    lines = contents.split("\n")
    anchor = lines.pop().strip()
    if not anchor:
        return contents

    i = len(lines) - 1
    while i >= 0 and not lines[i].strip().startswith(anchor):
        i -= 1
    return "\n".join(lines[max(i, 0) :])


@asynccontextmanager
async def preserved_clipboard(clipboard: Clipboard) -> AsyncIterator[str]:
    """Yield the current clipboard text and write it back on exit, even on error."""
    saved = await clipboard.read_text()
    try:
        yield saved
    finally:
        await clipboard.write_text(saved)


async def get_terminal_contents(
    selection: SelectionService,
    clipboard: Clipboard,
    commands_back: int = -1,
) -> str:
    """Copy terminal text via the selection and return the extracted output.

    commands_back < 0 selects everything; otherwise the selection is extended
    back that many commands. The user's clipboard is left as it was found.
    """
    async with preserved_clipboard(clipboard) as saved:
        if commands_back < 0:
            await selection.select_all()
        else:
            for _ in range(commands_back):
                await selection.select_to_previous_command()

        await selection.copy_selection()
        await selection.clear_selection()

        captured = await clipboard.read_text()

    return extract_command_output(captured, saved)
