"""Terminal tools: execute, read_output, terminal_contents, list_sessions.

The agent runs commands through these tools. Output that arrives after a
tool call returns stays queued on its session until read_output() drains it.
"""

from __future__ import annotations

import asyncio
from typing import Any

from claude_agent_sdk import tool

from ..errors import classify_exception
from ..events import NoShellIntegration
from ..logging_config import get_logger
from ..pool import get_session_pool
from ..session import TerminalSession

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 30
MAX_TIMEOUT = 600


@tool(
    "execute_command",
    """Run a shell command in an idle terminal and wait for it to finish.

Returns the command's output and exit status. If the command is still running
when the timeout expires, returns what it has printed so far plus the terminal
number; call read_output(session=N) later to collect the rest.

The timeout is capped at 600 seconds.""",
    {
        "type": "object",
        "properties": {
            "command": {"type": "string"},
            "timeout": {"type": "number"},
        },
        "required": ["command"],
    },
)
async def execute_tool(args: dict[str, Any]) -> dict[str, Any]:
    """Run a command and wait for its result."""
    command = args.get("command", "")
    if not command.strip():
        return _error("command is required")
    timeout = min(float(args.get("timeout", DEFAULT_TIMEOUT)), MAX_TIMEOUT)

    pool = get_session_pool()
    try:
        session = await pool.get_or_create_session()
    except Exception as e:
        return _error(f"Failed to open terminal: {classify_exception(e).text}")

    handle = session.run_command(command)
    no_integration = handle.process.events.next_event(NoShellIntegration)

    await asyncio.wait([handle.result, no_integration], timeout=timeout, return_when=asyncio.FIRST_COMPLETED)

    if handle.result.done():
        no_integration.cancel()
        try:
            result = handle.result.result()
        except Exception as e:
            info = classify_exception(e)
            return _error(f"Command failed in terminal {session.id} ({info.category}): {info.text}")
        output = handle.process.get_unretrieved_output()
        session.clean_completed_process_queue()
        status = result.exit_details.describe() if result.exit_details else "exit status unknown"
        return _text(_format_output(session, output, f"Command finished ({status})"))

    if no_integration.done():
        return _error(
            f"Terminal {session.id} has no shell integration; the command's output cannot be tracked. "
            f"Use terminal_contents(session={session.id}) to read the screen."
        )

    no_integration.cancel()
    logger.warning(f"Terminal {session.id}: '{command}' still running after {timeout}s")
    output = handle.process.get_unretrieved_output()
    return _text(
        _format_output(
            session,
            output,
            f"Command still running after {timeout:g}s. Call read_output(session={session.id}) to collect more",
        )
    )


@tool(
    "read_output",
    """Read output from a terminal that you haven't seen yet.

Includes output of commands that finished after execute_command() returned
and new output of the command still running. Output is returned once.""",
    {
        "type": "object",
        "properties": {
            "session": {"type": "integer"},
        },
        "required": ["session"],
    },
)
async def read_output_tool(args: dict[str, Any]) -> dict[str, Any]:
    """Drain unread output from a session."""
    session_id = args.get("session", 0)
    pool = get_session_pool()
    session = pool.get_session(session_id)
    if session is None:
        return _error(f"Terminal {session_id} does not exist.")

    output = pool.get_unretrieved_output(session_id)
    if session.busy:
        header = f"Still running: {session.get_last_command()}"
    else:
        header = "Idle"
    return _text(_format_output(session, output, header))


@tool(
    "terminal_contents",
    """Read the text currently shown in a terminal.

commands_back=-1 (default) reads the whole scrollback; a positive number reads
only the last N commands and their output. Use this when a command's output
could not be tracked (e.g. interactive programs).""",
    {
        "type": "object",
        "properties": {
            "session": {"type": "integer"},
            "commands_back": {"type": "integer"},
        },
        "required": ["session"],
    },
)
async def terminal_contents_tool(args: dict[str, Any]) -> dict[str, Any]:
    """Scrape a terminal's pane."""
    session_id = args.get("session", 0)
    commands_back = args.get("commands_back", -1)
    pool = get_session_pool()
    session = pool.get_session(session_id)
    if session is None:
        return _error(f"Terminal {session_id} does not exist.")

    try:
        contents = await TerminalSession.get_terminal_contents(
            session.terminal.selection, pool.clipboard, commands_back
        )
    except Exception as e:
        return _error(f"Failed to read terminal {session_id}: {classify_exception(e).text}")
    return _text(contents or "(no content)")


@tool(
    "list_sessions",
    """List open terminals with their state and last command.""",
    {},
)
async def list_sessions_tool(args: dict[str, Any]) -> dict[str, Any]:
    """Summarize all sessions."""
    pool = get_session_pool()
    if not pool.sessions:
        return _text("No terminals open.")

    parts = []
    for session_id in sorted(pool.sessions):
        session = pool.sessions[session_id]
        state = "running" if session.running else "busy" if session.busy else "idle"
        unread = " (unread output)" if session in pool.sessions_with_output() else ""
        last = session.get_last_command() or "-"
        parts.append(f"[terminal {session_id}] {state}{unread}, last command: {last}")
    return _text("\n".join(parts))


def _format_output(session: TerminalSession, output: str, header: str) -> str:
    output = output.rstrip("\n")
    if not output:
        return f"[terminal {session.id}] {header}, no output."
    return f"[terminal {session.id}] {header}:\n{output}"


def _text(text: str) -> dict[str, Any]:
    return {"content": [{"type": "text", "text": text}]}


def _error(text: str) -> dict[str, Any]:
    return {"content": [{"type": "text", "text": f"Error: {text}"}], "is_error": True}
