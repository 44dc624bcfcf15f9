"""CLI interface for termpool.

Entry point: termpool [--config-dir PATH] <subcommand> [args...]
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

DEFAULT_CONFIG_DIR = "~/.config/termpool"


async def _run_command(command: str, timeout: float) -> int:
    from .events import NoShellIntegration, OutputLine
    from .pool import init_session_pool, shutdown_session_pool

    pool = init_session_pool()
    try:
        session = await pool.create_session()
        handle = session.run_command(command)
        handle.process.events.subscribe(OutputLine, lambda event: print(event.line, flush=True))
        handle.process.events.subscribe(
            NoShellIntegration,
            lambda _event: print("Error: shell integration not available.", file=sys.stderr),
        )
        try:
            result = await asyncio.wait_for(handle.result, timeout=timeout)
        except asyncio.TimeoutError:
            print(f"Error: command still running after {timeout:g}s.", file=sys.stderr)
            return 124
        if result.exit_details is None or result.exit_details.exit_code is None:
            return 1
        return result.exit_details.exit_code
    finally:
        await shutdown_session_pool()


async def _read_contents(session_name: str, commands_back: int) -> str:
    from .config import get_pool_config
    from .contents import get_terminal_contents
    from .tmux import TmuxClipboard, TmuxTerminal

    container = get_pool_config()["container"]
    clipboard = TmuxClipboard(container)
    terminal = TmuxTerminal(session_name, container=container, clipboard=clipboard)
    return await get_terminal_contents(terminal.selection, clipboard, commands_back)


# --- Subcommands ---


def cmd_run(args):
    """Run a command in a fresh session and exit with its exit code."""
    sys.exit(asyncio.run(_run_command(args.shell_command, args.timeout)))


def cmd_contents(args):
    """Print the extracted contents of an existing tmux session."""
    from .errors import TmuxError

    try:
        contents = asyncio.run(_read_contents(args.session, args.commands_back))
    except TmuxError as e:
        print(f"Error: {e}")
        sys.exit(1)
    print(contents)


def main():
    from . import config
    from .logging_config import setup_process_logging

    parser = argparse.ArgumentParser(
        prog="termpool",
        description="Pool of interactive shell sessions for agents",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config-dir", "-c", help="Configuration directory (default: ~/.config/termpool)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log debug output to stderr")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run a command in a new terminal session")
    run_parser.add_argument("shell_command", help="Command line to execute")
    run_parser.add_argument("--timeout", "-t", type=float, default=60.0, help="Seconds to wait for completion")
    run_parser.set_defaults(func=cmd_run)

    contents_parser = subparsers.add_parser("contents", help="Print output scraped from a terminal pane")
    contents_parser.add_argument("--session", "-s", default="termpool_1", help="tmux session name")
    contents_parser.add_argument(
        "--commands-back", "-n", type=int, default=-1, help="Commands to include (-1 for everything)"
    )
    contents_parser.set_defaults(func=cmd_contents)

    args = parser.parse_args()

    config_arg = args.config_dir or os.environ.get("TERMPOOL_CONFIG_DIR") or DEFAULT_CONFIG_DIR
    config.init(Path(config_arg).expanduser().resolve())
    setup_process_logging("cli", level=logging.DEBUG if args.verbose else logging.WARNING, console=True, file=False)

    args.func(args)


if __name__ == "__main__":
    main()
