"""Session pool: numbered terminal sessions handed out to an agent.

Sessions are created on demand through a terminal factory (tmux by default)
and reused once idle. The pool is the listener wiring point: each session is
registered as the listener of its terminal, so the terminal's stream and
completion reports land on the right session.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from .config import get_pool_config
from .logging_config import get_logger
from .process import STREAM_TIMEOUT
from .session import SHELL_INTEGRATION_POLL_INTERVAL, SHELL_INTEGRATION_TIMEOUT, TerminalSession
from .terminal import Clipboard, ShellTerminal
from .tmux import CAPTURE_INTERVAL, SCROLLBACK_LINES, TmuxClipboard, TmuxTerminal

logger = get_logger(__name__)

MAX_SESSIONS = 20  # Maximum concurrent sessions

TerminalFactory = Callable[[int], Awaitable[ShellTerminal]]


def tmux_terminal_factory(
    prefix: str = "termpool",
    container: str | None = None,
    capture_interval: float = CAPTURE_INTERVAL,
    scrollback_lines: int = SCROLLBACK_LINES,
    clipboard: TmuxClipboard | None = None,
) -> TerminalFactory:
    """Factory creating one started tmux session per pool session id."""

    async def _create(session_id: int) -> ShellTerminal:
        terminal = TmuxTerminal(
            f"{prefix}_{session_id}",
            container=container,
            capture_interval=capture_interval,
            scrollback_lines=scrollback_lines,
            clipboard=clipboard,
        )
        await terminal.start()
        return terminal

    return _create


class SessionPool:
    """Manages numbered terminal sessions for one agent."""

    def __init__(
        self,
        terminal_factory: TerminalFactory | None = None,
        clipboard: Clipboard | None = None,
        max_sessions: int = MAX_SESSIONS,
        shell_integration_timeout: float = SHELL_INTEGRATION_TIMEOUT,
        poll_interval: float = SHELL_INTEGRATION_POLL_INTERVAL,
        stream_timeout: float = STREAM_TIMEOUT,
    ):
        if clipboard is None:
            clipboard = TmuxClipboard()
        if terminal_factory is None:
            terminal_factory = tmux_terminal_factory(clipboard=clipboard)
        self.clipboard = clipboard
        self.max_sessions = max_sessions
        self.sessions: dict[int, TerminalSession] = {}
        self._terminal_factory = terminal_factory
        self._shell_integration_timeout = shell_integration_timeout
        self._poll_interval = poll_interval
        self._stream_timeout = stream_timeout
        self._next_id = 1

    async def create_session(self, task_id: str | None = None) -> TerminalSession:
        if len(self.sessions) >= self.max_sessions:
            raise RuntimeError(f"Session limit reached ({self.max_sessions}).")

        session_id = self._next_id
        self._next_id += 1

        terminal = await self._terminal_factory(session_id)
        session = TerminalSession(
            session_id,
            terminal,
            shell_integration_timeout=self._shell_integration_timeout,
            poll_interval=self._poll_interval,
            stream_timeout=self._stream_timeout,
        )
        session.task_id = task_id
        terminal.add_listener(session)
        self.sessions[session_id] = session
        logger.info(f"Session {session_id}: created")
        return session

    async def get_or_create_session(self, task_id: str | None = None) -> TerminalSession:
        """Reuse an idle session (preferring one owned by task_id), else create one.

        A session is idle once its last command's result has settled and no
        output stream is attached. A failed command leaves its process in the
        slot until the next run_command() replaces it. Sessions whose terminal
        never reached shell integration are closed to free their slot.
        """
        await self.close_stalled_sessions()
        idle = [s for s in self.sessions.values() if not s.busy and not s.running]
        for session in idle:
            if task_id is not None and session.task_id == task_id:
                return session
        for session in idle:
            if session.task_id is None or task_id is None:
                session.task_id = task_id
                return session
        return await self.create_session(task_id)

    def get_session(self, session_id: int) -> TerminalSession | None:
        return self.sessions.get(session_id)

    def get_sessions(self, busy: bool) -> list[TerminalSession]:
        return [self.sessions[sid] for sid in sorted(self.sessions) if self.sessions[sid].busy == busy]

    def sessions_with_output(self) -> list[TerminalSession]:
        """Sessions holding output the agent hasn't read."""
        result = []
        for sid in sorted(self.sessions):
            session = self.sessions[sid]
            active = session.process is not None and session.process.has_unretrieved_output()
            if active or session.get_processes_with_output():
                result.append(session)
        return result

    def get_unretrieved_output(self, session_id: int) -> str:
        """Drain a session's unread output: queued processes oldest first, then the active one."""
        session = self.sessions.get(session_id)
        if session is None:
            return ""

        parts = []
        for process in reversed(session.get_processes_with_output()):
            output = process.get_unretrieved_output()
            if output:
                parts.append(output)
        if session.process is not None:
            output = session.process.get_unretrieved_output()
            if output:
                parts.append(output)
        session.clean_completed_process_queue()
        return "".join(parts)

    def is_process_hot(self, session_id: int) -> bool:
        session = self.sessions.get(session_id)
        return bool(session and session.process and session.process.is_hot)

    async def close_session(self, session_id: int) -> bool:
        session = self.sessions.pop(session_id, None)
        if session is None:
            return False
        await session.terminal.close()
        logger.info(f"Session {session_id}: closed")
        return True

    async def close_stalled_sessions(self) -> list[int]:
        """Close sessions stuck waiting for shell integration. Returns their ids."""
        stalled = [sid for sid in sorted(self.sessions) if self.sessions[sid].command_stalled()]
        for session_id in stalled:
            logger.info(f"Session {session_id}: no shell integration, closing")
            await self.close_session(session_id)
        return stalled

    async def close_all(self) -> None:
        for session_id in list(self.sessions):
            await self.close_session(session_id)


# Module-level reference to the running pool.
# Set by init_session_pool(), cleared by shutdown_session_pool().
# Tool functions access this via get_session_pool() (synchronous, never auto-creates).
_session_pool: SessionPool | None = None


def init_session_pool(pool: SessionPool | None = None) -> SessionPool:
    """Install the process-wide pool, built from the pool config unless one is given."""
    global _session_pool
    if pool is None:
        cfg = get_pool_config()
        clipboard = TmuxClipboard(cfg["container"])
        pool = SessionPool(
            terminal_factory=tmux_terminal_factory(
                prefix=cfg["session_prefix"],
                container=cfg["container"],
                capture_interval=cfg["capture_interval"],
                scrollback_lines=cfg["scrollback_lines"],
                clipboard=clipboard,
            ),
            clipboard=clipboard,
            max_sessions=cfg["max_sessions"],
            shell_integration_timeout=cfg["shell_integration_timeout"],
            poll_interval=cfg["shell_integration_poll_interval"],
            stream_timeout=cfg["stream_timeout"],
        )
    _session_pool = pool
    return pool


async def shutdown_session_pool() -> None:
    """Close every session and clear the pool."""
    global _session_pool
    if _session_pool is not None:
        await _session_pool.close_all()
        _session_pool = None


def get_session_pool() -> SessionPool:
    """Get the running pool. Raises if not initialized."""
    if _session_pool is None:
        raise RuntimeError("SessionPool not initialized; call init_session_pool() first")
    return _session_pool
