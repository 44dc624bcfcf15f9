"""Value types shared by sessions, processes and terminal backends."""

import json
import signal
from dataclasses import asdict, dataclass

from typing_extensions import Self

# Signals that may leave a core file behind
_CORE_DUMP_SIGNALS = frozenset(
    {
        signal.SIGSEGV,
        signal.SIGBUS,
        signal.SIGFPE,
        signal.SIGILL,
        signal.SIGQUIT,
        signal.SIGABRT,
    }
)


@dataclass
class ExitCodeDetails:
    """How a shell execution ended."""

    exit_code: int | None = None
    signal: int | None = None  # Set when the shell reported 128 + N
    signal_name: str | None = None
    core_dump_possible: bool = False

    @classmethod
    def from_exit_code(cls, exit_code: int | None) -> Self:
        """Interpret a shell exit status, decoding 128 + N as "killed by signal N"."""
        if exit_code is None or exit_code <= 128:
            return cls(exit_code=exit_code)

        signum = exit_code - 128
        try:
            sig = signal.Signals(signum)
        except ValueError:
            return cls(exit_code=exit_code, signal=signum, signal_name=f"Unknown Signal ({signum})")
        return cls(
            exit_code=exit_code,
            signal=signum,
            signal_name=sig.name,
            core_dump_possible=sig in _CORE_DUMP_SIGNALS,
        )

    def describe(self) -> str:
        """Short human-readable status, e.g. "exit code 0" or "terminated by SIGINT"."""
        if self.signal_name:
            text = f"terminated by {self.signal_name}"
            if self.core_dump_possible:
                text += " (core dump possible)"
            return text
        if self.exit_code is None:
            return "exit code unknown"
        return f"exit code {self.exit_code}"

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        """Create from dict, handling missing fields gracefully."""
        return cls(
            exit_code=data.get("exit_code"),
            signal=data.get("signal"),
            signal_name=data.get("signal_name"),
            core_dump_possible=data.get("core_dump_possible", False),
        )


@dataclass
class CommandResult:
    """Settled outcome of a command submitted through a session."""

    command: str
    exit_details: ExitCodeDetails | None = None

    @property
    def succeeded(self) -> bool:
        return self.exit_details is not None and self.exit_details.exit_code == 0
