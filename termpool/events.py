"""Typed notifications published on a process's channel.

A session publishes StreamAvailable and ExecutionComplete to the process it
owns; the process publishes the rest for whoever holds its handle.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from .types import ExitCodeDetails

E = TypeVar("E")


@dataclass(frozen=True)
class StreamAvailable:
    session_id: int
    stream: AsyncIterable[str]


@dataclass(frozen=True)
class ExecutionComplete:
    session_id: int
    exit_details: ExitCodeDetails


@dataclass(frozen=True)
class OutputLine:
    line: str


@dataclass(frozen=True)
class Completed:
    output: str


@dataclass(frozen=True)
class Continue:
    pass


@dataclass(frozen=True)
class ProcessFailed:
    error: BaseException


@dataclass(frozen=True)
class NoShellIntegration:
    pass


class NotificationChannel:
    """Dispatches typed events to subscribers, synchronously and in subscription order."""

    def __init__(self):
        self._subscribers: dict[type, list[tuple[Callable[[Any], None], bool]]] = {}

    def subscribe(self, event_type: type[E], callback: Callable[[E], None], *, once: bool = False) -> None:
        self._subscribers.setdefault(event_type, []).append((callback, once))

    def unsubscribe(self, event_type: type[E], callback: Callable[[E], None]) -> None:
        entries = self._subscribers.get(event_type, [])
        self._subscribers[event_type] = [entry for entry in entries if entry[0] is not callback]

    def publish(self, event: object) -> None:
        entries = self._subscribers.get(type(event))
        if not entries:
            return
        # Drop one-shot subscribers before dispatch so re-entrant publishes can't fire them twice
        self._subscribers[type(event)] = [entry for entry in entries if not entry[1]]
        for callback, _once in entries:
            callback(event)

    def next_event(self, event_type: type[E]) -> asyncio.Future[E]:
        """Future resolved by the next event of this type. Must be called inside a running loop."""
        future: asyncio.Future[E] = asyncio.get_running_loop().create_future()

        def _resolve(event: E) -> None:
            if not future.done():
                future.set_result(event)

        self.subscribe(event_type, _resolve, once=True)
        return future
