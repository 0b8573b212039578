"""
Host adapter - The narrow contract between the engine and its embedder.

The engine never talks to an editor directly. Everything it needs from the
environment (working directory, window identifiers, display width of a
string, user events) goes through a Host. LocalHost is a process-local
implementation suitable for terminals and tests.
"""

import asyncio
import os
import unicodedata
from typing import Callable, Optional, Protocol, runtime_checkable

from loguru import logger


@runtime_checkable
class Host(Protocol):
    """Services the engine requires from the embedding application."""

    async def cwd(self) -> str: ...
    async def buf_name(self) -> str: ...
    async def buf_nr(self) -> int: ...
    async def mode(self) -> str: ...
    async def win_id(self) -> int: ...
    async def goto_win(self, win_id: int) -> None: ...
    async def tab_nr(self) -> int: ...
    async def display_width(self, text: str) -> int: ...
    async def expand(self, text: str) -> str: ...
    async def in_cmdwin(self) -> bool: ...
    async def emit(self, event: str) -> None: ...
    async def lazy_redraw(self, name: str) -> None: ...


def display_width(text: str) -> int:
    """Terminal cell width of text (wide East Asian characters count 2)."""
    width = 0
    for char in text:
        if unicodedata.combining(char):
            continue
        width += 2 if unicodedata.east_asian_width(char) in ("W", "F") else 1
    return width


class LocalHost:
    """
    Host backed by the current process.

    Events are logged and forwarded to registered listeners. Lazy redraws
    are handed to a callback, normally App.redraw, on the next loop turn.
    """

    def __init__(self, cwd: Optional[str] = None):
        self._cwd = cwd
        self._win_id = 1000
        self._listeners: list[Callable[[str], None]] = []
        self.on_lazy_redraw: Optional[Callable[[str], object]] = None
        self.events: list[str] = []
        self._pending: set[asyncio.Task] = set()

    async def cwd(self) -> str:
        return self._cwd or os.getcwd()

    async def buf_name(self) -> str:
        return ""

    async def buf_nr(self) -> int:
        return 0

    async def mode(self) -> str:
        return "n"

    async def win_id(self) -> int:
        return self._win_id

    async def goto_win(self, win_id: int) -> None:
        self._win_id = win_id

    async def tab_nr(self) -> int:
        return 1

    async def display_width(self, text: str) -> int:
        return display_width(text)

    async def expand(self, text: str) -> str:
        return os.path.expandvars(os.path.expanduser(text))

    async def in_cmdwin(self) -> bool:
        return False

    def add_listener(self, listener: Callable[[str], None]) -> None:
        self._listeners.append(listener)

    async def emit(self, event: str) -> None:
        logger.debug(f"Event: {event}")
        self.events.append(event)
        for listener in self._listeners:
            listener(event)

    async def lazy_redraw(self, name: str) -> None:
        if self.on_lazy_redraw is None:
            logger.debug(f"Lazy redraw requested for '{name}' but no handler is set")
            return
        asyncio.get_running_loop().call_soon(self._run_lazy_redraw, name)

    def _run_lazy_redraw(self, name: str) -> None:
        result = self.on_lazy_redraw(name)
        if asyncio.iscoroutine(result):
            task = asyncio.ensure_future(result)
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
