"""
Gather state - Per-source streaming item buffer with cancellation.

A GatherState wraps one invocation of a source. A pump task pulls batches
from the source, appends them to the accumulated items and forwards them
into a bounded queue read by the engine. Cancellation flows through a tree
of CancelScopes: one root per session, one child per GatherState.

State machine:
    STREAMING -> DONE      the source finished or failed
    STREAMING -> ABORTED   a quit, or a refresh that targets this source
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Callable, Iterable, Optional

from loguru import logger

from sift.types import SiftItem
from sift.utils.helpers import report_error

DEFAULT_BUFFER_SIZE = 64


class AbortReason(Exception):
    """Base class of the reasons a scope can be aborted with."""

    type = ""

    def applies_to(self, source_index: int) -> bool:
        return True


class QuitAbortReason(AbortReason):
    type = "quit"


class RefreshAbortReason(AbortReason):
    type = "cancelToRefresh"

    def __init__(self, refresh_indexes: Iterable[int] = ()):
        super().__init__()
        self.refresh_indexes = tuple(refresh_indexes)

    def applies_to(self, source_index: int) -> bool:
        return is_refresh_target(source_index, self.refresh_indexes)


def is_refresh_target(source_index: int, refresh_indexes: Iterable[int]) -> bool:
    """An empty index set targets every source."""
    refresh_indexes = tuple(refresh_indexes)
    return not refresh_indexes or source_index in refresh_indexes


class CancelScope:
    """
    A node of the cancellation tree.

    abort() on a scope always applies. When a parent aborts, each child
    consults its accepts() filter, so a refresh aimed at other sources
    leaves a child untouched.
    """

    def __init__(
        self,
        parent: Optional["CancelScope"] = None,
        accepts: Optional[Callable[[AbortReason], bool]] = None,
    ):
        self.parent: Optional[CancelScope] = None
        self.children: list[CancelScope] = []
        self.reason: Optional[AbortReason] = None
        self._accepts = accepts
        self._callbacks: list[Callable[[AbortReason], Any]] = []
        if parent is not None:
            self.reparent(parent)

    @property
    def aborted(self) -> bool:
        return self.reason is not None

    def add_callback(self, callback: Callable[[AbortReason], Any]) -> None:
        if self.aborted:
            callback(self.reason)
        else:
            self._callbacks.append(callback)

    def abort(self, reason: Optional[AbortReason] = None) -> None:
        if self.aborted:
            return
        self.reason = reason or AbortReason()
        for callback in self._callbacks:
            callback(self.reason)
        self._callbacks.clear()
        for child in list(self.children):
            child._propagate(self.reason)

    def _propagate(self, reason: AbortReason) -> None:
        if self._accepts is None or self._accepts(reason):
            self.abort(reason)

    def detach(self) -> None:
        if self.parent is not None:
            if self in self.parent.children:
                self.parent.children.remove(self)
            self.parent = None

    def release(self) -> None:
        """Leave the tree and drop callbacks once there is nothing to cancel."""
        self._callbacks.clear()
        self.detach()

    def reparent(self, new_parent: "CancelScope") -> None:
        """Move under new_parent; no-op once this scope is aborted."""
        if self.aborted:
            return
        self.detach()
        self.parent = new_parent
        new_parent.children.append(self)
        if new_parent.aborted:
            self._propagate(new_parent.reason)


@dataclass
class AvailableSourceInfo:
    source_index: int
    source: Any
    source_options: dict
    source_params: dict


class GatherStatus(Enum):
    STREAMING = "streaming"
    DONE = "done"
    ABORTED = "aborted"


class _Closed:
    pass


_CLOSED = _Closed()


class GatherState:
    """
    Streams one source invocation into an append-only item list.

    Batches forwarded to the output queue are never retracted. An abort
    stops the producer but not the consumer: batches already queued stay
    readable and stream() ends only after they are drained.
    """

    def __init__(
        self,
        source_info: AvailableSourceInfo,
        batches: AsyncIterator[list[SiftItem]],
        parent: Optional[CancelScope] = None,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
    ):
        self.source_info = source_info
        self._items: list[SiftItem] = []
        self._status = GatherStatus.STREAMING
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=buffer_size)
        self._output_closed = False
        self._finished = asyncio.Event()

        index = source_info.source_index
        self.scope = CancelScope(parent, accepts=lambda reason: reason.applies_to(index))

        self._task = asyncio.ensure_future(self._pump(batches))
        self._task.add_done_callback(self._on_pump_done)
        self.scope.add_callback(self._on_abort)

    @property
    def items(self) -> list[SiftItem]:
        """Accumulated items; callers must treat the list as read-only."""
        return self._items

    @property
    def status(self) -> GatherStatus:
        return self._status

    @property
    def is_done(self) -> bool:
        """True once no more items can arrive."""
        return self._status is not GatherStatus.STREAMING

    @property
    def cancelled(self) -> CancelScope:
        return self.scope

    def cancel(self, reason: Optional[AbortReason] = None) -> None:
        self.scope.abort(reason or QuitAbortReason())

    async def wait_done(self) -> None:
        await self._finished.wait()

    async def stream(self) -> AsyncIterator[list[SiftItem]]:
        """Yield forwarded batches until the output is closed and drained."""
        while True:
            if self._output_closed and self._queue.empty():
                return
            batch = await self._queue.get()
            if batch is _CLOSED:
                return
            yield batch

    async def read_all(self) -> None:
        async for _ in self.stream():
            pass

    async def _pump(self, batches: AsyncIterator[list[SiftItem]]) -> None:
        try:
            async for batch in batches:
                if not batch:
                    continue
                self._items.extend(batch)
                await self._queue.put(batch)
        finally:
            aclose = getattr(batches, "aclose", None)
            if aclose is not None:
                await aclose()

    def _on_abort(self, reason: AbortReason) -> None:
        logger.debug(
            f"Gather state {self.source_info.source_index} aborted: {reason.type}"
        )
        self._task.cancel()

    def _on_pump_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            self._status = (
                GatherStatus.ABORTED if self.scope.aborted else GatherStatus.DONE
            )
        else:
            error = task.exception()
            if error is not None:
                name = getattr(self.source_info.source, "name", "")
                report_error(f'source: {name} "gather()" failed', error)
            self._status = GatherStatus.DONE

        # The status is settled before the output reports closure
        self._close_output()
        self._finished.set()
        self.scope.release()

    def _close_output(self) -> None:
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            self._output_closed = True
