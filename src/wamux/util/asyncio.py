from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Coroutine, Hashable
from dataclasses import dataclass, field
from typing import Any, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


def _log_task_failure(task: asyncio.Task[Any]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            "event=task_failed task=%s error=%r", task.get_name(), exc, exc_info=exc
        )


def ensure_task(coro: Coroutine[Any, Any, T], *, name: str | None = None) -> asyncio.Task[T]:
    """
    Schedule `coro` as a background task whose failure is logged, not lost.
    """

    t: asyncio.Task[T] = asyncio.create_task(coro, name=name)
    t.add_done_callback(_log_task_failure)
    return t


async def cancel_suppress(task: asyncio.Task[Any] | None) -> None:
    if task is None or task.done():
        return
    # A task cannot await its own cancellation.
    if task is asyncio.current_task():
        return
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


@dataclass(slots=True)
class _KeyedEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class KeyedLock:
    """
    One `asyncio.Lock` per key.

    An entry lives only while some task holds or waits for it, so the map does
    not grow with every key ever seen.
    """

    def __init__(self) -> None:
        self._entries: dict[Hashable, _KeyedEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    @contextlib.asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        entry = self._entries.get(key)
        if entry is None:
            entry = _KeyedEntry()
            self._entries[key] = entry
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0 and self._entries.get(key) is entry:
                del self._entries[key]
