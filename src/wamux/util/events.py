from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)

Listener = Callable[..., Awaitable[None]] | Callable[..., None]
Predicate = Callable[..., bool]


class AsyncEventEmitter:
    """
    Async-friendly event emitter shared by sessions and transports.

    - `on(event, fn)` registers a listener (sync or async).
    - `emit(event, *args)` resolves matching waiters, then awaits listeners in
      registration order. A failing listener is logged and skipped; it never
      stops delivery to the others or propagates to the emitter.
    - `wait_for_future(event, predicate)` registers a one-shot waiter
      synchronously, so the caller cannot miss an emission that happens before
      it starts awaiting.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self._waiters: dict[str, list[tuple[Predicate | None, asyncio.Future[Any]]]] = (
            defaultdict(list)
        )

    def on(self, event: str, listener: Listener) -> None:
        self._listeners[event].append(listener)

    def wait_for_future(
        self, event: str, *, predicate: Predicate | None = None
    ) -> asyncio.Future[Any]:
        fut: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._waiters[event].append((predicate, fut))
        return fut

    def discard_waiter(self, event: str, fut: asyncio.Future[Any]) -> None:
        waiters = self._waiters.get(event)
        if not waiters:
            return
        kept = [(p, f) for (p, f) in waiters if f is not fut and not f.done()]
        if kept:
            self._waiters[event] = kept
        else:
            self._waiters.pop(event, None)

    def _resolve_waiters(self, event: str, args: tuple[Any, ...]) -> bool:
        waiters = self._waiters.get(event)
        if not waiters:
            return False

        resolved = False
        pending: list[tuple[Predicate | None, asyncio.Future[Any]]] = []
        for predicate, fut in waiters:
            if fut.done():
                continue
            try:
                matched = predicate is None or bool(predicate(*args))
            except Exception as e:
                fut.set_exception(e)
                continue
            if matched:
                fut.set_result(args[0] if len(args) == 1 else args)
                resolved = True
            else:
                pending.append((predicate, fut))

        if pending:
            self._waiters[event] = pending
        else:
            self._waiters.pop(event, None)
        return resolved

    async def emit(self, event: str, *args: Any) -> bool:
        triggered = self._resolve_waiters(event, args)

        for listener in list(self._listeners.get(event, [])):
            triggered = True
            try:
                res = listener(*args)
                if asyncio.iscoroutine(res):
                    await res
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("event=listener_failed name=%s listener=%r", event, listener)

        return triggered
