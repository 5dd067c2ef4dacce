"""Deferred responses waiting for the next state snapshot from the mirror."""

from __future__ import annotations

import asyncio
import inspect
import itertools
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from loguru import logger

SnapshotCallback = Callable[[Any], None]


@dataclass(slots=True, eq=False)
class Waiter:
    """A pending caller resolved by snapshot arrival or by its timer, whichever fires first."""

    waiter_id: int
    callback: SnapshotCallback
    resolved: bool = False
    timer: asyncio.TimerHandle | None = None

    def run(self, snapshot: Any) -> bool:
        """Resolve once. Returns False if an earlier path already resolved it."""
        if self.resolved:
            return False
        self.resolved = True
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None
        try:
            self.callback(snapshot)
        except Exception:
            logger.exception(f"waiter {self.waiter_id} callback failed")
        return True


class DeferredResponseRegistry:
    """Registry of callers waiting for fresh mirror state.

    All methods must be called on the event loop thread.
    """

    def __init__(
        self,
        *,
        request_refresh: Callable[[], Any],
        current_snapshot: Callable[[], Any],
        default_timeout_ms: int = 3000,
    ) -> None:
        self._request_refresh = request_refresh
        self._current_snapshot = current_snapshot
        self.default_timeout_ms = max(0, int(default_timeout_ms))
        self._pending: list[Waiter] = []
        self._ids = itertools.count(1)
        self._refresh_tasks: set[asyncio.Task[Any]] = set()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def await_fresh_state(self, on_ready: SnapshotCallback, timeout_ms: int | None = None) -> Waiter:
        """Register a waiter, ask the mirror for a refresh and arm the fallback timer."""
        loop = asyncio.get_running_loop()
        timeout = self.default_timeout_ms if timeout_ms is None else max(0, int(timeout_ms))
        waiter = Waiter(waiter_id=next(self._ids), callback=on_ready)
        self._pending.append(waiter)
        self._emit_refresh(loop)
        waiter.timer = loop.call_later(timeout / 1000.0, self._on_timeout, waiter)
        return waiter

    async def wait_for_fresh_state(self, timeout_ms: int | None = None) -> Any:
        """Coroutine form of await_fresh_state returning the delivered snapshot."""
        loop = asyncio.get_running_loop()
        future: asyncio.Future[Any] = loop.create_future()

        def _deliver(snapshot: Any) -> None:
            if not future.done():
                future.set_result(snapshot)

        self.await_fresh_state(_deliver, timeout_ms)
        return await future

    def resolve_all(self, snapshot: Any) -> int:
        """Resolve every pending waiter with snapshot. Returns how many callbacks fired."""
        pending, self._pending = self._pending, []
        fired = 0
        for waiter in pending:
            if waiter.run(snapshot):
                fired += 1
        return fired

    def _on_timeout(self, waiter: Waiter) -> None:
        if waiter.resolved:
            return
        waiter.timer = None
        try:
            self._pending.remove(waiter)
        except ValueError:
            pass
        logger.debug(f"waiter {waiter.waiter_id} timed out, answering with last known state")
        waiter.run(self._current_snapshot())

    def _emit_refresh(self, loop: asyncio.AbstractEventLoop) -> None:
        try:
            result = self._request_refresh()
        except Exception as e:
            logger.warning(f"refresh request failed: {e}")
            return
        if inspect.isawaitable(result):
            task = loop.create_task(self._await_refresh(result))
            self._refresh_tasks.add(task)
            task.add_done_callback(self._refresh_tasks.discard)

    @staticmethod
    async def _await_refresh(result: Any) -> None:
        try:
            await result
        except Exception as e:
            logger.warning(f"refresh request failed: {e}")
