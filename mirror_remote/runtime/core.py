"""Runtime core: owns the latest mirror snapshot and the notification loop."""

from __future__ import annotations

import asyncio
import contextlib
import json
import time
from collections.abc import Callable, Coroutine
from pathlib import Path
from typing import Any

from loguru import logger

from mirror_remote.api.actions import ActionRequest
from mirror_remote.channel.base import NotificationChannel
from mirror_remote.channel.protocol import Notification, NotificationType
from mirror_remote.runtime.waiters import DeferredResponseRegistry, SnapshotCallback, Waiter
from mirror_remote.utils.helpers import get_ip_addresses


class RemoteRuntimeCore:
    """Bridges the notification channel, the waiter registry and the action dispatcher."""

    def __init__(
        self,
        *,
        channel: NotificationChannel,
        settings_path: Path,
        waiter_timeout_ms: int = 3000,
        renderer: Any | None = None,
        ip_addresses_fn: Callable[[], list[str]] = get_ip_addresses,
    ) -> None:
        self.channel = channel
        self.settings_path = Path(settings_path)
        self.renderer = renderer
        self._ip_addresses_fn = ip_addresses_fn
        self.snapshot: Any = None
        self.registry = DeferredResponseRegistry(
            request_refresh=self.request_refresh,
            current_snapshot=self.current_snapshot,
            default_timeout_ms=waiter_timeout_ms,
        )
        self.dispatcher: Any | None = None
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[Any]] = set()
        self._started_at = 0.0
        self._last_snapshot_at = 0.0
        self._notifications_in = 0

    def attach_dispatcher(self, dispatcher: Any) -> None:
        self.dispatcher = dispatcher

    def current_snapshot(self) -> Any:
        return self.snapshot

    async def start(self) -> None:
        if self._running:
            return
        await self.channel.start()
        self._running = True
        self._started_at = time.time()
        self._task = asyncio.create_task(self._consume())
        logger.info(f"Remote runtime started with channel={self.channel.name}")

    async def stop(self) -> None:
        self._running = False
        await self.channel.stop()
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        # answer everyone still waiting before going away
        self.registry.resolve_all(self.snapshot)
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        self._background.clear()

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        """Run coro in the background, keeping a reference and logging failures."""
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.opt(exception=error).warning(f"background task failed: {error}")

    async def send(self, name: NotificationType | str, payload: Any = None) -> None:
        await self.channel.send(name, payload)

    def request_refresh(self) -> Coroutine[Any, Any, None]:
        return self.send(NotificationType.UPDATE)

    def await_fresh_state(self, on_ready: SnapshotCallback, timeout_ms: int | None = None) -> Waiter:
        return self.registry.await_fresh_state(on_ready, timeout_ms)

    async def wait_for_fresh_state(self, timeout_ms: int | None = None) -> Any:
        return await self.registry.wait_for_fresh_state(timeout_ms)

    async def _consume(self) -> None:
        async for notification in self.channel.recv_notifications():
            self._notifications_in += 1
            try:
                await self.handle_notification(notification)
            except Exception:
                logger.exception(f"failed to handle notification {notification.name}")

    async def handle_notification(self, notification: Notification) -> None:
        name = notification.name
        if name == NotificationType.CURRENT_STATUS:
            self.snapshot = notification.payload
            self._last_snapshot_at = time.time()
            fired = self.registry.resolve_all(notification.payload)
            if fired:
                logger.debug(f"snapshot delivered to {fired} waiter(s)")
            return
        if name == NotificationType.REQUEST_DEFAULT_SETTINGS:
            await self.load_default_settings()
            return
        if name == NotificationType.LANG:
            if self.renderer is not None:
                await asyncio.to_thread(self.renderer.load_translation, str(notification.payload or ""))
            await self.send(NotificationType.IP_ADDRESSES, self._ip_addresses_fn())
            return
        if name == NotificationType.REMOTE_ACTION:
            self._handle_remote_action(notification.payload)
            return
        logger.debug(f"ignoring notification {name}")

    def _handle_remote_action(self, payload: Any) -> None:
        if self.dispatcher is None:
            logger.warning("REMOTE_ACTION received but no dispatcher attached")
            return
        if not isinstance(payload, dict):
            logger.warning(f"REMOTE_ACTION payload must be an object, got {type(payload).__name__}")
            return
        request = ActionRequest.from_payload(payload)
        if self.dispatcher.resolve(request.action) is None:
            logger.warning(f"unknown REMOTE_ACTION: {request.original_input()}")
            return
        # handlers may wait on CURRENT_STATUS, which this loop delivers
        self.spawn(self.dispatcher.dispatch(request))

    async def save_default_settings(self) -> None:
        """Persist the current snapshot as the mirror's default settings."""
        text = json.dumps(self.snapshot, ensure_ascii=False)
        try:
            self.settings_path.parent.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(self.settings_path.write_text, text, encoding="utf-8")
        except OSError as e:
            logger.error(f"saving default settings to {self.settings_path} failed: {e}")
            return
        logger.info(f"saved default settings to {self.settings_path}")

    async def load_default_settings(self) -> Any:
        """Send previously saved default settings to the mirror, if any."""
        try:
            text = await asyncio.to_thread(self.settings_path.read_text, encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"reading default settings failed: {e}")
            return None
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning(f"default settings {self.settings_path} are not valid JSON: {e}")
            return None
        await self.send(NotificationType.DEFAULT_SETTINGS, data)
        return data

    def get_runtime_status(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "channel": self.channel.name,
            "uptime_s": round(time.time() - self._started_at, 1) if self._started_at else 0.0,
            "pending_waiters": self.registry.pending_count,
            "has_snapshot": self.snapshot is not None,
            "last_snapshot_at": self._last_snapshot_at or None,
            "notifications_in": self._notifications_in,
        }
