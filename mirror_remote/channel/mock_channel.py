"""In-memory channel used for local simulation and tests."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

from mirror_remote.channel.base import NotificationChannel
from mirror_remote.channel.protocol import Notification

_SENTINEL = object()


class MockChannel(NotificationChannel):
    """Queue-backed channel that can be fed by tests or debug tooling."""

    name = "mock"
    transport = "in-memory"

    def __init__(self) -> None:
        self._running = False
        self._inbound: asyncio.Queue[Notification | object] = asyncio.Queue()
        self._outbound: asyncio.Queue[Notification] = asyncio.Queue()

    async def start(self) -> None:
        self._running = True

    async def stop(self) -> None:
        self._running = False
        await self._inbound.put(_SENTINEL)

    async def recv_notifications(self) -> AsyncIterator[Notification]:
        while self._running:
            item = await self._inbound.get()
            if item is _SENTINEL:
                break
            yield item

    async def send_notification(self, notification: Notification) -> None:
        await self._outbound.put(notification)

    async def inject(self, name: str, payload: Any = None) -> Notification:
        """Push a notification as if the mirror process had sent it."""
        notification = Notification(name=name, payload=payload)
        await self._inbound.put(notification)
        return notification

    async def next_sent(self, timeout_s: float = 1.0) -> Notification:
        """Await next outbound notification sent by the runtime."""
        return await asyncio.wait_for(self._outbound.get(), timeout=timeout_s)

    def sent_notifications(self) -> list[Notification]:
        """Drain all currently queued outbound notifications."""
        items: list[Notification] = []
        while True:
            try:
                items.append(self._outbound.get_nowait())
            except asyncio.QueueEmpty:
                break
        return items
