"""Channel base contract for talking to the mirror process."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any

from mirror_remote.channel.protocol import Notification, NotificationType, make_notification


class NotificationChannel(ABC):
    """Abstract duplex notification link used by the runtime core."""

    name: str = "base"
    transport: str = "unknown"

    @abstractmethod
    async def start(self) -> None:
        """Start channel resources and begin receiving notifications."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop channel resources."""

    @abstractmethod
    async def recv_notifications(self) -> AsyncIterator[Notification]:
        """Yield notifications sent by the mirror process."""

    @abstractmethod
    async def send_notification(self, notification: Notification) -> None:
        """Send a notification to the mirror process."""

    async def send(self, name: NotificationType | str, payload: Any = None) -> None:
        """Shortcut for building and sending a notification."""
        await self.send_notification(make_notification(name, payload))
