"""Notification channels linking the control surface to the mirror process."""

from mirror_remote.channel.base import NotificationChannel
from mirror_remote.channel.mock_channel import MockChannel
from mirror_remote.channel.protocol import Notification, NotificationType, make_notification
from mirror_remote.channel.websocket_channel import WebSocketChannel

__all__ = [
    "NotificationChannel",
    "MockChannel",
    "WebSocketChannel",
    "Notification",
    "NotificationType",
    "make_notification",
]
