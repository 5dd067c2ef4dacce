"""Notification envelope exchanged with the mirror process."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


def now_ms() -> int:
    """Current timestamp in milliseconds."""
    return int(time.time() * 1000)


class NotificationType(StrEnum):
    """Notification names understood by the control surface."""

    # outbound
    UPDATE = "UPDATE"
    DEFAULT_SETTINGS = "DEFAULT_SETTINGS"
    IP_ADDRESSES = "IP_ADDRESSES"
    SHOW = "SHOW"
    HIDE = "HIDE"
    BRIGHTNESS = "BRIGHTNESS"
    # inbound
    CURRENT_STATUS = "CURRENT_STATUS"
    REMOTE_ACTION = "REMOTE_ACTION"
    REQUEST_DEFAULT_SETTINGS = "REQUEST_DEFAULT_SETTINGS"
    LANG = "LANG"


@dataclass(slots=True)
class Notification:
    """A named message with an arbitrary JSON payload."""

    name: str
    payload: Any = None
    ts: int = field(default_factory=now_ms)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Notification":
        """Create a notification from a decoded wire frame."""
        name = str(data.get("notification") or data.get("name") or "").strip()
        if not name:
            raise ValueError("notification name is required")
        raw_ts = data.get("ts", now_ms())
        try:
            ts = int(raw_ts)
        except (TypeError, ValueError):
            ts = now_ms()
        return cls(name=name, payload=data.get("payload"), ts=max(0, ts))

    def to_dict(self) -> dict[str, Any]:
        return {"notification": self.name, "payload": self.payload, "ts": self.ts}


def make_notification(name: NotificationType | str, payload: Any = None) -> Notification:
    """Build an outbound notification."""
    return Notification(name=str(name), payload=payload)
