#!/usr/bin/env python3
"""Stand-in for the mirror process: answers UPDATE with CURRENT_STATUS over the channel."""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import time
from typing import Any

from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed


def _now_ms() -> int:
    return int(time.time() * 1000)


class FakeMirror:
    def __init__(self, *, reply_delay_s: float = 0.0, silent: bool = False) -> None:
        self.reply_delay_s = max(0.0, float(reply_delay_s))
        self.silent = silent
        self.brightness = 100
        self.modules: list[dict[str, Any]] = [
            {"identifier": "module_0_clock", "name": "clock", "hidden": False},
            {"identifier": "module_1_calendar", "name": "calendar", "hidden": False},
            {"identifier": "module_2_newsfeed", "name": "newsfeed", "hidden": True},
        ]

    def snapshot(self) -> dict[str, Any]:
        return {"moduleData": [dict(m) for m in self.modules], "brightness": self.brightness}

    def apply(self, name: str, payload: Any) -> None:
        if name == "BRIGHTNESS":
            try:
                self.brightness = int(payload)
            except (TypeError, ValueError):
                pass
            return
        if name in {"SHOW", "HIDE"} and isinstance(payload, dict):
            for module in self.modules:
                if module["identifier"] == payload.get("module"):
                    module["hidden"] = name == "HIDE"


async def _run(url: str, mirror: FakeMirror, stop_event: asyncio.Event) -> None:
    async with connect(url) as ws:
        print(f"mock mirror connected to {url}", flush=True)
        await ws.send(json.dumps({"notification": "LANG", "payload": "en", "ts": _now_ms()}))
        await ws.send(json.dumps({"notification": "REQUEST_DEFAULT_SETTINGS", "payload": None, "ts": _now_ms()}))
        while not stop_event.is_set():
            try:
                raw = await asyncio.wait_for(ws.recv(), timeout=0.5)
            except asyncio.TimeoutError:
                continue
            except ConnectionClosed:
                break
            data = json.loads(raw)
            name = str(data.get("notification") or "")
            payload = data.get("payload")
            print(f"<- {name} {json.dumps(payload)}", flush=True)
            if name == "UPDATE":
                if mirror.silent:
                    continue
                if mirror.reply_delay_s:
                    await asyncio.sleep(mirror.reply_delay_s)
                await ws.send(
                    json.dumps({"notification": "CURRENT_STATUS", "payload": mirror.snapshot(), "ts": _now_ms()})
                )
                continue
            mirror.apply(name, payload)


def main() -> None:
    parser = argparse.ArgumentParser(description="Fake mirror process for smoke testing the control surface")
    parser.add_argument("--url", default="ws://127.0.0.1:18792")
    parser.add_argument("--reply-delay", type=float, default=0.0, help="Seconds to wait before answering UPDATE")
    parser.add_argument("--silent", action="store_true", help="Never answer UPDATE (exercises waiter timeouts)")
    args = parser.parse_args()

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    stop_event = asyncio.Event()

    def _request_stop() -> None:
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _request_stop)
        except NotImplementedError:
            pass

    mirror = FakeMirror(reply_delay_s=args.reply_delay, silent=bool(args.silent))
    try:
        loop.run_until_complete(_run(str(args.url), mirror, stop_event))
    finally:
        loop.close()


if __name__ == "__main__":
    main()
