"""WebSocket channel the mirror process connects to."""

from __future__ import annotations

import asyncio
import json
from urllib.parse import parse_qs, urlparse

from loguru import logger
from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed

from mirror_remote.channel.base import NotificationChannel
from mirror_remote.channel.protocol import Notification

_SENTINEL = object()


class WebSocketChannel(NotificationChannel):
    """JSON text frames `{"notification": ..., "payload": ...}` over WebSocket."""

    name = "websocket"
    transport = "ws"

    def __init__(
        self,
        *,
        host: str = "127.0.0.1",
        port: int = 18792,
        require_token: bool = False,
        token: str = "",
    ) -> None:
        self.host = host
        self.port = port
        self.require_token = require_token
        self.token = token
        self._running = False
        self._queue: asyncio.Queue[Notification | object] = asyncio.Queue()
        self._server: Server | None = None
        self._peers: set[ServerConnection] = set()

    @property
    def connected(self) -> bool:
        return bool(self._peers)

    async def start(self) -> None:
        self._running = True
        self._server = await serve(self._handle_connection, self.host, self.port)
        logger.info(f"Mirror channel listening on ws://{self.host}:{self.port}")

    async def stop(self) -> None:
        self._running = False
        for ws in list(self._peers):
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f"mirror channel close failed: {e}")
        self._peers.clear()
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        await self._queue.put(_SENTINEL)

    async def recv_notifications(self):
        while self._running:
            item = await self._queue.get()
            if item is _SENTINEL:
                break
            yield item

    async def send_notification(self, notification: Notification) -> None:
        if not self._peers:
            logger.warning(f"mirror channel has no peer for {notification.name}")
            return
        frame = json.dumps(notification.to_dict(), ensure_ascii=False)
        for ws in list(self._peers):
            try:
                await ws.send(frame)
            except Exception as e:
                logger.warning(f"mirror channel failed to send {notification.name}: {e}")

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        path = websocket.request.path if websocket.request else ""
        query = parse_qs(urlparse(path).query)
        token = (query.get("token") or [""])[0]
        if token.startswith("Bearer "):
            token = token[7:]
        if self.require_token and self.token and token != self.token:
            await websocket.close(code=4401, reason="unauthorized")
            return

        self._peers.add(websocket)
        logger.info(f"mirror process connected from {websocket.remote_address}")
        try:
            async for message in websocket:
                if isinstance(message, bytes):
                    continue
                try:
                    data = json.loads(message)
                    notification = Notification.from_dict(data if isinstance(data, dict) else {})
                except (json.JSONDecodeError, ValueError) as e:
                    logger.warning(f"mirror channel dropped malformed frame: {e}")
                    continue
                await self._queue.put(notification)
        except ConnectionClosed:
            pass
        except Exception as e:
            logger.warning(f"mirror channel connection error: {e}")
        finally:
            self._peers.discard(websocket)
