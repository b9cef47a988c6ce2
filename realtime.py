"""
Push channel: every connected WebSocket client gets every event.

Route handlers run in the threadpool, so ``publish`` hands each send to the
event loop that owns the connection and returns without waiting for delivery.
"""
import asyncio
import logging
import threading
from typing import Any, Dict

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

logger = logging.getLogger("gallery.realtime")

CONTENT_UPDATED = "content-updated"
COMMENT_ADDED = "comment-added"
LIKE_UPDATED = "like-updated"
PAYMENT_ADDED = "payment-added"
PAYMENT_APPROVED = "payment-approved"
PAYMENT_REJECTED = "payment-rejected"


class Broadcaster:
    def __init__(self):
        self._connections: Dict[WebSocket, asyncio.AbstractEventLoop] = {}
        self._lock = threading.Lock()

    @property
    def connection_count(self) -> int:
        with self._lock:
            return len(self._connections)

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        with self._lock:
            self._connections[websocket] = asyncio.get_running_loop()
            total = len(self._connections)
        logger.info("New client connected (%d connected)", total)

    def disconnect(self, websocket: WebSocket) -> None:
        with self._lock:
            removed = self._connections.pop(websocket, None) is not None
            total = len(self._connections)
        if removed:
            logger.info("Client disconnected (%d connected)", total)

    def publish(self, event: str, data: Any) -> int:
        """Queue ``{"event", "data"}`` for every connection; returns how many were targeted."""
        message = {"event": event, "data": jsonable_encoder(data)}
        with self._lock:
            targets = list(self._connections.items())
        sent = 0
        for websocket, loop in targets:
            if loop.is_closed():
                self.disconnect(websocket)
                continue
            send = self._send(websocket, message)
            try:
                asyncio.run_coroutine_threadsafe(send, loop)
            except RuntimeError:
                # loop shut down between the check and the call
                send.close()
                self.disconnect(websocket)
                continue
            sent += 1
        logger.debug("Published %s to %d client(s)", event, sent)
        return sent

    async def _send(self, websocket: WebSocket, message: dict) -> None:
        try:
            await websocket.send_json(message)
        except Exception as e:
            logger.warning("Dropping client after failed send of %s: %s", message["event"], e)
            self.disconnect(websocket)
