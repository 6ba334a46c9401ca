"""WebSocket view transport.

Wraps a Starlette ``WebSocket`` accepted by the ``/ws`` route. Each text
frame carries one JSON envelope.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Callable
from typing import Any

from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from ..protocol.errors import TransportError
from .base import DisposeCallback, DisposeNotifier

logger = logging.getLogger(__name__)


class WebSocketViewTransport:
    """Host-side transport for one WebSocket-connected view."""

    def __init__(self, websocket: WebSocket):
        self._websocket = websocket
        self._dispose = DisposeNotifier()
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected and self._websocket.client_state == WebSocketState.CONNECTED

    async def accept(self) -> None:
        """Accept the WebSocket connection."""
        await self._websocket.accept()
        self._connected = True

    def send(self, message: dict[str, Any]) -> Any:
        if not self.is_connected:
            raise TransportError("WebSocket is not connected")
        return self._send_text(json.dumps(message))

    async def _send_text(self, text: str) -> None:
        try:
            await self._websocket.send_text(text)
        except (WebSocketDisconnect, RuntimeError) as e:
            self._mark_disconnected()
            raise TransportError(f"WebSocket send failed: {e}") from e

    async def receive_messages(self) -> AsyncIterator[Any]:
        """Yield decoded JSON frames until the peer disconnects.

        Frames that are not valid JSON are logged and skipped.
        """
        try:
            while self.is_connected:
                data = await self._websocket.receive_text()
                try:
                    yield json.loads(data)
                except json.JSONDecodeError as e:
                    logger.warning(f"Invalid WebSocket frame: {e}")
        except WebSocketDisconnect:
            logger.debug("WebSocket disconnected")
        finally:
            self._mark_disconnected()

    def on_dispose(self, callback: DisposeCallback) -> Callable[[], None]:
        return self._dispose.add(callback)

    async def close(self) -> None:
        was_connected = self.is_connected
        self._connected = False
        if was_connected:
            try:
                await self._websocket.close()
            except RuntimeError as e:
                logger.debug(f"WebSocket already closed: {e}")
        self._dispose.fire()

    def _mark_disconnected(self) -> None:
        self._connected = False
        self._dispose.fire()
