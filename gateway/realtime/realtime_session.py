"""
Outbound side of one browser WebSocket.

The router and the broker connections enqueue frames synchronously; a writer
task owned by the session drains the queue onto the socket, so a slow browser
never blocks MQTT event handling.
"""

import asyncio
from typing import Any, Protocol

from fastapi import WebSocket
from starlette.websockets import WebSocketDisconnect, WebSocketState

from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)

_CLOSE = object()


class RealtimeSession(Protocol):
    """What the SessionRouter needs from a transport session."""

    session_id: str
    user_id: str

    def send(self, event: dict[str, Any]) -> None: ...

    def close(self, code: int = 1000, reason: str = "") -> None: ...


class WebSocketSession:
    """
    Queue-backed sender for one accepted WebSocket.

    AI: When the queue is full the oldest frame is dropped, matching the
    bounded per-connection queue used for chat delivery.
    """

    def __init__(self, session_id: str, user_id: str, websocket: WebSocket, queue_size: int = 1000):
        self.session_id = session_id
        self.user_id = user_id
        self.websocket = websocket
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=queue_size)
        self._writer: asyncio.Task | None = None
        self._close_args: tuple[int, str] = (1000, "")
        self.closing = False
        self.dropped_frames = 0

    def start(self) -> None:
        self._writer = asyncio.create_task(self._drain(), name=f"ws_writer:{self.session_id}")

    def send(self, event: dict[str, Any]) -> None:
        if self.closing:
            return
        self._put(event)

    def close(self, code: int = 1000, reason: str = "") -> None:
        """Flush queued frames, then close the socket."""
        if self.closing:
            return
        self.closing = True
        self._close_args = (code, reason)
        self._put(_CLOSE)

    def _put(self, item: Any) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped_frames += 1
            logger.warning(
                "Outbound queue full; dropped oldest frame",
                session_id=self.session_id,
                user_id=self.user_id,
                dropped_frames=self.dropped_frames,
            )
        self._queue.put_nowait(item)

    async def _drain(self) -> None:
        try:
            while True:
                item = await self._queue.get()
                if item is _CLOSE:
                    if self.websocket.application_state != WebSocketState.DISCONNECTED:
                        code, reason = self._close_args
                        await self.websocket.close(code=code, reason=reason)
                    return
                await self.websocket.send_json(item)
        except (WebSocketDisconnect, RuntimeError) as e:
            # Socket went away underneath us; the receive loop performs cleanup
            logger.info("WebSocket writer stopped", session_id=self.session_id, error=str(e))
        finally:
            self.closing = True

    async def stop(self) -> None:
        """Cancel the writer without flushing."""
        self.closing = True
        if self._writer is not None and not self._writer.done():
            self._writer.cancel()
            try:
                await self._writer
            except asyncio.CancelledError:
                pass
