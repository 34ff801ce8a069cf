from __future__ import annotations
import asyncio
from dataclasses import dataclass
from typing import Optional, Callable, Awaitable

import websockets
from websockets.protocol import State

from shared.log import get_logger

logger = get_logger(__name__)


MessageHandler = Callable[[str], Awaitable[None]]


@dataclass(frozen=True)
class CloseInfo:
    code: Optional[int]
    reason: str


class WebSocketTransport:
    """
    Duplex text-frame channel to one WebSocket endpoint.

    Reports open, close, error and message notifications and never reconnects
    on its own; the session decides what happens after a close.
    """

    def __init__(
        self,
        on_message: MessageHandler,
        *,
        on_open: Optional[Callable[[], None]] = None,
        on_close: Optional[Callable[[CloseInfo], None]] = None,
        on_error: Optional[Callable[[BaseException], None]] = None,
        ping_interval: Optional[float] = 15.0,
        ping_timeout: Optional[float] = 45.0,
        open_timeout: Optional[float] = 10.0,
    ) -> None:
        self.on_message = on_message
        self.on_open = on_open
        self.on_close = on_close
        self.on_error = on_error
        self.ping_interval = ping_interval
        self.ping_timeout = ping_timeout
        self.open_timeout = open_timeout
        self.websocket: Optional[websockets.ClientConnection] = None
        self.url: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.websocket is not None and self.websocket.state is State.OPEN

    async def open(self, url: str) -> None:
        """Connect to ``url``. Connection errors are reported and re-raised."""
        if self.websocket is not None:
            await self.close()
        try:
            self.websocket = await websockets.connect(
                url,
                ping_interval=self.ping_interval,
                ping_timeout=self.ping_timeout,
                open_timeout=self.open_timeout,
            )
        except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
            self._report_error(e)
            raise
        self.url = url
        logger.info("Connected to %s", url, extra={"endpoint": url})
        if self.on_open:
            self.on_open()

    async def receive_forever(self) -> CloseInfo:
        """
        Feed every inbound frame to ``on_message`` until the socket closes.

        Returns the close code and reason. Handler failures are logged and do
        not stop the loop.
        """
        assert self.websocket is not None
        websocket = self.websocket
        try:
            async for raw in websocket:
                try:
                    if isinstance(raw, bytes):
                        raw = raw.decode('utf-8')
                    await self.on_message(raw)
                except Exception as e:
                    logger.error("Failed to process inbound frame: %s", e, exc_info=True)
        except websockets.exceptions.ConnectionClosedError as e:
            self._report_error(e)

        info = CloseInfo(code=websocket.close_code, reason=websocket.close_reason or "")
        logger.info("Disconnected from %s (code=%s): %s", self.url, info.code, info.reason or "no reason",
                    extra={"endpoint": self.url})
        if self.on_close:
            self.on_close(info)
        return info

    async def send(self, text: str) -> bool:
        """Send one text frame. Returns False, without raising, if the connection is not open."""
        if not self.is_open:
            logger.error("WebSocket is not open. Cannot send message.")
            return False
        assert self.websocket is not None
        try:
            await self.websocket.send(text)
        except websockets.exceptions.ConnectionClosed:
            logger.warning("Connection closed while sending")
            return False
        return True

    async def close(self, code: int = 1000, reason: str = "") -> None:
        websocket, self.websocket = self.websocket, None
        if websocket is None:
            return
        try:
            await websocket.close(code=code, reason=reason)
        except (OSError, websockets.exceptions.WebSocketException) as e:
            logger.error("Error closing connection: %s", e)

    def _report_error(self, error: BaseException) -> None:
        logger.error("WebSocket error: %s", str(error) or type(error).__name__, extra={"endpoint": self.url})
        if self.on_error:
            self.on_error(error)
