"""
Live notification channel over websockets.

Connects to ``{ws_url}/notifications?token=...`` and hands every inbound
message to ``on_message``. When the connection closes or cannot be opened the
channel waits a fixed delay and reconnects, until ``disconnect()`` is called.
"""
import asyncio
from typing import Any, Callable, Optional
from urllib.parse import quote

import websockets
from websockets.exceptions import WebSocketException

from motivai.core.config import settings
import logging

logger = logging.getLogger(__name__)


class NotificationChannel:
    """Reconnecting websocket subscription to live notifications."""

    def __init__(
        self,
        token: str,
        on_message: Optional[Callable[[Any], Any]] = None,
        ws_url: Optional[str] = None,
        reconnect_delay: Optional[float] = None,
        connect: Callable[..., Any] = websockets.connect,
    ):
        self.token = token
        self.on_message = on_message
        self.ws_url = (ws_url or settings.notifications_ws_url).rstrip("/")
        self.reconnect_delay = (
            reconnect_delay if reconnect_delay is not None else settings.notification_reconnect_delay_seconds
        )
        self._connect = connect
        self._task: Optional[asyncio.Task] = None
        self._websocket = None
        self._closing = False
        self.connection_attempts = 0

    @property
    def url(self) -> str:
        return f"{self.ws_url}/notifications?token={quote(self.token, safe='')}"

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def connect(self) -> None:
        """Start the connection loop in the background (no-op if already running)."""
        if not self.token:
            logger.warning("No token, live notifications disabled")
            return
        if self.is_running:
            return

        self._closing = False
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def disconnect(self) -> None:
        """Close the connection and stop reconnecting."""
        self._closing = True

        if self._websocket is not None:
            try:
                await self._websocket.close()
            except (OSError, WebSocketException) as e:
                logger.debug(f"Error closing live notification socket: {str(e)}")

        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Live notifications disconnected")

    async def _run(self) -> None:
        while not self._closing:
            self.connection_attempts += 1
            try:
                async with self._connect(self.url) as websocket:
                    self._websocket = websocket
                    logger.info("Live notifications connected")
                    async for message in websocket:
                        self._dispatch(message)
                logger.info("Live notifications connection closed")
            except (OSError, asyncio.TimeoutError, WebSocketException) as e:
                logger.warning(f"Live notifications connection error: {str(e)}")
            finally:
                self._websocket = None

            if self._closing:
                break

            logger.info(f"Reconnecting live notifications in {self.reconnect_delay}s")
            await asyncio.sleep(self.reconnect_delay)

    def _dispatch(self, message: Any) -> None:
        if self.on_message is None:
            return
        try:
            self.on_message(message)
        except Exception as e:
            logger.error(f"Live notification handler failed: {str(e)}", exc_info=True)
