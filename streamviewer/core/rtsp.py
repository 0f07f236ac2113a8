"""
RTSP Socket Connector

Opens the media server's RTSP-over-WebSocket endpoint for a stream path.
Unlike playback handles, these sockets can be closed by the server, so each
handle watches its socket and closes itself (dropping its registry entry)
when the connection ends.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Union

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from .registry import ConnectionHandle, Transport, TransportOpenError
from ..config.settings import RTSP_OPEN_TIMEOUT, RTSP_WS_URL

logger = logging.getLogger(__name__)


class SocketOpenError(TransportOpenError):
    """Raised when the socket fails before it opens"""
    pass


class RTSPHandle(ConnectionHandle):
    """
    Open WebSocket to the RTSP endpoint.

    Messages can be sent with send() and read with recv() or async iteration.
    """

    kind = "rtsp"

    def __init__(self, name: str, url: str, websocket):
        super().__init__(name)
        self.url = url
        self.websocket = websocket
        self.messages_sent = 0
        self.messages_received = 0
        self._monitor_task: Optional[asyncio.Task] = None

    def start_monitor(self) -> None:
        self._monitor_task = asyncio.create_task(self._monitor())

    async def _monitor(self) -> None:
        try:
            await self.websocket.wait_closed()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"RTSP socket monitor error for '{self.name}': {e}")

        if not self.closed:
            logger.info(f"RTSP socket for '{self.name}' closed by remote end")
        self.mark_closed()

    async def send(self, message: Union[str, bytes]) -> None:
        await self.websocket.send(message)
        self.messages_sent += 1

    async def recv(self) -> Union[str, bytes]:
        message = await self.websocket.recv()
        self.messages_received += 1
        return message

    def __aiter__(self):
        return self

    async def __anext__(self) -> Union[str, bytes]:
        try:
            return await self.recv()
        except ConnectionClosed:
            raise StopAsyncIteration

    async def close(self) -> None:
        try:
            await self.websocket.close()
        finally:
            self.mark_closed()
            task, self._monitor_task = self._monitor_task, None
            if task and not task.done() and task is not asyncio.current_task():
                task.cancel()

    def get_stats(self) -> Dict[str, Any]:
        stats = super().get_stats()
        stats.update({
            "url": self.url,
            "messages_sent": self.messages_sent,
            "messages_received": self.messages_received,
        })
        return stats


class RTSPTransport(Transport[RTSPHandle]):
    """
    Opens RTSP WebSocket connections.

    Usage:
        registry = ConnectionRegistry(RTSPTransport("ws://localhost:8554"))
        handle = await registry.start("camera1")
    """

    kind = "rtsp"

    def __init__(self, base_url: str = RTSP_WS_URL, open_timeout: float = RTSP_OPEN_TIMEOUT):
        self.base_url = base_url.rstrip("/")
        self.open_timeout = open_timeout

        logger.info(f"RTSP transport initialized for {self.base_url}")

    def socket_url(self, name: str) -> str:
        return f"{self.base_url}/{name}"

    async def open(self, name: str, **options) -> RTSPHandle:
        url = self.socket_url(name)

        try:
            websocket = await websockets.connect(url, open_timeout=self.open_timeout, **options)
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            error_msg = f"Failed to open RTSP socket {url}: {e}"
            logger.error(error_msg)
            raise SocketOpenError(error_msg) from e

        handle = RTSPHandle(name, url, websocket)
        handle.start_monitor()

        logger.info(f"RTSP socket open for '{name}'")
        return handle
