"""
WebRTC Viewer

Receives a stream over WebRTC using the media server's WHEP endpoint:
the server's offer is fetched with POST, answered locally and the answer is
sent back with PATCH. The first incoming video track goes to the media sink.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

import aiohttp
from aiortc import RTCConfiguration, RTCIceServer, RTCPeerConnection, RTCSessionDescription

from .registry import ConnectionHandle, Transport, TransportOpenError
from .sinks import MediaSink
from ..config.settings import (
    REQUEST_TIMEOUT,
    WEBRTC_BASE_URL,
    WEBRTC_NEGOTIATION_TIMEOUT,
    get_stun_url,
)

logger = logging.getLogger(__name__)


class NegotiationError(TransportOpenError):
    """Raised when the offer/answer exchange fails"""
    pass


class WebRTCHandle(ConnectionHandle):
    """Peer connection plus the sink its video track is attached to"""

    kind = "webrtc"

    def __init__(self, name: str, url: str, pc, sink: MediaSink):
        super().__init__(name)
        self.url = url
        self.pc = pc
        self.sink = sink
        self.video_track = None
        self.connection_state = "new"
        self._closing = False

    async def close(self) -> None:
        # pc.close() re-enters through the connection state callback
        if self._closing:
            return
        self._closing = True
        try:
            await self.pc.close()
            await self.sink.close()
        finally:
            self.mark_closed()

    def get_stats(self) -> Dict[str, Any]:
        stats = super().get_stats()
        stats.update({
            "url": self.url,
            "connection_state": self.connection_state,
            "has_video": self.video_track is not None,
            "sink_stats": self.sink.get_stats(),
        })
        return stats


class WebRTCTransport(Transport[WebRTCHandle]):
    """
    Opens WHEP viewer sessions.

    Usage:
        registry = ConnectionRegistry(WebRTCTransport("http://localhost:8889"))
        await registry.start("camera1", sink=NullSink())
    """

    kind = "webrtc"

    def __init__(
        self,
        base_url: str = WEBRTC_BASE_URL,
        ice_servers: Optional[List[str]] = None,
        negotiation_timeout: float = WEBRTC_NEGOTIATION_TIMEOUT,
        timeout: float = REQUEST_TIMEOUT,
        pc_factory: Optional[Callable[[RTCConfiguration], Any]] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.ice_servers = ice_servers or [get_stun_url()]
        self.negotiation_timeout = negotiation_timeout
        self.timeout = timeout
        self.pc_factory = pc_factory or (lambda configuration: RTCPeerConnection(configuration=configuration))

        self.session: Optional[aiohttp.ClientSession] = None

        logger.info(f"WebRTC transport initialized for {self.base_url} (ICE: {self.ice_servers})")

    def whep_url(self, name: str) -> str:
        return f"{self.base_url}/{name}/whep"

    def _create_peer_connection(self):
        configuration = RTCConfiguration(
            iceServers=[RTCIceServer(urls=url) for url in self.ice_servers]
        )
        return self.pc_factory(configuration)

    async def open(self, name: str, sink: MediaSink) -> WebRTCHandle:
        url = self.whep_url(name)
        pc = self._create_peer_connection()
        handle = WebRTCHandle(name, url, pc, sink)

        @pc.on("track")
        async def on_track(track) -> None:
            logger.info(f"Received {track.kind} track for '{name}'")
            if track.kind != "video" or handle.video_track is not None:
                return
            handle.video_track = track
            try:
                await sink.attach_track(track)
            except Exception as e:
                logger.error(f"Failed to attach video track for '{name}': {e}")

        @pc.on("connectionstatechange")
        async def on_connectionstatechange() -> None:
            handle.connection_state = pc.connectionState
            logger.info(f"WebRTC connection state for '{name}': {pc.connectionState}")
            if pc.connectionState in ("failed", "closed") and not handle.closed:
                await handle.close()

        try:
            await asyncio.wait_for(self._negotiate(url, pc), timeout=self.negotiation_timeout)
        except asyncio.TimeoutError:
            await handle.close()
            raise NegotiationError(f"WebRTC negotiation timed out after {self.negotiation_timeout}s")
        except BaseException as e:
            await handle.close()
            if isinstance(e, Exception) and not isinstance(e, NegotiationError):
                raise NegotiationError(f"WebRTC negotiation failed: {e}") from e
            raise

        return handle

    async def _negotiate(self, url: str, pc) -> None:
        session = self._get_session()

        async with session.post(url) as response:
            if response.status >= 400:
                raise NegotiationError(f"Failed to start WebRTC connection (HTTP {response.status})")
            offer = await response.json(content_type=None)

        await pc.setRemoteDescription(RTCSessionDescription(sdp=offer["sdp"], type=offer["type"]))

        answer = await pc.createAnswer()
        await pc.setLocalDescription(answer)

        local = pc.localDescription
        async with session.patch(url, json={"type": local.type, "sdp": local.sdp}) as response:
            if response.status >= 400:
                raise NegotiationError(f"WebRTC answer rejected (HTTP {response.status})")

        logger.info(f"WebRTC negotiation complete for {url}")

    def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self.session

    async def aclose(self) -> None:
        if self.session and not self.session.closed:
            await self.session.close()
        self.session = None
