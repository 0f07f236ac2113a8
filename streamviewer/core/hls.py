"""
HLS Playback

Pulls a stream's HLS manifest from the media server and feeds its segments to
a media sink, with the same recovery rules as the browser player: network
errors reload the source, media decode errors trigger an in-place recovery,
anything else destroys the player.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp

from .events import ErrorType, EventChannel, EventType, PlayerEvent
from .playlist import Playlist, PlaylistError, parse_playlist, select_variant
from .registry import ConnectionHandle, Transport, TransportOpenError
from .sinks import MediaDecodeError, MediaSink
from ..config.settings import (
    HLS_BASE_URL,
    HLS_MANIFEST_NAME,
    HLS_MANIFEST_RETRIES,
    HLS_MAX_RECOVERIES,
    HLS_MIME_TYPE,
    HLS_MIN_RELOAD_INTERVAL,
    HLS_RECOVERY_DELAY,
    HLS_RETRY_DELAY,
    HLS_START_TIMEOUT,
    REQUEST_TIMEOUT,
)

logger = logging.getLogger(__name__)


class HLSError(TransportOpenError):
    """Base exception for HLS playback errors"""
    pass


class UnsupportedPlaybackError(HLSError):
    """Raised when neither adaptive nor native HLS playback is available"""
    pass


class HLSPlaybackError(HLSError):
    """Raised when playback fails to start"""
    pass


class HLSPlayer:
    """
    Async HLS loader.

    Emits MANIFEST_PARSED once the first media playlist is loaded, then
    FRAG_LOADED per segment. Fatal errors are emitted as ERROR events and stop
    loading until start_load() or recover_media_error() is called.

    Usage:
        player = HLSPlayer(session, channel)
        player.load_source("http://localhost:8888/camera1/index.m3u8")
        player.attach_media(sink)
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        channel: EventChannel,
        manifest_retries: int = HLS_MANIFEST_RETRIES,
        retry_delay: float = HLS_RETRY_DELAY,
    ):
        self.session = session
        self.channel = channel
        self.manifest_retries = max(1, manifest_retries)
        self.retry_delay = retry_delay

        self.url: Optional[str] = None
        self.media_url: Optional[str] = None
        self.sink: Optional[MediaSink] = None

        self.last_sequence: Optional[int] = None
        self.init_written: Optional[str] = None
        self.manifest_parsed = False
        self.destroyed = False

        self._load_task: Optional[asyncio.Task] = None

        self.stats = {
            "manifest_loads": 0,
            "segments_loaded": 0,
            "bytes_loaded": 0,
            "errors": 0,
        }

    def load_source(self, url: str) -> None:
        self.url = url
        self.media_url = None
        self.last_sequence = None
        self.init_written = None
        self.manifest_parsed = False
        self._maybe_start()

    def attach_media(self, sink: MediaSink) -> None:
        self.sink = sink
        self._maybe_start()

    def _maybe_start(self) -> None:
        if self.url and self.sink and self._load_task is None:
            self.start_load()

    def start_load(self) -> None:
        """(Re)start loading from the current source"""
        if self.destroyed:
            return
        self.stop_load()
        self._load_task = asyncio.create_task(self._load_loop())

    def stop_load(self) -> None:
        task, self._load_task = self._load_task, None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def recover_media_error(self) -> None:
        """Reset the sink and resume loading after a decode error"""
        if self.destroyed:
            return
        logger.info(f"Recovering from media error for {self.url}")
        # Segments after a decode error need a fresh init section
        self.init_written = None
        if self.sink:
            await self.sink.reset()
        self.start_load()

    async def destroy(self) -> None:
        if self.destroyed:
            return
        self.destroyed = True

        task, self._load_task = self._load_task, None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        logger.debug(f"HLS player destroyed for {self.url}")

    # ========================================================================
    # Loading
    # ========================================================================

    async def _load_loop(self) -> None:
        try:
            playlist = await self._load_initial_playlist()
            if playlist is None:
                return

            if not self.manifest_parsed:
                self.manifest_parsed = True
                self.channel.emit(PlayerEvent(
                    EventType.MANIFEST_PARSED,
                    data={"url": self.url, "media_url": self.media_url},
                ))

            while True:
                if not await self._load_segments(playlist):
                    return

                if playlist.endlist:
                    self.channel.emit(PlayerEvent(EventType.ENDED, data={"url": self.url}))
                    return

                interval = max(HLS_MIN_RELOAD_INTERVAL, playlist.target_duration / 2)
                await asyncio.sleep(interval)

                playlist = await self._fetch_playlist(self.media_url, "levelLoadError")
                if playlist is None:
                    return

        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._emit_error(ErrorType.OTHER_ERROR, "internalException", e)

    async def _load_initial_playlist(self) -> Optional[Playlist]:
        playlist = None
        for attempt in range(1, self.manifest_retries + 1):
            try:
                playlist = await self._get_playlist(self.url)
                break
            except PlaylistError as e:
                self._emit_error(ErrorType.OTHER_ERROR, "manifestParsingError", e)
                return None
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.warning(f"Manifest load attempt {attempt}/{self.manifest_retries} failed: {e}")
                if attempt == self.manifest_retries:
                    self._emit_error(ErrorType.NETWORK_ERROR, "manifestLoadError", e)
                    return None
                self.channel.emit(PlayerEvent.error(
                    ErrorType.NETWORK_ERROR, "manifestLoadError", fatal=False, reason=str(e)
                ))
                await asyncio.sleep(self.retry_delay)

        if playlist.is_master:
            variant = select_variant(playlist)
            self.media_url = variant.uri
            logger.info(f"Selected variant {variant.uri} ({variant.bandwidth} bps)")
            return await self._fetch_playlist(self.media_url, "levelLoadError")

        self.media_url = self.url
        return playlist

    async def _fetch_playlist(self, url: str, details: str) -> Optional[Playlist]:
        try:
            return await self._get_playlist(url)
        except PlaylistError as e:
            self._emit_error(ErrorType.OTHER_ERROR, "levelParsingError", e)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self._emit_error(ErrorType.NETWORK_ERROR, details, e)
        return None

    async def _get_playlist(self, url: str) -> Playlist:
        async with self.session.get(url) as response:
            response.raise_for_status()
            text = await response.text()
        self.stats["manifest_loads"] += 1
        return parse_playlist(text, str(url))

    async def _load_segments(self, playlist: Playlist) -> bool:
        """Load new segments. Returns False after a fatal error."""
        if playlist.init_uri and playlist.init_uri != self.init_written:
            data = await self._fetch_segment(playlist.init_uri)
            if data is None or not await self._append(data, playlist.init_uri):
                return False
            self.init_written = playlist.init_uri

        for segment in playlist.segments:
            if self.last_sequence is not None and segment.sequence <= self.last_sequence:
                continue

            data = await self._fetch_segment(segment.uri)
            if data is None or not await self._append(data, segment.uri):
                return False

            self.last_sequence = segment.sequence
            self.stats["segments_loaded"] += 1
            self.channel.emit(PlayerEvent(
                EventType.FRAG_LOADED,
                data={"uri": segment.uri, "sequence": segment.sequence, "bytes": len(data)},
            ))

        return True

    async def _fetch_segment(self, uri: str) -> Optional[bytes]:
        try:
            async with self.session.get(uri) as response:
                response.raise_for_status()
                data = await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self._emit_error(ErrorType.NETWORK_ERROR, "fragLoadError", e)
            return None

        self.stats["bytes_loaded"] += len(data)
        return data

    async def _append(self, data: bytes, uri: str) -> bool:
        try:
            await self.sink.write_segment(data, uri)
        except MediaDecodeError as e:
            self._emit_error(ErrorType.MEDIA_ERROR, "bufferAppendError", e)
            return False
        return True

    def _emit_error(self, error_type: ErrorType, details: str, error: Exception) -> None:
        self.stats["errors"] += 1
        logger.error(f"HLS {error_type.value} ({details}) for {self.url}: {error}")
        self.channel.emit(PlayerEvent.error(error_type, details, fatal=True, reason=str(error)))


class HLSHandle(ConnectionHandle):
    """Adaptive playback handle: player, event channel and sink"""

    kind = "hls"

    def __init__(self, name: str, url: str, player: HLSPlayer, channel: EventChannel, sink: MediaSink):
        super().__init__(name)
        self.url = url
        self.player = player
        self.channel = channel
        self.sink = sink
        self.network_recoveries = 0
        self.media_recoveries = 0
        self.consecutive_recoveries = 0

    async def close(self) -> None:
        try:
            await self.player.destroy()
            await self.channel.close()
            await self.sink.close()
        finally:
            self.mark_closed()

    def get_stats(self) -> Dict[str, Any]:
        stats = super().get_stats()
        stats.update({
            "url": self.url,
            "native": False,
            "network_recoveries": self.network_recoveries,
            "media_recoveries": self.media_recoveries,
            "player_stats": dict(self.player.stats),
            "sink_stats": self.sink.get_stats(),
        })
        return stats


class NativePlaybackHandle(ConnectionHandle):
    """Handle for sinks that play the manifest URL themselves"""

    kind = "hls"

    def __init__(self, name: str, url: str, sink: MediaSink):
        super().__init__(name)
        self.url = url
        self.sink = sink

    async def close(self) -> None:
        try:
            await self.sink.close()
        finally:
            self.mark_closed()

    def get_stats(self) -> Dict[str, Any]:
        stats = super().get_stats()
        stats.update({"url": self.url, "native": True, "sink_stats": self.sink.get_stats()})
        return stats


class HLSTransport(Transport[ConnectionHandle]):
    """
    Opens HLS playback for a stream path.

    Usage:
        registry = ConnectionRegistry(HLSTransport("http://localhost:8888"))
        await registry.start("camera1", sink=FileSink("camera1.ts"))
    """

    kind = "hls"

    def __init__(
        self,
        base_url: str = HLS_BASE_URL,
        start_timeout: float = HLS_START_TIMEOUT,
        manifest_retries: int = HLS_MANIFEST_RETRIES,
        retry_delay: float = HLS_RETRY_DELAY,
        recovery_delay: float = HLS_RECOVERY_DELAY,
        max_recoveries: int = HLS_MAX_RECOVERIES,
        timeout: float = REQUEST_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self.start_timeout = start_timeout
        self.manifest_retries = manifest_retries
        self.retry_delay = retry_delay
        self.recovery_delay = recovery_delay
        self.max_recoveries = max_recoveries
        self.timeout = timeout

        self.session: Optional[aiohttp.ClientSession] = None

        logger.info(f"HLS transport initialized for {self.base_url}")

    def manifest_url(self, name: str) -> str:
        return f"{self.base_url}/{name}/{HLS_MANIFEST_NAME}"

    @staticmethod
    def is_supported(sink: MediaSink) -> bool:
        return sink.supports_adaptive

    async def open(self, name: str, sink: MediaSink) -> ConnectionHandle:
        url = self.manifest_url(name)

        if self.is_supported(sink):
            return await self._open_adaptive(name, url, sink)

        if sink.can_play_type(HLS_MIME_TYPE):
            return await self._open_native(name, url, sink)

        raise UnsupportedPlaybackError("HLS is not supported by this media sink")

    async def _open_adaptive(self, name: str, url: str, sink: MediaSink) -> HLSHandle:
        loop = asyncio.get_running_loop()
        started = loop.create_future()

        channel = EventChannel(f"hls:{name}")
        player = HLSPlayer(
            self._get_session(),
            channel,
            manifest_retries=self.manifest_retries,
            retry_delay=self.retry_delay,
        )
        handle = HLSHandle(name, url, player, channel, sink)

        async def on_manifest_parsed(event: PlayerEvent) -> None:
            if started.done():
                return
            try:
                await sink.play()
            except Exception as e:
                if not started.done():
                    started.set_exception(HLSPlaybackError(f"Failed to start playback: {e}"))
                return
            if not started.done():
                started.set_result(None)

        async def on_error(event: PlayerEvent) -> None:
            if not event.fatal:
                logger.warning(f"Non-fatal HLS error for '{name}': {event.details}")
                return

            if not started.done():
                started.set_exception(HLSPlaybackError(
                    f"Fatal HLS error: {event.error_type.value} ({event.details})"
                ))
                return

            await self._handle_fatal_error(handle, event)

        def on_fragment(event: PlayerEvent) -> None:
            handle.consecutive_recoveries = 0

        def on_ended(event: PlayerEvent) -> None:
            logger.info(f"HLS stream '{name}' ended")

        channel.on(EventType.MANIFEST_PARSED, on_manifest_parsed)
        channel.on(EventType.ERROR, on_error)
        channel.on(EventType.FRAG_LOADED, on_fragment)
        channel.on(EventType.ENDED, on_ended)
        channel.start()

        logger.info(f"Loading HLS manifest {url}")
        player.load_source(url)
        player.attach_media(sink)

        try:
            await asyncio.wait_for(started, timeout=self.start_timeout)
        except asyncio.TimeoutError:
            await handle.close()
            raise HLSPlaybackError(f"HLS playback did not start within {self.start_timeout}s")
        except BaseException:
            await handle.close()
            raise

        return handle

    async def _open_native(self, name: str, url: str, sink: MediaSink) -> NativePlaybackHandle:
        logger.info(f"Using native HLS playback for '{name}'")
        handle = NativePlaybackHandle(name, url, sink)

        try:
            await sink.set_source(url)
            await asyncio.wait_for(sink.wait_loaded_metadata(), timeout=self.start_timeout)
            await sink.play()
        except asyncio.TimeoutError:
            await handle.close()
            raise HLSPlaybackError(f"Metadata for {url} did not load within {self.start_timeout}s")
        except BaseException as e:
            await handle.close()
            if isinstance(e, Exception) and not isinstance(e, HLSError):
                raise HLSPlaybackError(f"Native playback failed: {e}") from e
            raise

        return handle

    async def _handle_fatal_error(self, handle: HLSHandle, event: PlayerEvent) -> None:
        """Recovery for fatal errors once playback has started"""
        if handle.closed:
            return

        recoverable = event.error_type in (ErrorType.NETWORK_ERROR, ErrorType.MEDIA_ERROR)

        if recoverable and handle.consecutive_recoveries >= self.max_recoveries:
            logger.error(
                f"Giving up on '{handle.name}' after {handle.consecutive_recoveries} recoveries"
            )
            recoverable = False

        if not recoverable:
            logger.error(f"Fatal player error for '{handle.name}': {event.details}, destroying player")
            await handle.close()
            return

        handle.consecutive_recoveries += 1
        if self.recovery_delay:
            await asyncio.sleep(self.recovery_delay)
        if handle.closed:
            return

        if event.error_type == ErrorType.NETWORK_ERROR:
            logger.warning(f"Network error for '{handle.name}', reloading source...")
            handle.network_recoveries += 1
            handle.player.start_load()
        else:
            logger.warning(f"Media error for '{handle.name}', trying to recover...")
            handle.media_recoveries += 1
            await handle.player.recover_media_error()

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
