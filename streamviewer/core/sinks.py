"""
Media Sinks

Destinations for played media. A sink plays the role a video element has in
a browser: the HLS player feeds it segments, the WebRTC viewer attaches the
incoming video track to it, and sinks that can play a manifest URL natively
are used as the HLS fallback.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from aiortc.contrib.media import MediaBlackhole, MediaRecorder

from ..config.settings import FFPLAY_PATH, FFPROBE_PATH, HLS_MIME_TYPE, RECORDINGS_DIR

logger = logging.getLogger(__name__)

TS_PACKET_SIZE = 188
TS_SYNC_BYTE = 0x47
MP4_BOX_TYPES = {b"ftyp", b"styp", b"moof", b"moov", b"sidx", b"emsg", b"prft", b"mdat"}


class SinkError(Exception):
    """Base exception for media sink errors"""
    pass


class MediaDecodeError(SinkError):
    """Raised when segment data cannot be decoded"""
    pass


def check_segment(data: bytes) -> str:
    """
    Check that segment bytes look like MPEG-TS or fragmented MP4.

    Returns:
        "ts" or "mp4"

    Raises:
        MediaDecodeError: If the data is neither
    """
    if not data:
        raise MediaDecodeError("Empty segment")

    if data[0] == TS_SYNC_BYTE:
        if len(data) % TS_PACKET_SIZE != 0:
            raise MediaDecodeError(f"Truncated MPEG-TS segment ({len(data)} bytes)")
        for offset in range(0, len(data), TS_PACKET_SIZE):
            if data[offset] != TS_SYNC_BYTE:
                raise MediaDecodeError(f"Lost MPEG-TS sync at byte {offset}")
        return "ts"

    if len(data) >= 8 and data[4:8] in MP4_BOX_TYPES:
        return "mp4"

    raise MediaDecodeError("Unrecognized segment format")


class MediaSink:
    """
    Base media sink.

    Subclasses override what they support. By default a sink accepts
    segment-by-segment feeding (adaptive playback) and has no native
    manifest playback.
    """

    supports_adaptive = True

    def __init__(self):
        self.playing = False
        self.source_url: Optional[str] = None
        self.segments_written = 0
        self.bytes_written = 0
        self.tracks: List[Any] = []

    def can_play_type(self, mime_type: str) -> bool:
        return False

    async def write_segment(self, data: bytes, uri: str = "") -> None:
        check_segment(data)
        self.segments_written += 1
        self.bytes_written += len(data)

    async def reset(self) -> None:
        """Drop buffered media after a decode error"""
        pass

    async def play(self) -> None:
        self.playing = True

    async def set_source(self, url: str) -> None:
        raise SinkError(f"{type(self).__name__} cannot play URLs directly")

    async def wait_loaded_metadata(self) -> None:
        pass

    async def attach_track(self, track) -> None:
        self.tracks.append(track)

    async def close(self) -> None:
        self.playing = False

    def get_stats(self) -> Dict[str, Any]:
        return {
            "type": type(self).__name__,
            "playing": self.playing,
            "source_url": self.source_url,
            "segments_written": self.segments_written,
            "bytes_written": self.bytes_written,
            "tracks": len(self.tracks),
        }


class NullSink(MediaSink):
    """Validates and discards media; WebRTC tracks are drained"""

    def __init__(self):
        super().__init__()
        self._blackhole: Optional[MediaBlackhole] = None

    async def attach_track(self, track) -> None:
        await super().attach_track(track)
        if self._blackhole is None:
            self._blackhole = MediaBlackhole()
        self._blackhole.addTrack(track)
        await self._blackhole.start()

    async def close(self) -> None:
        if self._blackhole is not None:
            await self._blackhole.stop()
            self._blackhole = None
        await super().close()


class FileSink(MediaSink):
    """
    Appends segments to a file.

    WebRTC tracks are recorded with aiortc's MediaRecorder instead, so the
    path should carry a container extension (e.g. .mp4 or .ts).
    """

    def __init__(self, path: str):
        super().__init__()
        self.path = Path(path)
        self._recorder: Optional[MediaRecorder] = None

    async def write_segment(self, data: bytes, uri: str = "") -> None:
        await super().write_segment(data, uri)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "ab") as f:
            f.write(data)

    async def reset(self) -> None:
        logger.info(f"Resetting file sink {self.path}")

    async def attach_track(self, track) -> None:
        await super().attach_track(track)
        if self._recorder is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._recorder = MediaRecorder(str(self.path))
        self._recorder.addTrack(track)
        await self._recorder.start()

    async def close(self) -> None:
        if self._recorder is not None:
            await self._recorder.stop()
            self._recorder = None
        await super().close()

    def get_stats(self) -> Dict[str, Any]:
        stats = super().get_stats()
        stats["path"] = str(self.path)
        return stats


class ExternalPlayerSink(MediaSink):
    """
    Native manifest playback through ffprobe/ffplay.

    Metadata is considered loaded once ffprobe reads the stream format;
    play() then spawns the player process.
    """

    supports_adaptive = False

    def __init__(
        self,
        player_path: str = FFPLAY_PATH,
        probe_path: str = FFPROBE_PATH,
        player_args: Optional[List[str]] = None,
    ):
        super().__init__()
        self.player_path = player_path
        self.probe_path = probe_path
        self.player_args = player_args if player_args is not None else ["-loglevel", "error"]
        self.process: Optional[asyncio.subprocess.Process] = None

    def can_play_type(self, mime_type: str) -> bool:
        return mime_type == HLS_MIME_TYPE

    async def write_segment(self, data: bytes, uri: str = "") -> None:
        raise SinkError("External player does not accept segments")

    async def set_source(self, url: str) -> None:
        self.source_url = url

    async def wait_loaded_metadata(self) -> None:
        if not self.source_url:
            raise SinkError("No source set")

        probe = await asyncio.create_subprocess_exec(
            self.probe_path, "-v", "error", "-show_entries", "format=format_name",
            self.source_url,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        _, stderr = await probe.communicate()
        if probe.returncode != 0:
            raise SinkError(f"ffprobe failed: {stderr.decode(errors='replace').strip()}")

    async def play(self) -> None:
        if self.process and self.process.returncode is None:
            return

        logger.info(f"Starting external player for {self.source_url}")
        self.process = await asyncio.create_subprocess_exec(
            self.player_path, *self.player_args, self.source_url,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        await super().play()

    async def close(self) -> None:
        if self.process and self.process.returncode is None:
            self.process.terminate()
            try:
                await asyncio.wait_for(self.process.wait(), timeout=5)
            except asyncio.TimeoutError:
                self.process.kill()
                await self.process.wait()
        self.process = None
        await super().close()


def resolve_recording_path(path: str, recordings_dir: Optional[Path] = None) -> Path:
    """
    Resolve a relative recording path below the recordings directory.

    Raises:
        SinkError: For empty, absolute or escaping paths
    """
    base = Path(recordings_dir or RECORDINGS_DIR).resolve()

    if not isinstance(path, str) or not path.strip():
        raise SinkError("File sink requires a path")

    relative = Path(path)
    if relative.is_absolute() or ".." in relative.parts:
        raise SinkError(f"Recording path must be relative to the recordings directory: {path}")

    resolved = (base / relative).resolve()
    if base not in resolved.parents:
        raise SinkError(f"Recording path escapes the recordings directory: {path}")

    return resolved


def create_sink(
    kind: str = "null",
    path: Optional[str] = None,
    recordings_dir: Optional[Path] = None,
) -> MediaSink:
    """
    Build a sink by name.

    Player executables always come from settings; file sinks write only
    below the recordings directory.

    Args:
        kind: "null", "file" (requires a relative path) or "player"
        path: Recording path for file sinks
        recordings_dir: Overrides RECORDINGS_DIR
    """
    if kind == "null":
        return NullSink()
    if kind == "file":
        return FileSink(str(resolve_recording_path(path, recordings_dir)))
    if kind == "player":
        return ExternalPlayerSink()
    raise SinkError(f"Unknown sink type: {kind}")
