"""
HLS Playlist Parser

Parses M3U8 master and media playlists served by the media server.

Key responsibilities:
- Split master playlists into variant streams
- Extract segments, media sequence and target duration from media playlists
- Track the fMP4 init section (EXT-X-MAP) and end-of-stream marker
- Resolve segment and variant URIs against the playlist URL
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from urllib.parse import urljoin

logger = logging.getLogger(__name__)


class PlaylistError(Exception):
    """Raised when a playlist cannot be parsed"""
    pass


@dataclass
class Variant:
    """A variant stream listed in a master playlist"""
    uri: str
    bandwidth: int = 0
    resolution: Optional[str] = None
    codecs: Optional[str] = None


@dataclass
class Segment:
    """A media segment listed in a media playlist"""
    uri: str
    duration: float
    sequence: int
    title: str = ""


@dataclass
class Playlist:
    """Parsed playlist (master or media)"""
    version: int = 1
    target_duration: float = 0.0
    media_sequence: int = 0
    segments: List[Segment] = field(default_factory=list)
    variants: List[Variant] = field(default_factory=list)
    init_uri: Optional[str] = None
    endlist: bool = False

    @property
    def is_master(self) -> bool:
        return bool(self.variants)

    @property
    def last_sequence(self) -> int:
        if not self.segments:
            return self.media_sequence - 1
        return self.segments[-1].sequence


def parse_attribute_list(value: str) -> Dict[str, str]:
    """
    Parse an attribute list such as BANDWIDTH=800000,CODECS="avc1,mp4a".

    Commas inside quoted strings do not split attributes.
    """
    attributes = {}
    key = []
    current = []
    in_key = True
    in_quotes = False

    def flush():
        name = "".join(key).strip()
        if name:
            attributes[name] = "".join(current).strip().strip('"')

    for char in value:
        if in_key:
            if char == "=":
                in_key = False
            elif char == ",":
                key.clear()
            else:
                key.append(char)
            continue

        if char == '"':
            in_quotes = not in_quotes
            current.append(char)
        elif char == "," and not in_quotes:
            flush()
            key.clear()
            current.clear()
            in_key = True
        else:
            current.append(char)

    if not in_key:
        flush()

    return attributes


def parse_playlist(text: str, base_url: str = "") -> Playlist:
    """
    Parse an M3U8 playlist.

    Args:
        text: Playlist body
        base_url: URL the playlist was loaded from (for relative URIs)

    Returns:
        Parsed playlist

    Raises:
        PlaylistError: If the body is not an M3U8 playlist
    """
    lines = [line.strip() for line in text.splitlines()]
    lines = [line for line in lines if line]

    if not lines or not lines[0].startswith("#EXTM3U"):
        raise PlaylistError("Playlist must start with #EXTM3U")

    playlist = Playlist()
    pending_duration: Optional[float] = None
    pending_title = ""
    pending_variant: Optional[Dict[str, str]] = None
    sequence: Optional[int] = None

    for line in lines[1:]:
        if line.startswith("#EXT-X-VERSION:"):
            playlist.version = _parse_int(line, "#EXT-X-VERSION:")

        elif line.startswith("#EXT-X-TARGETDURATION:"):
            playlist.target_duration = _parse_float(line, "#EXT-X-TARGETDURATION:")

        elif line.startswith("#EXT-X-MEDIA-SEQUENCE:"):
            playlist.media_sequence = _parse_int(line, "#EXT-X-MEDIA-SEQUENCE:")

        elif line.startswith("#EXT-X-MAP:"):
            attributes = parse_attribute_list(line[len("#EXT-X-MAP:"):])
            if "URI" in attributes:
                playlist.init_uri = urljoin(base_url, attributes["URI"])

        elif line.startswith("#EXT-X-STREAM-INF:"):
            pending_variant = parse_attribute_list(line[len("#EXT-X-STREAM-INF:"):])

        elif line.startswith("#EXTINF:"):
            duration, _, title = line[len("#EXTINF:"):].partition(",")
            try:
                pending_duration = float(duration)
            except ValueError:
                raise PlaylistError(f"Invalid EXTINF duration: {line}")
            pending_title = title

        elif line.startswith("#EXT-X-ENDLIST"):
            playlist.endlist = True

        elif line.startswith("#"):
            # Unsupported tags (parts, preload hints, comments) are skipped
            continue

        elif pending_variant is not None:
            playlist.variants.append(Variant(
                uri=urljoin(base_url, line),
                bandwidth=int(pending_variant.get("BANDWIDTH", "0") or 0),
                resolution=pending_variant.get("RESOLUTION"),
                codecs=pending_variant.get("CODECS"),
            ))
            pending_variant = None

        elif pending_duration is not None:
            if sequence is None:
                sequence = playlist.media_sequence
            playlist.segments.append(Segment(
                uri=urljoin(base_url, line),
                duration=pending_duration,
                sequence=sequence,
                title=pending_title,
            ))
            sequence += 1
            pending_duration = None
            pending_title = ""

        else:
            raise PlaylistError(f"URI without EXTINF or EXT-X-STREAM-INF: {line}")

    logger.debug(
        f"Parsed playlist: {len(playlist.variants)} variants, "
        f"{len(playlist.segments)} segments, endlist={playlist.endlist}"
    )

    return playlist


def select_variant(playlist: Playlist) -> Variant:
    """Pick the starting variant (first listed, like the browser player)"""
    if not playlist.variants:
        raise PlaylistError("Master playlist has no variants")
    return playlist.variants[0]


def _parse_int(line: str, prefix: str) -> int:
    try:
        return int(line[len(prefix):])
    except ValueError:
        raise PlaylistError(f"Invalid integer in tag: {line}")


def _parse_float(line: str, prefix: str) -> float:
    try:
        return float(line[len(prefix):])
    except ValueError:
        raise PlaylistError(f"Invalid number in tag: {line}")
