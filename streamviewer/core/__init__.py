"""
Stream Viewer Core Modules

Connection registry and the HLS, WebRTC and RTSP transports, plus the
media server control API client.
"""

from .registry import (
    ConnectionHandle,
    ConnectionRegistry,
    ConnectionRegistryContext,
    ConnectionSupersededError,
    RegistryError,
    Transport,
    TransportOpenError,
)

from .events import (
    EventChannel,
    EventType,
    ErrorType,
    PlayerEvent,
)

from .playlist import (
    Playlist,
    PlaylistError,
    Segment,
    Variant,
    parse_playlist,
    select_variant,
)

from .sinks import (
    MediaSink,
    NullSink,
    FileSink,
    ExternalPlayerSink,
    SinkError,
    MediaDecodeError,
    check_segment,
    create_sink,
    resolve_recording_path,
)

from .hls import (
    HLSTransport,
    HLSPlayer,
    HLSHandle,
    NativePlaybackHandle,
    HLSError,
    HLSPlaybackError,
    UnsupportedPlaybackError,
)

from .webrtc import (
    WebRTCTransport,
    WebRTCHandle,
    NegotiationError,
)

from .rtsp import (
    RTSPTransport,
    RTSPHandle,
    SocketOpenError,
)

from .api_client import (
    ApiClient,
    ApiClientContext,
    AuthContext,
    ApiError,
    AuthorizationError,
    RequestError,
)

from .path_monitor import (
    PathMonitor,
    PathRow,
)

__all__ = [
    # Registry
    "ConnectionHandle",
    "ConnectionRegistry",
    "ConnectionRegistryContext",
    "ConnectionSupersededError",
    "RegistryError",
    "Transport",
    "TransportOpenError",
    # Events
    "EventChannel",
    "EventType",
    "ErrorType",
    "PlayerEvent",
    # Playlist
    "Playlist",
    "PlaylistError",
    "Segment",
    "Variant",
    "parse_playlist",
    "select_variant",
    # Sinks
    "MediaSink",
    "NullSink",
    "FileSink",
    "ExternalPlayerSink",
    "SinkError",
    "MediaDecodeError",
    "check_segment",
    "create_sink",
    "resolve_recording_path",
    # HLS
    "HLSTransport",
    "HLSPlayer",
    "HLSHandle",
    "NativePlaybackHandle",
    "HLSError",
    "HLSPlaybackError",
    "UnsupportedPlaybackError",
    # WebRTC
    "WebRTCTransport",
    "WebRTCHandle",
    "NegotiationError",
    # RTSP
    "RTSPTransport",
    "RTSPHandle",
    "SocketOpenError",
    # API client
    "ApiClient",
    "ApiClientContext",
    "AuthContext",
    "ApiError",
    "AuthorizationError",
    "RequestError",
    # Path monitor
    "PathMonitor",
    "PathRow",
]
