"""
Stream Viewer

Viewer-side client for a MediaMTX-style media server: HLS, WebRTC (WHEP) and
RTSP-over-WebSocket connections kept one per stream path, plus a client for
the server's /v3 control API.
"""

__version__ = "1.0.0"
