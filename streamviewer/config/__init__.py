"""
Stream Viewer Configuration Package
"""

from .settings import *

__all__ = [
    "API_BASE_URL",
    "HLS_BASE_URL",
    "WEBRTC_BASE_URL",
    "RTSP_WS_URL",
    "CONTROL_SERVER_HOST",
    "CONTROL_SERVER_PORT",
    "LOG_LEVEL",
]
