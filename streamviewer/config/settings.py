"""
Stream Viewer Configuration Settings

Configuration for the media server viewer service (HLS, WebRTC, RTSP viewers
and the REST control API client).
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Base paths
BASE_DIR = Path(__file__).parent.parent
PROJECT_ROOT = BASE_DIR.parent
LOG_DIR = Path(os.getenv("LOG_DIR", str(PROJECT_ROOT / "logs")))

# Load environment variables from the project's .env file
env_file = PROJECT_ROOT / ".env"
if env_file.exists():
    load_dotenv(env_file)

# ============================================================================
# Media Server Endpoints
# ============================================================================

# REST control API (paths, sessions, configuration, recordings)
API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:9997")
API_VERSION_PREFIX = "/v3"

# Optional bearer token used when the control API has auth enabled
API_TOKEN = os.getenv("API_TOKEN") or None

# Playback endpoints
HLS_BASE_URL = os.getenv("HLS_BASE_URL", "http://localhost:8888")
WEBRTC_BASE_URL = os.getenv("WEBRTC_BASE_URL", "http://localhost:8889")
RTSP_WS_URL = os.getenv("RTSP_WS_URL", "ws://localhost:8554")

# STUN server for the WebRTC peer connection
STUN_SERVER = os.getenv("STUN_SERVER", "stun.l.google.com")
STUN_PORT = int(os.getenv("STUN_PORT", "19302"))

# HTTP request timeout
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "10"))

# ============================================================================
# HLS Player Configuration
# ============================================================================

HLS_MIME_TYPE = "application/vnd.apple.mpegurl"
HLS_MANIFEST_NAME = "index.m3u8"

# Manifest load attempts before a fatal network error is raised
HLS_MANIFEST_RETRIES = int(os.getenv("HLS_MANIFEST_RETRIES", "3"))
HLS_RETRY_DELAY = float(os.getenv("HLS_RETRY_DELAY", "1.0"))  # seconds

# Playback must start within this many seconds
HLS_START_TIMEOUT = float(os.getenv("HLS_START_TIMEOUT", "20"))

# Recovery from fatal network/media errors during playback
HLS_RECOVERY_DELAY = float(os.getenv("HLS_RECOVERY_DELAY", "1.0"))  # seconds
HLS_MAX_RECOVERIES = int(os.getenv("HLS_MAX_RECOVERIES", "5"))

# Live playlist reload interval floor (seconds)
HLS_MIN_RELOAD_INTERVAL = 0.5

# ============================================================================
# WebRTC / RTSP Configuration
# ============================================================================

WEBRTC_NEGOTIATION_TIMEOUT = float(os.getenv("WEBRTC_NEGOTIATION_TIMEOUT", "15"))
RTSP_OPEN_TIMEOUT = float(os.getenv("RTSP_OPEN_TIMEOUT", "10"))

# ============================================================================
# Path Monitor Configuration
# ============================================================================

PATH_REFRESH_INTERVAL = float(os.getenv("PATH_REFRESH_INTERVAL", "5"))

# ============================================================================
# Control Server Configuration
# ============================================================================

CONTROL_SERVER_HOST = os.getenv("CONTROL_SERVER_HOST", "127.0.0.1")
CONTROL_SERVER_PORT = int(os.getenv("CONTROL_SERVER_PORT", "8090"))

# CORS settings (for dashboard integration)
CORS_ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ALLOWED_ORIGINS",
        "http://localhost:5000,http://127.0.0.1:5000",  # Dashboard server
    ).split(",")
    if origin.strip()
]

# ============================================================================
# Sink Configuration
# ============================================================================

FFPLAY_PATH = os.getenv("FFPLAY_PATH", "ffplay")
FFPROBE_PATH = os.getenv("FFPROBE_PATH", "ffprobe")

# File sinks only write below this directory
RECORDINGS_DIR = Path(os.getenv("RECORDINGS_DIR", str(PROJECT_ROOT / "recordings")))

# ============================================================================
# Logging Configuration
# ============================================================================

# Log levels: DEBUG, INFO, WARNING, ERROR, CRITICAL
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = str(LOG_DIR / "streamviewer.log")

# Log rotation
LOG_MAX_BYTES = 10 * 1024 * 1024  # 10MB
LOG_BACKUP_COUNT = 5

# Log format
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

DEBUG = os.getenv("DEBUG", "false").lower() == "true"

# ============================================================================
# Validation
# ============================================================================

def validate_config():
    """Validate configuration settings"""
    errors = []

    for key, url in (("API_BASE_URL", API_BASE_URL),
                     ("HLS_BASE_URL", HLS_BASE_URL),
                     ("WEBRTC_BASE_URL", WEBRTC_BASE_URL)):
        if not url.startswith("http://") and not url.startswith("https://"):
            errors.append(f"{key} must start with http:// or https://")

    if not RTSP_WS_URL.startswith("ws://") and not RTSP_WS_URL.startswith("wss://"):
        errors.append("RTSP_WS_URL must start with ws:// or wss://")

    if HLS_MANIFEST_RETRIES < 1:
        errors.append("HLS_MANIFEST_RETRIES must be at least 1")

    if REQUEST_TIMEOUT <= 0:
        errors.append("REQUEST_TIMEOUT must be positive")

    if not 0 < CONTROL_SERVER_PORT < 65536:
        errors.append(f"CONTROL_SERVER_PORT out of range: {CONTROL_SERVER_PORT}")

    if "*" in CORS_ALLOWED_ORIGINS:
        errors.append("CORS_ALLOWED_ORIGINS should list dashboard origins, not '*'")

    return errors

# Run validation on import
validation_errors = validate_config()
if validation_errors:
    import warnings
    for error in validation_errors:
        warnings.warn(f"Configuration warning: {error}")

# ============================================================================
# Helper Functions
# ============================================================================

def get_stun_url() -> str:
    """Get STUN server URL"""
    return f"stun:{STUN_SERVER}:{STUN_PORT}"

# ============================================================================
# Export Configuration
# ============================================================================

__all__ = [
    # Endpoints
    "API_BASE_URL",
    "API_VERSION_PREFIX",
    "API_TOKEN",
    "HLS_BASE_URL",
    "WEBRTC_BASE_URL",
    "RTSP_WS_URL",
    "STUN_SERVER",
    "STUN_PORT",
    "REQUEST_TIMEOUT",

    # HLS
    "HLS_MIME_TYPE",
    "HLS_MANIFEST_NAME",
    "HLS_MANIFEST_RETRIES",
    "HLS_RETRY_DELAY",
    "HLS_START_TIMEOUT",
    "HLS_RECOVERY_DELAY",
    "HLS_MAX_RECOVERIES",
    "HLS_MIN_RELOAD_INTERVAL",

    # WebRTC / RTSP
    "WEBRTC_NEGOTIATION_TIMEOUT",
    "RTSP_OPEN_TIMEOUT",

    # Path monitor
    "PATH_REFRESH_INTERVAL",

    # Control server
    "CONTROL_SERVER_HOST",
    "CONTROL_SERVER_PORT",
    "CORS_ALLOWED_ORIGINS",

    # Sinks
    "FFPLAY_PATH",
    "FFPROBE_PATH",
    "RECORDINGS_DIR",

    # Logging
    "LOG_DIR",
    "LOG_LEVEL",
    "LOG_FILE",
    "LOG_FORMAT",
    "LOG_DATE_FORMAT",
    "LOG_MAX_BYTES",
    "LOG_BACKUP_COUNT",

    # Helpers
    "validate_config",
    "get_stun_url",
]
