#!/usr/bin/env python3
"""
Stream Viewer Service Launcher

Starts the viewer registries, the path monitor and the control server.

Usage:
    streamviewer

    Or with custom settings:
    streamviewer --port 8090 --watch hls:camera1 --watch rtsp:camera2

Environment variables:
    API_BASE_URL - Media server control API URL
    API_TOKEN - Control API bearer token
    HLS_BASE_URL / WEBRTC_BASE_URL / RTSP_WS_URL - Playback endpoints
    CONTROL_SERVER_PORT - Control server port
"""

import argparse
import asyncio
import logging
import signal
import sys
from logging.handlers import RotatingFileHandler
from typing import Dict, List, Optional, Tuple

from .config import settings
from .core import (
    ApiClient,
    ConnectionRegistry,
    HLSTransport,
    PathMonitor,
    RTSPTransport,
    RegistryError,
    SinkError,
    WebRTCTransport,
    create_sink,
)
from .server import ControlServer

logger = logging.getLogger(__name__)

TRANSPORTS = ("hls", "webrtc", "rtsp")


def setup_logging(level: str = settings.LOG_LEVEL) -> None:
    """Configure console and rotating file logging"""
    settings.LOG_DIR.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=settings.LOG_FORMAT,
        datefmt=settings.LOG_DATE_FORMAT,
        handlers=[
            logging.StreamHandler(),
            RotatingFileHandler(
                settings.LOG_FILE,
                maxBytes=settings.LOG_MAX_BYTES,
                backupCount=settings.LOG_BACKUP_COUNT
            )
        ]
    )


def parse_watch(value: str) -> Tuple[str, str]:
    """Parse a transport:name pair"""
    transport, sep, name = value.partition(":")
    if not sep or not name or transport not in TRANSPORTS:
        raise argparse.ArgumentTypeError(
            f"expected transport:name with transport in {', '.join(TRANSPORTS)}, got '{value}'"
        )
    return transport, name


class ViewerService:
    """
    Main service orchestrator.

    Manages lifecycle of:
    - Control API client and path monitor
    - HLS, WebRTC and RTSP registries
    - Control server
    """

    def __init__(
        self,
        host: str = settings.CONTROL_SERVER_HOST,
        port: int = settings.CONTROL_SERVER_PORT,
        watch: Optional[List[Tuple[str, str]]] = None,
        sink_kind: str = "null",
        monitor_paths: bool = True,
    ):
        self.host = host
        self.port = port
        self.watch = watch or []
        self.sink_kind = sink_kind
        self.monitor_paths = monitor_paths

        self.api_client: Optional[ApiClient] = None
        self.path_monitor: Optional[PathMonitor] = None
        self.registries: Dict[str, ConnectionRegistry] = {}
        self.control_server: Optional[ControlServer] = None
        self.running = False
        self.stopped = False

    async def start(self):
        """Start all services"""
        try:
            logger.info("=" * 70)
            logger.info("Starting Stream Viewer Service")
            logger.info("=" * 70)

            logger.info("Validating configuration...")
            for error in settings.validate_config():
                logger.warning(f"⚠️ Configuration: {error}")

            self.api_client = ApiClient(settings.API_BASE_URL)
            self.path_monitor = PathMonitor(self.api_client, interval=settings.PATH_REFRESH_INTERVAL)

            self.registries = {
                "hls": ConnectionRegistry(HLSTransport(settings.HLS_BASE_URL)),
                "webrtc": ConnectionRegistry(WebRTCTransport(settings.WEBRTC_BASE_URL)),
                "rtsp": ConnectionRegistry(RTSPTransport(settings.RTSP_WS_URL)),
            }

            self.control_server = ControlServer(
                host=self.host,
                port=self.port,
                registries=self.registries,
                path_monitor=self.path_monitor,
            )
            await self.control_server.start()

            if self.monitor_paths:
                await self.path_monitor.start()

            self.running = True

            for transport, name in self.watch:
                await self.start_viewer(transport, name)

            logger.info("=" * 70)
            logger.info("🚀 Stream Viewer Service Started")
            logger.info("=" * 70)
            logger.info(f"Control Server:  http://{self.host}:{self.port}")
            logger.info(f"Control API:     {settings.API_BASE_URL}")
            logger.info(f"HLS:             {settings.HLS_BASE_URL}")
            logger.info(f"WebRTC:          {settings.WEBRTC_BASE_URL}")
            logger.info(f"RTSP:            {settings.RTSP_WS_URL}")
            logger.info("=" * 70)
            logger.info("Press Ctrl+C to stop")
            logger.info("=" * 70)

        except Exception as e:
            logger.error(f"Failed to start service: {e}", exc_info=True)
            await self.stop()
            raise

    async def start_viewer(self, transport: str, name: str) -> bool:
        """Start a viewer at boot. Failures are logged, not raised."""
        registry = self.registries[transport]
        params = {}
        if transport in ("hls", "webrtc"):
            params["sink"] = create_sink(self.sink_kind)

        try:
            await registry.start(name, **params)
            return True
        except (RegistryError, SinkError) as e:
            logger.error(f"Could not start {transport} viewer for '{name}': {e}")
            return False

    async def stop(self):
        """Stop all services"""
        if self.stopped:
            return
        self.stopped = True

        logger.info("=" * 70)
        logger.info("Stopping Stream Viewer Service")
        logger.info("=" * 70)

        self.running = False

        if self.control_server:
            try:
                await self.control_server.stop()
            except Exception as e:
                logger.error(f"Error stopping control server: {e}")

        if self.path_monitor:
            await self.path_monitor.stop()

        for kind, registry in self.registries.items():
            try:
                logger.info(f"Closing {kind} viewers...")
                await registry.aclose()
            except Exception as e:
                logger.error(f"Error closing {kind} viewers: {e}")

        if self.api_client:
            await self.api_client.close()

        logger.info("✅ Service stopped")

    async def run_forever(self):
        """Run until stopped"""
        try:
            while self.running:
                await asyncio.sleep(1)
        finally:
            await self.stop()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="streamviewer",
        description="Media server stream viewer service"
    )
    parser.add_argument("--host", default=settings.CONTROL_SERVER_HOST,
                        help="Control server host")
    parser.add_argument("--port", type=int, default=settings.CONTROL_SERVER_PORT,
                        help="Control server port")
    parser.add_argument("--watch", action="append", type=parse_watch, default=[],
                        metavar="TRANSPORT:NAME",
                        help="Start a viewer at boot (repeatable)")
    parser.add_argument("--sink", choices=("null", "player"), default="null",
                        help="Sink for viewers started with --watch")
    parser.add_argument("--no-path-monitor", action="store_true",
                        help="Do not poll the media server path list")
    parser.add_argument("--log-level", default="DEBUG" if settings.DEBUG else settings.LOG_LEVEL,
                        help="Log level")
    return parser


async def main(argv: Optional[List[str]] = None):
    """Main entry point"""
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    service = ViewerService(
        host=args.host,
        port=args.port,
        watch=args.watch,
        sink_kind=args.sink,
        monitor_paths=not args.no_path_monitor,
    )

    loop = asyncio.get_running_loop()

    def signal_handler(sig):
        logger.info(f"Received signal {sig.name}")
        asyncio.create_task(service.stop())

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))

    try:
        await service.start()
        await service.run_forever()
    except Exception as e:
        logger.error(f"Service error: {e}", exc_info=True)
        sys.exit(1)


def run():
    """Console script entry point"""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(0)


if __name__ == "__main__":
    run()
