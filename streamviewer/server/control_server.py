"""
Stream Viewer Control Server

REST API for controlling viewers from a dashboard.
Provides endpoints for starting/stopping viewers per transport and for
managing the media server's paths.

Integrates with:
- ConnectionRegistry: One registry per transport (hls, webrtc, rtsp)
- PathMonitor: Path list and add/delete actions against the control API

Built with aiohttp for async operation.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from aiohttp import web
import aiohttp_cors

from ..core import (
    ConnectionRegistry,
    ConnectionSupersededError,
    PathMonitor,
    SinkError,
    TransportOpenError,
    create_sink,
)
from ..config.settings import CORS_ALLOWED_ORIGINS, RECORDINGS_DIR

logger = logging.getLogger(__name__)

# Transports whose open() takes a media sink
SINK_TRANSPORTS = ("hls", "webrtc")

# Request body keys accepted when starting a viewer
SINK_OPTIONS = {"sink", "path"}


class ControlServer:
    """
    REST control server.

    Endpoints:
        GET    /health                       - Health check
        GET    /viewers                      - List viewers for every transport
        GET    /viewers/{transport}          - List viewers for one transport
        POST   /viewers/{transport}/{name}   - Start viewer (body selects sink)
        DELETE /viewers/{transport}/{name}   - Stop viewer
        GET    /paths                        - List media server paths
        POST   /paths/{name}                 - Add path (body is path config)
        DELETE /paths/{name}                 - Delete path

    Usage:
        server = ControlServer(
            host="127.0.0.1",
            port=8090,
            registries={"hls": hls_registry, "webrtc": webrtc_registry, "rtsp": rtsp_registry},
            path_monitor=path_monitor,
        )
        await server.start()
    """

    def __init__(
        self,
        host: str,
        port: int,
        registries: Dict[str, ConnectionRegistry],
        path_monitor: Optional[PathMonitor] = None,
        cors_origins=None,
        recordings_dir: Optional[Path] = None,
    ):
        self.host = host
        self.port = port
        self.registries = registries
        self.path_monitor = path_monitor
        self.cors_origins = cors_origins if cors_origins is not None else CORS_ALLOWED_ORIGINS
        self.recordings_dir = recordings_dir or RECORDINGS_DIR
        self.started_at: Optional[datetime] = None

        self.app = web.Application()
        self.runner = None
        self.site = None

        self._setup_routes()

        logger.info(f"Control server initialized on {host}:{port}")

    def _setup_routes(self) -> None:
        self.app.router.add_get('/health', self.health_check)
        self.app.router.add_get('/viewers', self.list_all_viewers)
        self.app.router.add_get('/viewers/{transport}', self.list_transport_viewers)
        self.app.router.add_post('/viewers/{transport}/{name:.+}', self.start_viewer)
        self.app.router.add_delete('/viewers/{transport}/{name:.+}', self.stop_viewer)
        self.app.router.add_get('/paths', self.list_paths)
        self.app.router.add_post('/paths/{name:.+}', self.add_path)
        self.app.router.add_delete('/paths/{name:.+}', self.delete_path)

        # Setup CORS for dashboard access
        cors = aiohttp_cors.setup(self.app, defaults={
            origin: aiohttp_cors.ResourceOptions(
                allow_credentials=True,
                expose_headers="*",
                allow_headers="*",
                allow_methods="*"
            )
            for origin in self.cors_origins
        })

        for route in list(self.app.router.routes()):
            cors.add(route)

    async def start(self) -> None:
        """Start control server"""
        try:
            logger.info(f"Starting control server on http://{self.host}:{self.port}")

            self.runner = web.AppRunner(self.app)
            await self.runner.setup()

            self.site = web.TCPSite(self.runner, self.host, self.port)
            await self.site.start()
            self.started_at = datetime.now()

            logger.info(f"✅ Control server running on http://{self.host}:{self.port}")

        except Exception as e:
            logger.error(f"Failed to start control server: {e}")
            raise

    async def stop(self) -> None:
        """Stop control server. Viewers are left to their registries' owner."""
        logger.info("Stopping control server...")

        if self.site:
            await self.site.stop()
        if self.runner:
            await self.runner.cleanup()

        self.site = None
        self.runner = None

        logger.info("✅ Control server stopped")

    # ========================================================================
    # Viewer endpoints
    # ========================================================================

    async def health_check(self, request: web.Request) -> web.Response:
        path_error = self.path_monitor.error if self.path_monitor else None

        health = {
            "status": "degraded" if path_error else "healthy",
            "timestamp": datetime.now().isoformat(),
            "active_viewers": {kind: len(registry) for kind, registry in self.registries.items()},
            "path_monitor": self.path_monitor.get_stats() if self.path_monitor else None,
        }

        return web.json_response(health)

    async def list_all_viewers(self, request: web.Request) -> web.Response:
        viewers = {
            kind: registry.get_stats()["connections"]
            for kind, registry in self.registries.items()
        }

        return web.json_response({
            "viewers": viewers,
            "count": sum(len(items) for items in viewers.values())
        })

    async def list_transport_viewers(self, request: web.Request) -> web.Response:
        """
        List viewers for one transport.

        Path params:
            transport: hls, webrtc or rtsp
        """
        registry, error = self._get_registry(request)
        if error:
            return error

        return web.json_response(registry.get_stats())

    async def start_viewer(self, request: web.Request) -> web.Response:
        """
        Start a viewer, replacing any existing one for the path.

        Path params:
            transport: hls, webrtc or rtsp
            name: Stream path name

        Request body (optional, hls/webrtc only):
            {
                "sink": "null" | "file" | "player",
                "path": "camera1.ts"  # file sink, relative to RECORDINGS_DIR
            }
        """
        registry, error = self._get_registry(request)
        if error:
            return error

        name = request.match_info['name']

        body, error = await self._read_json(request)
        if error:
            return error

        params: Dict[str, Any] = {}
        sink = None

        if registry.kind in SINK_TRANSPORTS:
            sink, error = self._build_sink(body)
            if error:
                return error
            params["sink"] = sink
        elif body:
            return web.json_response(
                {"error": f"{registry.kind} viewers take no options"},
                status=400
            )

        try:
            handle = await registry.start(name, **params)
        except ConnectionSupersededError as e:
            return web.json_response({"error": str(e)}, status=409)
        except TransportOpenError as e:
            if sink is not None:
                await sink.close()
            return web.json_response(
                {"error": f"Failed to start {registry.kind} viewer: {e}"},
                status=502
            )

        return web.json_response(handle.get_stats(), status=201)

    async def stop_viewer(self, request: web.Request) -> web.Response:
        registry, error = self._get_registry(request)
        if error:
            return error

        name = request.match_info['name']

        if name not in registry:
            return web.json_response(
                {"error": f"No active {registry.kind} viewer for {name}"},
                status=404
            )

        await registry.stop(name)

        return web.json_response({"name": name, "transport": registry.kind, "stopped": True})

    # ========================================================================
    # Path endpoints
    # ========================================================================

    async def list_paths(self, request: web.Request) -> web.Response:
        if not self.path_monitor:
            return web.json_response({"error": "Path monitor not available"}, status=404)

        rows = await self.path_monitor.refresh()
        if self.path_monitor.error:
            return web.json_response({"error": self.path_monitor.error}, status=502)

        return web.json_response({
            "paths": [row.to_dict() for row in rows],
            "count": len(rows)
        })

    async def add_path(self, request: web.Request) -> web.Response:
        """
        Add a path to the media server.

        Request body: path configuration, e.g. {"source": "rtsp://10.0.0.5/stream"}
        """
        if not self.path_monitor:
            return web.json_response({"error": "Path monitor not available"}, status=404)

        name = request.match_info['name']

        config, error = await self._read_json(request)
        if error:
            return error

        if not await self.path_monitor.add_path(name, config):
            return web.json_response({"error": self.path_monitor.error}, status=502)

        return web.json_response({"name": name, "added": True}, status=201)

    async def delete_path(self, request: web.Request) -> web.Response:
        if not self.path_monitor:
            return web.json_response({"error": "Path monitor not available"}, status=404)

        name = request.match_info['name']

        if not await self.path_monitor.delete_path(name):
            return web.json_response({"error": self.path_monitor.error}, status=502)

        return web.json_response({"name": name, "deleted": True})

    # ========================================================================
    # Internal helpers
    # ========================================================================

    def _build_sink(self, body: Dict[str, Any]):
        """Build the sink a request asked for. Returns (sink, error_response)."""
        unsupported = sorted(set(body) - SINK_OPTIONS)
        if unsupported:
            return None, web.json_response(
                {"error": f"Unsupported sink options: {', '.join(unsupported)}"},
                status=400
            )

        kind = body.get("sink", "null")
        if "path" in body and kind != "file":
            return None, web.json_response(
                {"error": "path is only accepted for file sinks"},
                status=400
            )

        try:
            return create_sink(kind, path=body.get("path"), recordings_dir=self.recordings_dir), None
        except SinkError as e:
            return None, web.json_response({"error": f"Invalid sink: {e}"}, status=400)

    def _get_registry(self, request: web.Request):
        transport = request.match_info['transport']
        registry = self.registries.get(transport)
        if registry is None:
            return None, web.json_response(
                {"error": f"Unknown transport: {transport}"},
                status=404
            )
        return registry, None

    async def _read_json(self, request: web.Request):
        """Read an optional JSON object body. Returns (body, error_response)."""
        if not request.can_read_body:
            return {}, None

        try:
            body = await request.json()
        except ValueError:
            return None, web.json_response({"error": "Invalid JSON body"}, status=400)

        if body is None:
            return {}, None
        if not isinstance(body, dict):
            return None, web.json_response({"error": "JSON body must be an object"}, status=400)

        return body, None

    def get_stats(self) -> Dict[str, Any]:
        return {
            "host": self.host,
            "port": self.port,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "viewers": {kind: len(registry) for kind, registry in self.registries.items()},
        }
