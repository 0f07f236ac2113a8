"""
Control server tests
"""

from unittest.mock import AsyncMock, Mock

import pytest

from streamviewer.core import ConnectionRegistry, NullSink, PathMonitor, RequestError
from streamviewer.server import ControlServer

from fakes import FakeTransport


@pytest.fixture
def transports():
    return {kind: FakeTransport(kind) for kind in ("hls", "webrtc", "rtsp")}


@pytest.fixture
def api():
    api = Mock()
    api.list_paths = AsyncMock(return_value={"items": [
        {"name": "camera1", "ready": True, "conf": {"source": "publisher"}},
    ]})
    api.add_path = AsyncMock(return_value=None)
    api.delete_path = AsyncMock(return_value=None)
    return api


@pytest.fixture
def server(transports, api, tmp_path):
    registries = {kind: ConnectionRegistry(transport) for kind, transport in transports.items()}
    return ControlServer(
        "127.0.0.1", 0, registries, PathMonitor(api, interval=60),
        cors_origins=["http://localhost:5000"],
        recordings_dir=tmp_path,
    )


@pytest.fixture
async def client(aiohttp_client, server):
    return await aiohttp_client(server.app)


class TestViewers:

    async def test_health(self, client):
        response = await client.get("/health")
        data = await response.json()

        assert response.status == 200
        assert data["status"] == "healthy"
        assert data["active_viewers"] == {"hls": 0, "webrtc": 0, "rtsp": 0}

    async def test_cors_allows_configured_origin_only(self, client):
        allowed = await client.options("/viewers", headers={
            "Origin": "http://localhost:5000",
            "Access-Control-Request-Method": "GET",
        })
        other = await client.options("/viewers", headers={
            "Origin": "http://evil.example",
            "Access-Control-Request-Method": "GET",
        })

        assert allowed.headers.get("Access-Control-Allow-Origin") == "http://localhost:5000"
        assert "Access-Control-Allow-Origin" not in other.headers

    async def test_start_hls_viewer_with_default_sink(self, client, server, transports):
        response = await client.post("/viewers/hls/camera1")

        assert response.status == 201
        assert (await response.json())["name"] == "camera1"
        assert "camera1" in server.registries["hls"]
        assert isinstance(transports["hls"].opened[0].params["sink"], NullSink)

    async def test_start_rtsp_viewer_without_sink(self, client, transports):
        response = await client.post("/viewers/rtsp/site/camera1")

        assert response.status == 201
        handle = transports["rtsp"].opened[0]
        assert handle.name == "site/camera1"
        assert handle.params == {}

    async def test_start_with_file_sink(self, client, transports, tmp_path):
        response = await client.post(
            "/viewers/webrtc/camera1",
            json={"sink": "file", "path": "site/camera1.mp4"},
        )

        assert response.status == 201
        sink = transports["webrtc"].opened[0].params["sink"]
        assert sink.path == tmp_path.resolve() / "site" / "camera1.mp4"

    @pytest.mark.parametrize("path", ["/tmp/camera1.mp4", "../camera1.mp4", "site/../../camera1.mp4", ""])
    async def test_file_sink_outside_recordings_dir_is_rejected(self, client, transports, path):
        response = await client.post("/viewers/hls/camera1", json={"sink": "file", "path": path})

        assert response.status == 400
        assert transports["hls"].opened == []

    async def test_player_executable_options_are_rejected(self, client, server, transports, tmp_path):
        marker = tmp_path / "marker"
        response = await client.post("/viewers/hls/camera1", json={
            "sink": "player",
            "player_path": "/bin/sh",
            "probe_path": "/bin/true",
            "player_args": ["-c", f"touch {marker}"],
        })

        assert response.status == 400
        assert "player_args" in (await response.json())["error"]
        assert transports["hls"].opened == []
        assert "camera1" not in server.registries["hls"]
        assert not marker.exists()

    async def test_path_only_for_file_sink(self, client, transports):
        response = await client.post("/viewers/hls/camera1", json={"sink": "null", "path": "a.ts"})

        assert response.status == 400
        assert transports["hls"].opened == []

    async def test_rtsp_viewer_takes_no_options(self, client, transports):
        response = await client.post("/viewers/rtsp/camera1", json={"sink": "player"})

        assert response.status == 400
        assert transports["rtsp"].opened == []

    async def test_unknown_transport(self, client):
        response = await client.post("/viewers/dash/camera1")

        assert response.status == 404
        assert "Unknown transport" in (await response.json())["error"]

    async def test_invalid_sink(self, client):
        response = await client.post("/viewers/hls/camera1", json={"sink": "screen"})

        assert response.status == 400

    async def test_invalid_json(self, client):
        response = await client.post(
            "/viewers/hls/camera1",
            data="{oops",
            headers={"Content-Type": "application/json"},
        )

        assert response.status == 400
        assert (await response.json())["error"] == "Invalid JSON body"

    async def test_transport_failure_is_bad_gateway(self, client, server, transports):
        transports["hls"].fail = True

        response = await client.post("/viewers/hls/camera1")

        assert response.status == 502
        assert "camera1" not in server.registries["hls"]

    async def test_list_viewers(self, client):
        await client.post("/viewers/hls/camera1")
        await client.post("/viewers/rtsp/camera2")

        data = await (await client.get("/viewers")).json()
        assert data["count"] == 2
        assert data["viewers"]["hls"][0]["name"] == "camera1"

        data = await (await client.get("/viewers/rtsp")).json()
        assert data["active"] == 1

    async def test_stop_viewer(self, client, server, transports):
        await client.post("/viewers/hls/camera1")

        response = await client.delete("/viewers/hls/camera1")

        assert response.status == 200
        assert "camera1" not in server.registries["hls"]
        assert transports["hls"].opened[0].closed

    async def test_stop_unknown_viewer(self, client):
        response = await client.delete("/viewers/hls/camera1")

        assert response.status == 404


class TestPaths:

    async def test_list_paths(self, client):
        response = await client.get("/paths")
        data = await response.json()

        assert response.status == 200
        assert data["count"] == 1
        assert data["paths"][0] == {
            "name": "camera1",
            "ready": True,
            "status": "Online",
            "source": "publisher",
            "readers": 0,
            "bytes_received": 0,
        }

    async def test_list_paths_upstream_error(self, client, api):
        api.list_paths.side_effect = RequestError("connection refused")

        response = await client.get("/paths")

        assert response.status == 502
        assert (await response.json())["error"] == "connection refused"

    async def test_add_path(self, client, api):
        response = await client.post("/paths/camera2", json={"source": "rtsp://10.0.0.6/stream"})

        assert response.status == 201
        api.add_path.assert_awaited_once_with("camera2", {"source": "rtsp://10.0.0.6/stream"})

    async def test_delete_path_failure(self, client, api):
        api.delete_path.side_effect = RequestError("path not found", status=404)

        response = await client.delete("/paths/camera9")

        assert response.status == 502
        assert (await response.json())["error"] == "path not found"
