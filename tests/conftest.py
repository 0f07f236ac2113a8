"""
Pytest configuration for Stream Viewer
Shared fixtures: fake media server and polling helper
"""

import asyncio
import json
from typing import Any, Dict, List, Union

import pytest
from aiohttp import WSMsgType, web
from multidict import CIMultiDict

from fakes import OFFER_SDP


class FakeMediaServer:
    """
    In-process media server.

    Serves HLS files under /hls, the WHEP endpoint under /webrtc, the RTSP
    WebSocket under /rtsp and the control API under /v3. Tests adjust the
    public attributes to script responses.
    """

    def __init__(self):
        self.base_url = ""

        # HLS: path below /hls -> body; queued one-shot responses per path
        self.hls_files: Dict[str, Union[str, bytes]] = {}
        self.hls_failures: Dict[str, List[Union[int, bytes]]] = {}
        self.hls_requests: List[str] = []

        # WHEP
        self.whep_status = 201
        self.patch_status = 204
        self.whep_offer = {"type": "offer", "sdp": OFFER_SDP}
        self.whep_answers: List[Dict[str, Any]] = []

        # RTSP WebSocket
        self.rtsp_connections: List[str] = []

        # Control API
        self.paths: Dict[str, Dict[str, Any]] = {}
        self.required_token = None
        self.api_requests: List[Dict[str, Any]] = []

    @property
    def hls_url(self) -> str:
        return f"{self.base_url}/hls"

    @property
    def webrtc_url(self) -> str:
        return f"{self.base_url}/webrtc"

    @property
    def rtsp_url(self) -> str:
        return self.base_url.replace("http://", "ws://") + "/rtsp"

    @property
    def api_url(self) -> str:
        return self.base_url

    def build_app(self) -> web.Application:
        @web.middleware
        async def api_auth(request, handler):
            if not request.path.startswith("/v3/"):
                return await handler(request)

            self.api_requests.append({
                "method": request.method,
                "path": request.path,
                "query": dict(request.query),
                "headers": CIMultiDict(request.headers),
            })

            if self.required_token is not None:
                if request.headers.get("Authorization") != f"Bearer {self.required_token}":
                    return web.json_response({"error": "authentication error"}, status=401)

            return await handler(request)

        app = web.Application(middlewares=[api_auth])
        app.router.add_get("/hls/{tail:.+}", self.hls_file)
        app.router.add_post("/webrtc/{name}/whep", self.whep_offer_handler)
        app.router.add_patch("/webrtc/{name}/whep", self.whep_answer_handler)
        app.router.add_get("/rtsp/{name}", self.rtsp_socket)

        app.router.add_get("/v3/paths/list", self.paths_list)
        app.router.add_post("/v3/config/paths/add/{name}", self.paths_add)
        app.router.add_delete("/v3/config/paths/delete/{name}", self.paths_delete)
        app.router.add_get("/v3/broken", self.broken_json)
        app.router.add_get("/v3/empty", self.empty_body)
        app.router.add_route("*", "/v3/{tail:.*}", self.api_echo)
        return app

    # HLS ----------------------------------------------------------------

    async def hls_file(self, request: web.Request) -> web.Response:
        tail = request.match_info["tail"]
        self.hls_requests.append(tail)

        queued = self.hls_failures.get(tail)
        if queued:
            response = queued.pop(0)
            if isinstance(response, int):
                return web.Response(status=response)
            return web.Response(body=response)

        body = self.hls_files.get(tail)
        if body is None:
            return web.Response(status=404)
        if isinstance(body, str):
            return web.Response(text=body, content_type="application/vnd.apple.mpegurl")
        return web.Response(body=body, content_type="video/mp2t")

    # WHEP ---------------------------------------------------------------

    async def whep_offer_handler(self, request: web.Request) -> web.Response:
        if self.whep_status >= 400:
            return web.json_response({"error": "path not ready"}, status=self.whep_status)
        return web.json_response(self.whep_offer, status=self.whep_status)

    async def whep_answer_handler(self, request: web.Request) -> web.Response:
        self.whep_answers.append(await request.json())
        return web.Response(status=self.patch_status)

    # RTSP ---------------------------------------------------------------

    async def rtsp_socket(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        self.rtsp_connections.append(request.match_info["name"])

        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                if msg.data == "BYE":
                    await ws.close()
                    break
                await ws.send_str(msg.data)
            elif msg.type == WSMsgType.BINARY:
                await ws.send_bytes(msg.data)

        return ws

    # Control API --------------------------------------------------------

    async def paths_list(self, request: web.Request) -> web.Response:
        items = list(self.paths.values())
        per_page = int(request.query.get("itemsPerPage", 100))
        page = int(request.query.get("page", 0))
        page_count = (len(items) + per_page - 1) // per_page
        return web.json_response({
            "pageCount": page_count,
            "itemCount": len(items),
            "items": items[page * per_page:(page + 1) * per_page],
        })

    async def paths_add(self, request: web.Request) -> web.Response:
        name = request.match_info["name"]
        if name in self.paths:
            return web.json_response({"error": "path already exists"}, status=400)
        conf = await request.json()
        self.paths[name] = {"name": name, "ready": False, "conf": conf, "source": None}
        return web.Response(status=200)

    async def paths_delete(self, request: web.Request) -> web.Response:
        name = request.match_info["name"]
        if self.paths.pop(name, None) is None:
            return web.json_response({"error": "path not found"}, status=404)
        return web.Response(status=200)

    async def broken_json(self, request: web.Request) -> web.Response:
        return web.Response(text="{not json", content_type="application/json")

    async def empty_body(self, request: web.Request) -> web.Response:
        return web.Response(status=200)

    async def api_echo(self, request: web.Request) -> web.Response:
        body = None
        if request.can_read_body:
            body = json.loads(await request.text())
        return web.json_response({
            "method": request.method,
            "path": request.path,
            "query": dict(request.query),
            "body": body,
        })


@pytest.fixture
async def media_server(aiohttp_server):
    """Running fake media server"""
    fake = FakeMediaServer()
    server = await aiohttp_server(fake.build_app())
    fake.base_url = f"http://{server.host}:{server.port}"
    return fake


@pytest.fixture
def wait_until():
    """Poll a predicate until it holds or the timeout expires"""
    async def _wait_until(predicate, timeout: float = 5.0, interval: float = 0.02):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("Condition not met within timeout")
            await asyncio.sleep(interval)
    return _wait_until
