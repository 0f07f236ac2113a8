"""
Path monitor tests
"""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from streamviewer.core import PathMonitor, PathRow, RequestError

PATH_LIST = {
    "pageCount": 1,
    "itemCount": 3,
    "items": [
        {"name": "camera1", "ready": True, "conf": {"source": "rtsp://10.0.0.5/stream"},
         "source": {"type": "rtspSource"}, "readers": [{"type": "hlsMuxer"}], "bytesReceived": 1024},
        {"name": "camera2", "ready": False, "conf": {"source": "publisher"}, "source": None},
        {"name": "camera3", "ready": True, "source": {"type": "rtmpConn"}},
    ],
}


@pytest.fixture
def api():
    api = Mock()
    api.list_paths = AsyncMock(return_value=PATH_LIST)
    api.add_path = AsyncMock(return_value=None)
    api.delete_path = AsyncMock(return_value=None)
    return api


class TestPathRow:

    def test_configured_source(self):
        row = PathRow.from_item(PATH_LIST["items"][0])

        assert row.status == "Online"
        assert row.source == "rtsp://10.0.0.5/stream"
        assert row.readers == 1
        assert row.bytes_received == 1024

    def test_offline(self):
        assert PathRow.from_item(PATH_LIST["items"][1]).status == "Offline"

    def test_live_source_type_fallback(self):
        assert PathRow.from_item(PATH_LIST["items"][2]).source == "rtmpConn"

    def test_no_source(self):
        row = PathRow.from_item({"name": "idle", "ready": False})

        assert row.source == "N/A"
        assert row.to_dict()["status"] == "Offline"


class TestPathMonitor:

    async def test_refresh_loads_rows(self, api):
        monitor = PathMonitor(api, interval=60)
        assert monitor.loading

        rows = await monitor.refresh()

        assert [row.name for row in rows] == ["camera1", "camera2", "camera3"]
        assert monitor.error is None
        assert not monitor.loading
        assert monitor.get_row("camera2").ready is False

    async def test_refresh_error_keeps_rows(self, api):
        monitor = PathMonitor(api, interval=60)
        await monitor.refresh()

        api.list_paths.side_effect = RequestError("connection refused")
        rows = await monitor.refresh()

        assert monitor.error == "connection refused"
        assert len(rows) == 3

    async def test_add_path_refreshes(self, api):
        monitor = PathMonitor(api, interval=60)

        assert await monitor.add_path("camera4", {"source": "publisher"})

        api.add_path.assert_awaited_once_with("camera4", {"source": "publisher"})
        api.list_paths.assert_awaited_once()

    async def test_delete_path_error_recorded(self, api):
        api.delete_path.side_effect = RequestError("path not found", status=404)
        monitor = PathMonitor(api, interval=60)

        assert not await monitor.delete_path("missing")

        assert monitor.error == "path not found"
        api.list_paths.assert_not_awaited()

    async def test_update_callback(self, api):
        updates = []
        monitor = PathMonitor(api, interval=60, on_update=lambda m: updates.append(len(m.rows)))

        await monitor.refresh()

        assert updates == [3]

    async def test_polling(self, api, wait_until):
        monitor = PathMonitor(api, interval=0.01)

        await monitor.start()
        await wait_until(lambda: api.list_paths.await_count >= 3)
        await monitor.stop()

        assert not monitor.running
        count = api.list_paths.await_count
        await asyncio.sleep(0.05)
        assert api.list_paths.await_count == count
        assert monitor.get_stats()["online"] == 2

    async def test_null_items_is_an_empty_list(self, api):
        api.list_paths.return_value = {"items": None}
        monitor = PathMonitor(api, interval=60)

        rows = await monitor.refresh()

        assert rows == []
        assert monitor.error is None

    @pytest.mark.parametrize("payload", [["camera1"], {"items": ["camera1"]}, {"items": 3}])
    async def test_malformed_payload_recorded(self, api, payload):
        monitor = PathMonitor(api, interval=60)
        await monitor.refresh()

        api.list_paths.return_value = payload
        rows = await monitor.refresh()

        assert monitor.error.startswith("Invalid path list")
        assert len(rows) == 3
        assert not monitor.loading

    async def test_polling_survives_malformed_payload(self, api, wait_until):
        payloads = iter([{"items": 3}, {"items": 3}])
        api.list_paths.side_effect = lambda: next(payloads, PATH_LIST)
        errors = []
        monitor = PathMonitor(api, interval=0.01, on_update=lambda m: errors.append(m.error))

        await monitor.start()
        await wait_until(lambda: monitor.refresh_count >= 1)
        assert not monitor.task.done()
        await monitor.stop()

        assert errors[0].startswith("Invalid path list")
        assert errors[1].startswith("Invalid path list")
        assert monitor.error is None
        assert len(monitor.rows) == 3
