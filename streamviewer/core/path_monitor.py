"""
Path Monitor

Polls the media server's path list through the control API and keeps the
latest rows for the dashboard. Add and delete actions refresh the list.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .api_client import ApiClient, ApiError
from ..config.settings import PATH_REFRESH_INTERVAL

logger = logging.getLogger(__name__)


@dataclass
class PathRow:
    """One row of the path list"""
    name: str
    ready: bool
    source: str = "N/A"
    readers: int = 0
    bytes_received: int = 0

    @property
    def status(self) -> str:
        return "Online" if self.ready else "Offline"

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "PathRow":
        conf = item.get("conf") or {}
        live_source = item.get("source") or {}

        source = conf.get("source")
        if not source and isinstance(live_source, dict):
            source = live_source.get("type")

        return cls(
            name=item.get("name", ""),
            ready=bool(item.get("ready")),
            source=source or "N/A",
            readers=len(item.get("readers") or []),
            bytes_received=item.get("bytesReceived", 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "ready": self.ready,
            "status": self.status,
            "source": self.source,
            "readers": self.readers,
            "bytes_received": self.bytes_received,
        }


class PathMonitor:
    """
    Polls the media server's path list.

    Keeps the latest rows and the last error message; add/delete actions
    refresh the list afterwards. Errors are recorded, not raised, so a
    dashboard can show them next to the last known rows.
    """

    def __init__(
        self,
        api_client: ApiClient,
        interval: float = PATH_REFRESH_INTERVAL,
        on_update: Optional[Callable] = None,
    ):
        self.api_client = api_client
        self.interval = interval
        self.on_update = on_update

        self.rows: List[PathRow] = []
        self.error: Optional[str] = None
        self.loading = True
        self.refresh_count = 0

        self.running = False
        self.task: Optional[asyncio.Task] = None

    async def refresh(self) -> List[PathRow]:
        try:
            data = await self.api_client.list_paths() or {}
            if not isinstance(data, dict):
                raise ValueError(f"expected an object, got {type(data).__name__}")
            rows = [PathRow.from_item(item) for item in data.get("items") or []]
        except ApiError as e:
            self.error = str(e)
            logger.warning(f"Failed to load paths: {e}")
        except Exception as e:
            self.error = f"Invalid path list: {e}"
            logger.error(f"Failed to parse path list: {e}", exc_info=True)
        else:
            self.rows = rows
            self.error = None
            self.refresh_count += 1
        finally:
            self.loading = False

        if self.on_update:
            try:
                if asyncio.iscoroutinefunction(self.on_update):
                    await self.on_update(self)
                else:
                    self.on_update(self)
            except Exception as e:
                logger.error(f"Error in path update callback: {e}")

        return self.rows

    async def add_path(self, name: str, config: Dict[str, Any]) -> bool:
        try:
            await self.api_client.add_path(name, config)
        except ApiError as e:
            self.error = str(e)
            return False
        logger.info(f"Added path '{name}'")
        await self.refresh()
        return True

    async def delete_path(self, name: str) -> bool:
        try:
            await self.api_client.delete_path(name)
        except ApiError as e:
            self.error = str(e)
            return False
        logger.info(f"Deleted path '{name}'")
        await self.refresh()
        return True

    def get_row(self, name: str) -> Optional[PathRow]:
        for row in self.rows:
            if row.name == name:
                return row
        return None

    # ========================================================================
    # Polling
    # ========================================================================

    async def start(self) -> None:
        if self.running:
            logger.warning("Path monitor already running")
            return

        logger.info(f"Starting path monitor (interval: {self.interval}s)")
        self.running = True
        self.task = asyncio.create_task(self._poll_loop())

    async def stop(self) -> None:
        if not self.running:
            return

        self.running = False

        if self.task and not self.task.done():
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
        self.task = None

        logger.info(f"Path monitor stopped ({self.refresh_count} refreshes)")

    async def _poll_loop(self) -> None:
        try:
            while self.running:
                await self.refresh()
                await asyncio.sleep(self.interval)
        except asyncio.CancelledError:
            logger.debug("Path monitor loop cancelled")

    def get_stats(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "interval": self.interval,
            "paths": len(self.rows),
            "online": len([row for row in self.rows if row.ready]),
            "refresh_count": self.refresh_count,
            "error": self.error,
        }
