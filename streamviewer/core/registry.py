"""
Connection Registry

Keeps at most one live connection handle per stream path name. The same
registry is used for every transport; only the open/close capability pair
differs between HLS playback, WebRTC viewing and RTSP socket connections.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

logger = logging.getLogger(__name__)


class RegistryError(Exception):
    """Base exception for connection registry errors"""
    pass


class TransportOpenError(RegistryError):
    """Raised when a transport fails to open a connection"""
    pass


class ConnectionSupersededError(RegistryError):
    """Raised by start() when a later start/stop replaced it while opening"""

    def __init__(self, name: str):
        super().__init__(f"Connection for '{name}' was superseded while opening")
        self.name = name


class ConnectionHandle:
    """
    Base class for a live, transport-specific connection.

    A handle is owned by exactly one registry entry. Once closed (locally or
    by the remote end) it fires its close callbacks exactly once, which is how
    the registry drops entries for connections that ended on their own.
    """

    kind = "generic"

    def __init__(self, name: str):
        self.name = name
        self.created_at = datetime.now()
        self.closed_at: Optional[datetime] = None
        self._closed = asyncio.Event()
        self._close_callbacks: List[Callable[["ConnectionHandle"], None]] = []

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def add_close_callback(self, callback: Callable[["ConnectionHandle"], None]) -> None:
        """Register a callback run once when the handle closes"""
        if self.closed:
            callback(self)
            return
        self._close_callbacks.append(callback)

    def mark_closed(self) -> None:
        """Flag the handle as closed and notify callbacks"""
        if self.closed:
            return

        self.closed_at = datetime.now()
        self._closed.set()

        callbacks, self._close_callbacks = self._close_callbacks, []
        for callback in callbacks:
            try:
                callback(self)
            except Exception as e:
                logger.error(f"Error in close callback for '{self.name}': {e}")

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def close(self) -> None:
        """Release transport resources. Must end with mark_closed()."""
        self.mark_closed()

    def get_stats(self) -> Dict[str, Any]:
        end_time = self.closed_at or datetime.now()
        duration = (end_time - self.created_at).total_seconds()

        return {
            "name": self.name,
            "kind": self.kind,
            "created_at": self.created_at.isoformat(),
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "closed": self.closed,
            "duration_seconds": duration,
        }


H = TypeVar("H", bound=ConnectionHandle)


class Transport(Generic[H]):
    """
    Open/close capability pair for one transport.

    Subclasses implement open(); close() defaults to handle.close().
    """

    kind = "generic"

    async def open(self, name: str, **params) -> H:
        raise NotImplementedError

    async def close(self, handle: H) -> None:
        await handle.close()

    async def aclose(self) -> None:
        """Release transport-wide resources (HTTP sessions etc.)"""
        pass


class ConnectionRegistry(Generic[H]):
    """
    Maps stream path names to at most one live handle.

    start() for an active name tears down the old connection first
    (single viewer per path). stop() on an unknown name is a no-op.

    Concurrent starts for the same name: the last call wins. Any stop() or
    start() invalidates an open still in flight; when that open resolves its
    handle is closed and the superseded start() raises
    ConnectionSupersededError.

    Callers are expected to serialize calls per name; there is no locking.

    Usage:
        registry = ConnectionRegistry(HLSTransport())
        handle = await registry.start("camera1", sink=NullSink())
        ...
        await registry.stop("camera1")
    """

    def __init__(self, transport: Transport[H]):
        self.transport = transport
        self.kind = transport.kind

        self._entries: Dict[str, H] = {}
        self._opening: Dict[str, object] = {}  # name -> token of in-flight open

        self.stats = {
            "starts": 0,
            "stops": 0,
            "failures": 0,
            "superseded": 0,
            "remote_closures": 0,
        }

        logger.info(f"Connection registry initialized for {self.kind}")

    async def start(self, name: str, **params) -> H:
        """
        Open a connection for a path name, replacing any existing one.

        Raises:
            TransportOpenError (or subclass): if the transport fails to open
            ConnectionSupersededError: if a later start/stop won the race
        """
        self.stats["starts"] += 1

        # Releases the old handle and invalidates any open still in flight
        await self.stop(name)

        token = object()
        self._opening[name] = token

        logger.info(f"Opening {self.kind} connection for '{name}'...")

        try:
            handle = await self.transport.open(name, **params)
        except BaseException as e:
            if self._opening.get(name) is token:
                del self._opening[name]
            if isinstance(e, Exception):
                self.stats["failures"] += 1
                logger.error(f"Failed to open {self.kind} connection for '{name}': {e}")
            raise

        if self._opening.get(name) is not token:
            self.stats["superseded"] += 1
            logger.warning(f"{self.kind} open for '{name}' was superseded, closing late handle")
            await self._release(handle)
            raise ConnectionSupersededError(name)

        del self._opening[name]

        if handle.closed:
            raise TransportOpenError(f"{self.kind} connection for '{name}' closed while opening")

        self._entries[name] = handle
        handle.add_close_callback(self._on_handle_closed)

        logger.info(f"✅ {self.kind} connection active for '{name}'")
        return handle

    async def stop(self, name: str) -> None:
        """Close and forget the handle for a path name (no-op if absent)"""
        self._opening.pop(name, None)

        # Dropped before release so the close callback sees no entry
        handle = self._entries.pop(name, None)
        if handle is None:
            return

        self.stats["stops"] += 1
        logger.info(f"Closing {self.kind} connection for '{name}'...")

        await self._release(handle)

    async def stop_all(self) -> None:
        for name in list(self._entries.keys()):
            await self.stop(name)
        self._opening.clear()

    async def aclose(self) -> None:
        """Stop every connection and release the transport"""
        await self.stop_all()
        await self.transport.aclose()

    async def _release(self, handle: H) -> None:
        try:
            await self.transport.close(handle)
        except Exception as e:
            logger.warning(f"Error closing {self.kind} connection for '{handle.name}': {e}")
        finally:
            handle.mark_closed()

    def _on_handle_closed(self, handle: ConnectionHandle) -> None:
        if self._entries.get(handle.name) is handle:
            del self._entries[handle.name]
            self.stats["remote_closures"] += 1
            logger.info(f"{self.kind} connection for '{handle.name}' closed, entry removed")

    # ========================================================================
    # Lookup
    # ========================================================================

    def get(self, name: str) -> Optional[H]:
        return self._entries.get(name)

    def names(self) -> List[str]:
        return list(self._entries.keys())

    def is_opening(self, name: str) -> bool:
        return name in self._opening

    def __contains__(self, name: str) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "active": len(self._entries),
            "opening": len(self._opening),
            "connections": [handle.get_stats() for handle in self._entries.values()],
            "registry_stats": dict(self.stats),
        }


# ============================================================================
# Helper context manager
# ============================================================================

class ConnectionRegistryContext:
    """
    Context manager for automatic registry cleanup.

    Usage:
        async with ConnectionRegistryContext(WebRTCTransport()) as registry:
            await registry.start("camera1", sink=sink)
        # All connections closed and transport released on exit
    """

    def __init__(self, transport: Transport):
        self.registry = ConnectionRegistry(transport)

    async def __aenter__(self) -> ConnectionRegistry:
        return self.registry

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.registry.aclose()
        return False
