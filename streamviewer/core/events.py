"""
Player Event Channel

Player notifications (manifest parsed, errors, incoming tracks) are pushed
onto a queue and dispatched by a single task, so handlers always observe them
in emission order.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Player event types"""
    MANIFEST_PARSED = "manifestParsed"
    FRAG_LOADED = "fragLoaded"
    ERROR = "error"
    ENDED = "ended"


class ErrorType(Enum):
    """Error classes used to pick a recovery strategy"""
    NETWORK_ERROR = "networkError"
    MEDIA_ERROR = "mediaError"
    OTHER_ERROR = "otherError"


@dataclass
class PlayerEvent:
    type: EventType
    fatal: bool = False
    error_type: Optional[ErrorType] = None
    details: str = ""
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def error(cls, error_type: ErrorType, details: str, fatal: bool = True, **data) -> "PlayerEvent":
        return cls(EventType.ERROR, fatal=fatal, error_type=error_type, details=details, data=data)


class EventChannel:
    """
    Ordered event queue with a single dispatch loop.

    Usage:
        channel = EventChannel("hls:camera1")
        channel.on(EventType.MANIFEST_PARSED, on_manifest)
        channel.start()
        channel.emit(PlayerEvent(EventType.MANIFEST_PARSED))
        ...
        await channel.close()
    """

    def __init__(self, name: str = "channel"):
        self.name = name
        self._queue: asyncio.Queue = asyncio.Queue()
        self._handlers: Dict[EventType, List[Callable]] = {}
        self._task: Optional[asyncio.Task] = None
        self.running = False
        self.dispatched = 0

    def on(self, event_type: EventType, handler: Callable) -> None:
        """Register an async or sync handler for an event type"""
        self._handlers.setdefault(event_type, []).append(handler)

    def emit(self, event: PlayerEvent) -> None:
        if not self.running:
            logger.debug(f"[{self.name}] Dropping {event.type.value} event, channel not running")
            return
        self._queue.put_nowait(event)

    def start(self) -> None:
        if self.running:
            return
        self.running = True
        self._task = asyncio.create_task(self._dispatch_loop())

    async def close(self) -> None:
        """Stop dispatching. Safe to call from inside a handler."""
        self.running = False

        task, self._task = self._task, None
        if task is None or task.done():
            return

        if task is asyncio.current_task():
            # Called from a handler; the loop exits after this event
            return

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _dispatch_loop(self) -> None:
        try:
            while self.running:
                event = await self._queue.get()
                await self._dispatch(event)
        except asyncio.CancelledError:
            logger.debug(f"[{self.name}] Dispatch loop cancelled")
            raise

    async def _dispatch(self, event: PlayerEvent) -> None:
        self.dispatched += 1

        for handler in list(self._handlers.get(event.type, [])):
            try:
                if asyncio.iscoroutinefunction(handler):
                    await handler(event)
                else:
                    handler(event)
            except Exception as e:
                logger.error(f"[{self.name}] Error in {event.type.value} handler: {e}")
