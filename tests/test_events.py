"""
Event channel tests
"""

import asyncio

from streamviewer.core import ErrorType, EventChannel, EventType, PlayerEvent


async def test_events_dispatched_in_emission_order(wait_until):
    channel = EventChannel("test")
    seen = []

    async def slow_handler(event):
        await asyncio.sleep(0.01)
        seen.append(event.data["n"])

    channel.on(EventType.FRAG_LOADED, slow_handler)
    channel.start()

    for n in range(5):
        channel.emit(PlayerEvent(EventType.FRAG_LOADED, data={"n": n}))
    await wait_until(lambda: len(seen) == 5)

    assert seen == [0, 1, 2, 3, 4]
    await channel.close()


async def test_sync_and_async_handlers(wait_until):
    channel = EventChannel("test")
    seen = []

    async def async_handler(event):
        seen.append("async")

    channel.on(EventType.ENDED, lambda event: seen.append("sync"))
    channel.on(EventType.ENDED, async_handler)
    channel.start()

    channel.emit(PlayerEvent(EventType.ENDED))
    await wait_until(lambda: len(seen) == 2)

    assert seen == ["sync", "async"]
    await channel.close()


async def test_failing_handler_does_not_stop_dispatch(wait_until):
    channel = EventChannel("test")
    seen = []

    def broken(event):
        raise RuntimeError("boom")

    channel.on(EventType.ERROR, broken)
    channel.on(EventType.ERROR, lambda event: seen.append(event.details))
    channel.start()

    channel.emit(PlayerEvent.error(ErrorType.NETWORK_ERROR, "fragLoadError"))
    channel.emit(PlayerEvent.error(ErrorType.MEDIA_ERROR, "bufferAppendError"))
    await wait_until(lambda: len(seen) == 2)

    assert seen == ["fragLoadError", "bufferAppendError"]
    await channel.close()


async def test_emit_before_start_is_dropped():
    channel = EventChannel("test")
    seen = []
    channel.on(EventType.ENDED, seen.append)

    channel.emit(PlayerEvent(EventType.ENDED))
    channel.start()
    await asyncio.sleep(0.05)

    assert seen == []
    await channel.close()


async def test_close_from_handler_stops_dispatch(wait_until):
    channel = EventChannel("test")
    seen = []

    async def closing_handler(event):
        seen.append(event.type)
        await channel.close()

    channel.on(EventType.MANIFEST_PARSED, closing_handler)
    channel.start()

    channel.emit(PlayerEvent(EventType.MANIFEST_PARSED))
    await wait_until(lambda: not channel.running)
    channel.emit(PlayerEvent(EventType.MANIFEST_PARSED))
    await asyncio.sleep(0.05)

    assert seen == [EventType.MANIFEST_PARSED]
    assert not channel.running


def test_error_event_factory():
    event = PlayerEvent.error(ErrorType.NETWORK_ERROR, "manifestLoadError", fatal=False, reason="timeout")

    assert event.type == EventType.ERROR
    assert event.fatal is False
    assert event.error_type == ErrorType.NETWORK_ERROR
    assert event.data == {"reason": "timeout"}
