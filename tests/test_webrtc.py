"""
WebRTC (WHEP) viewer tests
"""

import pytest

from streamviewer.core import ConnectionRegistry, NegotiationError, WebRTCHandle, WebRTCTransport

from fakes import OFFER_SDP, FakePeerConnection, FakeTrack, RecordingSink


@pytest.fixture
def peer_connections():
    return []


@pytest.fixture
async def registry(media_server, peer_connections):
    def factory(configuration):
        pc = FakePeerConnection(configuration)
        peer_connections.append(pc)
        return pc

    transport = WebRTCTransport(
        media_server.webrtc_url,
        ice_servers=["stun:stun.example.org:3478"],
        negotiation_timeout=5,
        timeout=5,
        pc_factory=factory,
    )
    registry = ConnectionRegistry(transport)
    yield registry
    await registry.aclose()


async def test_offer_answer_exchange(media_server, registry, peer_connections):
    handle = await registry.start("camera1", sink=RecordingSink())

    pc = peer_connections[0]
    assert isinstance(handle, WebRTCHandle)
    assert handle.url == f"{media_server.webrtc_url}/camera1/whep"
    assert pc.remoteDescription.sdp == OFFER_SDP
    assert pc.remoteDescription.type == "offer"
    assert media_server.whep_answers == [{"type": "answer", "sdp": "answer-sdp"}]
    assert registry.get("camera1") is handle


async def test_ice_servers_configured(registry, peer_connections):
    await registry.start("camera1", sink=RecordingSink())

    ice_servers = peer_connections[0].configuration.iceServers
    assert [server.urls for server in ice_servers] == ["stun:stun.example.org:3478"]


async def test_offer_failure_closes_peer_connection(media_server, registry, peer_connections):
    media_server.whep_status = 500
    sink = RecordingSink()

    with pytest.raises(NegotiationError):
        await registry.start("camera1", sink=sink)

    assert peer_connections[0].closed
    assert sink.closed
    assert "camera1" not in registry
    assert media_server.whep_answers == []


async def test_rejected_answer_fails(media_server, registry, peer_connections):
    media_server.patch_status = 400

    with pytest.raises(NegotiationError):
        await registry.start("camera1", sink=RecordingSink())

    assert peer_connections[0].closed
    assert "camera1" not in registry


async def test_malformed_offer_fails(media_server, registry, peer_connections):
    media_server.whep_offer = {"unexpected": True}

    with pytest.raises(NegotiationError):
        await registry.start("camera1", sink=RecordingSink())

    assert peer_connections[0].closed


async def test_first_video_track_attached(registry, peer_connections):
    sink = RecordingSink()
    handle = await registry.start("camera1", sink=sink)
    on_track = peer_connections[0].handlers["track"]

    audio, video, second_video = FakeTrack("audio"), FakeTrack("video"), FakeTrack("video")
    await on_track(audio)
    await on_track(video)
    await on_track(second_video)

    assert sink.tracks == [video]
    assert handle.video_track is video


async def test_failed_connection_removes_entry(registry, peer_connections):
    handle = await registry.start("camera1", sink=RecordingSink())
    pc = peer_connections[0]

    pc.connectionState = "failed"
    await pc.handlers["connectionstatechange"]()

    assert handle.closed
    assert pc.closed
    assert "camera1" not in registry


async def test_restart_closes_previous_peer_connection(registry, peer_connections):
    first = await registry.start("camera1", sink=RecordingSink())
    second = await registry.start("camera1", sink=RecordingSink())

    assert first.closed
    assert peer_connections[0].closed
    assert not peer_connections[1].closed
    assert registry.get("camera1") is second
