import asyncio

import pytest

from rtsp_gateway.core import KurentoRequestError
from rtsp_gateway.core.media_session import (
    MediaSession,
    MediaSessionClosed,
    MediaSessionState,
)
from rtsp_gateway.server.connection import RTSPConnection

from conftest import KMS_ANSWER, RecordingWriter

SOURCE = "rtsp://camera.local/stream"


class FakeKurentoClient:
    """Records the calls a MediaSession makes"""

    def __init__(self, fail_on=None):
        self.calls = []
        self.event_handlers = []
        self.fail_on = fail_on
        self._ids = 0

    def _record(self, name, *args):
        self.calls.append((name,) + args)
        if name == self.fail_on:
            raise KurentoRequestError(f"{name} failed")

    def _new_id(self, kind):
        self._ids += 1
        return f"{kind}-{self._ids}"

    def add_event_handler(self, handler):
        self.event_handlers.append(handler)

    def remove_event_handler(self, handler):
        if handler in self.event_handlers:
            self.event_handlers.remove(handler)

    async def create_media_pipeline(self):
        self._record("create_media_pipeline")
        return self._new_id("pipeline")

    async def create_player_endpoint(self, pipeline_id, uri):
        self._record("create_player_endpoint", pipeline_id, uri)
        return self._new_id("player")

    async def create_rtp_endpoint(self, pipeline_id):
        self._record("create_rtp_endpoint", pipeline_id)
        return self._new_id("rtp")

    async def subscribe_to_event(self, object_id, event_type):
        self._record("subscribe_to_event", object_id, event_type)

    async def process_sdp_offer(self, endpoint_id, offer):
        self._record("process_sdp_offer", endpoint_id, offer)
        return KMS_ANSWER

    async def connect_endpoints(self, source_id, sink_id, media_type=None):
        self._record("connect_endpoints", source_id, sink_id, media_type)

    async def get_local_session_descriptor(self, endpoint_id):
        self._record("get_local_session_descriptor", endpoint_id)
        return KMS_ANSWER

    async def play(self, player_id):
        self._record("play", player_id)

    async def release_pipeline(self, pipeline_id):
        self._record("release_pipeline", pipeline_id)


def _names(client):
    return [call[0] for call in client.calls]


@pytest.mark.asyncio
async def test_setup_builds_pipeline_and_returns_local_description():
    client = FakeKurentoClient()
    session = MediaSession(client, SOURCE)

    answer = await session.setup("v=0\r\n")

    assert answer == KMS_ANSWER
    assert session.state is MediaSessionState.READY
    assert ("create_player_endpoint", "pipeline-1", SOURCE) in client.calls
    assert ("process_sdp_offer", "rtp-3", "v=0\r\n") in client.calls
    assert ("connect_endpoints", "player-2", "rtp-3", "VIDEO") in client.calls
    assert _names(client)[-1] == "get_local_session_descriptor"
    assert [c[2] for c in client.calls if c[0] == "subscribe_to_event"] == ["Error"] * 3


@pytest.mark.asyncio
async def test_setup_failure_releases_pipeline():
    client = FakeKurentoClient(fail_on="process_sdp_offer")
    session = MediaSession(client, SOURCE)

    with pytest.raises(KurentoRequestError):
        await session.setup("v=0\r\n")

    assert ("release_pipeline", "pipeline-1") in client.calls
    assert session.pipeline_id is None
    assert client.event_handlers == []


@pytest.mark.asyncio
async def test_play_then_teardown_releases_once():
    client = FakeKurentoClient()
    session = MediaSession(client, SOURCE)
    await session.setup("v=0\r\n")

    await session.play(SOURCE)
    assert session.state is MediaSessionState.PLAYING
    assert ("play", "player-2") in client.calls

    await session.teardown(SOURCE)
    await session.teardown(SOURCE)
    assert _names(client).count("release_pipeline") == 1
    assert session.state is MediaSessionState.RELEASED


@pytest.mark.asyncio
async def test_play_before_setup_is_a_no_op():
    client = FakeKurentoClient()
    await MediaSession(client, SOURCE).play(SOURCE)
    assert client.calls == []


@pytest.mark.asyncio
async def test_close_releases_pipeline():
    client = FakeKurentoClient()
    session = MediaSession(client, SOURCE)
    await session.setup("v=0\r\n")

    session.handle_close()
    await session._release_task

    assert ("release_pipeline", "pipeline-1") in client.calls


@pytest.mark.asyncio
async def test_attach_registers_every_capability():
    session = MediaSession(FakeKurentoClient(), SOURCE)
    connection = RTSPConnection(asyncio.StreamReader(), RecordingWriter())

    session.attach(connection)

    assert connection.handlers.setup == session.setup
    assert connection.handlers.play == session.play
    assert connection.handlers.teardown == session.teardown
    assert connection.handlers.error == session.handle_error
    assert connection.handlers.close == session.handle_close


@pytest.mark.asyncio
async def test_kurento_error_events_are_filtered_by_object(caplog):
    client = FakeKurentoClient()
    session = MediaSession(client, SOURCE)
    await session.setup("v=0\r\n")
    handler = client.event_handlers[0]

    handler({"method": "onEvent", "params": {"value": {
        "type": "Error", "object": "someone-else", "data": {"description": "ignored"}
    }}})
    handler({"method": "onEvent", "params": {"value": {
        "type": "Error", "object": "player-2", "data": {"description": "Source unreachable"}
    }}})

    assert "Source unreachable" in caplog.text
    assert "ignored" not in caplog.text


class BlockingKurentoClient(FakeKurentoClient):
    """Holds create_media_pipeline until the test lets it finish"""

    def __init__(self):
        super().__init__()
        self.entered = asyncio.Event()
        self.proceed = asyncio.Event()

    async def create_media_pipeline(self):
        self.entered.set()
        await self.proceed.wait()
        return await super().create_media_pipeline()


@pytest.mark.asyncio
async def test_close_during_setup_releases_new_pipeline():
    client = BlockingKurentoClient()
    session = MediaSession(client, SOURCE)
    setup = asyncio.create_task(session.setup("v=0\r\n"))

    await client.entered.wait()
    session.handle_close()
    client.proceed.set()

    with pytest.raises(MediaSessionClosed):
        await setup

    assert [c for c in client.calls if c[0] == "release_pipeline"] == [
        ("release_pipeline", "pipeline-1")
    ]
    assert "create_player_endpoint" not in _names(client)
    assert session.pipeline_id is None
    assert session.state is MediaSessionState.RELEASED


@pytest.mark.asyncio
async def test_repeated_setup_registers_event_handler_once():
    client = FakeKurentoClient()
    session = MediaSession(client, SOURCE)

    await session.setup("v=0\r\n")
    await session.setup("v=0\r\n")
    assert client.event_handlers == [session._handle_kurento_event]
    assert ("release_pipeline", "pipeline-1") in client.calls

    await session.release()
    assert client.event_handlers == []
