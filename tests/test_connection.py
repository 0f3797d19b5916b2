import asyncio

import pytest

from rtsp_gateway.core.sdp import MalformedAnswer
from rtsp_gateway.server.connection import RTSPConnection, peer_info
from rtsp_gateway.server.dispatcher import NegotiationTimeout
from rtsp_gateway.server.protocol import RTSPDecodeError

from conftest import KMS_ANSWER, RecordingWriter, frame, wait_until

UDP_TRANSPORT = "RTP/AVP;unicast;client_port=5000-5001"


def _connection(writer, **kwargs):
    reader = asyncio.StreamReader()
    connection = RTSPConnection(reader, writer, **kwargs)
    return reader, connection


class Recorder:
    def __init__(self):
        self.errors = []
        self.closes = 0

    def error(self, err):
        self.errors.append(err)

    def close(self):
        self.closes += 1


def test_peer_info_ipv4_and_ipv6():
    assert peer_info(RecordingWriter(("10.0.0.5", 4000))) == ("10.0.0.5", 4000, 4)
    assert peer_info(RecordingWriter(("::1", 4000, 0, 0))) == ("::1", 4000, 6)
    assert peer_info(RecordingWriter(("::ffff:10.0.0.5", 4000, 0, 0))) == ("10.0.0.5", 4000, 4)


@pytest.mark.asyncio
async def test_one_response_per_request_in_order(writer):
    reader, connection = _connection(writer)
    task = asyncio.create_task(connection.serve())

    reader.feed_data(frame("OPTIONS", 1) + frame("DESCRIBE", 2, Accept="application/sdp"))
    await wait_until(lambda: len(writer.responses) == 2)
    reader.feed_eof()
    await task

    first, second = writer.responses
    assert first.startswith("200 OK") and "CSeq: 1" in first and "Public:" in first
    assert second.startswith("200 OK") and "CSeq: 2" in second and "m=video 0 RTP/AVP 97" in second


@pytest.mark.asyncio
async def test_close_fires_once_on_eof(writer):
    recorder = Recorder()
    reader, connection = _connection(writer)
    connection.on_close(recorder.close)

    reader.feed_eof()
    await connection.serve()
    connection.close()

    assert connection.closed
    assert recorder.closes == 1
    assert writer.is_closing()


@pytest.mark.asyncio
async def test_async_close_handler_is_awaited(writer):
    closed = asyncio.Event()

    async def on_close():
        closed.set()

    reader, connection = _connection(writer)
    connection.on_close(on_close)
    reader.feed_eof()
    await connection.serve()

    await asyncio.wait_for(closed.wait(), timeout=1)


@pytest.mark.asyncio
async def test_no_write_after_close(writer):
    recorder = Recorder()
    started = asyncio.Event()
    release = asyncio.Event()

    async def play(uri):
        started.set()
        await release.wait()

    reader, connection = _connection(writer, enforce_session_state=False)
    connection.on_play(play)
    connection.on_close(recorder.close)
    task = asyncio.create_task(connection.serve())

    reader.feed_data(frame("PLAY", 1))
    await asyncio.wait_for(started.wait(), timeout=1)
    reader.feed_eof()
    await wait_until(lambda: recorder.closes == 1)

    release.set()
    await task

    assert writer.write_count == 0


@pytest.mark.asyncio
async def test_malformed_answer_reported_and_answered_500(writer):
    recorder = Recorder()
    answer = KMS_ANSWER.replace("a=ssrc:12345 cname:user1234@host-abcd\r\n", "")

    async def setup(offer):
        return answer

    reader, connection = _connection(writer)
    connection.on_setup(setup)
    connection.on_error(recorder.error)
    task = asyncio.create_task(connection.serve())

    reader.feed_data(frame("SETUP", 3, Transport=UDP_TRANSPORT))
    await wait_until(lambda: writer.responses)
    reader.feed_eof()
    await task

    assert writer.responses[0].startswith("500 Internal Server Error")
    assert "CSeq: 3" in writer.responses[0]
    assert "Transport:" not in writer.responses[0]
    assert isinstance(recorder.errors[0], MalformedAnswer)


@pytest.mark.asyncio
async def test_handler_fault_reported_and_connection_stays_open(writer):
    recorder = Recorder()

    async def play(uri):
        raise RuntimeError("media plane exploded")

    reader, connection = _connection(writer, enforce_session_state=False)
    connection.on_play(play)
    connection.on_error(recorder.error)
    task = asyncio.create_task(connection.serve())

    reader.feed_data(frame("PLAY", 1) + frame("OPTIONS", 2))
    await wait_until(lambda: len(writer.responses) == 2)
    reader.feed_eof()
    await task

    assert writer.responses[0].startswith("500")
    assert writer.responses[1].startswith("200 OK")
    assert str(recorder.errors[0]) == "media plane exploded"


@pytest.mark.asyncio
async def test_negotiation_timeout_closes_connection(writer):
    recorder = Recorder()

    async def setup(offer):
        await asyncio.Event().wait()

    reader, connection = _connection(writer, negotiation_timeout=0.05)
    connection.on_setup(setup)
    connection.on_error(recorder.error)
    connection.on_close(recorder.close)
    task = asyncio.create_task(connection.serve())

    reader.feed_data(frame("SETUP", 3, Transport=UDP_TRANSPORT))
    await wait_until(lambda: connection.closed)
    reader.feed_eof()
    await task

    assert isinstance(recorder.errors[0], NegotiationTimeout)
    assert recorder.closes == 1
    assert writer.write_count == 0
    assert writer.is_closing()


@pytest.mark.asyncio
async def test_decode_error_reported_and_next_request_served(writer):
    recorder = Recorder()
    reader, connection = _connection(writer)
    connection.on_error(recorder.error)
    task = asyncio.create_task(connection.serve())

    reader.feed_data(b"NONSENSE\r\nCSeq: 1\r\n\r\n" + frame("OPTIONS", 2))
    await wait_until(lambda: len(writer.responses) == 2)
    reader.feed_eof()
    await task

    assert writer.responses[0].startswith("400 Bad Request")
    assert "CSeq: 1" in writer.responses[0]
    assert writer.responses[1].startswith("200 OK")
    assert isinstance(recorder.errors[0], RTSPDecodeError)
    assert not recorder.closes


@pytest.mark.asyncio
async def test_negative_content_length_reported_and_next_request_served(writer):
    recorder = Recorder()
    reader, connection = _connection(writer)
    connection.on_error(recorder.error)
    task = asyncio.create_task(connection.serve())

    reader.feed_data(
        b"OPTIONS * RTSP/1.0\r\nCSeq: 1\r\nContent-Length: -1\r\n\r\n" + frame("OPTIONS", 2)
    )
    await wait_until(lambda: len(writer.responses) == 2)
    reader.feed_eof()
    await task

    assert writer.responses[0].startswith("400 Bad Request")
    assert "CSeq: 1" in writer.responses[0]
    assert writer.responses[1].startswith("200 OK")
    assert "CSeq: 2" in writer.responses[1]
    assert len(recorder.errors) == 1
    assert isinstance(recorder.errors[0], RTSPDecodeError)


@pytest.mark.asyncio
async def test_registering_again_replaces_handler(writer):
    calls = []

    async def first(uri):
        calls.append("first")

    async def second(uri):
        calls.append("second")

    reader, connection = _connection(writer, enforce_session_state=False)
    connection.on_play(first)
    connection.on_play(second)
    task = asyncio.create_task(connection.serve())

    reader.feed_data(frame("PLAY", 1))
    await wait_until(lambda: writer.responses)
    reader.feed_eof()
    await task

    assert calls == ["second"]
