import asyncio

import pytest

from rtsp_gateway.server.protocol import (
    RTSPDecodeError,
    Response,
    decode_request,
    http_date,
    read_request,
)


def _reader(data, eof=True):
    reader = asyncio.StreamReader()
    reader.feed_data(data)
    if eof:
        reader.feed_eof()
    return reader


def test_decode_request_headers_are_case_insensitive():
    request = decode_request(
        b"describe rtsp://host/stream RTSP/1.0\r\n"
        b"CSeq: 2\r\n"
        b"accept: application/sdp"
    )
    assert request.method == "DESCRIBE"
    assert request.uri == "rtsp://host/stream"
    assert request.cseq == "2"
    assert request.headers["Accept"] == "application/sdp"


def test_decode_request_rejects_bad_request_line():
    with pytest.raises(RTSPDecodeError) as exc_info:
        decode_request(b"GARBAGE\r\nCSeq: 7")
    assert exc_info.value.cseq == "7"


def test_decode_request_rejects_header_without_colon():
    with pytest.raises(RTSPDecodeError):
        decode_request(b"OPTIONS * RTSP/1.0\r\nCSeq 1")


@pytest.mark.asyncio
async def test_read_request_consumes_body_and_stray_crlf():
    reader = _reader(
        b"\r\n"
        b"SET_PARAMETER rtsp://host/stream RTSP/1.0\r\nCSeq: 1\r\nContent-Length: 5\r\n\r\nhello"
        b"OPTIONS * RTSP/1.0\r\nCSeq: 2\r\n\r\n"
    )
    first = await read_request(reader)
    second = await read_request(reader)

    assert first.method == "SET_PARAMETER"
    assert second.method == "OPTIONS"
    assert second.cseq == "2"
    assert await read_request(reader) is None


@pytest.mark.asyncio
async def test_read_request_rejects_negative_content_length():
    reader = _reader(
        b"OPTIONS * RTSP/1.0\r\nCSeq: 3\r\nContent-Length: -1\r\n\r\n"
        b"OPTIONS * RTSP/1.0\r\nCSeq: 4\r\n\r\n"
    )
    with pytest.raises(RTSPDecodeError) as exc_info:
        await read_request(reader)
    assert exc_info.value.cseq == "3"

    assert (await read_request(reader)).cseq == "4"


@pytest.mark.asyncio
async def test_read_request_returns_none_on_partial_frame():
    reader = _reader(b"OPTIONS * RTSP/1.0\r\nCSeq: 1\r\n")
    assert await read_request(reader) is None


def test_response_encode_sets_content_length():
    response = Response()
    response.set_header("CSeq", "3")
    response.set_body("v=0\r\n")

    assert response.encode() == (
        b"RTSP/1.0 200 OK\r\n"
        b"CSeq: 3\r\n"
        b"Content-Length: 5\r\n"
        b"\r\n"
        b"v=0\r\n"
    )


def test_response_encode_without_body():
    response = Response(461)
    response.set_header("CSeq", "4")
    assert response.encode() == b"RTSP/1.0 461 Unsupported Transport\r\nCSeq: 4\r\n\r\n"


def test_http_date_is_gmt():
    assert http_date().endswith(" GMT")
