import asyncio

import pytest
from multidict import CIMultiDict, CIMultiDictProxy

from rtsp_gateway.server.protocol import Request

STREAM_URI = "rtsp://10.0.0.1:554/stream"

KMS_ANSWER = (
    "v=0\r\n"
    "o=- 3810512321 3810512321 IN IP4 192.168.1.10\r\n"
    "s=Kurento Media Server\r\n"
    "c=IN IP4 192.168.1.10\r\n"
    "t=0 0\r\n"
    "m=video 20000 RTP/AVP 97\r\n"
    "a=rtpmap:97 H264/90000\r\n"
    "a=sendonly\r\n"
    "a=direction:passive\r\n"
    "a=ssrc:12345 cname:user1234@host-abcd\r\n"
    "a=rtcp:20001\r\n"
)


class RecordingWriter:
    """Stands in for asyncio.StreamWriter and records what is written"""

    def __init__(self, peername=("10.0.0.5", 40000)):
        self.peername = peername
        self.data = bytearray()
        self.write_count = 0
        self._closing = False

    def write(self, data):
        self.data += data
        self.write_count += 1

    async def drain(self):
        pass

    def close(self):
        self._closing = True

    def is_closing(self):
        return self._closing

    async def wait_closed(self):
        pass

    def get_extra_info(self, name, default=None):
        if name == "peername":
            return self.peername
        return default

    @property
    def responses(self):
        return [r for r in self.data.decode().split("RTSP/1.0 ") if r]


def make_request(method, uri=STREAM_URI, headers=None):
    return Request(
        method=method,
        uri=uri,
        headers=CIMultiDictProxy(CIMultiDict(headers or {}))
    )


def frame(method, cseq, uri=STREAM_URI, **headers):
    lines = [f"{method} {uri} RTSP/1.0", f"CSeq: {cseq}"]
    lines.extend(f"{name.replace('_', '-')}: {value}" for name, value in headers.items())
    return ("\r\n".join(lines) + "\r\n\r\n").encode()


async def wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def writer():
    return RecordingWriter()
