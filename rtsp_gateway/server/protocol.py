"""
RTSP Message Framing

Decodes RTSP/1.0 requests from an asyncio stream and encodes responses.

A request frame is a request line, header lines and an empty line,
optionally followed by a body of Content-Length bytes. Bodies are read to
keep the stream in sync and then discarded; none of the supported methods
carry one.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from email.utils import formatdate
from typing import Optional, Union

from multidict import CIMultiDict, CIMultiDictProxy

logger = logging.getLogger(__name__)

RTSP_VERSION = "RTSP/1.0"

# Largest header block accepted for one request
MAX_HEADER_SIZE = 64 * 1024

STATUS_REASONS = {
    200: "OK",
    400: "Bad Request",
    404: "Not Found",
    405: "Method Not Allowed",
    406: "Not Acceptable",
    454: "Session Not Found",
    455: "Method Not Valid in This State",
    459: "Aggregate Operation Not Allowed",
    461: "Unsupported Transport",
    500: "Internal Server Error",
    501: "Not Implemented",
    503: "Service Unavailable",
    505: "RTSP Version Not Supported",
}


class RTSPDecodeError(Exception):
    """Raised when a request frame cannot be decoded"""

    def __init__(self, message: str, cseq: Optional[str] = None):
        super().__init__(message)
        self.cseq = cseq


@dataclass(frozen=True)
class Request:
    """A decoded RTSP request"""
    method: str
    uri: str
    version: str = RTSP_VERSION
    headers: CIMultiDictProxy = field(
        default_factory=lambda: CIMultiDictProxy(CIMultiDict())
    )

    @property
    def cseq(self) -> Optional[str]:
        return self.headers.get("CSeq")


class Response:
    """
    An RTSP response under construction.

    Headers keep insertion order; Content-Length is added by ``encode()``
    when a body is set.
    """

    def __init__(self, status_code: int = 200):
        self.status_code = status_code
        self.headers: CIMultiDict = CIMultiDict()
        self.body: Optional[bytes] = None

    def set_header(self, name: str, value) -> None:
        self.headers[name] = str(value)

    def set_body(self, body: Union[str, bytes]) -> None:
        self.body = body.encode("utf-8") if isinstance(body, str) else body

    @property
    def reason(self) -> str:
        return STATUS_REASONS.get(self.status_code, "Unknown")

    def encode(self) -> bytes:
        """Serialize the status line, headers and body"""
        headers = CIMultiDict(self.headers)
        if self.body:
            headers["Content-Length"] = str(len(self.body))

        lines = [f"{RTSP_VERSION} {self.status_code} {self.reason}"]
        lines.extend(f"{name}: {value}" for name, value in headers.items())
        head = ("\r\n".join(lines) + "\r\n\r\n").encode("utf-8")
        return head + (self.body or b"")

    def __repr__(self) -> str:
        return f"<Response {self.status_code} {self.reason}>"


def http_date() -> str:
    """Current time as an RFC 1123 date (e.g. ``Sat, 17 Oct 2026 21:00:00 GMT``)"""
    return formatdate(usegmt=True)


def decode_request(head: bytes) -> Request:
    """
    Decode a request line and header block.

    Args:
        head: Bytes up to and excluding the empty line

    Returns:
        Request

    Raises:
        RTSPDecodeError: If the request line or a header line is malformed
    """
    try:
        text = head.decode("utf-8")
    except UnicodeDecodeError as e:
        raise RTSPDecodeError(f"Request is not valid UTF-8: {e}") from e

    request_line, *header_lines = text.split("\r\n")

    headers: CIMultiDict = CIMultiDict()
    for line in header_lines:
        if not line:
            continue
        name, sep, value = line.partition(":")
        if not sep or not name.strip():
            raise RTSPDecodeError(f"Malformed header line: {line!r}", headers.get("CSeq"))
        headers.add(name.strip(), value.strip())

    parts = request_line.split()
    if len(parts) != 3 or not parts[2].startswith("RTSP/"):
        raise RTSPDecodeError(f"Malformed request line: {request_line!r}", headers.get("CSeq"))

    method, uri, version = parts
    return Request(
        method=method.upper(),
        uri=uri,
        version=version,
        headers=CIMultiDictProxy(headers)
    )


async def read_request(reader: asyncio.StreamReader) -> Optional[Request]:
    """
    Read one request frame from the stream.

    Returns:
        The decoded Request, or None when the peer closed the stream
        between frames

    Raises:
        RTSPDecodeError: If the frame is malformed; the frame has been
            consumed, so reading can continue with the next one
    """
    head = b""
    while not head:
        try:
            frame = await reader.readuntil(b"\r\n\r\n")
        except asyncio.IncompleteReadError as e:
            if e.partial.strip():
                logger.debug(f"Stream closed inside a request frame ({len(e.partial)} bytes)")
            return None
        except asyncio.LimitOverrunError as e:
            # Drop the oversized block so the stream stays usable
            await reader.readexactly(e.consumed)
            raise RTSPDecodeError(f"Request header exceeds {MAX_HEADER_SIZE} bytes") from e
        # Stray CRLFs between frames are skipped
        head = frame.strip(b"\r\n")

    request = decode_request(head)

    content_length = request.headers.get("Content-Length")
    if content_length:
        try:
            length = int(content_length)
        except ValueError as e:
            raise RTSPDecodeError(
                f"Invalid Content-Length: {content_length!r}", request.cseq
            ) from e
        if length < 0:
            raise RTSPDecodeError(f"Negative Content-Length: {length}", request.cseq)
        try:
            await reader.readexactly(length)
        except asyncio.IncompleteReadError:
            return None

    return request
