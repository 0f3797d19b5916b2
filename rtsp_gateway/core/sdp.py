"""
SDP Codec for RTSP Negotiation

Parses and serializes the session descriptions exchanged during RTSP
DESCRIBE/SETUP and with Kurento's RtpEndpoint (offer/answer).

Key responsibilities:
- Model a single-stream session description (origin, connection, timing, media)
- Serialize descriptions with CRLF line endings in a stable attribute order
- Parse descriptions produced by Kurento, keeping unknown attributes verbatim
- Build the server's receive-only H264 offer from client parameters
- Read the negotiated ports and SSRC back out of Kurento's answer
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)


# Placeholder identity used in the origin line; only the session id varies
ORIGIN_USERNAME = "-"
ORIGIN_ADDRESS = "localhost"
DEFAULT_SESSION_ID = 4242

# Offered media: H264 video over plain RTP
MEDIA_TYPE = "video"
MEDIA_PROTOCOL = "RTP/AVP"
H264_PAYLOAD_TYPE = 97
H264_CODEC = "H264"
H264_CLOCK_RATE = 90000
OFFER_DIRECTION = "recvonly"

DIRECTIONS = ("sendrecv", "sendonly", "recvonly", "inactive")


class SDPError(Exception):
    """Base exception for SDP codec errors"""
    pass


class SDPParseError(SDPError):
    """Raised when an SDP line cannot be parsed"""
    pass


class MalformedAnswer(SDPError):
    """Raised when a media-plane answer lacks the fields needed for SETUP"""
    pass


@dataclass
class Origin:
    """o= line"""
    username: str = ORIGIN_USERNAME
    session_id: int = DEFAULT_SESSION_ID
    session_version: int = 0
    net_type: str = "IN"
    ip_ver: int = 4
    address: str = ORIGIN_ADDRESS


@dataclass
class Connection:
    """c= line"""
    version: int
    ip: str


@dataclass
class Timing:
    """t= line (0 0 means unbounded)"""
    start: int = 0
    stop: int = 0


@dataclass
class RtpMap:
    """a=rtpmap attribute"""
    payload: int
    codec: str
    rate: Optional[int] = None
    encoding: Optional[str] = None


@dataclass
class Fmtp:
    """a=fmtp attribute"""
    payload: int
    config: str


@dataclass
class Ssrc:
    """a=ssrc attribute"""
    id: int
    attribute: Optional[str] = None
    value: Optional[str] = None


@dataclass
class MediaDescription:
    """
    One m= section.

    Attributes the codec does not model are kept in ``attributes`` as
    (name, value) pairs so they survive a parse/serialize cycle.
    """
    type: str
    port: int
    protocol: str
    payloads: str
    rtp: List[RtpMap] = field(default_factory=list)
    fmtp: List[Fmtp] = field(default_factory=list)
    direction: Optional[str] = None
    rtcp_port: Optional[int] = None
    ssrcs: List[Ssrc] = field(default_factory=list)
    connection: Optional[Connection] = None
    attributes: List[Tuple[str, Optional[str]]] = field(default_factory=list)


@dataclass
class SessionDescription:
    """A parsed or to-be-serialized session description"""
    origin: Origin = field(default_factory=Origin)
    connection: Optional[Connection] = None
    timing: Timing = field(default_factory=Timing)
    media: List[MediaDescription] = field(default_factory=list)
    name: str = " "
    version: int = 0


@dataclass
class AnswerPorts:
    """Ports and SSRC chosen by the media plane"""
    primary_port: int
    secondary_port: Optional[int]
    ssrc: int

    @property
    def ports(self) -> Tuple[int, ...]:
        if self.secondary_port is None:
            return (self.primary_port,)
        return (self.primary_port, self.secondary_port)


# ============================================================================
# Serialization
# ============================================================================

def serialize(description: SessionDescription) -> str:
    """
    Serialize a session description.

    Args:
        description: Description to write

    Returns:
        SDP text with CRLF line endings (including a trailing CRLF)
    """
    origin = description.origin
    lines = [
        f"v={description.version}",
        f"o={origin.username} {origin.session_id} {origin.session_version} "
        f"{origin.net_type} IP{origin.ip_ver} {origin.address}",
        f"s={description.name}",
    ]
    if description.connection:
        lines.append(_connection_line(description.connection))
    lines.append(f"t={description.timing.start} {description.timing.stop}")

    for media in description.media:
        lines.extend(_media_lines(media))

    return "\r\n".join(lines) + "\r\n"


def _connection_line(connection: Connection) -> str:
    return f"c=IN IP{connection.version} {connection.ip}"


def _media_lines(media: MediaDescription) -> List[str]:
    lines = [f"m={media.type} {media.port} {media.protocol} {media.payloads}"]
    if media.connection:
        lines.append(_connection_line(media.connection))

    for rtp in media.rtp:
        value = f"{rtp.payload} {rtp.codec}"
        if rtp.rate is not None:
            value += f"/{rtp.rate}"
            if rtp.encoding is not None:
                value += f"/{rtp.encoding}"
        lines.append(f"a=rtpmap:{value}")

    for fmtp in media.fmtp:
        lines.append(f"a=fmtp:{fmtp.payload} {fmtp.config}")

    if media.rtcp_port is not None:
        lines.append(f"a=rtcp:{media.rtcp_port}")

    if media.direction:
        lines.append(f"a={media.direction}")

    for ssrc in media.ssrcs:
        value = f"{ssrc.id}"
        if ssrc.attribute is not None:
            value += f" {ssrc.attribute}"
            if ssrc.value is not None:
                value += f":{ssrc.value}"
        lines.append(f"a=ssrc:{value}")

    for name, value in media.attributes:
        lines.append(f"a={name}" if value is None else f"a={name}:{value}")

    return lines


# ============================================================================
# Parsing
# ============================================================================

def parse(text: str) -> SessionDescription:
    """
    Parse SDP text.

    Accepts CRLF or LF line endings. Line types the codec does not model
    (b=, i=, k=, r=, z=, ...) are skipped; unknown media attributes are
    preserved.

    Args:
        text: SDP document

    Returns:
        Parsed SessionDescription

    Raises:
        SDPParseError: If a modeled line is malformed
    """
    description = SessionDescription()
    current: Optional[MediaDescription] = None

    for line in text.splitlines():
        # s= may legitimately be a single space, so lines are not stripped
        if len(line) < 2 or line[1] != "=":
            continue
        prefix, value = line[0], line[2:]

        try:
            if prefix == "v":
                description.version = int(value)
            elif prefix == "o":
                description.origin = _parse_origin(value)
            elif prefix == "s":
                description.name = value
            elif prefix == "c":
                connection = _parse_connection(value)
                if current is None:
                    description.connection = connection
                else:
                    current.connection = connection
            elif prefix == "t":
                start, stop = value.split()
                description.timing = Timing(int(start), int(stop))
            elif prefix == "m":
                current = _parse_media(value)
                description.media.append(current)
            elif prefix == "a" and current is not None:
                _parse_media_attribute(current, value)
        except (ValueError, IndexError) as e:
            raise SDPParseError(f"Invalid SDP line {line!r}: {e}") from e

    return description


def _parse_origin(value: str) -> Origin:
    username, session_id, session_version, net_type, ip_ver, address = value.split()
    return Origin(
        username=username,
        session_id=int(session_id),
        session_version=int(session_version),
        net_type=net_type,
        ip_ver=_ip_version(ip_ver),
        address=address,
    )


def _parse_connection(value: str) -> Connection:
    parts = value.split()
    if len(parts) < 3:
        raise ValueError("expected '<nettype> <addrtype> <address>'")
    # Multicast addresses may carry a /ttl suffix; keep the address only
    return Connection(version=_ip_version(parts[1]), ip=parts[2].split("/")[0])


def _ip_version(addrtype: str) -> int:
    if not addrtype.upper().startswith("IP"):
        raise ValueError(f"unknown address type {addrtype!r}")
    return int(addrtype[2:])


def _parse_media(value: str) -> MediaDescription:
    parts = value.split()
    if len(parts) < 4:
        raise ValueError("expected '<media> <port> <proto> <fmt> ...'")
    return MediaDescription(
        type=parts[0],
        port=int(parts[1].split("/")[0]),
        protocol=parts[2],
        payloads=" ".join(parts[3:]),
    )


def _parse_media_attribute(media: MediaDescription, value: str) -> None:
    if ":" in value:
        name, attr_value = value.split(":", 1)
    else:
        name, attr_value = value, None

    if name == "rtpmap" and attr_value:
        payload, encoding = attr_value.split(None, 1)
        codec, *params = encoding.split("/")
        media.rtp.append(RtpMap(
            payload=int(payload),
            codec=codec,
            rate=int(params[0]) if params else None,
            encoding=params[1] if len(params) > 1 else None,
        ))
    elif name == "fmtp" and attr_value:
        payload, config = attr_value.split(None, 1)
        media.fmtp.append(Fmtp(payload=int(payload), config=config))
    elif name == "rtcp" and attr_value:
        media.rtcp_port = int(attr_value.split()[0])
    elif name in DIRECTIONS and attr_value is None:
        media.direction = name
    elif name == "ssrc" and attr_value:
        ssrc_id, _, rest = attr_value.partition(" ")
        attribute, sep, ssrc_value = rest.partition(":")
        media.ssrcs.append(Ssrc(
            id=int(ssrc_id),
            attribute=attribute or None,
            value=ssrc_value if sep else None,
        ))
    else:
        media.attributes.append((name, attr_value))


# ============================================================================
# Offer / answer helpers
# ============================================================================

def build_offer(
    peer_address: str,
    peer_family: int,
    session_id: int = DEFAULT_SESSION_ID,
    client_ports: Optional[Sequence[int]] = None
) -> SessionDescription:
    """
    Build the description of what the server is able to receive.

    Without ``client_ports`` (DESCRIBE) the media port is 0 and no RTCP
    port is emitted. With ports, the media port is the first client port and
    the RTCP port is the second one, if given.

    Args:
        peer_address: Remote address of the RTSP client
        peer_family: IP version of the remote address (4 or 6)
        session_id: Numeric session id for the origin line
        client_ports: Client RTP/RTCP ports from the Transport header

    Returns:
        SessionDescription with a single H264 video media section
    """
    media = MediaDescription(
        type=MEDIA_TYPE,
        port=client_ports[0] if client_ports else 0,
        protocol=MEDIA_PROTOCOL,
        payloads=str(H264_PAYLOAD_TYPE),
        rtp=[RtpMap(payload=H264_PAYLOAD_TYPE, codec=H264_CODEC, rate=H264_CLOCK_RATE)],
        direction=OFFER_DIRECTION,
    )
    if client_ports and len(client_ports) > 1:
        media.rtcp_port = client_ports[1]

    return SessionDescription(
        origin=Origin(session_id=session_id),
        connection=Connection(version=peer_family, ip=peer_address),
        timing=Timing(0, 0),
        media=[media],
    )


def extract_answer_ports(description: SessionDescription) -> AnswerPorts:
    """
    Read the media plane's ports and SSRC from its answer.

    Only single-stream answers are supported.

    Raises:
        MalformedAnswer: If there is not exactly one media section, or it
            carries no SSRC
    """
    if len(description.media) != 1:
        raise MalformedAnswer(
            f"Expected exactly one media section in answer, got {len(description.media)}"
        )

    media = description.media[0]
    if not media.ssrcs:
        raise MalformedAnswer("Answer media section has no ssrc attribute")

    return AnswerPorts(
        primary_port=media.port,
        secondary_port=media.rtcp_port,
        ssrc=media.ssrcs[0].id,
    )


def format_sdp_for_logging(sdp: str, max_lines: int = 20) -> str:
    """
    Format SDP for logging (truncate if too long).

    Args:
        sdp: SDP string
        max_lines: Maximum lines to show

    Returns:
        Formatted SDP string
    """
    lines = sdp.splitlines()
    if len(lines) <= max_lines:
        return sdp

    truncated = lines[:max_lines]
    truncated.append(f"... ({len(lines) - max_lines} more lines)")
    return '\r\n'.join(truncated)
