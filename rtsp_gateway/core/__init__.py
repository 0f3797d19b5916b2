"""
RTSP Gateway Core Modules

Session descriptions, transport negotiation and the Kurento media plane.
"""

from .kurento_client import (
    KurentoClient,
    KurentoError,
    KurentoConnectionError,
    KurentoRequestError
)

from .sdp import (
    SessionDescription,
    MediaDescription,
    AnswerPorts,
    SDPError,
    SDPParseError,
    MalformedAnswer,
    build_offer,
    extract_answer_ports,
    format_sdp_for_logging,
)

from .transport import (
    TransportDescriptor,
    TransportParseError,
    parse_transport,
    format_transport,
)

from .media_session import (
    MediaSession,
    MediaSessionClosed,
    MediaSessionState,
)

__all__ = [
    # Kurento client
    "KurentoClient",
    "KurentoError",
    "KurentoConnectionError",
    "KurentoRequestError",
    # SDP
    "SessionDescription",
    "MediaDescription",
    "AnswerPorts",
    "SDPError",
    "SDPParseError",
    "MalformedAnswer",
    "build_offer",
    "extract_answer_ports",
    "format_sdp_for_logging",
    # Transport
    "TransportDescriptor",
    "TransportParseError",
    "parse_transport",
    "format_transport",
    # Media session
    "MediaSession",
    "MediaSessionClosed",
    "MediaSessionState",
]
