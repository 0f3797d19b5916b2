"""
RTSP Server Modules

Listener, per-connection adapter, request dispatcher and message framing.
"""

from .rtsp_server import RTSPServer, RTSPServerError
from .connection import RTSPConnection
from .dispatcher import (
    RequestDispatcher,
    ConnectionHandlers,
    SessionPhase,
    RTSPError,
    ProtocolError,
    NotAcceptable,
    MethodNotValidInState,
    UnsupportedTransport,
    UnsupportedCapability,
    NegotiationTimeout,
)
from .protocol import Request, Response, RTSPDecodeError

__all__ = [
    "RTSPServer",
    "RTSPServerError",
    "RTSPConnection",
    "RequestDispatcher",
    "ConnectionHandlers",
    "SessionPhase",
    "RTSPError",
    "ProtocolError",
    "NotAcceptable",
    "MethodNotValidInState",
    "UnsupportedTransport",
    "UnsupportedCapability",
    "NegotiationTimeout",
    "Request",
    "Response",
    "RTSPDecodeError",
]
