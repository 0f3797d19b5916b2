"""
RTSP Request Dispatcher

Routes decoded requests to per-method handlers and produces responses.

Session-affecting methods (SETUP, PLAY, TEARDOWN) call into the
application's capability handlers and wait for them before the response is
finalized. The session phase is tracked explicitly:

    IDLE --SETUP--> NEGOTIATED --PLAY--> PLAYING --TEARDOWN--> TORN_DOWN
                         \\__________________TEARDOWN____________/

Requests that are out of order for the current phase are answered
455 Method Not Valid in This State when enforcement is enabled.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from ..config import settings
from ..core import sdp
from ..core.transport import (
    TransportParseError,
    format_transport,
    header_profile,
    is_reliable_profile,
    parse_transport,
)
from .protocol import Request, Response, http_date

logger = logging.getLogger(__name__)


SUPPORTED_METHODS = ("OPTIONS", "DESCRIBE", "SETUP", "TEARDOWN", "PLAY")
SDP_CONTENT_TYPE = "application/sdp"

# Sessions are not multiplexed per connection; every client gets this id
PLACEHOLDER_SESSION_ID = 4242


# ============================================================================
# Errors
# ============================================================================

class RTSPError(Exception):
    """Base exception for request handling errors"""
    status_code = 500


class ProtocolError(RTSPError):
    """Request violates the negotiated contract"""
    status_code = 400


class NotAcceptable(ProtocolError):
    """DESCRIBE without an acceptable content type"""
    status_code = 406


class MethodNotValidInState(ProtocolError):
    """Request is out of order for the session phase"""
    status_code = 455


class UnsupportedTransport(ProtocolError):
    """SETUP with a reliable (TCP) transport profile"""
    status_code = 461


class UnsupportedCapability(RTSPError):
    """Method unknown, or no handler registered for it"""
    status_code = 501


class NegotiationTimeout(RTSPError):
    """A capability handler did not complete before the deadline"""
    pass


# ============================================================================
# Capability table and session phase
# ============================================================================

@dataclass
class ConnectionHandlers:
    """
    Application capability handlers for one connection.

    Each slot is optional; an empty slot makes the matching method answer
    501 Not Implemented.
    """
    setup: Optional[Callable[[str], Awaitable[str]]] = None
    play: Optional[Callable[[str], Awaitable[Any]]] = None
    teardown: Optional[Callable[[str], Awaitable[Any]]] = None
    error: Optional[Callable[[Exception], Any]] = None
    close: Optional[Callable[[], Any]] = None


class SessionPhase(Enum):
    """RTSP session phases"""
    IDLE = "idle"
    NEGOTIATED = "negotiated"
    PLAYING = "playing"
    TORN_DOWN = "torn_down"


ALLOWED_PHASES = {
    "SETUP": (SessionPhase.IDLE,),
    "PLAY": (SessionPhase.NEGOTIATED, SessionPhase.PLAYING),
    "TEARDOWN": (SessionPhase.NEGOTIATED, SessionPhase.PLAYING),
}


class RequestDispatcher:
    """
    Per-connection RTSP request dispatcher.

    Usage:
        dispatcher = RequestDispatcher(handlers, "10.0.0.5", 4)
        response = await dispatcher.dispatch(request)
    """

    def __init__(
        self,
        handlers: ConnectionHandlers,
        peer_address: str,
        peer_family: int,
        negotiation_timeout: Optional[float] = None,
        enforce_session_state: bool = True
    ):
        """
        Initialize dispatcher.

        Args:
            handlers: Capability table shared with the connection
            peer_address: Client address used in session descriptions
            peer_family: Client IP version (4 or 6)
            negotiation_timeout: Deadline in seconds for capability handlers
                (None or 0 waits indefinitely)
            enforce_session_state: Reject out-of-order SETUP/PLAY/TEARDOWN
        """
        self.handlers = handlers
        self.peer_address = peer_address
        self.peer_family = peer_family
        self.negotiation_timeout = negotiation_timeout or None
        self.enforce_session_state = enforce_session_state
        self.phase = SessionPhase.IDLE

    async def dispatch(self, request: Request) -> Response:
        """
        Handle one request.

        Protocol errors are turned into their status code. Anything else
        (MalformedAnswer, NegotiationTimeout, handler faults) propagates to
        the connection.

        Args:
            request: Decoded request

        Returns:
            Response ready to be written
        """
        logger.info(f"Request {request.method} {request.uri} (CSeq {request.cseq})")

        response = Response()
        if request.cseq is not None:
            response.set_header("CSeq", request.cseq)
        response.set_header("Date", http_date())

        handler = {
            "OPTIONS": self._handle_options,
            "DESCRIBE": self._handle_describe,
            "SETUP": self._handle_setup,
            "PLAY": self._handle_play,
            "TEARDOWN": self._handle_teardown,
        }.get(request.method, self._handle_unknown)

        try:
            await handler(request, response)
        except (ProtocolError, UnsupportedCapability) as e:
            logger.warning(f"{request.method} rejected with {e.status_code}: {e}")
            response.status_code = e.status_code
            response.body = None

        return response

    # ========================================================================
    # Method handlers
    # ========================================================================

    async def _handle_options(self, request: Request, response: Response) -> None:
        response.set_header("Public", ", ".join(SUPPORTED_METHODS))

    async def _handle_describe(self, request: Request, response: Response) -> None:
        accept = request.headers.get("Accept", "")
        if SDP_CONTENT_TYPE not in accept.lower():
            raise NotAcceptable(f"Accept header {accept!r} does not include {SDP_CONTENT_TYPE}")

        description = sdp.serialize(
            sdp.build_offer(self.peer_address, self.peer_family)
        )
        logger.debug(f"Sending SDP description:\n{_loggable_sdp(description)}")
        response.set_body(description)

    async def _handle_setup(self, request: Request, response: Response) -> None:
        transport_header = request.headers.get("Transport")
        if not transport_header:
            raise ProtocolError("SETUP without a Transport header")

        # Only datagram delivery is supported
        profile = header_profile(transport_header)
        if is_reliable_profile(profile):
            raise UnsupportedTransport(f"Transport profile {profile} is not supported")

        try:
            transport = parse_transport(transport_header)
        except TransportParseError as e:
            raise ProtocolError(str(e)) from e

        setup = self._require_handler("setup", request)
        self._check_phase(request)

        offer = sdp.build_offer(
            self.peer_address,
            self.peer_family,
            session_id=_session_id(request),
            client_ports=transport.client_ports,
        )
        sdp_offer = sdp.serialize(offer)
        logger.debug(f"SDP offer for media plane:\n{_loggable_sdp(sdp_offer)}")

        sdp_answer = await self._await_handler("setup", setup(sdp_offer))
        logger.debug(f"SDP answer from media plane:\n{_loggable_sdp(sdp_answer or '')}")

        try:
            answer = sdp.parse(sdp_answer or "")
        except sdp.SDPParseError as e:
            raise sdp.MalformedAnswer(str(e)) from e
        ports = sdp.extract_answer_ports(answer)

        response.set_header("Transport", format_transport(
            offer.media[0].protocol,
            transport.client_ports,
            ports.ports,
            ports.ssrc,
        ))
        response.set_header("Session", PLACEHOLDER_SESSION_ID)
        self.phase = SessionPhase.NEGOTIATED

    async def _handle_play(self, request: Request, response: Response) -> None:
        play = self._require_handler("play", request)
        self._check_phase(request)

        await self._await_handler("play", play(request.uri))
        self.phase = SessionPhase.PLAYING

    async def _handle_teardown(self, request: Request, response: Response) -> None:
        teardown = self._require_handler("teardown", request)
        self._check_phase(request)

        await self._await_handler("teardown", teardown(request.uri))
        self.phase = SessionPhase.TORN_DOWN

    async def _handle_unknown(self, request: Request, response: Response) -> None:
        raise UnsupportedCapability(f"Method {request.method} is not implemented")

    # ========================================================================
    # Helpers
    # ========================================================================

    def _require_handler(self, name: str, request: Request) -> Callable:
        handler = getattr(self.handlers, name)
        if handler is None:
            logger.error(f"Received a {request.method} request but no handler was specified")
            raise UnsupportedCapability(f"No {name} handler registered")
        return handler

    def _check_phase(self, request: Request) -> None:
        if not self.enforce_session_state:
            return
        if self.phase not in ALLOWED_PHASES[request.method]:
            raise MethodNotValidInState(
                f"{request.method} not allowed in phase {self.phase.value}"
            )

    async def _await_handler(self, name: str, result: Any) -> Any:
        if not asyncio.iscoroutine(result) and not isinstance(result, asyncio.Future):
            return result
        try:
            return await asyncio.wait_for(result, timeout=self.negotiation_timeout)
        except asyncio.TimeoutError as e:
            raise NegotiationTimeout(
                f"{name} handler did not complete within {self.negotiation_timeout}s"
            ) from e


def _session_id(request: Request) -> int:
    """Numeric id from the Session header (``12345;timeout=60``), else the placeholder"""
    session = request.headers.get("Session", "")
    try:
        return int(session.split(";", 1)[0].strip())
    except ValueError:
        return PLACEHOLDER_SESSION_ID


def _loggable_sdp(description: str) -> str:
    if settings.VERBOSE_SDP_LOGGING:
        return description
    return sdp.format_sdp_for_logging(description)
