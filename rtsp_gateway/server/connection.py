"""
RTSP Client Connection

Owns one client TCP connection: reads request frames, dispatches them one
at a time and writes exactly one response per request.

The owning application plugs its media negotiation in through the
registration API (on_setup / on_play / on_teardown / on_error / on_close)
before the connection starts serving.
"""

import asyncio
import ipaddress
import logging
from typing import Any, Callable, Optional, Set, Tuple

from .dispatcher import (
    ConnectionHandlers,
    NegotiationTimeout,
    RequestDispatcher,
    SessionPhase,
)
from .protocol import RTSPDecodeError, Request, Response, http_date, read_request

logger = logging.getLogger(__name__)


def peer_info(writer: asyncio.StreamWriter) -> Tuple[str, int, int]:
    """
    Remote address, port and IP version of a stream.

    IPv4-mapped IPv6 addresses (dual-stack sockets) are reported as IPv4.
    """
    peername = writer.get_extra_info("peername") or ("0.0.0.0", 0)
    host, port = peername[0], peername[1]

    address = ipaddress.ip_address(host.split("%", 1)[0])
    if address.version == 6 and address.ipv4_mapped:
        address = address.ipv4_mapped
    return str(address), port, address.version


class RTSPConnection:
    """
    One RTSP control connection.

    Features:
    - Single capability handler per slot (setup, play, teardown, error, close)
    - Serial request processing (no pipelining of session-affecting methods)
    - No writes once the connection is closed
    - Internal faults reported through the error handler

    Usage:
        connection = RTSPConnection(reader, writer)
        connection.on_setup(handle_setup)
        connection.on_close(handle_close)
        await connection.serve()
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        negotiation_timeout: Optional[float] = None,
        enforce_session_state: bool = True
    ):
        """
        Initialize connection.

        Args:
            reader: Stream reader of the accepted socket
            writer: Stream writer of the accepted socket
            negotiation_timeout: Deadline in seconds for setup/play/teardown handlers
            enforce_session_state: Reject out-of-order SETUP/PLAY/TEARDOWN with 455
        """
        self.reader = reader
        self.writer = writer
        self.peer_address, self.peer_port, self.peer_family = peer_info(writer)
        self.connection_id = f"{self.peer_address}:{self.peer_port}"

        self.handlers = ConnectionHandlers()
        self.dispatcher = RequestDispatcher(
            self.handlers,
            self.peer_address,
            self.peer_family,
            negotiation_timeout=negotiation_timeout,
            enforce_session_state=enforce_session_state
        )

        # Set once, never cleared
        self.closed = False

        self._requests: asyncio.Queue = asyncio.Queue()
        self._callback_tasks: Set[asyncio.Task] = set()

        logger.info(f"New RTSP connection from {self.connection_id}")

    # ========================================================================
    # Capability registration
    # ========================================================================

    def on_setup(self, handler: Callable[[str], Any]) -> None:
        """Handler receiving the SDP offer and returning the media plane's answer"""
        self.handlers.setup = handler

    def on_play(self, handler: Callable[[str], Any]) -> None:
        """Handler receiving the PLAY request URI"""
        self.handlers.play = handler

    def on_teardown(self, handler: Callable[[str], Any]) -> None:
        """Handler receiving the TEARDOWN request URI"""
        self.handlers.teardown = handler

    def on_error(self, handler: Callable[[Exception], Any]) -> None:
        self.handlers.error = handler

    def on_close(self, handler: Callable[[], Any]) -> None:
        self.handlers.close = handler

    @property
    def phase(self) -> SessionPhase:
        return self.dispatcher.phase

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def serve(self) -> None:
        """
        Read and process requests until the stream closes.

        Frames are read continuously so that closure is noticed while a
        request is still waiting on the media plane.
        """
        worker = asyncio.create_task(self._process_requests())
        try:
            await self._read_requests()
        finally:
            self._mark_closed()
            self._requests.put_nowait(None)
            self._close_writer()
            await worker

    def close(self) -> None:
        """Close the connection; pending responses are dropped"""
        if self.closed:
            return
        logger.info(f"Closing RTSP connection {self.connection_id}")
        self._mark_closed()
        self._close_writer()

    async def _read_requests(self) -> None:
        while not self.closed:
            try:
                request = await read_request(self.reader)
            except RTSPDecodeError as e:
                logger.warning(f"Undecodable request from {self.connection_id}: {e}")
                self._requests.put_nowait(e)
                continue
            except (ConnectionError, OSError) as e:
                logger.warning(f"Stream error on {self.connection_id}: {e}")
                self._report_error(e)
                return

            if request is None:
                logger.info(f"Connection closed by {self.connection_id}")
                return
            self._requests.put_nowait(request)

    async def _process_requests(self) -> None:
        while True:
            item = await self._requests.get()
            if item is None:
                return
            if self.closed:
                logger.debug(f"Dropping request queued on closed connection {self.connection_id}")
                continue

            if isinstance(item, RTSPDecodeError):
                self._report_error(item)
                await self._write_response(_error_response(400, item.cseq))
                continue

            response = await self._handle_request(item)
            if response is not None:
                await self._write_response(response)

    async def _handle_request(self, request: Request) -> Optional[Response]:
        try:
            return await self.dispatcher.dispatch(request)
        except NegotiationTimeout as e:
            logger.error(f"{request.method} on {self.connection_id} timed out: {e}")
            self._report_error(e)
            self.close()
            return None
        except Exception as e:
            logger.error(f"Failed to handle {request.method} on {self.connection_id}: {e}", exc_info=True)
            self._report_error(e)
            return _error_response(500, request.cseq)

    async def _write_response(self, response: Response) -> None:
        if self.closed:
            logger.debug(f"Connection {self.connection_id} closed; not writing {response!r}")
            return

        try:
            self.writer.write(response.encode())
            await self.writer.drain()
            logger.debug(f"Sent {response!r} to {self.connection_id}")
        except (ConnectionError, OSError) as e:
            logger.warning(f"Failed to write response to {self.connection_id}: {e}")
            self._report_error(e)
            self.close()

    # ========================================================================
    # Callbacks
    # ========================================================================

    def _mark_closed(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self.handlers.close:
            self._invoke(self.handlers.close)

    def _close_writer(self) -> None:
        if not self.writer.is_closing():
            self.writer.close()

    def _report_error(self, error: Exception) -> None:
        if self.handlers.error:
            self._invoke(self.handlers.error, error)
        else:
            logger.error(f"Unhandled connection error on {self.connection_id}: {error}")

    def _invoke(self, handler: Callable, *args) -> None:
        """Run an error/close handler; coroutine handlers are scheduled"""
        try:
            result = handler(*args)
        except Exception as e:
            logger.error(f"Error in connection handler: {e}", exc_info=True)
            return

        if asyncio.iscoroutine(result):
            task = asyncio.ensure_future(result)
            self._callback_tasks.add(task)
            task.add_done_callback(self._callback_done)

    def _callback_done(self, task: asyncio.Task) -> None:
        self._callback_tasks.discard(task)
        if not task.cancelled() and task.exception():
            logger.error(f"Error in connection handler: {task.exception()}")


def _error_response(status_code: int, cseq: Optional[str]) -> Response:
    response = Response(status_code)
    if cseq is not None:
        response.set_header("CSeq", cseq)
    response.set_header("Date", http_date())
    return response
