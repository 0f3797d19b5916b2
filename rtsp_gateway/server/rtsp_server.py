"""
RTSP Listener

Accepts RTSP control connections and hands each one to the application.

Usage:
    server = RTSPServer(host="0.0.0.0", port=554)
    server.on_connection(handle_connection)
    await server.start()
"""

import asyncio
import logging
from typing import Callable, Optional, Set

from .connection import RTSPConnection
from .protocol import MAX_HEADER_SIZE

logger = logging.getLogger(__name__)


class RTSPServerError(Exception):
    """Raised when the listener cannot start"""
    pass


class RTSPServer:
    """
    TCP listener creating one RTSPConnection per client.

    The "new connection" callback runs before the connection reads its
    first request, so handlers it registers are in place for every request.
    Connections arriving while no callback is registered are closed unread.
    """

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 554,
        negotiation_timeout: Optional[float] = None,
        enforce_session_state: bool = True
    ):
        """
        Initialize listener.

        Args:
            host: Listen address (0.0.0.0 for all interfaces)
            port: Listen port (0 picks a free port)
            negotiation_timeout: Passed to every connection
            enforce_session_state: Passed to every connection
        """
        self.host = host
        self.port = port
        self.negotiation_timeout = negotiation_timeout
        self.enforce_session_state = enforce_session_state

        self.connection_handler: Optional[Callable[[RTSPConnection], None]] = None
        self.connections: Set[RTSPConnection] = set()

        self.server: Optional[asyncio.AbstractServer] = None
        self.running = False

        logger.info(f"RTSP server initialized on {host}:{port}")

    def on_connection(self, handler: Callable[[RTSPConnection], None]) -> None:
        """Register the callback receiving each new RTSPConnection"""
        self.connection_handler = handler

    async def start(self) -> None:
        """
        Start listening.

        Raises:
            RTSPServerError: If the socket cannot be bound
        """
        try:
            self.server = await asyncio.start_server(
                self._handle_client,
                self.host,
                self.port,
                limit=MAX_HEADER_SIZE
            )
        except OSError as e:
            error_msg = f"Failed to start RTSP server on {self.host}:{self.port}: {e}"
            logger.error(error_msg)
            raise RTSPServerError(error_msg) from e

        # Report the real port when bound to port 0
        self.port = self.server.sockets[0].getsockname()[1]
        self.running = True
        logger.info(f"RTSP server is running on port: {self.port}")

    async def stop(self) -> None:
        """Stop listening and close all client connections"""
        logger.info("Stopping RTSP server...")
        self.running = False

        for connection in list(self.connections):
            connection.close()

        if self.server:
            self.server.close()
            await self.server.wait_closed()

        logger.info("RTSP server stopped")

    async def _handle_client(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter
    ) -> None:
        if not self.connection_handler:
            logger.debug(f"No connection handler; dropping {writer.get_extra_info('peername')}")
            writer.close()
            return

        connection = RTSPConnection(
            reader,
            writer,
            negotiation_timeout=self.negotiation_timeout,
            enforce_session_state=self.enforce_session_state
        )

        try:
            self.connection_handler(connection)
        except Exception as e:
            logger.error(f"Connection handler failed for {connection.connection_id}: {e}", exc_info=True)
            connection.close()
            return

        self.connections.add(connection)
        try:
            await connection.serve()
        finally:
            self.connections.discard(connection)
