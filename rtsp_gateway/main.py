#!/usr/bin/env python3
"""
RTSP Gateway Launcher

Connects to Kurento Media Server and serves SRC_STREAM to RTSP clients.

Usage:
    python3 -m rtsp_gateway.main

    Or with custom settings:
    python3 -m rtsp_gateway.main --port 8554 --source rtsp://camera/stream

Environment variables:
    KURENTO_WS_URL (or KMS_WS_URL) - Kurento WebSocket URL
    RTSP_SERVER_PORT (or PORT) - RTSP listen port
    SRC_STREAM - Media locator served to clients
"""

import argparse
import asyncio
import logging
import signal
import sys
from logging.handlers import RotatingFileHandler
from typing import List, Optional

from rtsp_gateway.config import settings
from rtsp_gateway.core import KurentoClient, KurentoConnectionError, MediaSession
from rtsp_gateway.server import RTSPConnection, RTSPServer

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    """Console and rotating file logging"""
    settings.LOG_DIR.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format=settings.LOG_FORMAT,
        datefmt=settings.LOG_DATE_FORMAT,
        handlers=[
            logging.StreamHandler(),
            RotatingFileHandler(
                settings.LOG_FILE,
                maxBytes=settings.LOG_MAX_BYTES,
                backupCount=settings.LOG_BACKUP_COUNT
            )
        ]
    )
    if settings.VERBOSE_SDP_LOGGING:
        logging.getLogger("rtsp_gateway.server.dispatcher").setLevel(logging.DEBUG)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="RTSP gateway for Kurento Media Server")
    parser.add_argument("--host", default=settings.RTSP_SERVER_HOST,
                        help="RTSP listen address")
    parser.add_argument("--port", type=int, default=settings.RTSP_SERVER_PORT,
                        help="RTSP listen port")
    parser.add_argument("--kurento-url", default=settings.KURENTO_WS_URL,
                        help="Kurento WebSocket URL")
    parser.add_argument("--source", default=settings.SRC_STREAM,
                        help="Media locator served to clients")
    return parser


class RTSPGatewayService:
    """
    Main service orchestrator.

    Manages lifecycle of:
    - Kurento client connection
    - RTSP server
    - One MediaSession per RTSP connection
    """

    def __init__(
        self,
        host: str,
        port: int,
        kurento_url: str,
        source_uri: str
    ):
        self.host = host
        self.port = port
        self.kurento_url = kurento_url
        self.source_uri = source_uri

        self.kurento_client: Optional[KurentoClient] = None
        self.rtsp_server: Optional[RTSPServer] = None
        self.running = False

    async def start(self):
        """
        Start all services.

        Raises:
            KurentoConnectionError: If Kurento is unreachable
            RTSPServerError: If the RTSP port cannot be bound
        """
        try:
            logger.info("=" * 70)
            logger.info("Starting RTSP Gateway")
            logger.info("=" * 70)

            logger.info(f"Connecting to Kurento at {self.kurento_url}...")
            self.kurento_client = KurentoClient(
                self.kurento_url,
                timeout=settings.KURENTO_REQUEST_TIMEOUT
            )
            await self.kurento_client.connect()

            if await self.kurento_client.ping():
                logger.info("Kurento connection healthy")
            else:
                logger.warning("Kurento ping failed")

            self.rtsp_server = RTSPServer(
                host=self.host,
                port=self.port,
                negotiation_timeout=settings.MEDIA_NEGOTIATION_TIMEOUT,
                enforce_session_state=settings.ENFORCE_SESSION_STATE
            )
            # Registered before listening so no connection is dropped
            self.rtsp_server.on_connection(self._on_connection)
            await self.rtsp_server.start()

            self.running = True

            logger.info("=" * 70)
            logger.info(f"RTSP Server:  rtsp://{self.host}:{self.rtsp_server.port}")
            logger.info(f"Kurento:      {self.kurento_url}")
            logger.info(f"Source:       {self.source_uri}")
            logger.info("=" * 70)

        except Exception as e:
            logger.error(f"Failed to start service: {e}")
            await self.stop()
            raise

    async def stop(self):
        """Stop all services"""
        logger.info("Stopping RTSP Gateway")
        self.running = False

        if self.rtsp_server:
            try:
                await self.rtsp_server.stop()
            except Exception as e:
                logger.error(f"Error stopping RTSP server: {e}")
            self.rtsp_server = None

        if self.kurento_client:
            try:
                await self.kurento_client.close()
            except Exception as e:
                logger.error(f"Error closing Kurento: {e}")
            self.kurento_client = None

        logger.info("Service stopped")

    def _on_connection(self, connection: RTSPConnection) -> None:
        MediaSession(self.kurento_client, self.source_uri).attach(connection)

    async def run_forever(self):
        """Run until stopped"""
        try:
            while self.running:
                await asyncio.sleep(1)
        finally:
            await self.stop()


async def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    args = build_arg_parser().parse_args(argv)
    configure_logging()

    for error in settings.validate_config():
        logger.warning(f"Configuration warning: {error}")

    service = RTSPGatewayService(
        host=args.host,
        port=args.port,
        kurento_url=args.kurento_url,
        source_uri=args.source
    )

    loop = asyncio.get_running_loop()

    def signal_handler(sig):
        logger.info(f"Received signal {sig}")
        service.running = False

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))

    try:
        await service.start()
        await service.run_forever()
    except KurentoConnectionError as e:
        logger.error(f"Could not find media server at address {args.kurento_url}. Exiting: {e}")
        return 1
    except Exception as e:
        logger.error(f"Service error: {e}", exc_info=True)
        return 1
    finally:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)

    return 0


def run() -> None:
    """Console script entry point"""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(0)


if __name__ == "__main__":
    run()
