"""
Kurento Media Session

Media plane for one RTSP connection.

Pipeline: PlayerEndpoint (source stream) -> RtpEndpoint -> RTSP client

Responsibilities:
- Create the Kurento pipeline and endpoints on SETUP
- Hand the client's SDP offer to the RtpEndpoint and return its answer
- Start the player on PLAY
- Release the pipeline on TEARDOWN or when the connection closes
- Log Kurento Error events for the session's elements
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Dict, Optional, Set

from .kurento_client import KurentoClient, KurentoError

logger = logging.getLogger(__name__)


class MediaSessionClosed(KurentoError):
    """Raised when the connection closes while the pipeline is being built"""
    pass


class MediaSessionState(Enum):
    """Media pipeline states"""
    IDLE = "idle"
    READY = "ready"
    PLAYING = "playing"
    RELEASED = "released"


class MediaSession:
    """
    Kurento pipeline backing one RTSP connection.

    Usage:
        session = MediaSession(kurento_client, "rtsp://camera/stream")
        session.attach(connection)
    """

    def __init__(self, kurento_client: KurentoClient, source_uri: str):
        """
        Initialize media session.

        Args:
            kurento_client: Connected Kurento client
            source_uri: Media locator played by the PlayerEndpoint
        """
        self.kurento_client = kurento_client
        self.source_uri = source_uri

        self.state = MediaSessionState.IDLE
        self.pipeline_id: Optional[str] = None
        self.player_id: Optional[str] = None
        self.rtp_endpoint_id: Optional[str] = None

        self.closed = False
        self._object_ids: Set[str] = set()
        self._release_task: Optional[asyncio.Task] = None

    def attach(self, connection) -> None:
        """Register this session's capabilities on an RTSPConnection"""
        connection.on_setup(self.setup)
        connection.on_play(self.play)
        connection.on_teardown(self.teardown)
        connection.on_error(self.handle_error)
        connection.on_close(self.handle_close)

    async def setup(self, sdp_offer: str) -> str:
        """
        Build the pipeline and negotiate with the RtpEndpoint.

        Args:
            sdp_offer: Offer built from the client's Transport header

        Returns:
            The RtpEndpoint's local session description

        Raises:
            KurentoError: If any Kurento call fails (the pipeline is released)
        """
        logger.info("Setting up pipeline")
        if self.pipeline_id:
            await self.release()
        if self._handle_kurento_event not in self.kurento_client.event_handlers:
            self.kurento_client.add_event_handler(self._handle_kurento_event)

        try:
            self.pipeline_id = await self.kurento_client.create_media_pipeline()
            self._check_open()
            await self._watch(self.pipeline_id)

            self.player_id = await self.kurento_client.create_player_endpoint(
                self.pipeline_id, self.source_uri
            )
            self._check_open()
            await self._watch(self.player_id)

            self.rtp_endpoint_id = await self.kurento_client.create_rtp_endpoint(
                self.pipeline_id
            )
            self._check_open()
            await self._watch(self.rtp_endpoint_id)

            await self.kurento_client.process_sdp_offer(self.rtp_endpoint_id, sdp_offer)
            self._check_open()
            await self.kurento_client.connect_endpoints(
                self.player_id, self.rtp_endpoint_id, media_type="VIDEO"
            )
            self._check_open()

            server_sdp = await self.kurento_client.get_local_session_descriptor(
                self.rtp_endpoint_id
            )
            self._check_open()
        except Exception as e:
            logger.error(f"Pipeline setup failed: {e}")
            await self.release()
            raise

        self.state = MediaSessionState.READY
        return server_sdp

    async def play(self, url: str) -> None:
        logger.info(f"PLAY {url}")
        if self.player_id:
            await self.kurento_client.play(self.player_id)
            self.state = MediaSessionState.PLAYING

    async def teardown(self, url: str) -> None:
        logger.info(f"TEARDOWN {url}")
        await self.release()

    def handle_error(self, error: Exception) -> None:
        logger.error(f"Server error: {error}")

    def handle_close(self) -> None:
        logger.info("Connection closed")
        self.closed = True
        if self.pipeline_id:
            logger.info("Releasing pipeline...")
            self._release_task = asyncio.ensure_future(self.release())

    async def release(self) -> None:
        """Release the pipeline (and with it every endpoint); safe to call twice"""
        pipeline_id, self.pipeline_id = self.pipeline_id, None
        self.player_id = None
        self.rtp_endpoint_id = None
        self._object_ids.clear()
        self.kurento_client.remove_event_handler(self._handle_kurento_event)

        if pipeline_id:
            await self.kurento_client.release_pipeline(pipeline_id)
        self.state = MediaSessionState.RELEASED

    def _check_open(self) -> None:
        if self.closed:
            raise MediaSessionClosed("Connection closed during pipeline setup")

    async def _watch(self, object_id: str) -> None:
        self._object_ids.add(object_id)
        await self.kurento_client.subscribe_to_event(object_id, "Error")

    def _handle_kurento_event(self, event: Dict[str, Any]) -> None:
        value = event.get("params", {}).get("value", {})
        if value.get("object") not in self._object_ids:
            return
        if value.get("type") == "Error":
            data = value.get("data", {})
            logger.error(
                f"KMS Error on {value.get('object')}: "
                f"{data.get('description', data)}"
            )
