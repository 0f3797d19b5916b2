"""
Kurento Media Server Client

WebSocket JSON-RPC client for Kurento Media Server.
Handles requests, responses and events (e.g. element Error events).

Only the operations the RTSP gateway needs are wrapped: pipelines,
PlayerEndpoint / RtpEndpoint creation, offer processing, connection,
playback and release.
"""

import json
import asyncio
import logging
from typing import Dict, Any, Optional, Callable, List
import aiohttp

logger = logging.getLogger(__name__)


class KurentoError(Exception):
    """Base exception for Kurento-related errors"""
    pass


class KurentoConnectionError(KurentoError):
    """Raised when connection to Kurento fails"""
    pass


class KurentoRequestError(KurentoError):
    """Raised when a Kurento request fails"""
    pass


class KurentoClient:
    """
    Async WebSocket client for Kurento Media Server.

    Features:
    - Concurrent request/response handling
    - Kurento session id propagation
    - Event subscription (element errors, etc.)
    - Request timeout handling
    - Clean error propagation

    Usage:
        client = KurentoClient("ws://localhost:8888/kurento")
        await client.connect()

        pipeline_id = await client.create_media_pipeline()
        player_id = await client.create_player_endpoint(pipeline_id, "rtsp://camera/stream")

        client.add_event_handler(handle_event)

        await client.close()
    """

    def __init__(self, ws_url: str, timeout: int = 30):
        """
        Initialize Kurento client.

        Args:
            ws_url: WebSocket URL (e.g., ws://localhost:8888/kurento)
            timeout: Request timeout in seconds
        """
        self.ws_url = ws_url
        self.timeout = timeout

        # Connection state
        self.ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self.session: Optional[aiohttp.ClientSession] = None
        self.connected = False

        # Kurento assigns a session id in its first response
        self.kurento_session_id: Optional[str] = None

        # Request management
        self.request_id = 0
        self.pending_requests: Dict[int, asyncio.Future] = {}
        self.lock = asyncio.Lock()

        # Event handling
        self.event_handlers: List[Callable] = []

        # Background tasks
        self._response_task: Optional[asyncio.Task] = None

        logger.info(f"Kurento client initialized for {ws_url}")

    async def connect(self) -> None:
        """
        Connect to Kurento Media Server.

        Raises:
            KurentoConnectionError: If connection fails
        """
        try:
            logger.info(f"Connecting to Kurento at {self.ws_url}")

            self.session = aiohttp.ClientSession()

            self.ws = await self.session.ws_connect(
                self.ws_url,
                timeout=self.timeout,
                heartbeat=30
            )

            self.connected = True

            self._response_task = asyncio.create_task(self._handle_responses())

            logger.info("Connected to Kurento WebSocket")

        except Exception as e:
            await self._cleanup()
            error_msg = f"Failed to connect to Kurento: {e}"
            logger.error(error_msg)
            raise KurentoConnectionError(error_msg) from e

    async def close(self) -> None:
        """Close connection and cleanup resources"""
        logger.info("Closing Kurento connection")
        await self._cleanup()

    async def _cleanup(self) -> None:
        """Internal cleanup of resources"""
        self.connected = False

        if self._response_task and not self._response_task.done():
            self._response_task.cancel()
            try:
                await self._response_task
            except asyncio.CancelledError:
                pass

        if self.ws and not self.ws.closed:
            await self.ws.close()

        if self.session and not self.session.closed:
            await self.session.close()

        # Reject all pending requests
        for request_id, future in list(self.pending_requests.items()):
            if not future.done():
                future.set_exception(
                    KurentoConnectionError("Connection closed")
                )
        self.pending_requests.clear()

    async def _handle_responses(self) -> None:
        """
        Background task to handle incoming WebSocket messages.
        Processes both RPC responses and events.
        """
        try:
            async for msg in self.ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    try:
                        await self._handle_message(json.loads(msg.data))
                    except json.JSONDecodeError as e:
                        logger.error(f"Failed to parse Kurento message: {e}")

                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.error(f"WebSocket error: {msg.data}")
                    break

        except asyncio.CancelledError:
            logger.debug("Response handler cancelled")
        except Exception as e:
            logger.error(f"Error in response handler: {e}")
        finally:
            self.connected = False

    async def _handle_message(self, message: Dict[str, Any]) -> None:
        """Route one decoded JSON-RPC message"""
        logger.debug(f"Kurento message: {message}")

        # Events have a method but no id
        if "method" in message and "id" not in message:
            await self._handle_event(message)
        else:
            await self._handle_rpc_response(message)

    async def _handle_rpc_response(self, response: Dict[str, Any]) -> None:
        """Handle JSON-RPC response"""
        request_id = response.get("id")

        if request_id not in self.pending_requests:
            logger.warning(f"Received response for unknown request ID: {request_id}")
            return

        future = self.pending_requests.pop(request_id)

        if "error" in response:
            error = response["error"]
            error_msg = f"Kurento error: {error.get('message', 'Unknown error')}"
            logger.error(error_msg)
            future.set_exception(KurentoRequestError(error_msg))
        else:
            result = response.get("result") or {}
            if result.get("sessionId"):
                self.kurento_session_id = result["sessionId"]
            future.set_result(result)

    async def _handle_event(self, event: Dict[str, Any]) -> None:
        """
        Handle events from Kurento (e.g., onEvent carrying an Error).
        Calls all registered event handlers.
        """
        method = event.get("method")
        logger.debug(f"Received Kurento event: {method}")

        for handler in list(self.event_handlers):
            try:
                result = handler(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"Error in event handler: {e}")

    def add_event_handler(self, handler: Callable) -> None:
        """
        Add event handler for Kurento events.

        Args:
            handler: Async or sync function that receives event dict
        """
        self.event_handlers.append(handler)
        logger.debug(f"Added event handler: {getattr(handler, '__name__', handler)}")

    def remove_event_handler(self, handler: Callable) -> None:
        """Remove event handler"""
        if handler in self.event_handlers:
            self.event_handlers.remove(handler)
            logger.debug(f"Removed event handler: {getattr(handler, '__name__', handler)}")

    async def send_request(
        self,
        method: str,
        params: Dict[str, Any],
        timeout: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Send JSON-RPC request to Kurento and wait for response.

        Args:
            method: JSON-RPC method (e.g., "create", "invoke")
            params: Method parameters
            timeout: Override default timeout

        Returns:
            Response result dictionary

        Raises:
            KurentoConnectionError: If not connected
            KurentoRequestError: If request fails
            asyncio.TimeoutError: If request times out
        """
        if not self.connected or not self.ws:
            raise KurentoConnectionError("Not connected to Kurento")

        async with self.lock:
            self.request_id += 1
            request_id = self.request_id

        params = dict(params)
        if self.kurento_session_id and "sessionId" not in params:
            params["sessionId"] = self.kurento_session_id

        request = {
            "id": request_id,
            "method": method,
            "params": params,
            "jsonrpc": "2.0"
        }

        future = asyncio.get_running_loop().create_future()
        self.pending_requests[request_id] = future

        request_timeout = timeout or self.timeout
        try:
            await self.ws.send_json(request)
            logger.debug(f"Sent request {request_id}: {method}")

            result = await asyncio.wait_for(future, timeout=request_timeout)

            logger.debug(f"Received response {request_id}")
            return result

        except asyncio.TimeoutError:
            self.pending_requests.pop(request_id, None)
            logger.error(f"Request {request_id} timed out after {request_timeout}s")
            raise
        except Exception as e:
            self.pending_requests.pop(request_id, None)
            logger.error(f"Request {request_id} failed: {e}")
            raise

    # ========================================================================
    # High-level API methods
    # ========================================================================

    async def create_media_pipeline(self) -> str:
        """
        Create a MediaPipeline.

        Returns:
            Pipeline ID
        """
        result = await self.send_request("create", {
            "type": "MediaPipeline"
        })
        pipeline_id = result.get("value")
        logger.info(f"Created MediaPipeline: {pipeline_id}")
        return pipeline_id

    async def create_player_endpoint(self, pipeline_id: str, uri: str) -> str:
        """
        Create a PlayerEndpoint reading the source stream.

        Args:
            pipeline_id: Parent MediaPipeline ID
            uri: Source media locator (file://, rtsp://, http://)

        Returns:
            PlayerEndpoint ID
        """
        result = await self.send_request("create", {
            "type": "PlayerEndpoint",
            "constructorParams": {
                "mediaPipeline": pipeline_id,
                "uri": uri
            }
        })
        endpoint_id = result.get("value")
        logger.info(f"Created PlayerEndpoint: {endpoint_id} ({uri})")
        return endpoint_id

    async def create_rtp_endpoint(self, pipeline_id: str) -> str:
        """
        Create an RtpEndpoint sending plain RTP to the RTSP client.

        Args:
            pipeline_id: Parent MediaPipeline ID

        Returns:
            RtpEndpoint ID
        """
        result = await self.send_request("create", {
            "type": "RtpEndpoint",
            "constructorParams": {
                "mediaPipeline": pipeline_id
            }
        })
        endpoint_id = result.get("value")
        logger.info(f"Created RtpEndpoint: {endpoint_id}")
        return endpoint_id

    async def process_sdp_offer(self, endpoint_id: str, sdp_offer: str) -> str:
        """
        Process SDP offer and generate answer.

        Args:
            endpoint_id: RtpEndpoint ID
            sdp_offer: SDP offer string

        Returns:
            SDP answer string
        """
        result = await self.send_request("invoke", {
            "object": endpoint_id,
            "operation": "processOffer",
            "operationParams": {
                "offer": sdp_offer
            }
        })
        sdp_answer = result.get("value")
        logger.debug(f"Processed SDP offer for {endpoint_id}")
        return sdp_answer

    async def get_local_session_descriptor(self, endpoint_id: str) -> str:
        """
        Get the endpoint's local SDP (its side of the negotiation).

        Args:
            endpoint_id: RtpEndpoint ID

        Returns:
            SDP string
        """
        result = await self.send_request("invoke", {
            "object": endpoint_id,
            "operation": "getLocalSessionDescriptor"
        })
        return result.get("value")

    async def connect_endpoints(
        self,
        source_id: str,
        sink_id: str,
        media_type: Optional[str] = None
    ) -> None:
        """
        Connect two media elements.

        Args:
            source_id: Source element ID
            sink_id: Sink element ID
            media_type: Restrict to "AUDIO", "VIDEO" or "DATA" (all if None)
        """
        operation_params = {"sink": sink_id}
        if media_type:
            operation_params["mediaType"] = media_type

        await self.send_request("invoke", {
            "object": source_id,
            "operation": "connect",
            "operationParams": operation_params
        })
        logger.info(f"Connected {source_id} -> {sink_id} ({media_type or 'ALL'})")

    async def play(self, player_id: str) -> None:
        """
        Start a PlayerEndpoint.

        Args:
            player_id: PlayerEndpoint ID
        """
        await self.send_request("invoke", {
            "object": player_id,
            "operation": "play"
        })
        logger.info(f"Playing {player_id}")

    async def subscribe_to_event(
        self,
        object_id: str,
        event_type: str
    ) -> str:
        """
        Subscribe to events from a Kurento object.

        Args:
            object_id: ID of the Kurento object
            event_type: Type of event to subscribe to (e.g., "Error")

        Returns:
            Subscription ID from Kurento
        """
        result = await self.send_request("subscribe", {
            "object": object_id,
            "type": event_type
        })
        subscription_id = result.get("value", "")
        logger.debug(f"Subscribed to {event_type} for {object_id} (subscription: {subscription_id})")
        return subscription_id

    async def release_pipeline(self, pipeline_id: str) -> None:
        """
        Release a MediaPipeline and all its elements.

        Args:
            pipeline_id: Pipeline ID to release
        """
        try:
            await self.send_request("release", {
                "object": pipeline_id
            })
            logger.info(f"Released pipeline: {pipeline_id}")
        except Exception as e:
            logger.warning(f"Failed to release pipeline {pipeline_id}: {e}")

    # ========================================================================
    # Health check and status
    # ========================================================================

    def is_connected(self) -> bool:
        """Check if connected to Kurento"""
        return bool(self.connected and self.ws and not self.ws.closed)

    async def ping(self) -> bool:
        """
        Ping Kurento to check connectivity.

        Returns:
            True if ping successful, False otherwise
        """
        try:
            await self.send_request("ping", {}, timeout=5)
            return True
        except Exception:
            return False

    def get_stats(self) -> Dict[str, Any]:
        """Get client statistics"""
        return {
            "connected": self.connected,
            "ws_url": self.ws_url,
            "kurento_session_id": self.kurento_session_id,
            "pending_requests": len(self.pending_requests),
            "event_handlers": len(self.event_handlers),
            "ws_closed": self.ws.closed if self.ws else True,
        }
