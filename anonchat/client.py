"""
Client-side access to the delivery coordinator.

A ClientSession only needs two calls: submit a message and acknowledge a
delivery. HttpCoordinatorClient talks to the running service; the
LocalCoordinatorClient calls a DeliveryCoordinator in the same process.

ChannelListener is the receiving half for a remote session: it reads
broadcast frames from the service's /chatroom socket and hands each one to
a handler, normally ClientSession.on_broadcast.
"""

import asyncio
import logging
from typing import Any, Callable, Optional, Protocol, Union

import httpx
from pydantic import ValidationError
from websockets.asyncio.client import connect
from websockets.exceptions import WebSocketException

from anonchat.config import settings
from anonchat.coordinator import DeliveryCoordinator
from anonchat.errors import InvalidMessage, StorageFault, TransportFault
from anonchat.events import ChannelFrame
from anonchat.schemas import AcknowledgeRequest, SubmitMessageRequest, SubmitMessageResponse

logger = logging.getLogger(__name__)


class CoordinatorClient(Protocol):

    async def submit(self, sender_id: str, text: str) -> int:
        """Submit a message and return its server-assigned identity."""
        ...

    async def acknowledge(self, server_id: int) -> None:
        """Report that a message was received."""
        ...


class HttpCoordinatorClient:
    """
    Coordinator client over HTTP.

    Error mapping:
    - 5xx responses -> StorageFault (the coordinator could not persist)
    - connection errors, timeouts, other non-2xx, bad bodies -> TransportFault
    - blank text or sender, invalid ID -> InvalidMessage, nothing is sent
    """

    def __init__(self, http: Optional[httpx.AsyncClient] = None, base_url: Optional[str] = None):
        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(
            base_url=base_url or settings.API_ENDPOINT,
            timeout=settings.REQUEST_TIMEOUT,
        )

    async def aclose(self) -> None:
        if self._owns_http:
            await self.http.aclose()

    async def __aenter__(self) -> "HttpCoordinatorClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _post(self, path: str, body: dict) -> httpx.Response:
        try:
            response = await self.http.post(path, json=body)
        except httpx.HTTPError as e:
            logger.error(f"POST {path} failed: {e}")
            raise TransportFault(f"POST {path} failed: {e}") from e

        if response.status_code >= 500:
            logger.error(f"POST {path} returned {response.status_code}")
            raise StorageFault(f"POST {path} returned {response.status_code}")
        if response.is_error:
            logger.error(f"POST {path} returned {response.status_code}")
            raise TransportFault(f"POST {path} returned {response.status_code}")
        return response

    async def submit(self, sender_id: str, text: str) -> int:
        try:
            request = SubmitMessageRequest(sender=sender_id, text=text)
        except ValidationError as e:
            raise InvalidMessage(f"message from {sender_id!r} rejected: {e}") from e
        response = await self._post("/messages", request.model_dump(by_alias=True))
        try:
            body = SubmitMessageResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise TransportFault(f"unreadable submit response: {e}") from e
        logger.debug(f"Submitted message from {sender_id}, got ID {body.server_id}")
        return body.server_id

    async def acknowledge(self, server_id: int) -> None:
        try:
            request = AcknowledgeRequest(server_id=server_id)
        except ValidationError as e:
            raise InvalidMessage(f"cannot acknowledge ID {server_id!r}: {e}") from e
        await self._post("/delivered", request.model_dump(by_alias=True))


class LocalCoordinatorClient:
    """Calls a DeliveryCoordinator directly, for embedding and tests."""

    def __init__(self, coordinator: DeliveryCoordinator):
        self.coordinator = coordinator

    async def submit(self, sender_id: str, text: str) -> int:
        return self.coordinator.submit_message(sender_id, text).server_id

    async def acknowledge(self, server_id: int) -> None:
        self.coordinator.acknowledge_delivery(server_id)


def channel_url(base_url: Optional[str] = None, channel: Optional[str] = None) -> str:
    """ws(s):// URL of the broadcast socket for an http(s):// service URL."""
    base = (base_url or settings.API_ENDPOINT).rstrip("/")
    if base.startswith("https://"):
        base = "wss://" + base[len("https://"):]
    elif base.startswith("http://"):
        base = "ws://" + base[len("http://"):]
    return f"{base}/{channel or settings.CHANNEL_NAME}"


class ChannelListener:
    """
    Subscriber to the service's broadcast socket.

    Each {"event": ..., "data": ...} frame is passed to the handler as
    (event, data). Frames that are not valid JSON objects with an event
    name are logged and dropped; validating the payload itself is the
    handler's job. There is no reconnect: once the socket closes, events
    published in the meantime are missed.
    """

    def __init__(self, handler: Callable[[str, Any], None], url: Optional[str] = None):
        self.handler = handler
        self.url = url or channel_url()
        self._connected = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def connected(self) -> bool:
        return self._connected.is_set()

    def dispatch(self, frame: Union[str, bytes]) -> None:
        try:
            parsed = ChannelFrame.model_validate_json(frame)
        except ValidationError as e:
            logger.warning(f"Dropped unreadable frame from {self.url}: {e}")
            return
        self.handler(parsed.event, parsed.data)

    async def run(self) -> None:
        """
        Read frames until the server closes the socket.

        Raises:
            TransportFault: the socket could not be opened or broke mid-stream
        """
        try:
            async with connect(self.url, open_timeout=settings.REQUEST_TIMEOUT) as websocket:
                self._connected.set()
                logger.info(f"Listening on {self.url}")
                async for frame in websocket:
                    self.dispatch(frame)
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            logger.error(f"Channel socket {self.url} failed: {e}")
            raise TransportFault(f"channel socket {self.url} failed: {e}") from e
        finally:
            self._connected.clear()
        logger.info(f"Channel socket {self.url} closed by server")

    async def start(self) -> None:
        """Open the socket in the background and return once it is connected."""
        if self._task is not None:
            return
        self._task = asyncio.create_task(self.run())
        waiter = asyncio.create_task(self._connected.wait())
        await asyncio.wait({self._task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        if not waiter.done():
            waiter.cancel()
            task, self._task = self._task, None
            # Raises the TransportFault from run()
            task.result()

    async def wait_closed(self) -> None:
        """Wait for the server to close the socket."""
        if self._task is not None:
            await self._task

    async def close(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except TransportFault as e:
            logger.warning(f"Channel listener ended with: {e}")
