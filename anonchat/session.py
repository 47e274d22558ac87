"""
Client session: the local view of the chat and its delivery-status machine.

Every message moves strictly forward through sending -> sent -> delivered.
All mutations (user sends, submit responses, broadcast events) go through a
single asyncio.Queue and are applied one at a time by one worker task, so
a "sent" and a "delivered" update for the same message can never race.

Correlation keys:
- local_key: assigned on send, used to route the submit response back
- server_id: assigned by the store, used to route message_delivered
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from anonchat.client import ChannelListener, CoordinatorClient
from anonchat.errors import ChatError, MalformedEvent
from anonchat.events import MessageDelivered, NewMessage, parse_event
from anonchat.pubsub import Broadcaster, Subscription

logger = logging.getLogger(__name__)


def new_sender_id() -> str:
    """Ephemeral anonymous identity; collisions are possible and tolerated."""
    return "anonymous" + str(random.randint(0, 999))


class MessageStatus(str, Enum):
    SENDING = "sending"
    SENT = "sent"
    DELIVERED = "delivered"


@dataclass
class Message:
    local_key: int
    sender_id: str
    text: str
    status: MessageStatus = MessageStatus.SENDING
    server_id: Optional[int] = None

    def mark_sent(self, server_id: int) -> bool:
        if self.status is not MessageStatus.SENDING:
            return False
        self.server_id = server_id
        self.status = MessageStatus.SENT
        return True

    def mark_delivered(self) -> bool:
        # Only from sent: a sending message has no server_id to be acked by
        if self.status is not MessageStatus.SENT:
            return False
        self.status = MessageStatus.DELIVERED
        return True


@dataclass(frozen=True)
class MessageView:
    """Read-only copy of a Message handed to renderers."""
    local_key: int
    sender_id: str
    text: str
    status: MessageStatus
    server_id: Optional[int]
    outgoing: bool


# Work items for the session queue, besides NewMessage / MessageDelivered
@dataclass(frozen=True)
class _Compose:
    local_key: int
    text: str


@dataclass(frozen=True)
class _Persisted:
    local_key: int
    server_id: int


_Item = Union[_Compose, _Persisted, NewMessage, MessageDelivered]


class ClientSession:
    """
    One connected participant.

    Usage:
        async with ClientSession(client) as session:
            session.attach(broadcaster)      # same process as the service
            await session.connect()          # or over the /chatroom socket
            key = session.send("hi")

    Broadcast handlers are invoked on the session's event loop. Closing the
    session abandons requests still in flight; their results are not applied.
    """

    def __init__(self, client: CoordinatorClient, sender_id: Optional[str] = None):
        self.sender_id = sender_id or new_sender_id()
        self._client = client

        # Arena plus indexes: the list owns messages, the dicts hold positions
        self._messages: list[Message] = []
        self._by_local_key: dict[int, int] = {}
        self._by_server_id: dict[int, int] = {}
        self._next_key = 0

        self._inbox: "asyncio.Queue[_Item]" = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._in_flight: set[asyncio.Task] = set()
        self._subscription: Optional[Subscription] = None
        self._listener: Optional[ChannelListener] = None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        if self._worker is None:
            self._worker = asyncio.create_task(self._run())
            logger.info(f"Session {self.sender_id} started")

    def attach(self, broadcaster: Broadcaster) -> None:
        """Subscribe to the shared broadcast channel."""
        if self._subscription is None:
            self._subscription = broadcaster.subscribe(self.on_broadcast)

    async def connect(self, url: Optional[str] = None) -> ChannelListener:
        """
        Subscribe to the service's broadcast socket from another process.

        Raises:
            TransportFault: the socket could not be opened
        """
        if self._listener is None:
            listener = ChannelListener(self.on_broadcast, url)
            await listener.start()
            self._listener = listener
        return self._listener

    @property
    def pending_requests(self) -> int:
        return sum(1 for task in self._in_flight if not task.done())

    async def close(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        if self._listener is not None:
            await self._listener.close()
            self._listener = None

        in_flight = [task for task in self._in_flight if not task.done()]
        for task in in_flight:
            task.cancel()
        if in_flight:
            await asyncio.gather(*in_flight, return_exceptions=True)
            logger.info(f"Session {self.sender_id} abandoned {len(in_flight)} in-flight requests")

        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        logger.info(f"Session {self.sender_id} closed")

    async def __aenter__(self) -> "ClientSession":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def settle(self) -> None:
        """Wait until queued work and in-flight requests have all been applied."""
        while True:
            await self._inbox.join()
            in_flight = [task for task in self._in_flight if not task.done()]
            if not in_flight:
                return
            await asyncio.wait(in_flight)

    # -------------------------------------------------------------------------
    # Inputs
    # -------------------------------------------------------------------------

    def send(self, text: str) -> int:
        """Queue a new outgoing message and return its local key immediately."""
        local_key = self._next_key
        self._next_key += 1
        self._inbox.put_nowait(_Compose(local_key, text))
        return local_key

    def on_broadcast(self, name: str, payload: dict) -> None:
        """Subscription handler: parse and queue; malformed events are dropped."""
        try:
            event = parse_event(name, payload)
        except MalformedEvent as e:
            logger.warning(f"Session {self.sender_id} dropped event: {e}")
            return
        self._inbox.put_nowait(event)

    # -------------------------------------------------------------------------
    # Read side
    # -------------------------------------------------------------------------

    def snapshot(self) -> tuple[MessageView, ...]:
        return tuple(self._view(message) for message in self._messages)

    def find_by_local_key(self, local_key: int) -> Optional[MessageView]:
        position = self._by_local_key.get(local_key)
        return None if position is None else self._view(self._messages[position])

    def find_by_server_id(self, server_id: int) -> Optional[MessageView]:
        position = self._by_server_id.get(server_id)
        return None if position is None else self._view(self._messages[position])

    def _view(self, message: Message) -> MessageView:
        return MessageView(
            local_key=message.local_key,
            sender_id=message.sender_id,
            text=message.text,
            status=message.status,
            server_id=message.server_id,
            outgoing=message.sender_id == self.sender_id,
        )

    # -------------------------------------------------------------------------
    # Single writer
    # -------------------------------------------------------------------------

    async def _run(self) -> None:
        while True:
            item = await self._inbox.get()
            try:
                self._apply(item)
            except Exception:
                logger.exception(f"Session {self.sender_id} failed applying {item!r}")
            finally:
                self._inbox.task_done()

    def _apply(self, item: _Item) -> None:
        if isinstance(item, _Compose):
            self._compose(item)
        elif isinstance(item, _Persisted):
            self._persisted(item)
        elif isinstance(item, NewMessage):
            self._received(item)
        elif isinstance(item, MessageDelivered):
            self._delivered(item)

    def _append(self, message: Message) -> None:
        position = len(self._messages)
        self._messages.append(message)
        self._by_local_key[message.local_key] = position
        if message.server_id is not None:
            self._by_server_id[message.server_id] = position

    def _compose(self, item: _Compose) -> None:
        self._append(Message(local_key=item.local_key, sender_id=self.sender_id, text=item.text))
        self._spawn(self._submit(item.local_key, item.text))

    def _persisted(self, item: _Persisted) -> None:
        position = self._by_local_key[item.local_key]
        message = self._messages[position]
        if message.mark_sent(item.server_id):
            self._by_server_id[item.server_id] = position
            logger.debug(f"Message {item.local_key} sent as {item.server_id}")

    def _received(self, event: NewMessage) -> None:
        if event.sender_id == self.sender_id:
            # Echo of our own submission; the submit response handles it
            return
        if event.server_id in self._by_server_id:
            return

        local_key = self._next_key
        self._next_key += 1
        self._append(Message(
            local_key=local_key,
            sender_id=event.sender_id,
            text=event.text,
            status=MessageStatus.DELIVERED,
            server_id=event.server_id,
        ))
        self._spawn(self._acknowledge(event.server_id))

    def _delivered(self, event: MessageDelivered) -> None:
        position = self._by_server_id.get(event.server_id)
        if position is None:
            return
        if self._messages[position].mark_delivered():
            logger.debug(f"Message {event.server_id} delivered")

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _submit(self, local_key: int, text: str) -> None:
        try:
            server_id = await self._client.submit(self.sender_id, text)
        except ChatError as e:
            # No retry: the message stays in sending
            logger.warning(f"Session {self.sender_id} submit of message {local_key} failed: {e}")
            return
        except Exception:
            logger.exception(f"Session {self.sender_id} submit of message {local_key} crashed")
            return
        self._inbox.put_nowait(_Persisted(local_key, server_id))

    async def _acknowledge(self, server_id: int) -> None:
        try:
            await self._client.acknowledge(server_id)
        except ChatError as e:
            logger.warning(f"Session {self.sender_id} ack of {server_id} failed: {e}")
        except Exception:
            logger.exception(f"Session {self.sender_id} ack of {server_id} crashed")
