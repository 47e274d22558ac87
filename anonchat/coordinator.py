"""
Server-side delivery coordination.

The coordinator is stateless between requests: it persists new messages,
announces them on the broadcast channel, and relays delivery
acknowledgments back onto the same channel so the author can see them.
"""

import logging

from anonchat.errors import InvalidMessage, StorageFault
from anonchat.events import MessageDelivered, NewMessage
from anonchat.metrics import record_submission
from anonchat.pubsub import Broadcaster
from anonchat.storage import MessageStore

logger = logging.getLogger(__name__)


class DeliveryCoordinator:

    def __init__(self, store: MessageStore, broadcaster: Broadcaster):
        self.store = store
        self.broadcaster = broadcaster

    def submit_message(self, sender_id: str, text: str) -> NewMessage:
        """
        Persist a message, then announce it to every subscriber.

        At-most-once: if the insert fails, the error propagates and nothing
        is published, so peers never see a message that was not stored.

        Raises:
            InvalidMessage: blank sender or text; nothing is stored
            StorageFault: the message store rejected the write
        """
        # Reject before insert so a stored row always gets announced
        if not sender_id or not text or not text.strip():
            record_submission("rejected")
            logger.warning(f"Submission from {sender_id!r} rejected: blank sender or text")
            raise InvalidMessage("sender and text must not be blank")

        try:
            server_id = self.store.insert(sender_id, text)
        except StorageFault:
            record_submission("storage_fault")
            logger.warning(f"Submission from {sender_id} not stored, nothing published")
            raise

        record_submission("stored")
        event = NewMessage(server_id=server_id, sender_id=sender_id, text=text)
        self.broadcaster.publish(event)
        return event

    def acknowledge_delivery(self, server_id: int) -> MessageDelivered:
        """
        Relay a receiver's acknowledgment to the channel.

        Every acknowledgment is republished; the author applies only the
        first one that finds its message in the sent state.
        """
        logger.info(f"Delivery acknowledged for message {server_id}")
        event = MessageDelivered(server_id=server_id)
        self.broadcaster.publish(event)
        return event
