"""
Error taxonomy for the chat core.

- StorageFault / InsertFailed: the message store could not persist a message
- TransportFault: a request to the coordinator never completed
- MalformedEvent: a broadcast payload could not be parsed
- InvalidMessage: a submission was rejected before reaching the store
"""


class ChatError(Exception):
    """Base class for all chat errors."""


class StorageFault(ChatError):
    """The message store failed; no identity was allocated."""


class InsertFailed(StorageFault):
    """Raised by MessageStore.insert when the write did not commit."""

    def __init__(self, sender_id: str, reason: str):
        self.sender_id = sender_id
        self.reason = reason
        super().__init__(f"insert failed for sender {sender_id}: {reason}")


class TransportFault(ChatError):
    """The coordinator could not be reached or its response was lost."""


class MalformedEvent(ChatError):
    """A broadcast event is missing fields or has an unknown name."""

    def __init__(self, event_name: str, reason: str):
        self.event_name = event_name
        self.reason = reason
        super().__init__(f"malformed {event_name!r} event: {reason}")


class InvalidMessage(ChatError):
    """A submission with a blank sender or body, rejected before storage."""
