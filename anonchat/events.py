"""
Broadcast events exchanged over the shared channel.

Two event kinds exist, each published under its own name:
- new_message:       {"ID": int, "sender": str, "text": str}
- message_delivered: {"ID": int}

Over the /chatroom socket each broadcast is framed as
{"event": <name>, "data": <payload>} (ChannelFrame).

On the wire the event name travels next to the payload (the pub/sub
transport carries it), so parse_event() folds the name back in as the
discriminator before validating.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from anonchat.errors import MalformedEvent

NEW_MESSAGE = "new_message"
MESSAGE_DELIVERED = "message_delivered"


class NewMessage(BaseModel):
    """A message was persisted and is being fanned out to every session."""
    kind: Literal["new_message"] = Field(default=NEW_MESSAGE, exclude=True)
    server_id: int = Field(..., alias="ID", ge=1)
    sender_id: str = Field(..., alias="sender", min_length=1)
    text: str = Field(..., min_length=1)

    model_config = {"populate_by_name": True, "frozen": True}

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class MessageDelivered(BaseModel):
    """Some receiver acknowledged the message with this identity."""
    kind: Literal["message_delivered"] = Field(default=MESSAGE_DELIVERED, exclude=True)
    server_id: int = Field(..., alias="ID", ge=1)

    model_config = {"populate_by_name": True, "frozen": True}

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


ChannelEvent = Annotated[Union[NewMessage, MessageDelivered], Field(discriminator="kind")]

_event_adapter = TypeAdapter(ChannelEvent)


def parse_event(name: str, payload: Any) -> Union[NewMessage, MessageDelivered]:
    """
    Validate a raw broadcast into a typed event.

    The ID is accepted either as an integer or as its decimal string form,
    since some publishers stringify it.

    Raises:
        MalformedEvent: unknown event name, non-object payload, or bad fields
    """
    if not isinstance(payload, dict):
        raise MalformedEvent(name, f"payload must be an object, got {type(payload).__name__}")
    try:
        return _event_adapter.validate_python({**payload, "kind": name})
    except ValidationError as e:
        raise MalformedEvent(name, str(e)) from e


class ChannelFrame(BaseModel):
    """One broadcast as it travels over the /chatroom socket."""
    event: str = Field(..., min_length=1)
    data: Any = None

    @classmethod
    def wrap(cls, name: str, payload: dict[str, Any]) -> "ChannelFrame":
        return cls(event=name, data=payload)
