"""
In-process publish/subscribe channel.

A single shared topic: every published event reaches every subscriber,
including the session that caused it. Subscribers receive the wire form
(event name + JSON-like payload) and parse it themselves.
"""

import logging
from functools import lru_cache
from typing import Any, Callable, Union

from anonchat.config import settings
from anonchat.events import MessageDelivered, NewMessage
from anonchat.metrics import record_event_published

logger = logging.getLogger(__name__)

Handler = Callable[[str, dict[str, Any]], None]


class Subscription:
    """Handle returned by Broadcaster.subscribe(); close() to stop receiving."""

    def __init__(self, broadcaster: "Broadcaster", handler: Handler):
        self._broadcaster = broadcaster
        self.handler = handler
        self.closed = False

    def close(self) -> None:
        if not self.closed:
            self._broadcaster._remove(self)
            self.closed = True


class Broadcaster:
    """
    Fan-out only: no per-subscriber state beyond the handler, no replay.
    A subscriber that is not attached when an event is published misses it.
    """

    def __init__(self, channel: str):
        self.channel = channel
        self._subscriptions: list[Subscription] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, handler: Handler) -> Subscription:
        subscription = Subscription(self, handler)
        self._subscriptions.append(subscription)
        logger.debug(f"Subscriber added to {self.channel}, total={len(self._subscriptions)}")
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            pass
        logger.debug(f"Subscriber removed from {self.channel}, total={len(self._subscriptions)}")

    def publish(self, event: Union[NewMessage, MessageDelivered]) -> None:
        """Deliver an event to every current subscriber."""
        payload = event.to_wire()
        logger.info(
            f"Publishing {event.kind} to {self.channel}",
            extra={"event": event.kind, "server_id": event.server_id},
        )
        record_event_published(event.kind)

        # Snapshot so handlers may unsubscribe while being called
        for subscription in list(self._subscriptions):
            try:
                subscription.handler(event.kind, dict(payload))
            except Exception:
                # One broken subscriber must not starve the others
                logger.exception(f"Subscriber failed handling {event.kind}")


@lru_cache()
def get_broadcaster() -> Broadcaster:
    """Process-wide broadcaster for the configured channel."""
    return Broadcaster(settings.CHANNEL_NAME)
