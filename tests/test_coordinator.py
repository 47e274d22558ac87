"""
Tests for the delivery coordinator and the broadcaster it publishes through.
"""

import pytest

from anonchat.coordinator import DeliveryCoordinator
from anonchat.errors import InsertFailed, InvalidMessage, StorageFault
from anonchat.events import NewMessage
from anonchat.pubsub import Broadcaster
from anonchat.storage import MessageStore


class FailingStore:
    def __init__(self):
        self.attempts = 0

    def insert(self, sender_id: str, text: str) -> int:
        self.attempts += 1
        raise InsertFailed(sender_id, "disk full")


@pytest.fixture
def channel():
    return Broadcaster("chatroom")


@pytest.fixture
def published(channel):
    events = []
    channel.subscribe(lambda name, payload: events.append((name, payload)))
    return events


class TestSubmitMessage:

    def test_persists_then_publishes(self, db, channel, published):
        coordinator = DeliveryCoordinator(MessageStore(db), channel)

        event = coordinator.submit_message("anon42", "hi")

        assert event == NewMessage(server_id=1, sender_id="anon42", text="hi")
        assert published == [("new_message", {"ID": 1, "sender": "anon42", "text": "hi"})]
        assert MessageStore(db).count() == 1

    def test_storage_fault_publishes_nothing(self, channel, published):
        store = FailingStore()
        coordinator = DeliveryCoordinator(store, channel)

        with pytest.raises(StorageFault):
            coordinator.submit_message("anon42", "hi")

        assert store.attempts == 1  # not retried
        assert published == []

    @pytest.mark.parametrize("sender_id, text", [
        ("anon42", ""),
        ("anon42", "   "),
        ("", "hi"),
    ])
    def test_blank_submission_is_not_stored(self, db, channel, published, sender_id, text):
        store = MessageStore(db)
        store.insert("someone", "earlier")
        coordinator = DeliveryCoordinator(store, channel)

        with pytest.raises(InvalidMessage):
            coordinator.submit_message(sender_id, text)

        assert store.count() == 1
        assert published == []
        # No identity was used up by the rejected submission
        assert store.insert("someone", "later") == 2


class TestAcknowledgeDelivery:

    def test_publishes_message_delivered(self, channel, published):
        coordinator = DeliveryCoordinator(FailingStore(), channel)

        coordinator.acknowledge_delivery(7)

        assert published == [("message_delivered", {"ID": 7})]

    def test_duplicate_acknowledgments_all_published(self, channel, published):
        coordinator = DeliveryCoordinator(FailingStore(), channel)

        coordinator.acknowledge_delivery(7)
        coordinator.acknowledge_delivery(7)

        assert published == [("message_delivered", {"ID": 7}), ("message_delivered", {"ID": 7})]


class TestBroadcaster:

    def test_fans_out_to_every_subscriber(self, channel):
        first, second = [], []
        channel.subscribe(lambda name, payload: first.append(name))
        channel.subscribe(lambda name, payload: second.append(name))

        channel.publish(NewMessage(server_id=1, sender_id="a", text="x"))

        assert first == ["new_message"]
        assert second == ["new_message"]

    def test_closed_subscription_stops_receiving(self, channel):
        received = []
        subscription = channel.subscribe(lambda name, payload: received.append(name))
        subscription.close()
        subscription.close()

        channel.publish(NewMessage(server_id=1, sender_id="a", text="x"))

        assert received == []
        assert channel.subscriber_count == 0

    def test_failing_subscriber_does_not_block_others(self, channel):
        received = []

        def broken(name, payload):
            raise RuntimeError("boom")

        channel.subscribe(broken)
        channel.subscribe(lambda name, payload: received.append(name))

        channel.publish(NewMessage(server_id=1, sender_id="a", text="x"))

        assert received == ["new_message"]

    def test_subscribers_get_independent_payloads(self, channel):
        received = []

        def mutate(name, payload):
            payload["ID"] = 999

        channel.subscribe(mutate)
        channel.subscribe(lambda name, payload: received.append(payload))

        channel.publish(NewMessage(server_id=1, sender_id="a", text="x"))

        assert received[0]["ID"] == 1
