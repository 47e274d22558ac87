"""
Tests for broadcast event parsing and wire form.
"""

import pytest

from anonchat.errors import MalformedEvent
from anonchat.events import MessageDelivered, NewMessage, parse_event


class TestParseEvent:

    def test_new_message(self):
        event = parse_event("new_message", {"ID": 7, "sender": "anon42", "text": "hi"})

        assert isinstance(event, NewMessage)
        assert event.server_id == 7
        assert event.sender_id == "anon42"
        assert event.text == "hi"

    def test_message_delivered(self):
        event = parse_event("message_delivered", {"ID": 7})

        assert event == MessageDelivered(server_id=7)

    def test_string_id_parses_as_integer(self):
        event = parse_event("message_delivered", {"ID": "7"})

        assert event.server_id == 7

    def test_extra_fields_are_ignored(self):
        event = parse_event("message_delivered", {"ID": 7, "success": 200})

        assert event.server_id == 7

    @pytest.mark.parametrize("name, payload", [
        ("new_message", {"sender": "anon42", "text": "hi"}),
        ("new_message", {"ID": 7, "text": "hi"}),
        ("new_message", {"ID": 7, "sender": "anon42"}),
        ("new_message", {"ID": "seven", "sender": "anon42", "text": "hi"}),
        ("message_delivered", {}),
        ("message_delivered", {"ID": None}),
        ("typing", {"ID": 7}),
    ])
    def test_malformed_payloads(self, name, payload):
        with pytest.raises(MalformedEvent) as exc_info:
            parse_event(name, payload)

        assert exc_info.value.event_name == name

    @pytest.mark.parametrize("payload", [None, "7", [7]])
    def test_non_object_payload(self, payload):
        with pytest.raises(MalformedEvent):
            parse_event("message_delivered", payload)


class TestWireForm:

    def test_new_message_wire_form(self):
        event = NewMessage(server_id=7, sender_id="anon42", text="hi")

        assert event.kind == "new_message"
        assert event.to_wire() == {"ID": 7, "sender": "anon42", "text": "hi"}

    def test_message_delivered_wire_form(self):
        event = MessageDelivered(server_id=7)

        assert event.kind == "message_delivered"
        assert event.to_wire() == {"ID": 7}

    def test_wire_form_parses_back(self):
        event = NewMessage(server_id=7, sender_id="anon42", text="hi")

        assert parse_event(event.kind, event.to_wire()) == event
