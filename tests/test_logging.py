"""
Tests for structured JSON logging.

Tests cover:
- ts / level fields and correlation ids from the context
- Chat fields attached to the per-request log line
"""

import json
import logging

import pytest
from fastapi.testclient import TestClient
from starlette.requests import Request

from anonchat.errors import InsertFailed
from anonchat.logging_utils import CustomJsonFormatter, log_chat_data, request_id_ctx, socket_context
from anonchat.main import app, get_store


def format_record(**extra) -> dict:
    record = logging.LogRecord("anonchat.test", logging.INFO, __file__, 1, "hello", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    formatter = CustomJsonFormatter('%(ts)s %(level)s %(name)s %(message)s')
    return json.loads(formatter.format(record))


@pytest.fixture
def client(db, broadcaster):
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def request_lines(caplog):
    caplog.set_level(logging.INFO, logger="anonchat.requests")
    return lambda: [r for r in caplog.records if r.name == "anonchat.requests"]


class TestCustomJsonFormatter:

    def test_base_fields(self):
        line = format_record()

        assert line["message"] == "hello"
        assert line["level"] == "INFO"
        assert line["name"] == "anonchat.test"
        assert line["ts"].endswith("Z")
        assert "request_id" not in line
        assert "socket_id" not in line

    def test_request_id_from_context(self):
        token = request_id_ctx.set("req-1")
        try:
            line = format_record()
        finally:
            request_id_ctx.reset(token)

        assert line["request_id"] == "req-1"

    def test_explicit_request_id_wins(self):
        token = request_id_ctx.set("req-1")
        try:
            line = format_record(request_id="req-2")
        finally:
            request_id_ctx.reset(token)

        assert line["request_id"] == "req-2"

    def test_socket_context_tags_lines_until_closed(self):
        with socket_context() as socket_id:
            inside = format_record()
        outside = format_record()

        assert inside["socket_id"] == socket_id
        assert "socket_id" not in outside


class TestChatLogData:

    def test_repeated_calls_merge(self):
        request = Request({"type": "http"})

        log_chat_data(request, sender="anon42")
        log_chat_data(request, server_id=7, result="stored")

        assert request.state.chat_log_data == {"sender": "anon42", "server_id": 7, "result": "stored"}

    def test_stored_submission_logged(self, client, request_lines):
        response = client.post("/messages", json={"sender": "anon42", "text": "hi"})

        [line] = [r for r in request_lines() if r.path == "/messages"]
        assert line.levelno == logging.INFO
        assert line.status == 200
        assert line.server_id == 1
        assert line.sender == "anon42"
        assert line.result == "stored"
        assert line.request_id == response.headers["X-Request-ID"]

    def test_storage_fault_logged_as_error(self, client, request_lines):
        class FailingStore:
            def insert(self, sender_id, text):
                raise InsertFailed(sender_id, "disk full")

        app.dependency_overrides[get_store] = lambda: FailingStore()

        client.post("/messages", json={"sender": "anon42", "text": "hi"})

        [line] = [r for r in request_lines() if r.path == "/messages"]
        assert line.levelno == logging.ERROR
        assert line.result == "storage_fault"
        assert not hasattr(line, "server_id")

    def test_acknowledgment_logged(self, client, request_lines):
        client.post("/delivered", json={"ID": 7})

        [line] = [r for r in request_lines() if r.path == "/delivered"]
        assert line.server_id == 7
        assert line.result == "acknowledged"
