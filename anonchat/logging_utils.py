import logging
import sys
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from pythonjsonlogger import jsonlogger

from anonchat.metrics import record_http_request


# Correlation ids for the current HTTP request or /chatroom connection
request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
socket_id_ctx: ContextVar[Optional[str]] = ContextVar("socket_id", default=None)


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter adding ts, level and whichever correlation id is active."""

    def add_fields(self, log_record, record, message_dict):
        super(CustomJsonFormatter, self).add_fields(log_record, record, message_dict)
        # ISO-8601, millisecond precision, Z suffix
        if not log_record.get('ts'):
            now = datetime.fromtimestamp(record.created, tz=timezone.utc)
            log_record['ts'] = now.strftime('%Y-%m-%dT%H:%M:%S.%f')[:-3] + 'Z'
        log_record['level'] = record.levelname

        # Explicit extra= values win over the context
        for key, ctx in (('request_id', request_id_ctx), ('socket_id', socket_id_ctx)):
            if key not in log_record:
                value = ctx.get()
                if value:
                    log_record[key] = value


def setup_logging(log_level: str = "INFO"):
    """
    Setup structured JSON logging for the service.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logger = logging.getLogger()
    logger.setLevel(log_level.upper())
    logger.handlers = []

    json_handler = logging.StreamHandler(sys.stdout)
    json_handler.setFormatter(CustomJsonFormatter('%(ts)s %(level)s %(name)s %(message)s'))
    logger.addHandler(json_handler)

    # Uvicorn and the websocket protocol logs share the JSON handler
    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access", "websockets"):
        library_logger = logging.getLogger(logger_name)
        library_logger.handlers = []
        library_logger.addHandler(json_handler)
        library_logger.propagate = False

    # Our middleware logs requests already
    logging.getLogger("uvicorn.access").disabled = True

    # Frame-level chatter
    logging.getLogger("websockets").setLevel(max(logger.level, logging.INFO))

    return logger


@contextmanager
def socket_context() -> Iterator[str]:
    """
    Tag every log line emitted while a /chatroom connection is open.

    Tasks created inside the block copy the context, so their lines carry
    the same socket_id.
    """
    socket_id = uuid.uuid4().hex[:12]
    token = socket_id_ctx.set(socket_id)
    try:
        yield socket_id
    finally:
        socket_id_ctx.reset(token)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs one "Request completed" line per HTTP request.

    Keys: ts, level, request_id, method, path, status, latency_ms.
    /messages and /delivered add server_id, sender and result (stored,
    rejected, storage_fault, acknowledged) through log_chat_data().

    The X-Request-ID response header carries the same request_id. Socket
    connections are not HTTP requests and bypass this middleware.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_ctx.set(request_id)
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id

            latency_seconds = time.perf_counter() - start_time

            # Scraping /metrics would otherwise count itself
            if request.url.path != "/metrics":
                record_http_request(
                    method=request.method,
                    path=request.url.path,
                    status=response.status_code,
                    latency_seconds=latency_seconds
                )

            log_data: dict[str, Any] = {
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "latency_ms": round(latency_seconds * 1000, 2),
            }
            log_data.update(getattr(request.state, "chat_log_data", {}))

            logger = logging.getLogger("anonchat.requests")
            if response.status_code >= 500:
                logger.error("Request completed", extra=log_data)
            elif response.status_code >= 400:
                logger.warning("Request completed", extra=log_data)
            else:
                logger.info("Request completed", extra=log_data)

            return response
        finally:
            request_id_ctx.reset(token)


def log_chat_data(request: Request, server_id: Optional[int] = None, sender: Optional[str] = None, result: Optional[str] = None):
    """
    Attach chat fields to the request log line written by the middleware.

    Repeated calls merge; a later value for the same key replaces the earlier one.
    """
    chat_data = getattr(request.state, "chat_log_data", {})

    if server_id is not None:
        chat_data["server_id"] = server_id
    if sender is not None:
        chat_data["sender"] = sender
    if result is not None:
        chat_data["result"] = result

    request.state.chat_log_data = chat_data
