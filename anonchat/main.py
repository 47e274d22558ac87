import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response, Request, Depends, HTTPException, WebSocket, WebSocketDisconnect, status
from sqlalchemy.orm import Session

from anonchat.config import settings
from anonchat.coordinator import DeliveryCoordinator
from anonchat.errors import InvalidMessage, StorageFault
from anonchat.events import ChannelFrame
from anonchat.storage import init_db, check_db_health, get_db, MessageStore
from anonchat.logging_utils import setup_logging, socket_context, RequestLoggingMiddleware, log_chat_data
from anonchat.metrics import get_metrics, get_metrics_content_type
from anonchat.pubsub import Broadcaster, get_broadcaster
from anonchat.schemas import (
    AcknowledgeRequest,
    AcknowledgeResponse,
    ErrorResponse,
    HealthResponse,
    SubmitMessageRequest,
    SubmitMessageResponse,
)


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: Initialize database and create tables
    """
    init_db()
    yield


app = FastAPI(
    title="Anonchat API",
    description="Anonymous group chat with delivery receipts over a shared broadcast channel",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)


def get_store(db: Session = Depends(get_db)) -> MessageStore:
    return MessageStore(db)


def get_coordinator(
    store: MessageStore = Depends(get_store),
    broadcaster: Broadcaster = Depends(get_broadcaster),
) -> DeliveryCoordinator:
    return DeliveryCoordinator(store, broadcaster)


@app.get("/")
async def root() -> str:
    return "It works!"


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """
    Liveness probe - always returns 200 once the app is running.
    """
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if the DB is reachable and the
    messages table exists, otherwise 503.
    """
    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# Chat Routes
# =============================================================================

@app.post(
    "/messages",
    response_model=SubmitMessageResponse,
    responses={
        422: {"description": "Validation error"},
        500: {"model": ErrorResponse, "description": "Message could not be stored"},
    }
)
async def submit_message(
    request: Request,
    body: SubmitMessageRequest,
    coordinator: DeliveryCoordinator = Depends(get_coordinator),
) -> SubmitMessageResponse:
    """
    Store a message and broadcast it as new_message.

    The broadcast only happens after the insert commits; if the store fails
    the caller gets a 500 and no subscriber hears about the message.
    """
    logger.info(f"POST /messages from sender={body.sender_id}")

    try:
        event = coordinator.submit_message(body.sender_id, body.text)
    except InvalidMessage as e:
        log_chat_data(request, sender=body.sender_id, result="rejected")
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e)
        )
    except StorageFault as e:
        logger.error(f"Failed to store message from {body.sender_id}: {e}")
        log_chat_data(request, sender=body.sender_id, result="storage_fault")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to store message"
        )

    log_chat_data(request, server_id=event.server_id, sender=event.sender_id, result="stored")

    return SubmitMessageResponse(
        server_id=event.server_id,
        sender_id=event.sender_id,
        text=event.text,
    )


@app.post("/delivered", response_model=AcknowledgeResponse)
async def acknowledge_delivery(
    request: Request,
    body: AcknowledgeRequest,
    coordinator: DeliveryCoordinator = Depends(get_coordinator),
) -> AcknowledgeResponse:
    """Relay a receiver's acknowledgment as message_delivered."""
    coordinator.acknowledge_delivery(body.server_id)
    log_chat_data(request, server_id=body.server_id, result="acknowledged")
    return AcknowledgeResponse()


@app.websocket("/chatroom")
async def chatroom(websocket: WebSocket, broadcaster: Broadcaster = Depends(get_broadcaster)):
    """
    Stream every broadcast event to the socket as {"event": name, "data": payload}.

    Events published while no socket is attached are not replayed.
    """
    with socket_context():
        await _stream_channel(websocket, broadcaster)


async def _stream_channel(websocket: WebSocket, broadcaster: Broadcaster) -> None:
    queue: asyncio.Queue = asyncio.Queue()
    # Subscribe before accepting so nothing published after the handshake is missed
    subscription = broadcaster.subscribe(
        lambda name, payload: queue.put_nowait(ChannelFrame.wrap(name, payload).model_dump())
    )
    await websocket.accept()
    logger.info("Chatroom socket connected", extra={"subscribers": broadcaster.subscriber_count})

    async def forward() -> None:
        while True:
            await websocket.send_json(await queue.get())

    async def watch_disconnect() -> None:
        # Clients have nothing to say on this socket; a receive ends on disconnect
        while True:
            await websocket.receive_text()

    tasks = [asyncio.create_task(forward()), asyncio.create_task(watch_disconnect())]
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.error(f"Chatroom socket failed: {exc}")
    finally:
        for task in tasks:
            task.cancel()
        subscription.close()
        logger.info("Chatroom socket disconnected")


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """
    Expose Prometheus-style metrics.

    - http_requests_total: Total HTTP requests by method, path, status
    - messages_submitted_total: Submission outcomes by result
    - events_published_total: Broadcast events by name
    - request_latency_seconds: Request latency histogram
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
