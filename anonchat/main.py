import logging
from contextlib import asynccontextmanager

import socketio
from fastapi import FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from anonchat.config import settings
from anonchat.dispatcher import RelayServer, socketio_deliver
from anonchat.errors import ConnectivityError, PersistenceError
from anonchat.history import HistoryLoader
from anonchat.logging_utils import setup_logging, RequestLoggingMiddleware
from anonchat.metrics import get_metrics, get_metrics_content_type
from anonchat.schemas import ErrorResponse, HealthResponse, MessagePayload
from anonchat.storage import MessageStore, init_db, check_db_health


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


# Real-time channel and relay core, one of each per process
sio = socketio.AsyncServer(
    async_mode="asgi",
    cors_allowed_origins=settings.cors_origins,
)
store = MessageStore()
relay_server = RelayServer(store=store, deliver=socketio_deliver(sio))
relay_server.register(sio)
history_loader = HistoryLoader(store)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: create tables and verify the store; unreachable store aborts startup
    - Shutdown: close live connections and let in-flight sends finish
    """
    try:
        init_db()
    except ConnectivityError as e:
        logger.critical(f"Refusing to start, message store unavailable: {e}")
        raise
    yield
    await relay_server.shutdown()


app = FastAPI(
    title="Anonymous Chat Relay",
    description="Room-scoped anonymous chat with threaded replies and history",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST"],
)
app.add_middleware(RequestLoggingMiddleware)

# ASGI entrypoint: Socket.IO on /socket.io, everything else served by FastAPI
asgi_app = socketio.ASGIApp(sio, other_asgi_app=app)


@app.get("/", response_class=PlainTextResponse)
async def root() -> str:
    return "Anonymous Chat Backend is running!"


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """
    Liveness probe - always returns 200 once the app is running.
    Used by orchestrators to determine if the app needs to be restarted.
    """
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if the DB is reachable and schema is applied.
    Otherwise returns 503 (Service Unavailable).
    """
    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# History Route
# =============================================================================

@app.get(
    "/api/messages/{room_id}",
    response_model=list[MessagePayload],
    responses={
        500: {"model": ErrorResponse, "description": "Message store failure"},
    }
)
async def room_history(room_id: str):
    """
    Full history of a room, oldest first, in receive_message shape.

    Clients call this after join_room to prime their view. A store failure
    returns 500 with no partial data.
    """
    try:
        return await history_loader.load(room_id)
    except PersistenceError as e:
        logger.error(f"Failed to load history for room {room_id}: {e}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(error="Failed to fetch messages.").model_dump(),
        )


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """
    Expose Prometheus-style metrics.

    Includes HTTP request counts and latency, relay event counts, send
    outcomes and the number of live connections.
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
