from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from routers.rooms import rooms_router
from backend import RedisBroadcast, create_redis_client
from broadcast import LocalBroadcast
from constants import BROADCAST_BACKEND, DISPLAY_TIMEZONE, LOG_FILE, LOG_LEVEL
from event_router import EventRouter
from formatter import MessageFormatter
from registry import PresenceRegistry
import uuid
import json
import asyncio
from typing import Optional
from logging_config import get_logger, setup_logging

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


def build_transport(backend: str = BROADCAST_BACKEND) -> LocalBroadcast:
    if backend == "redis":
        logger.info("Using Redis broadcast backend")
        return RedisBroadcast(create_redis_client())
    if backend != "memory":
        raise ValueError(f"Unknown BROADCAST_BACKEND {backend!r}, expected 'memory' or 'redis'")
    logger.info("Using in-memory broadcast backend")
    return LocalBroadcast()


@asynccontextmanager
async def lifespan(app: FastAPI):
    transport = app.state.transport
    if isinstance(transport, RedisBroadcast):
        await transport.start()
    yield
    if isinstance(transport, RedisBroadcast):
        await transport.stop()
    logger.info(f"Shutting down with {app.state.registry.session_count()} active sessions")


async def pump_outbox(websocket: WebSocket, connection_id: str, outbox: asyncio.Queue):
    """Writes queued frames to one socket, in order."""
    while True:
        frame = await outbox.get()
        try:
            await websocket.send_json(frame)
        except (WebSocketDisconnect, RuntimeError) as e:
            # Delivery failures belong to this connection only
            logger.debug(f"Stopped sending to connection {connection_id}: {e}")
            return


async def websocket_endpoint(websocket: WebSocket):
    """WebSocket endpoint carrying JSON frames of the form {"type": ..., "payload": ...}."""
    transport: LocalBroadcast = websocket.app.state.transport
    event_router: EventRouter = websocket.app.state.event_router

    await websocket.accept()
    connection_id = str(uuid.uuid4())
    outbox = transport.register(connection_id)
    writer = asyncio.create_task(pump_outbox(websocket, connection_id, outbox))
    event_router.connect(connection_id)

    message_count = 0
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))
            message_count += 1
            logger.debug(f"Received frame #{message_count} from connection {connection_id}")
            data = message.get("text")
            if data is None:
                logger.warning(f"Ignoring binary frame from connection {connection_id}")
                continue
            try:
                frame = json.loads(data)
            except json.JSONDecodeError:
                logger.warning(f"Ignoring non-JSON frame from connection {connection_id}")
                continue
            if not isinstance(frame, dict):
                logger.warning(f"Ignoring frame without an event type from connection {connection_id}")
                continue
            event_router.dispatch(connection_id, frame.get("type"), frame.get("payload"))
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected normally for connection {connection_id}")
    finally:
        try:
            event_router.disconnect(connection_id)
        finally:
            transport.unregister(connection_id)
            writer.cancel()
            try:
                await writer
            except asyncio.CancelledError:
                pass


def create_app(transport: Optional[LocalBroadcast] = None, tz_name: str = DISPLAY_TIMEZONE) -> FastAPI:
    app = FastAPI(lifespan=lifespan)

    # Configure CORS to allow all origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    registry = PresenceRegistry()
    transport = transport if transport is not None else build_transport()
    app.state.registry = registry
    app.state.transport = transport
    app.state.event_router = EventRouter(registry, MessageFormatter(tz_name), transport)

    app.include_router(rooms_router)
    app.add_api_websocket_route("/ws", websocket_endpoint)

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "active_rooms": len(registry.list_active_rooms()),
            "active_sessions": registry.session_count(),
        }

    logger.info("FastAPI application initialized")
    return app


app = create_app()
