from contextlib import asynccontextmanager
from datetime import datetime
import os

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend import RoomStore, UserStore, create_redis_client
from constants import CORS_ORIGINS
from errors import StoreError, WhiteboardError
from logging_config import get_logger, setup_logging
from relay import Relay
from routers.rooms import rooms_router
from routers.users import users_router
from sessions import Connection, SessionRegistry

# Setup logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # No store at startup is fatal: let the exception stop the server
    await app.state.room_store.ping()
    logger.info("Redis reachable, accepting connections")
    try:
        yield
    finally:
        pending = app.state.relay.pending_writes
        if pending:
            logger.info(f"Waiting for {pending} canvas writes before shutdown")
        await app.state.relay.drain()
        await app.state.redis_client.aclose()
        logger.info("Shutdown complete")


def create_app(redis_client=None) -> FastAPI:
    """Build the application around one shared Redis client.

    The session registry lives on the relay, which lives on app.state; each
    process owns exactly one of each.
    """
    app = FastAPI(title="Collaborative Whiteboard API", lifespan=lifespan)

    app.state.redis_client = redis_client if redis_client is not None else create_redis_client()
    app.state.room_store = RoomStore(app.state.redis_client)
    app.state.user_store = UserStore(app.state.redis_client)
    app.state.relay = Relay(app.state.room_store, SessionRegistry())

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "Accept"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.debug(f"{request.method} {request.url.path}")
        return await call_next(request)

    @app.exception_handler(WhiteboardError)
    async def whiteboard_error_handler(request: Request, exc: WhiteboardError):
        if isinstance(exc, StoreError) or exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.detail}")
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    app.include_router(users_router)
    app.include_router(rooms_router)
    app.add_api_route("/", root, methods=["GET"])
    app.add_api_route("/health", health, methods=["GET"])
    app.add_api_websocket_route("/ws", websocket_endpoint)

    logger.info("FastAPI application initialized")
    return app


async def root():
    return {
        "message": "Collaborative Whiteboard API is running!",
        "status": "success",
        "timestamp": datetime.now().isoformat(),
        "endpoints": {
            "auth": {
                "register": "POST /api/register",
                "login": "POST /api/login",
                "profile": "GET /api/profile",
            },
            "rooms": {
                "create": "POST /api/create-room",
                "verify": "POST /api/verify-room",
                "debug": "GET /api/debug/rooms",
            },
            "realtime": "WS /ws",
        },
    }


async def health(request: Request):
    try:
        await request.app.state.room_store.ping()
        redis_ok = True
    except StoreError:
        redis_ok = False
    return JSONResponse(
        status_code=200 if redis_ok else 503,
        content={
            "status": "healthy" if redis_ok else "degraded",
            "redis": "connected" if redis_ok else "disconnected",
            "live_rooms": request.app.state.relay.registry.snapshot(),
            "timestamp": datetime.now().isoformat(),
        },
    )


async def websocket_endpoint(websocket: WebSocket):
    """Realtime drawing socket.

    Frames are JSON objects ``{"type": ..., "payload": ...}``; see
    schemas/messages.py for the event kinds.
    """
    relay: Relay = websocket.app.state.relay
    await websocket.accept()
    connection = Connection(websocket=websocket)
    relay.on_connect(connection)

    message_count = 0
    try:
        while True:
            data = await websocket.receive_text()
            message_count += 1
            logger.debug(f"Received message #{message_count} from connection {connection.id}")
            await relay.dispatch(connection, data)
    except WebSocketDisconnect:
        logger.debug(f"WebSocket closed normally for connection {connection.id}")
    except Exception as e:
        logger.error(f"WebSocket error for connection {connection.id}: {e}", exc_info=True)
        try:
            await websocket.close(code=1011)
        except RuntimeError as close_error:
            logger.debug(f"Error closing WebSocket: {close_error}")
    finally:
        relay.on_disconnect(connection)


app = create_app()
