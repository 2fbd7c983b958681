from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError as PayloadError
import json
import uuid

from constants import FRONTEND_URL, LOG_FILE, LOG_LEVEL
from gateway import MessagingGateway
from logging_config import get_logger, setup_logging
from multiplexer import EventMultiplexer
from registry import ConnectionRegistry
from routers.webhooks import webhooks_router
from schemas.events import ClientFrame
from transport import RoomTransport, safe_send_json

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


def build_multiplexer(gateway=None) -> EventMultiplexer:
    return EventMultiplexer(
        registry=ConnectionRegistry(),
        transport=RoomTransport(),
        gateway=gateway or MessagingGateway(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    multiplexer = app.state.multiplexer
    await multiplexer.drain()
    await multiplexer.gateway.aclose()
    logger.info("Gateway client closed")


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[FRONTEND_URL] if FRONTEND_URL != "*" else ["*"],
    allow_credentials=FRONTEND_URL != "*",
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.include_router(webhooks_router)

# One registry, transport and gateway per process; tests swap this out.
app.state.multiplexer = build_multiplexer()

logger.info("FastAPI application initialized")


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Real-time endpoint. Frames are {"event": name, "data": {...}} both ways."""
    multiplexer: EventMultiplexer = websocket.app.state.multiplexer
    connection_id = uuid.uuid4().hex

    await websocket.accept()
    multiplexer.connect(connection_id, websocket)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = ClientFrame.model_validate(json.loads(raw))
            except (json.JSONDecodeError, PayloadError) as e:
                logger.debug(f"Malformed frame from connection {connection_id}: {e}")
                await safe_send_json(websocket, {
                    "event": "error",
                    "data": {"message": "Malformed frame, expected {\"event\": ..., \"data\": {...}}"},
                })
                continue
            logger.debug(f"Received {frame.event} from connection {connection_id}")
            multiplexer.dispatch(connection_id, frame.event, frame.data)
    except WebSocketDisconnect:
        logger.debug(f"WebSocket closed by client {connection_id}")
    except Exception as e:
        logger.error(f"Error receiving from connection {connection_id}: {e}", exc_info=True)
    finally:
        await multiplexer.disconnect(connection_id)
