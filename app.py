from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError
from routers.voice import voice_router
from backend import redis_backend, RedisMeetingValidator
from constants import CORS_ORIGINS
from lifecycle import VoiceCoordinator
from schemas.voice import Envelope
import asyncio
import uuid
import json
from logging_config import get_logger, setup_logging
import os

# Setup logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)
logger = get_logger(__name__)

# Room membership and connection bindings live only in this process
coordinator = VoiceCoordinator(validator=RedisMeetingValidator(redis_backend))


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Joins report "Internal server error" until Redis is reachable
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, redis_backend.ping)
    yield


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_origin_regex=r"https://.*\.vercel\.app",
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(voice_router)

logger.info("FastAPI application initialized")


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Signaling socket. Every frame is a JSON envelope: {"event": ..., "data": {...}}."""
    await websocket.accept()
    connection_id = str(uuid.uuid4())
    coordinator.connect(connection_id, websocket)
    reason = "client disconnect"

    try:
        message_count = 0
        while True:
            data = await websocket.receive_text()
            message_count += 1
            logger.debug(f"Received message #{message_count} from connection {connection_id}")

            try:
                envelope = Envelope(**json.loads(data))
            except (json.JSONDecodeError, TypeError, ValidationError) as e:
                logger.warning(f"Dropping malformed message from connection {connection_id}: {e}")
                continue

            await coordinator.dispatch(connection_id, envelope.event, envelope.data)

    except WebSocketDisconnect as e:
        reason = f"client disconnect (code {e.code})"
        logger.info(f"WebSocket disconnected normally for connection {connection_id}")
    except Exception as e:
        reason = "transport error"
        logger.error(f"WebSocket error for connection {connection_id}: {e}", exc_info=True)
    finally:
        await coordinator.disconnect(connection_id, reason)
        try:
            await websocket.close()
        except Exception as e:
            logger.debug(f"Error closing WebSocket: {e}")
