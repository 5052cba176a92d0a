import asyncio
from typing import Any, Optional, Protocol

import redis

from constants import REDIS_HOST, REDIS_PORT, REDIS_PASSWORD
from redis_keys import REDIS_MEETING_KEY
from logging_config import get_logger

logger = get_logger(__name__)

MEETING_STATUS_ACTIVE = "active"


class MeetingValidator(Protocol):
    async def is_active(self, meeting_id: str) -> bool:
        ...


class Authenticator(Protocol):
    """Token verification collaborator. The relay does not gate on it yet."""

    def verify(self, token: str) -> Any:
        ...


class RedisBackend:
    def __init__(self, client: Optional[redis.Redis] = None):
        # redis.Redis connects lazily, so constructing it never blocks startup
        self.redis_client = client or redis.Redis(
            host=REDIS_HOST, port=REDIS_PORT, password=REDIS_PASSWORD, decode_responses=True
        )
        logger.info(f"Initializing RedisBackend with connection to {REDIS_HOST}:{REDIS_PORT}")

    def ping(self) -> bool:
        try:
            self.redis_client.ping()
            logger.info(f"Redis client connected successfully to {REDIS_HOST}:{REDIS_PORT}")
            return True
        except redis.RedisError as e:
            logger.error(f"Failed to connect to Redis at {REDIS_HOST}:{REDIS_PORT}: {e}", exc_info=True)
            return False

    def get_meeting_status(self, meeting_id: str) -> Optional[str]:
        """Return the meeting's status field, or None if the meeting does not exist."""
        logger.debug(f"Fetching status of meeting {meeting_id}")
        key = REDIS_MEETING_KEY.format(meeting_id=meeting_id)
        status = self.redis_client.hget(key, "status")
        if status is None:
            logger.debug(f"Meeting {meeting_id} not found in Redis")
        return status


class RedisMeetingValidator:
    """Answers whether a meeting exists and is active, from the meeting documents in Redis."""

    def __init__(self, backend: RedisBackend):
        self.backend = backend

    async def is_active(self, meeting_id: str) -> bool:
        if not meeting_id:
            return False
        loop = asyncio.get_running_loop()
        # Blocking redis call runs in the thread pool so other connections keep going
        status = await loop.run_in_executor(None, self.backend.get_meeting_status, meeting_id)
        return status == MEETING_STATUS_ACTIVE


redis_backend = RedisBackend()
