from fastapi import APIRouter
from schemas.voice import IceServer, IceServersResponse
from constants import STUN_SERVERS
from logging_config import get_logger

logger = get_logger(__name__)

voice_router = APIRouter(tags=["voice"])


@voice_router.get("/ice-servers", response_model=IceServersResponse)
async def get_ice_servers():
    """STUN servers clients use to gather candidates before signaling."""
    logger.debug(f"Serving {len(STUN_SERVERS)} ICE servers")
    return IceServersResponse(iceServers=[IceServer(urls=url) for url in STUN_SERVERS])
