import os

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)

# Voice rooms hold between 2 and 10 peers; only the upper bound is enforced here
MIN_ROOM_SIZE = 2
MAX_ROOM_SIZE = 10

STUN_SERVERS = [
    s.strip() for s in os.getenv(
        "STUN_SERVERS", "stun:stun.l.google.com:19302,stun:stun1.l.google.com:19302"
    ).split(",") if s.strip()
]

CORS_ORIGINS = [
    o.strip() for o in os.getenv(
        "CORS_ORIGINS",
        "https://frontend-real-time.vercel.app,https://realtime-frontend.vercel.app,"
        "http://localhost:3000,http://localhost:5173",
    ).split(",") if o.strip()
]

# Only relay offers/answers/candidates between connections bound in the same room
RESTRICT_RELAY_TO_ROOM = os.getenv("RESTRICT_RELAY_TO_ROOM", "false").lower() in ("1", "true", "yes")

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 10000))
