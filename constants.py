import os
import string

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)
REDIS_DB = int(os.getenv("REDIS_DB", 0))

if REDIS_PASSWORD:
    _default_redis_url = f"redis://:{REDIS_PASSWORD}@{REDIS_HOST}:{REDIS_PORT}/{REDIS_DB}"
else:
    _default_redis_url = f"redis://{REDIS_HOST}:{REDIS_PORT}/{REDIS_DB}"
REDIS_URL = os.getenv("REDIS_URL", _default_redis_url)

# Store retry policy for idempotent reads on connection errors
STORE_MAX_RETRIES = int(os.getenv("STORE_MAX_RETRIES", 3))
STORE_BASE_BACKOFF = float(os.getenv("STORE_BASE_BACKOFF", 0.1))

JWT_SECRET = os.getenv("JWT_SECRET", "whiteboard-secret-change-in-production")
JWT_ALGORITHM = "HS256"
JWT_EXPIRY_SECONDS = int(os.getenv("JWT_EXPIRY_SECONDS", 7 * 24 * 3600))

BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", 12))

ROOM_CODE_LENGTH = 6
ROOM_CODE_ALPHABET = string.ascii_uppercase + string.digits
ROOM_CODE_MAX_ATTEMPTS = 10

# 0 keeps rooms forever
ROOM_TTL_SECONDS = int(os.getenv("ROOM_TTL_SECONDS", 0))

EMAIL_PATTERN = r"^[a-zA-Z0-9._%+-]+@gmail\.com$"
MIN_PASSWORD_LENGTH = 6

CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8000))
