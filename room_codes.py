import random

from constants import ROOM_CODE_ALPHABET, ROOM_CODE_LENGTH, ROOM_CODE_MAX_ATTEMPTS
from errors import Exhausted
from logging_config import get_logger

logger = get_logger(__name__)


def normalize_code(raw_code) -> str:
    """Canonical form of a room code: trimmed and uppercase. None becomes ""."""
    if raw_code is None:
        return ""
    return str(raw_code).strip().upper()


def generate(length: int = ROOM_CODE_LENGTH) -> str:
    return ''.join(random.choices(ROOM_CODE_ALPHABET, k=length))


async def allocate_unique_code(store, max_attempts: int = ROOM_CODE_MAX_ATTEMPTS) -> str:
    """Pick a code no existing room uses.

    This is only a pre-check: two callers can still race to the same code, and
    store.create_room rejects the loser with DuplicateCode.
    """
    for attempt in range(1, max_attempts + 1):
        code = normalize_code(generate())
        existing = await store.find_by_code(code)
        logger.debug(f"Room code generation attempt {attempt}: {code}")
        if existing is None:
            return code
    logger.error(f"Failed to generate unique room code after {max_attempts} attempts")
    raise Exhausted(max_attempts)


async def create_room(store, name: str, creator_id: str):
    code = await allocate_unique_code(store)
    return await store.create_room(code, name, creator_id)
