import asyncio
import uuid
from datetime import datetime
from functools import wraps
from typing import List, Optional

import redis
import redis.asyncio as aioredis

from constants import REDIS_URL, ROOM_TTL_SECONDS, STORE_BASE_BACKOFF, STORE_MAX_RETRIES
from errors import ConflictError, DuplicateCode, NotFoundError, StoreError
from logging_config import get_logger
from redis_keys import (
    REDIS_EMAIL_KEY,
    REDIS_ROOM_MEMBERS_KEY,
    REDIS_ROOM_META_KEY,
    REDIS_ROOMS_INDEX,
    REDIS_USER_KEY,
    REDIS_USERNAME_KEY,
)
from room_codes import normalize_code
from schemas.rooms import Room
from schemas.users import User

logger = get_logger(__name__)


def create_redis_client(url: str = REDIS_URL) -> aioredis.Redis:
    """Connection pool shared by every handler. Nothing connects until first use."""
    return aioredis.from_url(url, decode_responses=True, socket_timeout=5, socket_connect_timeout=5)


def store_operation(retries: int = STORE_MAX_RETRIES):
    """Translate redis failures into StoreError.

    Connection errors are retried with exponential backoff `retries` times; pass
    retries=0 for writes that must not run twice.
    """
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except redis.ConnectionError as e:
                    if attempt >= retries:
                        logger.error(f"Redis connection failed in {func.__name__} after {attempt + 1} attempts: {e}")
                        raise StoreError(f"Store unavailable: {e}") from e
                    backoff = STORE_BASE_BACKOFF * (2 ** attempt)
                    logger.warning(f"Redis connection failed in {func.__name__} (attempt {attempt + 1}): {e}. Retrying in {backoff}s")
                    attempt += 1
                    await asyncio.sleep(backoff)
                except redis.RedisError as e:
                    logger.error(f"Redis operation {func.__name__} failed: {e}", exc_info=True)
                    raise StoreError(f"Store operation failed: {e}") from e
        return wrapper
    return decorator


class RoomStore:
    def __init__(self, redis_client: aioredis.Redis, ttl: int = ROOM_TTL_SECONDS):
        self.redis_client = redis_client
        self.ttl = ttl
        logger.info(f"Initializing RoomStore (room ttl: {ttl or 'none'})")

    @store_operation()
    async def ping(self) -> bool:
        return await self.redis_client.ping()

    @store_operation()
    async def find_by_code(self, code: str) -> Optional[Room]:
        code = normalize_code(code)
        if not code:
            return None
        logger.debug(f"Fetching room {code}")
        async with self.redis_client.pipeline(transaction=False) as pipe:
            pipe.hgetall(REDIS_ROOM_META_KEY.format(code=code))
            pipe.smembers(REDIS_ROOM_MEMBERS_KEY.format(code=code))
            meta, members = await pipe.execute()
        if not meta:
            logger.debug(f"Room {code} not found in Redis")
            return None
        return Room(
            code=meta["code"],
            room_name=meta.get("room_name", ""),
            creator=meta.get("creator", ""),
            members=set(members),
            canvas_data=meta.get("canvas_data", ""),
            created_at=meta["created_at"],
        )

    @store_operation(retries=0)
    async def create_room(self, code: str, name: str, creator_id: str) -> Room:
        code = normalize_code(code)
        meta_key = REDIS_ROOM_META_KEY.format(code=code)
        members_key = REDIS_ROOM_MEMBERS_KEY.format(code=code)
        logger.info(f"Creating room {code} ({name!r}) for user {creator_id}")

        created_at = datetime.now()
        async with self.redis_client.pipeline(transaction=True) as pipe:
            # The watched existence check is the uniqueness guard: a concurrent
            # insert of the same code aborts this transaction
            await pipe.watch(meta_key)
            if await pipe.exists(meta_key):
                logger.warning(f"Room code {code} rejected by store: already exists")
                raise DuplicateCode(code)
            pipe.multi()
            pipe.hset(meta_key, mapping={
                "code": code,
                "room_name": name,
                "creator": creator_id,
                "canvas_data": "",
                "created_at": created_at.isoformat(),
            })
            pipe.sadd(members_key, creator_id)
            pipe.zadd(REDIS_ROOMS_INDEX, {code: created_at.timestamp()})
            if self.ttl:
                pipe.expire(meta_key, self.ttl)
                pipe.expire(members_key, self.ttl)
            try:
                await pipe.execute()
            except redis.WatchError:
                logger.warning(f"Room code {code} taken by a concurrent insert")
                raise DuplicateCode(code)

        logger.debug(f"Room {code} created with key: {meta_key}")
        return Room(code=code, room_name=name, creator=creator_id, members={creator_id},
                    canvas_data="", created_at=created_at)

    @store_operation()
    async def add_member(self, code: str, user_id: str) -> Room:
        code = normalize_code(code)
        meta_key = REDIS_ROOM_META_KEY.format(code=code)
        members_key = REDIS_ROOM_MEMBERS_KEY.format(code=code)
        if not await self.redis_client.exists(meta_key):
            raise NotFoundError(f'Room with code "{code}" not found')

        added = await self.redis_client.sadd(members_key, user_id)
        if added:
            logger.debug(f"User {user_id} added to room {code} members")
        else:
            logger.debug(f"User {user_id} already in room {code} members")
        if self.ttl:
            await self._touch(code)

        room = await self.find_by_code(code)
        if room is None:
            raise NotFoundError(f'Room with code "{code}" not found')
        return room

    async def update_snapshot(self, code: str, image_data: str) -> bool:
        """Store the canvas snapshot. Rooms are never created here."""
        return await self._set_if_exists(normalize_code(code), "canvas_data", image_data or "")

    async def clear_snapshot(self, code: str) -> bool:
        return await self._set_if_exists(normalize_code(code), "canvas_data", "")

    @store_operation()
    async def list_all(self) -> List[Room]:
        codes = await self.redis_client.zrevrange(REDIS_ROOMS_INDEX, 0, -1)
        rooms = []
        stale = []
        for code in codes:
            room = await self.find_by_code(code)
            if room is None:
                stale.append(code)
            else:
                rooms.append(room)
        if stale:
            # Expired rooms leave their index entry behind
            await self.redis_client.zrem(REDIS_ROOMS_INDEX, *stale)
            logger.debug(f"Pruned {len(stale)} expired rooms from index")
        return rooms

    @store_operation()
    async def _set_if_exists(self, code: str, field: str, value: str) -> bool:
        meta_key = REDIS_ROOM_META_KEY.format(code=code)
        async with self.redis_client.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(meta_key)
                    if not await pipe.exists(meta_key):
                        logger.debug(f"Room {code} not found, dropping {field} update")
                        return False
                    pipe.multi()
                    pipe.hset(meta_key, field, value)
                    if self.ttl:
                        pipe.expire(meta_key, self.ttl)
                        pipe.expire(REDIS_ROOM_MEMBERS_KEY.format(code=code), self.ttl)
                    await pipe.execute()
                    logger.debug(f"Updated {field} for room {code} ({len(value)} chars)")
                    return True
                except redis.WatchError:
                    logger.debug(f"Room {code} changed during {field} update, retrying")
                    continue

    async def _touch(self, code: str):
        async with self.redis_client.pipeline(transaction=True) as pipe:
            pipe.expire(REDIS_ROOM_META_KEY.format(code=code), self.ttl)
            pipe.expire(REDIS_ROOM_MEMBERS_KEY.format(code=code), self.ttl)
            await pipe.execute()


class UserStore:
    def __init__(self, redis_client: aioredis.Redis):
        self.redis_client = redis_client

    @store_operation(retries=0)
    async def create_user(self, username: str, email: str, password_hash: str) -> User:
        user_id = uuid.uuid4().hex
        username_key = REDIS_USERNAME_KEY.format(username=username)
        email_key = REDIS_EMAIL_KEY.format(email=email)

        if not await self.redis_client.set(email_key, user_id, nx=True):
            raise ConflictError("User with this email already exists", field="email")
        if not await self.redis_client.set(username_key, user_id, nx=True):
            await self.redis_client.delete(email_key)
            raise ConflictError("User with this username already exists", field="username")

        user = User(
            id=user_id,
            username=username,
            email=email,
            password=password_hash,
            is_active=True,
            last_login=None,
            created_at=datetime.now(),
        )
        try:
            await self.redis_client.hset(REDIS_USER_KEY.format(user_id=user_id), mapping={
                "id": user.id,
                "username": user.username,
                "email": user.email,
                "password": user.password,
                "is_active": "1",
                "last_login": "",
                "created_at": user.created_at.isoformat(),
            })
        except redis.RedisError as e:
            # Reservations must not outlive a user that was never stored
            logger.warning(f"Could not store user {username}, releasing username and email: {e}")
            await self.redis_client.delete(email_key, username_key)
            raise
        logger.info(f"User {username} created with id {user_id}")
        return user

    @store_operation()
    async def find_by_id(self, user_id: str) -> Optional[User]:
        data = await self.redis_client.hgetall(REDIS_USER_KEY.format(user_id=user_id))
        if not data:
            return None
        return User(
            id=data["id"],
            username=data["username"],
            email=data["email"],
            password=data["password"],
            is_active=data.get("is_active", "1") == "1",
            last_login=data.get("last_login") or None,
            created_at=data["created_at"],
        )

    @store_operation()
    async def find_by_login(self, identifier: str) -> Optional[User]:
        """Look a user up by username first, then by email."""
        user_id = await self.redis_client.get(REDIS_USERNAME_KEY.format(username=identifier))
        if user_id is None:
            user_id = await self.redis_client.get(REDIS_EMAIL_KEY.format(email=identifier))
        if user_id is None:
            return None
        return await self.find_by_id(user_id)

    @store_operation()
    async def touch_last_login(self, user_id: str) -> datetime:
        now = datetime.now()
        await self.redis_client.hset(REDIS_USER_KEY.format(user_id=user_id), "last_login", now.isoformat())
        return now
