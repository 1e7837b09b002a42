import asyncio

import pytest
import redis

from backend import RoomStore, store_operation
from errors import ConflictError, DuplicateCode, NotFoundError, StoreError
from redis_keys import REDIS_EMAIL_KEY, REDIS_ROOM_META_KEY, REDIS_USERNAME_KEY
from schemas.rooms import Room


@pytest.mark.anyio
async def test_create_room_stores_uppercase_code_and_creator_as_member(room_store, sync_redis):
    room = await room_store.create_room(" abc123 ", "Team Sync", "u1")

    assert room.code == "ABC123"
    assert room.members == {"u1"}
    assert room.canvas_data == ""
    assert sync_redis.hget(REDIS_ROOM_META_KEY.format(code="ABC123"), "room_name") == "Team Sync"


@pytest.mark.anyio
async def test_find_by_code_ignores_case_and_whitespace(room_store):
    await room_store.create_room("ABC123", "Team Sync", "u1")

    padded = await room_store.find_by_code(" abc123 ")
    exact = await room_store.find_by_code("ABC123")

    assert padded == exact
    assert padded.room_name == "Team Sync"
    assert await room_store.find_by_code("XYZ999") is None
    assert await room_store.find_by_code("   ") is None


@pytest.mark.anyio
async def test_only_one_create_per_code_succeeds(room_store):
    await room_store.create_room("DUP001", "first", "u1")
    with pytest.raises(DuplicateCode):
        await room_store.create_room("dup001", "second", "u2")

    room = await room_store.find_by_code("DUP001")
    assert room.room_name == "first"
    assert room.creator == "u1"


@pytest.mark.anyio
async def test_concurrent_creates_of_one_code_have_a_single_winner(room_store):
    results = await asyncio.gather(
        *[room_store.create_room("RACE01", f"room {i}", f"u{i}") for i in range(5)],
        return_exceptions=True,
    )

    winners = [result for result in results if isinstance(result, Room)]
    losers = [result for result in results if not isinstance(result, Room)]
    assert len(winners) == 1
    assert len(losers) == 4
    assert all(isinstance(error, DuplicateCode) for error in losers)

    stored = await room_store.find_by_code("RACE01")
    assert stored.creator == winners[0].creator
    assert stored.members == {winners[0].creator}


@pytest.mark.anyio
async def test_add_member_is_idempotent(room_store):
    await room_store.create_room("MEM001", "members", "u1")

    once = await room_store.add_member("mem001", "u2")
    twice = await room_store.add_member("MEM001", "u2")

    assert once.members == {"u1", "u2"}
    assert twice.members == once.members
    assert twice.member_count == 2


@pytest.mark.anyio
async def test_add_member_to_missing_room(room_store):
    with pytest.raises(NotFoundError):
        await room_store.add_member("NOPE00", "u1")


@pytest.mark.anyio
async def test_snapshot_update_and_clear(room_store):
    await room_store.create_room("SNAP01", "snapshots", "u1")

    assert await room_store.update_snapshot("snap01", "data:image/png;base64,AAAA") is True
    assert (await room_store.find_by_code("SNAP01")).canvas_data == "data:image/png;base64,AAAA"

    assert await room_store.clear_snapshot(" Snap01 ") is True
    assert (await room_store.find_by_code("SNAP01")).canvas_data == ""


@pytest.mark.anyio
async def test_snapshot_update_never_creates_a_room(room_store, sync_redis):
    assert await room_store.update_snapshot("GHOST1", "X") is False
    assert await room_store.clear_snapshot("GHOST1") is False
    assert await room_store.find_by_code("GHOST1") is None
    assert not sync_redis.exists(REDIS_ROOM_META_KEY.format(code="GHOST1"))


@pytest.mark.anyio
async def test_list_all_newest_first_and_prunes_expired(room_store, sync_redis):
    await room_store.create_room("OLD001", "old", "u1")
    await room_store.create_room("NEW001", "new", "u1")
    await room_store.create_room("GONE01", "gone", "u1")
    sync_redis.zadd("rooms:index", {"OLD001": 1, "NEW001": 2, "GONE01": 3})
    sync_redis.delete(REDIS_ROOM_META_KEY.format(code="GONE01"))

    rooms = await room_store.list_all()

    assert [room.code for room in rooms] == ["NEW001", "OLD001"]
    assert sync_redis.zscore("rooms:index", "GONE01") is None


@pytest.mark.anyio
async def test_room_ttl_is_applied_and_refreshed(redis_client, sync_redis):
    store = RoomStore(redis_client, ttl=120)
    await store.create_room("TTL001", "expiring", "u1")
    meta_key = REDIS_ROOM_META_KEY.format(code="TTL001")
    assert 0 < sync_redis.ttl(meta_key) <= 120

    sync_redis.expire(meta_key, 10)
    await store.update_snapshot("TTL001", "X")
    assert sync_redis.ttl(meta_key) > 10


@pytest.mark.anyio
async def test_user_store_uniqueness(user_store):
    user = await user_store.create_user("alice", "alice@gmail.com", "hash")

    with pytest.raises(ConflictError) as by_email:
        await user_store.create_user("alice2", "alice@gmail.com", "hash")
    assert by_email.value.field == "email"

    with pytest.raises(ConflictError) as by_username:
        await user_store.create_user("alice", "other@gmail.com", "hash")
    assert by_username.value.field == "username"

    # The rejected registration must not have reserved its email
    await user_store.create_user("bob", "other@gmail.com", "hash")

    assert (await user_store.find_by_login("alice")).id == user.id
    assert (await user_store.find_by_login("alice@gmail.com")).id == user.id
    assert await user_store.find_by_login("nobody") is None


@pytest.mark.anyio
async def test_failed_user_write_releases_username_and_email(user_store, sync_redis, monkeypatch):
    async def hset_down(*args, **kwargs):
        raise redis.ConnectionError("connection reset")

    monkeypatch.setattr(user_store.redis_client, "hset", hset_down)
    with pytest.raises(StoreError):
        await user_store.create_user("zed", "zed@gmail.com", "hash")
    monkeypatch.undo()

    assert not sync_redis.exists(REDIS_EMAIL_KEY.format(email="zed@gmail.com"))
    assert not sync_redis.exists(REDIS_USERNAME_KEY.format(username="zed"))

    user = await user_store.create_user("zed", "zed@gmail.com", "hash")
    assert (await user_store.find_by_login("zed")).id == user.id


@pytest.mark.anyio
async def test_touch_last_login(user_store):
    user = await user_store.create_user("carol", "carol@gmail.com", "hash")
    assert user.last_login is None

    stamp = await user_store.touch_last_login(user.id)

    assert (await user_store.find_by_id(user.id)).last_login == stamp


@pytest.mark.anyio
async def test_store_operation_wraps_redis_errors():
    @store_operation(retries=0)
    async def broken():
        raise redis.ResponseError("WRONGTYPE")

    with pytest.raises(StoreError):
        await broken()


@pytest.mark.anyio
async def test_store_operation_retries_connection_errors(monkeypatch):
    monkeypatch.setattr("backend.STORE_BASE_BACKOFF", 0)
    attempts = []

    @store_operation(retries=2)
    async def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise redis.ConnectionError("connection reset")
        return "ok"

    assert await flaky() == "ok"
    assert len(attempts) == 3


@pytest.mark.anyio
async def test_store_operation_gives_up_on_persistent_connection_loss(monkeypatch):
    monkeypatch.setattr("backend.STORE_BASE_BACKOFF", 0)

    @store_operation(retries=1)
    async def down():
        raise redis.ConnectionError("refused")

    with pytest.raises(StoreError):
        await down()
