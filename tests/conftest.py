import time

import fakeredis
import pytest
from fastapi.testclient import TestClient

import auth
from app import create_app
from backend import RoomStore, UserStore
from relay import Relay
from sessions import Connection, SessionRegistry


class RecordingWebSocket:
    """Stands in for a FastAPI WebSocket and keeps every frame sent to it."""

    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    def events(self, event_type=None):
        return [frame for frame in self.sent if event_type is None or frame["type"] == event_type]


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def fast_password_hashing(monkeypatch):
    monkeypatch.setattr(auth, "BCRYPT_ROUNDS", 4)


@pytest.fixture
def redis_server():
    return fakeredis.FakeServer()


@pytest.fixture
def redis_client(redis_server):
    return fakeredis.FakeAsyncRedis(server=redis_server, decode_responses=True)


@pytest.fixture
def sync_redis(redis_server):
    """Synchronous view of the same fake server, for seeding and inspection."""
    return fakeredis.FakeRedis(server=redis_server, decode_responses=True)


@pytest.fixture
def room_store(redis_client):
    return RoomStore(redis_client)


@pytest.fixture
def user_store(redis_client):
    return UserStore(redis_client)


@pytest.fixture
def relay(room_store):
    return Relay(room_store, SessionRegistry())


@pytest.fixture
def make_connection():
    def factory(fail=False):
        return Connection(websocket=RecordingWebSocket(fail=fail))
    return factory


@pytest.fixture
def app(redis_client):
    return create_app(redis_client)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def register_and_login(client):
    def factory(username, password="secret123"):
        email = f"{username}@gmail.com"
        response = client.post("/api/register", json={"username": username, "email": email, "password": password})
        assert response.status_code == 201, response.text
        response = client.post("/api/login", json={"username": username, "password": password})
        assert response.status_code == 200, response.text
        body = response.json()
        return {"id": body["user"]["id"], "headers": {"Authorization": f"Bearer {body['token']}"}}
    return factory


def wait_for(condition, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.01)
    return condition()
