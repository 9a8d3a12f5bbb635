import fakeredis
import pytest
from httpx import ASGITransport, AsyncClient

from orderdesk import notifications, redis_client
from orderdesk import store as store_module
from orderdesk.access import Caller
from orderdesk.accounts import create_user
from orderdesk.memory_store import MemoryStore
from orderdesk.models import Role

from _helper import RecordingPublisher


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    r = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    monkeypatch.setattr(redis_client, "_redis", r)
    return r


@pytest.fixture
def store(monkeypatch):
    s = MemoryStore()
    monkeypatch.setattr(store_module, "_store", s)
    return s


@pytest.fixture
def publisher(monkeypatch):
    p = RecordingPublisher()
    monkeypatch.setattr(notifications, "_publisher", p)
    return p


async def _caller(store, name: str, email: str, role: Role) -> Caller:
    user = await create_user(store, name, email, "secret123", role)
    return Caller(id=user.id, role=user.role)


@pytest.fixture
async def manager(store) -> Caller:
    return await _caller(store, "Restaurant Manager", "manager@example.com", Role.MANAGER)


@pytest.fixture
async def partner(store) -> Caller:
    return await _caller(store, "Partner One", "partner1@example.com", Role.DELIVERY_PARTNER)


@pytest.fixture
async def partner2(store) -> Caller:
    return await _caller(store, "Partner Two", "partner2@example.com", Role.DELIVERY_PARTNER)


@pytest.fixture
async def client(store, publisher):
    from orderdesk.main import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
