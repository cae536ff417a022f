import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool

from twokaj.client.api_client import ApiClient
from twokaj.client.connectivity import ConnectivityMonitor, SyncSignal
from twokaj.client.local_store import LocalStore
from twokaj.client.refresh import RefreshMerge
from twokaj.client.session import MarketplaceClient
from twokaj.client.sync_engine import SyncEngine
from twokaj.core.config import ClientSettings
from twokaj.db.session import make_engine
from twokaj.main import create_app

BASE_URL = "http://testserver"


class SwitchableTransport(httpx.AsyncBaseTransport):
    """ASGI transport to the app that can simulate a dead network."""

    def __init__(self, app):
        self.inner = httpx.ASGITransport(app=app)
        self.online = True
        self.requests = []

    async def handle_async_request(self, request):
        if not self.online:
            raise httpx.ConnectError("Network is unreachable", request=request)
        self.requests.append(request)
        return await self.inner.handle_async_request(request)

    def paths(self, method=None):
        return [r.url.path for r in self.requests if method is None or r.method == method]


@pytest.fixture
def db_engine():
    engine = make_engine("sqlite://", poolclass=StaticPool)
    yield engine
    engine.dispose()


@pytest.fixture
def app(db_engine):
    return create_app(engine=db_engine)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def db_session(app):
    session = app.state.sessionmaker()
    yield session
    session.close()


@pytest.fixture
def transport(app):
    return SwitchableTransport(app)


@pytest.fixture
def store(tmp_path):
    store = LocalStore(str(tmp_path / "device.db"))
    yield store
    store.close()


@pytest.fixture
def api(transport):
    return ApiClient(BASE_URL, timeout=5.0, transport=transport)


@pytest.fixture
def signal():
    return SyncSignal()


@pytest.fixture
def monitor(signal):
    return ConnectivityMonitor(signal, online=False)


@pytest.fixture
def engine(store, api, monitor):
    return SyncEngine(store, api, monitor=monitor, backoff_base=1.0, backoff_max=60.0, max_attempts=5)


@pytest.fixture
def refresher(store, api):
    return RefreshMerge(store, api)


@pytest.fixture
def device(store, api, monitor, signal, engine, refresher, tmp_path):
    settings = ClientSettings(API_BASE_URL=BASE_URL, LOCAL_DB_PATH=str(tmp_path / "device.db"))
    return MarketplaceClient(store, api, monitor, signal, engine, refresher, settings=settings)


def make_user(user_id="u-1", pseudo="jean", **extra):
    return {"id": user_id, "pseudo": pseudo, "password": "secret", "city": "Jacmel", **extra}


def make_listing(listing_id="abc-123", user_id="u-1", **extra):
    data = {
        "id": listing_id,
        "user_id": user_id,
        "type": "offer",
        "category": "échange de main d'oeuvre",
        "title": "5kg rice for labor",
        "status": "open",
    }
    data.update(extra)
    return data


def make_message(message_id="m-1", ad_id="abc-123", sender_id="u-2", receiver_id="u-1", **extra):
    return {
        "id": message_id,
        "ad_id": ad_id,
        "sender_id": sender_id,
        "receiver_id": receiver_id,
        "content": "Mwen enterese nan anons ou a.",
        "type": "contact",
        **extra,
    }
