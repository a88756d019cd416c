import httpx
import pytest
from fastapi.testclient import TestClient
from sqlmodel import create_engine

from casgate.config import Settings
from casgate.core.cas_client import CASClient
from casgate.core.protocol import ProtocolVersion
from casgate.core.sql_store import SqlSessionStore
from casgate.core.store import MemorySessionStore
from casgate.database import create_db_and_tables
from casgate.main import create_app

from sqlalchemy.pool import StaticPool

from cas_responses import CAS_URL, FAILURE_XML


class FakeCASServer:
    """
    Stands in for the CAS server: answers validation requests from a
    ticket -> body table, and remembers every request it saw.
    """

    def __init__(self):
        self.responses = {}
        self.requests = []
        self.status_code = 200
        self.down = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.down:
            raise httpx.ConnectError("connection refused", request=request)
        ticket = request.url.params.get("ticket")
        return httpx.Response(self.status_code, content=self.responses.get(ticket, FAILURE_XML))


@pytest.fixture(name="cas_server")
def cas_server_fixture():
    return FakeCASServer()


@pytest.fixture(name="store")
def store_fixture():
    return MemorySessionStore()


@pytest.fixture(name="sql_store")
def sql_store_fixture():
    # Use in-memory database for testing
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    create_db_and_tables(engine)
    yield SqlSessionStore(engine)
    engine.dispose()


@pytest.fixture(name="cas_client")
def cas_client_fixture(cas_server, store):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(cas_server.handler))
    return CASClient(CAS_URL, ProtocolVersion.CAS3, store=store, http_client=http_client)


@pytest.fixture(name="settings")
def settings_fixture():
    return Settings(server_url=CAS_URL)


@pytest.fixture(name="app")
def app_fixture(settings, cas_client):
    return create_app(settings, cas_client)


@pytest.fixture(name="client")
def client_fixture(app):
    with TestClient(app) as client:
        yield client
