import logging
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlsplit

import pytest

from casgate.core.cas_client import CASClient, sanitise_service_url
from casgate.core.errors import ParseError, ValidationError
from casgate.core.protocol import ProtocolVersion
from casgate.core.store import MemorySessionStore
from casgate.models import AuthenticationResponse

from cas_responses import CAS_URL, success_xml


def test_cas_client_urls():
    client = CASClient("https://cas.example.com")

    login_url = client.get_login_url("http://service.com")
    assert login_url == "https://cas.example.com/login?service=http%3A%2F%2Fservice.com"

    logout_url = client.get_logout_url("http://service.com")
    assert logout_url == "https://cas.example.com/logout?service=http%3A%2F%2Fservice.com"

    assert client.get_logout_url() == "https://cas.example.com/logout"


def test_validation_urls_keep_base_path():
    client = CASClient(CAS_URL)
    service = "https://app.example.com/home"

    v1 = client.validate_url_v1(service, "ST-1")
    v2 = client.service_validate_url(service, "ST-1")
    v3 = client.validate_url_v3(service, "ST-1")

    assert v1.startswith("https://sso.example.com/cas/validate?")
    assert v2.startswith("https://sso.example.com/cas/serviceValidate?")
    assert v3.startswith("https://sso.example.com/cas/p3/serviceValidate?")
    assert parse_qs(urlsplit(v3).query) == {"service": [service], "ticket": ["ST-1"]}


def test_login_url_keeps_base_path():
    client = CASClient(CAS_URL + "/")
    assert client.get_login_url("https://app/").startswith("https://sso.example.com/cas/login?")


@pytest.mark.parametrize("version, path", [
    (ProtocolVersion.CAS1, "/cas/validate"),
    (ProtocolVersion.CAS2, "/cas/serviceValidate"),
    (ProtocolVersion.CAS3, "/cas/p3/serviceValidate"),
    ("CAS2", "/cas/serviceValidate"),
])
def test_validation_url_follows_version(version, path):
    client = CASClient(CAS_URL, version)
    assert urlsplit(client.validation_url("https://app/", "ST-1")).path == path


@pytest.mark.parametrize("url", [
    "https://app.example.com/page?ticket=ST-1",
    "https://app.example.com/page?a=1&ticket=ST-1&b=2",
    "https://app.example.com/page?ticket=ST-1&ticket=ST-2",
    "https://app.example.com/page?ticket",
])
def test_sanitised_service_url_has_no_ticket(url):
    query = parse_qs(urlsplit(sanitise_service_url(url)).query, keep_blank_values=True)
    assert "ticket" not in query


def test_sanitise_keeps_other_parameters():
    assert sanitise_service_url("https://app/p?a=1&ticket=ST-1&b=2") == "https://app/p?a=1&b=2"
    assert sanitise_service_url("https://app/p?a=1") == "https://app/p?a=1"


@pytest.mark.parametrize("page", [
    "http://app/p?q=hello%20world&z=1&a=2",
    "http://app/p?path=%7Euser;x=1&empty=&flag",
    "http://app/p?name=a+b&sig=abc%3D%3D",
    "http://app/p",
])
def test_login_and_validation_send_the_same_service(page):
    client = CASClient(CAS_URL)
    called_back = page + ("&" if "?" in page else "?") + "ticket=ST-1"

    login = parse_qs(urlsplit(client.get_login_url(page)).query)["service"]
    validation = parse_qs(urlsplit(client.validation_url(called_back, "ST-1")).query)["service"]

    assert login == validation == [page]


def test_sanitise_keeps_query_bytes():
    assert sanitise_service_url("http://app/p?q=hello%20world&ticket=ST-1&z=1") == \
        "http://app/p?q=hello%20world&z=1"
    assert sanitise_service_url("http://app/p?ticket=ST-1") == "http://app/p"
    assert sanitise_service_url("http://app/p?ticket=ST-1#top") == "http://app/p#top"


def test_service_sent_for_validation_has_no_ticket():
    client = CASClient(CAS_URL)
    url = client.service_validate_url("https://app/p?ticket=ST-1&x=y", "ST-1")
    query = parse_qs(urlsplit(url).query)
    assert query["service"] == ["https://app/p?x=y"]
    assert query["ticket"] == ["ST-1"]


@pytest.mark.asyncio
async def test_cas_validate_ticket_success():
    client = CASClient("https://cas.example.com", ProtocolVersion.CAS2)

    with patch("httpx.AsyncClient.get") as mock_get:
        mock_get.return_value = MagicMock(
            status_code=200,
            content=b"""<cas:serviceResponse xmlns:cas='http://www.yale.edu/tp/cas'>
                <cas:authenticationSuccess>
                    <cas:user>testuser</cas:user>
                    <cas:attributes>
                        <cas:email>test@example.com</cas:email>
                    </cas:attributes>
                </cas:authenticationSuccess>
            </cas:serviceResponse>"""
        )

        result = await client.validate_ticket("http://service.com", "ST-123")
        assert result.user == "testuser"
        assert result.attributes["email"] == ("test@example.com",)

        url = mock_get.call_args.args[0]
        assert url.startswith("https://cas.example.com/serviceValidate?")
        assert mock_get.call_args.kwargs["timeout"] == 10.0


@pytest.mark.asyncio
async def test_cas_validate_ticket_fail():
    client = CASClient("https://cas.example.com", ProtocolVersion.CAS2)

    with patch("httpx.AsyncClient.get") as mock_get:
        mock_get.return_value = MagicMock(
            status_code=200,
            content=b"""<cas:serviceResponse xmlns:cas='http://www.yale.edu/tp/cas'>
                <cas:authenticationFailure code="INVALID_TICKET">
                    Ticket not recognized
                </cas:authenticationFailure>
            </cas:serviceResponse>"""
        )

        assert await client.validate_ticket("http://service.com", "ST-123") is None


@pytest.mark.asyncio
async def test_cas_validate_v1(cas_server, cas_client):
    cas_client.version = ProtocolVersion.CAS1
    cas_server.responses["ST-1"] = b"yes\nalice\n"

    result = await cas_client.validate_ticket("https://app/", "ST-1")
    assert result.user == "alice"
    assert cas_server.requests[0].url.path == "/cas/validate"


@pytest.mark.asyncio
async def test_cas_validate_v1_no(cas_server, cas_client):
    cas_client.version = ProtocolVersion.CAS1
    cas_server.responses["ST-1"] = b"no\n\n"
    assert await cas_client.validate_ticket("https://app/", "ST-1") is None


@pytest.mark.asyncio
async def test_non_2xx_is_a_validation_error(cas_server, cas_client):
    cas_server.status_code = 500
    cas_server.responses["ST-1"] = b"internal trouble"

    with pytest.raises(ValidationError) as excinfo:
        await cas_client.validate_ticket("https://app/", "ST-1")
    assert excinfo.value.status_code == 500
    assert excinfo.value.body == "internal trouble"


@pytest.mark.asyncio
async def test_unreachable_server_is_a_validation_error(cas_server, cas_client):
    cas_server.down = True
    with pytest.raises(ValidationError):
        await cas_client.validate_ticket("https://app/", "ST-1")


@pytest.mark.asyncio
async def test_garbage_body_is_a_parse_error(cas_server, cas_client):
    cas_server.responses["ST-1"] = b"<html>maintenance</html>"
    with pytest.raises(ParseError):
        await cas_client.validate_ticket("https://app/", "ST-1")


@pytest.mark.asyncio
async def test_repeated_validation_asks_the_server_each_time(cas_server, cas_client):
    cas_server.responses["ST-1"] = success_xml("alice")
    assert (await cas_client.validate_ticket("https://app/", "ST-1")).user == "alice"

    # The server has now consumed the ticket
    del cas_server.responses["ST-1"]
    assert await cas_client.validate_ticket("https://app/", "ST-1") is None
    assert len(cas_server.requests) == 2


def test_snapshot_shares_store_with_new_logger():
    store = MemorySessionStore()
    client = CASClient(CAS_URL, store=store)
    logger = logging.getLogger("casgate.tests.request")

    other = client.snapshot(logger)
    assert other.log is logger
    assert client.log is not logger
    assert other.server_url == client.server_url

    other.store.create("cookie", "ST-1", AuthenticationResponse(user="alice"))
    assert client.store.get("cookie") is not None
