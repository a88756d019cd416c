import copy
import logging
from typing import Optional
from urllib.parse import unquote_plus, urlencode, urlsplit, urlunsplit

import httpx

from ..models import AuthenticationResponse
from .directory import DirectoryClient
from .errors import ValidationError
from .parser import parse_response
from .protocol import ProtocolVersion
from .store import SessionStore

USER_AGENT = "casgate CAS client"


def sanitise_service_url(service_url: str) -> str:
    """
    Drop every ``ticket`` query parameter from a service URL. The ticket is
    sent to the CAS server separately, and the service string must match the
    one the ticket was issued for byte for byte, so the remaining query is
    kept exactly as it was sent.
    """
    parts = urlsplit(service_url)
    segments = parts.query.split('&') if parts.query else []
    kept = [s for s in segments if unquote_plus(s.split('=', 1)[0]) != "ticket"]
    if len(kept) == len(segments):
        return service_url
    return urlunsplit((parts.scheme, parts.netloc, parts.path, '&'.join(kept), parts.fragment))


class CASClient:
    def __init__(
        self,
        server_url: str,
        version: ProtocolVersion = ProtocolVersion.CAS3,
        store: Optional[SessionStore] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
        cookie_name: str = "_cas_session",
        directory: Optional[DirectoryClient] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.server_url = server_url.rstrip('/')
        self.version = ProtocolVersion(version)
        self.store = store
        self.http_client = http_client
        self.timeout = timeout
        self.cookie_name = cookie_name
        self.directory = directory
        self.log = logger or logging.getLogger(__name__)

    def __repr__(self):
        return 'CASClient(server_url=%s, version=%s)' % (self.server_url, self.version.value)

    def snapshot(self, logger: logging.Logger) -> "CASClient":
        """
        A client that shares this one's configuration, HTTP client and stored
        sessions but logs through ``logger``.
        """
        other = copy.copy(self)
        other.log = logger
        if self.store is not None:
            other.store = self.store.snapshot(logger)
        return other

    def _url(self, endpoint: str, **params) -> str:
        # Keep the mount path of the CAS server: /cas + login -> /cas/login
        parts = urlsplit(self.server_url)
        path = parts.path.rstrip('/') + '/' + endpoint
        query = urlencode({k: v for (k, v) in params.items() if v is not None})
        return urlunsplit((parts.scheme, parts.netloc, path, query, ''))

    def get_login_url(self, service_url: str) -> str:
        """
        Generate the CAS login URL with the service parameter.
        """
        return self._url('login', service=sanitise_service_url(service_url))

    def get_logout_url(self, service_url: Optional[str] = None) -> str:
        """
        Generate the CAS logout URL.
        """
        if service_url:
            return self._url('logout', service=sanitise_service_url(service_url))
        return self._url('logout')

    def validate_url_v1(self, service_url: str, ticket: str) -> str:
        return self._url(ProtocolVersion.CAS1.endpoint,
                         service=sanitise_service_url(service_url), ticket=ticket)

    def service_validate_url(self, service_url: str, ticket: str) -> str:
        return self._url(ProtocolVersion.CAS2.endpoint,
                         service=sanitise_service_url(service_url), ticket=ticket)

    def validate_url_v3(self, service_url: str, ticket: str) -> str:
        return self._url(ProtocolVersion.CAS3.endpoint,
                         service=sanitise_service_url(service_url), ticket=ticket)

    def validation_url(self, service_url: str, ticket: str) -> str:
        return _VALIDATION_URLS[self.version](self, service_url, ticket)

    async def _get(self, url: str) -> httpx.Response:
        headers = {'User-Agent': USER_AGENT}
        if self.http_client is not None:
            return await self.http_client.get(url, headers=headers, timeout=self.timeout)
        async with httpx.AsyncClient() as client:
            return await client.get(url, headers=headers, timeout=self.timeout)

    async def validate_ticket(self, service_url: str, ticket: str) -> Optional[AuthenticationResponse]:
        """
        Validate a Service Ticket (ST) against the CAS server using the
        configured protocol version.

        Returns the authentication response, or None when the CAS server
        says the ticket is not valid. Raises ValidationError when the server
        cannot be reached or answers with a non-2xx status, and ParseError
        when its answer cannot be understood.
        """
        url = self.validation_url(service_url, ticket)
        self.log.debug('Attempting ticket validation with %s', url)

        try:
            response = await self._get(url)
        except httpx.HTTPError as e:
            raise ValidationError(f"cas: validate ticket: {e}") from e

        self.log.debug('Request GET %s returned %s', url, response.status_code)
        if not 200 <= response.status_code < 300:
            body = response.text
            self.log.warning('CAS validation failed: HTTP %s', response.status_code)
            raise ValidationError(f"cas: validate ticket: {body}",
                                  status_code=response.status_code, body=body)

        result = parse_response(self.version, response.content)
        if result is None:
            self.log.info('CAS ticket %s was not accepted for %s', ticket, service_url)
        else:
            self.log.info('CAS ticket %s validated for user %s', ticket, result.user)
        return result


_VALIDATION_URLS = {
    ProtocolVersion.CAS1: CASClient.validate_url_v1,
    ProtocolVersion.CAS2: CASClient.service_validate_url,
    ProtocolVersion.CAS3: CASClient.validate_url_v3,
}
