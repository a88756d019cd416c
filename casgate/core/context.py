"""
Request-scoped CAS state.

CASMiddleware binds a CASContext to every request it sees, at
``request.state.cas``. Everything in here reads that context; using any of
it on a request that never went through the middleware is an integration
bug and raises NoClientBoundError.
"""
import logging
from datetime import datetime
from typing import Dict, List, Optional, Type, TypeVar

from fastapi import Request, status
from fastapi.responses import RedirectResponse

from ..models import AuthenticationResponse, Permission, Role, Session, UserInfo
from .cas_client import CASClient
from .errors import AttributeConversionError, DirectoryError, NoClientBoundError

log = logging.getLogger(__name__)

STATE_KEY = "cas"

T = TypeVar("T")


class CASContext:
    """The CAS bindings of one request."""

    __slots__ = ("client", "response", "session")

    def __init__(self, client: CASClient, response: Optional[AuthenticationResponse] = None,
                 session: Optional[Session] = None):
        self.client = client
        self.response = response
        self.session = session

    def __repr__(self):
        user = self.response.user if self.response else None
        return 'CASContext(client=%r, user=%r)' % (self.client, user)

    def authenticate(self, session: Session):
        self.session = session
        self.response = session.response


def bind(request: Request, client: CASClient) -> CASContext:
    context = CASContext(client)
    setattr(request.state, STATE_KEY, context)
    return context


def get_context(request: Request) -> CASContext:
    context = getattr(request.state, STATE_KEY, None)
    if context is None:
        raise NoClientBoundError()
    return context


def get_client(request: Request) -> CASClient:
    return get_context(request).client


def _response(request: Request) -> Optional[AuthenticationResponse]:
    return get_context(request).response


def is_authenticated(request: Request) -> bool:
    return _response(request) is not None


def username(request: Request) -> Optional[str]:
    a = _response(request)
    return a.user if a else None


def attributes(request: Request) -> Dict[str, List[str]]:
    """A fresh copy of the attribute map; changing it affects nothing else."""
    a = _response(request)
    return {name: list(values) for (name, values) in a.attributes.items()} if a else {}


def authentication_date(request: Request) -> Optional[datetime]:
    """
    When the user authenticated. None under CAS 1.0/2.0, which do not report
    it, and when the server sent a date that could not be parsed.
    """
    a = _response(request)
    return a.authentication_date if a else None


def is_new_login(request: Request) -> bool:
    """
    Whether the ticket was granted after a fresh login. False when the server
    does not say, which is always the case for CAS 2.0 servers.
    """
    a = _response(request)
    return bool(a and a.is_new_login)


def is_remembered_login(request: Request) -> bool:
    """Whether the ticket was granted from a long term ("remember me") token."""
    a = _response(request)
    return bool(a and a.is_remembered_login)


def member_of(request: Request) -> List[str]:
    a = _response(request)
    return list(a.member_of) if a else []


def _convert(name: str, value: str, kind: Type[T]) -> T:
    if kind is bool:
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes"):
            return True
        if lowered in ("false", "0", "no"):
            return False
        raise AttributeConversionError(name, value, kind)
    try:
        return kind(value.strip())
    except (TypeError, ValueError) as e:
        raise AttributeConversionError(name, value, kind) from e


def attribute(request: Request, name: str, kind: Type[T] = str) -> Optional[T]:
    """
    First value of a (multi-valued) CAS attribute, converted to ``kind``.

    Returns None when the attribute is absent; raises
    AttributeConversionError when it is present but not a valid ``kind``.
    """
    values = attributes(request).get(name)
    if not values:
        return None
    return _convert(name, values[0], kind)


def current_user_id(request: Request) -> Optional[int]:
    return attribute(request, "uid", int)


def redirect_to_login(request: Request, service_url: Optional[str] = None) -> RedirectResponse:
    """Send the browser to the CAS login page, coming back to ``service_url``
    (this request's URL by default)."""
    client = get_client(request)
    there = client.get_login_url(service_url or str(request.url))
    log.info('redirecting to CAS login %s', there)
    return RedirectResponse(there, status_code=status.HTTP_302_FOUND)


def redirect_to_logout(request: Request, service_url: Optional[str] = None) -> RedirectResponse:
    """Drop the local session and cookie, then send the browser to CAS logout."""
    context = get_context(request)
    client = context.client
    if context.session is not None and client.store is not None:
        client.store.delete(context.session.cookie)
    context.session = None
    context.response = None

    there = client.get_logout_url(service_url or str(request.url))
    response = RedirectResponse(there, status_code=status.HTTP_302_FOUND)
    response.delete_cookie(client.cookie_name)
    log.info('dropping session cookie and redirecting to %s', there)
    return response


def _directory(request: Request):
    client = get_client(request)
    if client.directory is None:
        raise DirectoryError("directory: no directory service configured")
    return client.directory


def _principal(request: Request) -> str:
    user = username(request)
    if user is None:
        raise DirectoryError("directory: request is not authenticated")
    return user


async def role_list(request: Request) -> List[Role]:
    directory = _directory(request)
    return await directory.role_list(_principal(request))


async def permission_list(request: Request, role_id: int) -> List[Permission]:
    directory = _directory(request)
    return await directory.permission_list(_principal(request), role_id)


async def user_info(request: Request, user_id: int) -> UserInfo:
    directory = _directory(request)
    return await directory.user_info(user_id)


async def has_permission(request: Request, code: str) -> bool:
    """Whether any role of the caller grants the permission ``code``."""
    if not is_authenticated(request):
        return False
    for role in await role_list(request):
        for permission in await permission_list(request, role.id):
            if permission.code == code:
                return True
    return False
