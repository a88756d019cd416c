"""
Single logout (SLO).

When a user logs out of the CAS server, the server POSTs a SAML
``LogoutRequest`` to every service that holds a ticket for that user:

    POST /any/protected/path
    Content-Type: application/x-www-form-urlencoded

    logoutRequest=<samlp:LogoutRequest ...>
        <saml:NameID>@NOT_USED@</saml:NameID>
        <samlp:SessionIndex>ST-123</samlp:SessionIndex>
    </samlp:LogoutRequest>

The SessionIndex is the service ticket the session was created from. It is
not the session cookie value, so the session is found through the store's
ticket index.
"""
import logging
from typing import Any, Mapping, Optional
from xml.parsers.expat import ExpatError

import xmltodict

from ..models import LogoutNotification
from .errors import LogoutError
from .store import SessionStore

log = logging.getLogger(__name__)

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
LOGOUT_FIELD = "logoutRequest"


def is_form_content_type(content_type: Optional[str]) -> bool:
    # Parameters such as charset do not matter
    media_type = (content_type or "").split(";", 1)[0].strip().lower()
    return media_type == FORM_CONTENT_TYPE


def is_single_logout_request(method: str, content_type: Optional[str], form: Mapping[str, Any]) -> bool:
    """POST, urlencoded form, non-empty ``logoutRequest`` field."""
    if method.upper() != "POST":
        return False
    if not is_form_content_type(content_type):
        return False
    return bool(form.get(LOGOUT_FIELD))


def _local(key: str) -> str:
    return key.rsplit(":", 1)[-1]


def _child(element: Mapping[str, Any], name: str) -> Optional[str]:
    for key, value in element.items():
        if key.startswith("@") or _local(key) != name:
            continue
        if isinstance(value, dict):
            value = value.get("#text")
        if isinstance(value, list):
            value = value[0] if value else None
        return value.strip() if isinstance(value, str) else None
    return None


def parse_logout_request(raw: str) -> LogoutNotification:
    try:
        data = xmltodict.parse(raw)
    except ExpatError as e:
        raise LogoutError(f"cas: malformed logout request: {e}") from e

    if not isinstance(data, dict) or len(data) != 1:
        raise LogoutError("cas: logout request has no root element")
    [(root, element)] = data.items()
    if _local(root) != "LogoutRequest" or not isinstance(element, dict):
        raise LogoutError(f"cas: unexpected logout request element {root!r}")

    session_index = _child(element, "SessionIndex")
    if not session_index:
        raise LogoutError("cas: logout request carries no SessionIndex")

    return LogoutNotification(
        session_index=session_index,
        id=element.get("@ID"),
        version=element.get("@Version"),
        issue_instant=element.get("@IssueInstant"),
        name_id=_child(element, "NameID"),
    )


class SingleLogoutProcessor:
    def __init__(self, store: SessionStore, logger: Optional[logging.Logger] = None):
        self.store = store
        self.log = logger or log

    def process(self, raw: str) -> LogoutNotification:
        """
        Invalidate the session created from the ticket named in ``raw``.

        Raises LogoutError when the payload cannot be parsed or no session
        is indexed under its ticket.
        """
        notification = parse_logout_request(raw)
        ticket = notification.session_index

        session = self.store.get_by_ticket(ticket)
        if session is None or not self.store.delete_by_ticket(ticket):
            raise LogoutError(f"cas: no session for ticket {ticket}")

        self.log.info('single logout of %s (ticket %s)', session.response.user, ticket)
        return notification
