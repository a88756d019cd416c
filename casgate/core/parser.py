import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional
from xml.parsers.expat import ExpatError

import xmltodict

from ..models import AuthenticationResponse
from .errors import ParseError
from .protocol import ProtocolVersion

log = logging.getLogger(__name__)

CAS_NAMESPACE = "http://www.yale.edu/tp/cas"

# Keys of <cas:attributes> that map onto AuthenticationResponse fields
# instead of the generic attribute map.
RESERVED_ATTRIBUTES = {
    "authenticationDate",
    "isFromNewLogin",
    "longTermAuthenticationRequestTokenUsed",
    "memberOf",
}

_SUCCESS_FIELDS = {"user", "attributes", "proxyGrantingTicket", "proxies"}

# e.g. "2024-05-01T10:00:00.123+08:00[Asia/Shanghai]" as emitted by Java's ZonedDateTime
_ZONE_SUFFIX = re.compile(r"\[[^\]]*\]\s*$")


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, dict):
        return (value.get("#text") or "").strip()
    return str(value).strip()


def _local_name(key: str) -> str:
    # Namespaced keys come back from xmltodict as "<uri>:<name>"
    return key.rsplit(":", 1)[-1]


def _parse_bool(name: str, value: Any) -> Optional[bool]:
    text = _text(value).lower()
    if text == "":
        return None
    if text == "true":
        return True
    if text == "false":
        return False
    raise ParseError(f"cas: {name} is not a boolean: {text!r}")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a CAS authenticationDate. Non-standard zone-name suffixes are
    stripped first; anything still unparseable yields None rather than an
    error.
    """
    text = _ZONE_SUFFIX.sub("", _text(value))
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        log.warning("cas: ignoring unparseable authenticationDate %r", value)
        return None


def parse_validate_response(body: bytes) -> Optional[AuthenticationResponse]:
    """
    Parse a CAS 1.0 ``/validate`` response: ``"yes\\n<user>\\n"`` or ``"no\\n\\n"``.
    """
    try:
        text = body.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ParseError(f"cas: validate response is not utf-8: {e}") from e

    if text == "no\n\n":
        return None

    lines = text.split("\n")
    first = lines[0].strip()
    if first == "no":
        return None
    if first != "yes" or len(lines) < 2 or not lines[1].strip():
        raise ParseError(f"cas: unexpected validate response: {text!r}")

    return AuthenticationResponse(user=lines[1].strip())


def _collect_attributes(block: Dict[str, Any], attributes: Dict[str, List[str]], skip=()) -> None:
    for key, value in block.items():
        if key.startswith("@") or key == "#text":
            continue
        name = _local_name(key)
        if name in skip:
            continue
        if name == "attribute":
            # <cas:attribute name="..." value="..."/>
            for item in _as_list(value):
                if isinstance(item, dict) and item.get("@name"):
                    attributes.setdefault(item["@name"], []).append(item.get("@value") or "")
            continue
        for item in _as_list(value):
            attributes.setdefault(name, []).append(_text(item))


def parse_service_response(body: bytes) -> Optional[AuthenticationResponse]:
    """
    Parse a CAS 2.0 / 3.0 ``serviceResponse`` document.

    Returns None for ``authenticationFailure``; raises ParseError when the
    document is not a usable service response.
    """
    try:
        data = xmltodict.parse(
            body, process_namespaces=True, namespaces={CAS_NAMESPACE: None}
        )
    except ExpatError as e:
        raise ParseError(f"cas: malformed service response: {e}") from e

    service_response = data.get("serviceResponse") if isinstance(data, dict) else None
    if not isinstance(service_response, dict):
        raise ParseError("cas: response has no serviceResponse element")

    if "authenticationFailure" in service_response:
        failure = service_response["authenticationFailure"]
        code = failure.get("@code") if isinstance(failure, dict) else None
        log.info("cas: authentication failure code=%s message=%s", code, _text(failure))
        return None

    success = service_response.get("authenticationSuccess")
    if not isinstance(success, dict):
        raise ParseError("cas: serviceResponse has neither success nor failure")

    user = _text(success.get("user"))
    if not user:
        raise ParseError("cas: authenticationSuccess carries no user")

    attributes: Dict[str, List[str]] = {}
    block = success.get("attributes")
    if not isinstance(block, dict):
        block = {}

    _collect_attributes(block, attributes, skip=RESERVED_ATTRIBUTES)
    # rubycas-server puts attributes straight under authenticationSuccess
    _collect_attributes(success, attributes, skip=_SUCCESS_FIELDS)

    proxies = success.get("proxies")
    proxy_list = []
    if isinstance(proxies, dict):
        proxy_list = [_text(p) for p in _as_list(proxies.get("proxy"))]

    return AuthenticationResponse(
        user=user,
        attributes=attributes,
        authentication_date=parse_timestamp(block.get("authenticationDate")),
        is_new_login=_parse_bool("isFromNewLogin", block.get("isFromNewLogin")),
        is_remembered_login=_parse_bool(
            "longTermAuthenticationRequestTokenUsed",
            block.get("longTermAuthenticationRequestTokenUsed"),
        ),
        member_of=[_text(m) for m in _as_list(block.get("memberOf"))],
        proxy_granting_ticket=_text(success.get("proxyGrantingTicket")) or None,
        proxies=proxy_list,
    )


_PARSERS = {
    ProtocolVersion.CAS1: parse_validate_response,
    ProtocolVersion.CAS2: parse_service_response,
    ProtocolVersion.CAS3: parse_service_response,
}


def parse_response(version: ProtocolVersion, body: bytes) -> Optional[AuthenticationResponse]:
    return _PARSERS[version](body)
