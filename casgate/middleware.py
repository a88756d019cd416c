import logging
import secrets
from typing import Optional

from fastapi import Request, Response, status
from fastapi.responses import PlainTextResponse, RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from .core.cas_client import CASClient, sanitise_service_url
from .core.context import CASContext, bind
from .core.errors import LogoutError, ParseError, SessionExistsError, ValidationError
from .core.logout import LOGOUT_FIELD, SingleLogoutProcessor, is_form_content_type, is_single_logout_request
from .core.store import is_expired

log = logging.getLogger(__name__)


def new_session_cookie() -> str:
    return secrets.token_urlsafe(32)


class CASMiddleware(BaseHTTPMiddleware):
    """
    Binds a CASContext to every request and resolves who is calling:

    1. a CAS single logout POST is handled here and never reaches the app;
    2. a known session cookie authenticates the request;
    3. otherwise a ``ticket`` query parameter is validated with the CAS
       server, and on success a new session and cookie are issued.

    Requests that end up unauthenticated still reach the app, which decides
    whether to call ``redirect_to_login``.
    """

    def __init__(
        self,
        app,
        client: CASClient,
        session_ttl: Optional[int] = None,
        redirect_after_validation: bool = True,
        abort_on_validation_error: bool = False,
        cookie_secure: bool = False,
    ):
        super().__init__(app)
        self.client = client
        self.session_ttl = session_ttl
        self.redirect_after_validation = redirect_after_validation
        self.abort_on_validation_error = abort_on_validation_error
        self.cookie_secure = cookie_secure
        self.logout = SingleLogoutProcessor(client.store, client.log)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        context = bind(request, self.client)

        payload = await self._logout_payload(request)
        if payload is not None:
            return self._single_logout(payload)

        if self._resume_session(request, context):
            return await call_next(request)

        ticket = request.query_params.get("ticket")
        if ticket:
            response = await self._validate(request, call_next, context, ticket)
        else:
            response = await call_next(request)

        # The cookie names a session that was logged out or expired
        if request.cookies.get(self.client.cookie_name) and context.session is None:
            response.delete_cookie(self.client.cookie_name)
        return response

    async def _logout_payload(self, request: Request) -> Optional[str]:
        content_type = request.headers.get("content-type")
        if request.method != "POST" or not is_form_content_type(content_type):
            return None
        # Read through body() first so the app can still read the form afterwards
        await request.body()
        form = await request.form()
        if not is_single_logout_request(request.method, content_type, form):
            return None
        return form[LOGOUT_FIELD]

    def _single_logout(self, payload: str) -> Response:
        try:
            self.logout.process(payload)
        except LogoutError as e:
            log.warning('single logout failed: %s', e)
            return PlainTextResponse(str(e), status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
        return PlainTextResponse("OK", status_code=status.HTTP_200_OK)

    def _resume_session(self, request: Request, context: CASContext) -> bool:
        cookie = request.cookies.get(self.client.cookie_name)
        if not cookie:
            return False
        store = self.client.store
        session = store.get(cookie)
        if session is None:
            return False
        if self.session_ttl and is_expired(session, self.session_ttl):
            log.info('session of %s expired', session.response.user)
            store.delete(cookie)
            return False
        context.authenticate(session)
        return True

    async def _validate(self, request: Request, call_next: RequestResponseEndpoint,
                        context: CASContext, ticket: str) -> Response:
        service_url = str(request.url)
        try:
            result = await self.client.validate_ticket(service_url, ticket)
        except (ValidationError, ParseError) as e:
            log.warning('CAS validation error for %s: %s', service_url, e)
            if self.abort_on_validation_error:
                return PlainTextResponse(str(e), status_code=status.HTTP_502_BAD_GATEWAY)
            return await call_next(request)

        if result is None:
            return await call_next(request)

        try:
            session = self.client.store.create(new_session_cookie(), ticket, result)
        except SessionExistsError as e:
            log.warning('not creating session: %s', e)
            return await call_next(request)
        context.authenticate(session)

        if self.redirect_after_validation:
            # Same URL without the spent ticket
            response = RedirectResponse(sanitise_service_url(service_url),
                                        status_code=status.HTTP_302_FOUND)
        else:
            response = await call_next(request)
        response.set_cookie(key=self.client.cookie_name, value=session.cookie,
                            httponly=True, samesite="lax", secure=self.cookie_secure,
                            max_age=self.session_ttl)
        log.info('cas validation succeeded for %s, session cookie issued', result.user)
        return response
