from fastapi import APIRouter, HTTPException, status, Request
from fastapi.responses import RedirectResponse

from ..core import context as cas

router = APIRouter()


def _absolute(request: Request, next_url: str) -> str:
    # Only same-site paths; anything else goes back to the root
    if not next_url.startswith("/") or next_url.startswith("//"):
        next_url = "/"
    return str(request.base_url).rstrip("/") + next_url


@router.get("/login/sso")
async def sso_login(request: Request, next_url: str = "/"):
    """
    Handle CAS Login Redirect.
    The CAS server redirects back to this same URL with a ticket, which
    CASMiddleware validates before we get here again.
    """
    if cas.is_authenticated(request):
        return RedirectResponse(_absolute(request, next_url), status_code=status.HTTP_302_FOUND)
    return cas.redirect_to_login(request)


@router.get("/logout/sso")
async def sso_logout(request: Request, next_url: str = "/"):
    """
    Logout locally and from CAS.
    """
    return cas.redirect_to_logout(request, _absolute(request, next_url))


@router.get("/session")
async def current_session(request: Request):
    if not cas.is_authenticated(request):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    date = cas.authentication_date(request)
    return {
        "user": cas.username(request),
        "attributes": cas.attributes(request),
        "authentication_date": date.isoformat() if date else None,
        "is_new_login": cas.is_new_login(request),
        "is_remembered_login": cas.is_remembered_login(request),
        "member_of": cas.member_of(request),
    }


@router.get("/session/roles")
async def current_roles(request: Request):
    if not cas.is_authenticated(request):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    roles = await cas.role_list(request)
    return [role.model_dump() for role in roles]


@router.get("/session/uid")
async def current_uid(request: Request):
    if not cas.is_authenticated(request):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return {"uid": cas.current_user_id(request)}
