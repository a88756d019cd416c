import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import PlainTextResponse

from .config import Settings, get_settings
from .core.cas_client import CASClient
from .core.directory import DirectoryClient
from .core.errors import AttributeConversionError, DirectoryError, NoClientBoundError
from .core.sql_store import SqlSessionStore
from .core.store import MemorySessionStore
from .database import create_db_and_tables, make_engine
from .middleware import CASMiddleware

log = logging.getLogger(__name__)


def build_client(settings: Settings) -> CASClient:
    if settings.session_store == "memory":
        store = MemorySessionStore()
    else:
        store = SqlSessionStore(make_engine(settings.session_store))

    directory = None
    if settings.directory_url:
        directory = DirectoryClient(settings.directory_url, timeout=settings.timeout)

    return CASClient(
        settings.server_url,
        settings.protocol_version,
        store=store,
        timeout=settings.timeout,
        cookie_name=settings.cookie_name,
        directory=directory,
    )


async def _evict_periodically(client: CASClient, ttl: int, interval: Optional[float] = None):
    """Drop sessions older than ``ttl`` seconds, every ``interval`` (default ``ttl``) seconds."""
    while True:
        await asyncio.sleep(interval or ttl)
        try:
            client.store.evict_expired(ttl)
        except Exception:
            # Try again next round
            log.exception('session eviction failed')


def create_app(settings: Optional[Settings] = None, client: Optional[CASClient] = None) -> FastAPI:
    settings = settings or get_settings()
    client = client or build_client(settings)

    # Lifespan event to create tables and start session eviction
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if isinstance(client.store, SqlSessionStore):
            create_db_and_tables(client.store.engine)
        evictor = None
        if settings.session_ttl:
            evictor = asyncio.create_task(
                _evict_periodically(client, settings.session_ttl, settings.eviction_interval))
        yield
        if evictor is not None:
            evictor.cancel()
            with suppress(asyncio.CancelledError):
                await evictor

    app = FastAPI(title="casgate", version="1.0", lifespan=lifespan)
    app.state.cas_client = client

    app.add_middleware(
        CASMiddleware,
        client=client,
        session_ttl=settings.session_ttl,
        redirect_after_validation=settings.redirect_after_validation,
        abort_on_validation_error=settings.abort_on_validation_error,
        cookie_secure=settings.cookie_secure,
    )

    @app.exception_handler(NoClientBoundError)
    async def no_client_bound(request: Request, exc: NoClientBoundError):
        log.error('%s: %s %s', exc, request.method, request.url)
        return PlainTextResponse(str(exc), status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

    @app.exception_handler(AttributeConversionError)
    async def bad_attribute(request: Request, exc: AttributeConversionError):
        return PlainTextResponse(str(exc), status_code=status.HTTP_400_BAD_REQUEST)

    @app.exception_handler(DirectoryError)
    async def directory_failed(request: Request, exc: DirectoryError):
        return PlainTextResponse(str(exc), status_code=status.HTTP_502_BAD_GATEWAY)

    # Register Routers
    from .routers import sso
    app.include_router(sso.router)

    @app.get("/")
    async def root():
        return {"message": "casgate CAS client"}

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("casgate.main:app", host="0.0.0.0", port=8000, reload=True)
