"""FastAPI application factory for the ChatGPT web proxy."""
from __future__ import annotations

import functools
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from aiohttp import ClientSession, ClientTimeout
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import ProxySettings
from .credentials import CredentialStore
from .refresh import CredentialRefresher, fetch_credentials
from .routes import error_response, not_found_response, router
from .upstream import USER_AGENT

logger = logging.getLogger(__name__)


def create_app(
    settings: ProxySettings | None = None,
    *,
    credentials: CredentialStore | None = None,
    http_client: Optional[ClientSession] = None,
) -> FastAPI:
    """Build the FastAPI app with its router, credential store and refresh task.

    ``http_client`` is used as-is and left open when supplied; otherwise the
    lifespan owns a session for the life of the app.
    """

    settings = settings or ProxySettings()
    credentials = credentials or CredentialStore()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned: Optional[ClientSession] = None
        if app.state.http_client is None:
            owned = ClientSession(
                headers={"User-Agent": USER_AGENT},
                timeout=ClientTimeout(total=None, sock_read=None),
            )
            app.state.http_client = owned

        refresher: Optional[CredentialRefresher] = None
        if settings.refresh_enabled:
            refresher = CredentialRefresher(
                credentials,
                functools.partial(fetch_credentials, app.state.http_client, settings.chat_requirements_url),
                interval=settings.refresh_interval,
                error_interval=settings.error_interval,
            )
            refresher.start()
            logger.info("Started session refresh every %.0fs", settings.refresh_interval)
        app.state.refresher = refresher
        try:
            yield
        finally:
            if refresher is not None:
                await refresher.stop()
            if owned is not None and not owned.closed:
                await owned.close()
                app.state.http_client = None

    app = FastAPI(
        title="ChatGPT Web Proxy",
        description="OpenAI-compatible chat completions backed by the anonymous ChatGPT web backend.",
        version="0.1.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    app.include_router(router)

    app.state.settings = settings
    app.state.credentials = credentials
    app.state.http_client = http_client
    app.state.refresher = None

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        # Unknown paths and wrong methods on the known path both get the fixed 404 body.
        if exc.status_code in (404, 405):
            return not_found_response(settings.support_url)
        return error_response(str(exc.detail), exc.status_code, settings.support_url)

    return app
