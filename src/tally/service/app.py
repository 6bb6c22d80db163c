"""
FastAPI application factory for the invoicing service.

The service is deliberately tiny: one catch-all route answers every path
and every HTTP method, standard or not, with the same plain-text welcome message and status 200.
It is the process the build recipes package and the compose recipe starts.

``create_app()`` is the single composition root; ``main()`` runs it under
uvicorn and is what the container's start command invokes.

Tags:
    tally, service, http, FastAPI, uvicorn
"""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse
from starlette.requests import Request

from tally import __version__
from tally.core.logging import configure_logging, get_logger
from tally.core.settings import TallySettings, get_settings
from tally.service.middleware import RequestLogMiddleware


def create_app(*, settings: TallySettings | None = None) -> FastAPI:
    """Build the invoicing service application.

    Parameters
    ----------
    settings : TallySettings | None
        Override settings (useful for testing). When ``None`` the cached
        singleton from :func:`get_settings` is used.
    """
    settings = settings or get_settings()

    # No docs/openapi routes: every path must reach the welcome handler.
    app = FastAPI(
        title="tally",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.settings = settings
    app.add_middleware(RequestLogMiddleware)

    welcome = settings.welcome_text

    async def welcome_handler(request: Request) -> PlainTextResponse:
        return PlainTextResponse(welcome, status_code=200)

    # A plain Starlette route has no method filter; "{path:path}" also matches "/".
    app.add_route("/{path:path}", welcome_handler, include_in_schema=False)

    return app


def main() -> None:
    """Run the service with uvicorn on the configured host and port."""
    import uvicorn

    settings = get_settings()
    configure_logging(
        level=settings.log_level,
        json_format=settings.log_json,
        service="tally-invoices",
    )
    get_logger(__name__).info("service.starting", host=settings.host, port=settings.port)
    uvicorn.run(
        create_app(settings=settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        access_log=False,
    )
