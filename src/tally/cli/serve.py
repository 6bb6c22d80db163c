"""
CLI: ``tally serve``: run the invoicing HTTP service.
"""

from __future__ import annotations

import typer

from tally.cli.utils import console, fail
from tally.core.errors import TallyError
from tally.core.logging import configure_logging
from tally.core.settings import get_settings


def serve(
    host: str | None = typer.Option(None, "--host", "-h", help="Bind address (default: TALLY_HOST or 0.0.0.0)"),
    port: int | None = typer.Option(None, "--port", "-p", min=1, max=65535, help="Bind port (default: TALLY_PORT or 8080)"),
    log_level: str | None = typer.Option(None, "--log-level", help="Log level (default: TALLY_LOG_LEVEL or INFO)"),
) -> None:
    """Start the invoicing service. Every path answers with the welcome text."""
    import uvicorn

    from tally.service.app import create_app

    settings = get_settings().model_copy(
        update={
            k: v
            for k, v in {"host": host, "port": port, "log_level": log_level}.items()
            if v is not None
        }
    )
    try:
        configure_logging(
            level=settings.log_level,
            json_format=settings.log_json,
            service="tally-invoices",
        )
    except TallyError as exc:
        fail(exc)

    console.print(f"[bold green]Starting tally invoices[/bold green] on {settings.host}:{settings.port}")
    uvicorn.run(
        create_app(settings=settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        access_log=False,
    )
