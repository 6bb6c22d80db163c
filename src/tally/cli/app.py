"""
Root Typer application for the tally CLI.

Sub-command modules import their heavy dependencies (FastAPI, uvicorn,
the deploy package) inside the command body, so ``tally --help`` stays fast.
"""

from __future__ import annotations

import typer
from typer import Typer

from tally import __version__
from tally.core.logging import configure_logging

app = Typer(
    name="tally",
    help="tally: the invoicing service and its container toolchain.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"tally {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log runtime commands to stderr."),
) -> None:
    """tally CLI: serve, build, run and compose the invoicing service."""
    configure_logging(level="DEBUG" if verbose else "WARNING", json_format=False)


# ── Sub-command registration ─────────────────────────────────────────────

from tally.cli import compose as compose_cmds  # noqa: E402
from tally.cli import container as container_cmds  # noqa: E402
from tally.cli import deploy as deploy_cmds  # noqa: E402
from tally.cli import env as env_cmds  # noqa: E402
from tally.cli import recipe as recipe_cmds  # noqa: E402
from tally.cli.serve import serve  # noqa: E402

app.command("serve")(serve)
app.command("build")(container_cmds.build)
app.command("run")(container_cmds.run)

app.command("up")(deploy_cmds.up)
app.command("down")(deploy_cmds.down)
app.command("status")(deploy_cmds.status)
app.command("order")(deploy_cmds.order)

app.add_typer(recipe_cmds.app, name="recipe", help="Write and check build recipes.")
app.add_typer(compose_cmds.app, name="compose", help="Generate and check compose recipes.")
app.add_typer(env_cmds.app, name="env", help="Env file version-control checks.")
