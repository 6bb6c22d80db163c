"""
CLI: ``tally recipe``: write and check build recipes.

Usage::

    tally recipe render                       # single-stage Dockerfile to stdout
    tally recipe render --two-phase -o Dockerfile.multistage
    tally recipe check Dockerfile.multistage  # what reaches the final image
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.table import Table

from tally.cli.utils import console, fail
from tally.core.errors import TallyError
from tally.core.settings import DEFAULT_PORT

app = typer.Typer(no_args_is_help=True)

DEFAULT_BASE_IMAGE = "python:3.12-slim"
DEFAULT_WORKDIR = "/app"
VENV_PATH = "/opt/venv"


@app.command("render")
def render(
    two_phase: bool = typer.Option(False, "--two-phase", help="Builder stage plus a minimal runtime stage."),
    base_image: str = typer.Option(DEFAULT_BASE_IMAGE, "--base-image", help="Base (builder) image."),
    runtime_image: str | None = typer.Option(None, "--runtime-image", help="Runtime image (two-phase only)."),
    workdir: str = typer.Option(DEFAULT_WORKDIR, "--workdir", help="Working directory in the image."),
    port: int = typer.Option(DEFAULT_PORT, "--port", min=1, max=65535, help="Exposed port."),
    output: Path | None = typer.Option(None, "--output", "-o", help="Write to file instead of stdout."),
) -> None:
    """Render the service's build recipe."""
    from tally.deploy.recipe import single_stage, two_phase as make_two_phase, write_recipe

    cmd = ["tally", "serve"]
    if two_phase:
        recipe = make_two_phase(
            base_image,
            runtime_image or base_image,
            workdir=workdir,
            build_command=f"python -m venv {VENV_PATH} && {VENV_PATH}/bin/pip install --no-cache-dir .",
            artifact=VENV_PATH,
            runtime_env={"PATH": f"{VENV_PATH}/bin:$PATH"},
            port=port,
            cmd=cmd,
        )
    else:
        recipe = single_stage(
            base_image,
            workdir=workdir,
            build_command="pip install --no-cache-dir .",
            port=port,
            cmd=cmd,
        )

    if output is None:
        typer.echo(recipe.render(), nl=False)
        return
    write_recipe(recipe, output)
    console.print(f"[green]✓ Wrote {output}[/]")


@app.command("check")
def check(
    path: Path = typer.Argument(Path("Dockerfile"), help="Recipe file to check."),
) -> None:
    """Parse and validate a recipe; list what reaches the final image."""
    from tally.deploy.recipe import load_recipe

    try:
        recipe = load_recipe(path).validate_recipe()
    except TallyError as exc:
        fail(exc)

    table = Table(title=f"{path}")
    table.add_column("Stage", style="bold cyan")
    table.add_column("Base image")
    table.add_column("Workdir")
    table.add_column("Expose")
    table.add_column("Start command")
    for index, stage in enumerate(recipe.stages):
        table.add_row(
            stage.name or str(index),
            stage.base_image,
            stage.workdir or "-",
            ", ".join(str(p) for p in stage.expose) or "-",
            str(stage.cmd) if stage.cmd is not None else "-",
        )
    console.print(table)

    kind = "two-phase" if recipe.is_multi_stage else "single-stage"
    console.print(f"[green]✓ {kind} recipe is valid[/]")
    if recipe.is_multi_stage:
        console.print("Final image receives from earlier stages:")
        for source in recipe.runtime_sources():
            console.print(f"  {source}")
