"""
CLI: ``tally up`` / ``down`` / ``status`` / ``order``: the startup workflow.

Usage::

    tally order                         # print the startup order
    tally up                            # build and start every service in order
    tally up --target invoices          # invoices plus what it depends on
    tally up --engine compose           # delegate to docker compose
    tally status --json
    tally down
"""

from __future__ import annotations

import os
from pathlib import Path

import typer

from tally.cli.utils import console, err_console, fail, print_deployment_result
from tally.core.errors import TallyError
from tally.deploy.results import OverallStatus

_FILE_HELP = "Compose file (default: TALLY_DEPLOY_COMPOSE_FILE, else the first compose file found in the current directory)."


def _execute(
    mode: str,
    compose_file: Path | None,
    project: str | None,
    engine: str | None,
    target: list[str] | None = None,
    build: bool | None = None,
    json_out: bool = False,
) -> None:
    from tally.deploy.compose import find_compose_file
    from tally.deploy.config import DeploymentConfig
    from tally.deploy.workflow import run_deployment

    if compose_file is None and "TALLY_DEPLOY_COMPOSE_FILE" not in os.environ:
        compose_file = find_compose_file(Path.cwd())

    try:
        config = DeploymentConfig.from_env(
            mode=mode,
            compose_file=compose_file,
            project_name=project,
            engine=engine,
            targets=target or None,
            build=build,
        )
    except ValueError as exc:
        fail(str(exc))

    if not config.compose_file.is_file():
        fail(f"Compose file not found: {config.compose_file}")

    if not json_out and mode == "up":
        err_console.print(f"[bold green]▲ up[/] {config.compose_file} (run {config.run_id})")

    try:
        result = run_deployment(config)
    except TallyError as exc:
        fail(exc)

    if json_out:
        typer.echo(result.model_dump_json(indent=2))
    elif mode == "order":
        for index, name in enumerate(result.order, start=1):
            console.print(f"{index}. {name}")
        if result.error:
            err_console.print(f"[red]✗ {result.error}[/]")
    else:
        print_deployment_result(result)

    if result.error or result.overall_status == OverallStatus.FAILED:
        raise typer.Exit(code=1)


def up(
    compose_file: Path | None = typer.Option(None, "--file", "-f", help=_FILE_HELP),
    project: str | None = typer.Option(None, "--project-name", help="Project name."),
    engine: str | None = typer.Option(None, "--engine", help="native (default) or compose."),
    target: list[str] = typer.Option([], "--target", "-t", help="Service to start (with its dependencies). Repeatable."),
    build: bool | None = typer.Option(None, "--build/--no-build", help="Build images first (default: build)."),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Build and start services in dependency order.

    A service counts as started once its container is launched; nothing
    waits for it to become ready. The first failure stops the pass.
    """
    _execute("up", compose_file, project, engine, target, build, json_out)


def down(
    compose_file: Path | None = typer.Option(None, "--file", "-f", help=_FILE_HELP),
    project: str | None = typer.Option(None, "--project-name", help="Project name."),
    engine: str | None = typer.Option(None, "--engine", help="native (default) or compose."),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Stop and remove the project's containers (reverse order)."""
    _execute("down", compose_file, project, engine, json_out=json_out)


def status(
    compose_file: Path | None = typer.Option(None, "--file", "-f", help=_FILE_HELP),
    project: str | None = typer.Option(None, "--project-name", help="Project name."),
    engine: str | None = typer.Option(None, "--engine", help="native (default) or compose."),
    target: list[str] = typer.Option([], "--target", "-t", help="Limit to these services. Repeatable."),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Show the runtime state of each service."""
    _execute("status", compose_file, project, engine, target, json_out=json_out)


def order(
    compose_file: Path | None = typer.Option(None, "--file", "-f", help=_FILE_HELP),
    target: list[str] = typer.Option([], "--target", "-t", help="Limit to these services. Repeatable."),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Print the startup order without touching the runtime."""
    _execute("order", compose_file, None, None, target, json_out=json_out)
