"""
CLI: ``tally build`` and ``tally run``: the two local container commands.

Usage::

    tally build . --tag invoices                     # docker build -t invoices .
    tally build . -t invoices -f Dockerfile.multistage
    tally run invoices --publish 8080:8080           # docker run -d -p 8080:8080 invoices
"""

from __future__ import annotations

from pathlib import Path

import typer

from tally.cli.utils import console, fail
from tally.core.envfile import load_env_files
from tally.core.errors import TallyError


def build(
    context: Path = typer.Argument(Path("."), help="Build context directory."),
    tag: str = typer.Option(..., "--tag", "-t", help="Image name to build."),
    file: Path | None = typer.Option(None, "--file", "-f", help="Recipe file (default: CONTEXT/Dockerfile)."),
    target: str | None = typer.Option(None, "--target", help="Stop at this named stage."),
    build_arg: list[str] = typer.Option([], "--build-arg", help="KEY=VALUE build argument. Repeatable."),
) -> None:
    """Build a named image from a recipe."""
    from tally.deploy.container import ContainerManager

    args: dict[str, str] = {}
    for item in build_arg:
        key, sep, value = item.partition("=")
        if not sep or not key:
            fail(f"Invalid --build-arg {item!r}; expected KEY=VALUE")
        args[key] = value

    try:
        info = ContainerManager().build_image(
            str(context),
            tag=tag,
            dockerfile=str(file) if file else None,
            target=target,
            build_args=args,
        )
    except TallyError as exc:
        fail(exc)

    console.print(f"[green]✓ Built {info.tag}[/] [dim]{info.image_id or ''}[/dim]")


def run(
    image: str = typer.Argument(..., help="Image to run."),
    publish: list[str] = typer.Option(
        [], "--publish", "-p", help="HOST:CONTAINER port mapping. Repeatable.",
    ),
    name: str | None = typer.Option(None, "--name", help="Container name."),
    env_file: list[Path] = typer.Option([], "--env-file", help="Environment file. Repeatable."),
    env: list[str] = typer.Option([], "--env", "-e", help="KEY=VALUE variable. Repeatable."),
) -> None:
    """Run a named image, mapping host ports to container ports."""
    from tally.deploy.compose import PortMapping
    from tally.deploy.container import ContainerManager

    try:
        ports = [PortMapping.parse(p) for p in publish]
        environment = load_env_files(env_file)
        for item in env:
            key, _, value = item.partition("=")
            environment[key] = value
        info = ContainerManager().run_image(image, name=name, ports=ports, env=environment)
    except TallyError as exc:
        fail(exc)

    console.print(f"[green]✓ Started {info.container_name}[/] from {info.image}")
    for mapping in info.ports:
        url = info.host_url(mapping.container_port)
        if url:
            console.print(f"  {mapping.render()}  →  {url}")
