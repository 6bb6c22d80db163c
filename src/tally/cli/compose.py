"""
CLI: ``tally compose``: generate and check compose recipes.

Usage::

    tally compose generate                    # invoices + db stack to stdout
    tally compose generate -o docker-compose.yml
    tally compose check docker-compose.yml    # validate and print startup order
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.table import Table

from tally.cli.utils import console, fail
from tally.core.errors import TallyError
from tally.core.settings import DEFAULT_PORT

app = typer.Typer(no_args_is_help=True)


@app.command("generate")
def generate(
    app_name: str = typer.Option("invoices", "--app-name", help="Application service name."),
    app_port: int = typer.Option(DEFAULT_PORT, "--app-port", min=1, max=65535, help="Application container port."),
    host_port: int | None = typer.Option(None, "--host-port", min=1, max=65535, help="Published host port (default: same as --app-port)."),
    db_name: str = typer.Option("db", "--db-name", help="Database service name."),
    db_image: str = typer.Option("postgres:16-alpine", "--db-image", help="Database image."),
    env_file: str = typer.Option(".env", "--env-file", help="Env file both services read."),
    version: str = typer.Option("3.8", "--version-tag", help="Format version tag."),
    output: Path | None = typer.Option(None, "--output", "-o", help="Write to file instead of stdout."),
) -> None:
    """Generate the two-service invoicing stack."""
    from tally.deploy.compose import generate_stack_compose, write_compose_file

    try:
        content = generate_stack_compose(
            app_name=app_name,
            app_port=app_port,
            db_name=db_name,
            db_image=db_image,
            env_file=env_file,
            version=version,
            host_port=host_port,
        )
    except TallyError as exc:
        fail(exc)

    if output is None:
        typer.echo(content, nl=False)
        return
    write_compose_file(content, output)
    console.print(f"[green]✓ Wrote {output}[/]")


@app.command("check")
def check(
    path: Path = typer.Argument(Path("docker-compose.yml"), help="Compose file to check."),
) -> None:
    """Validate a compose file and print its startup order."""
    from tally.deploy.compose import load_compose

    try:
        recipe = load_compose(path).validate()
        order = recipe.startup_order()
    except TallyError as exc:
        fail(exc)

    table = Table(title=f"{path}" + (f" (version {recipe.version})" if recipe.version else ""))
    table.add_column("#", justify="right")
    table.add_column("Service", style="bold cyan")
    table.add_column("Source")
    table.add_column("Ports")
    table.add_column("Depends on")
    table.add_column("Env files")
    for index, name in enumerate(order, start=1):
        svc = recipe.services[name]
        source = f"build: {svc.build.context}" if svc.build else f"image: {svc.image}"
        table.add_row(
            str(index),
            name,
            source,
            ", ".join(p.render() for p in svc.ports) or "-",
            ", ".join(svc.depends_on) or "-",
            ", ".join(svc.env_file) or "-",
        )
    console.print(table)
    console.print(f"[green]✓ {len(order)} services, start order: {' → '.join(order)}[/]")
