"""
CLI utility helpers: consoles, error reporting and result rendering.
"""

from __future__ import annotations

from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from tally.core.errors import TallyError
from tally.deploy.results import DeploymentResult, OverallStatus

console = Console()
err_console = Console(stderr=True)

_STATUS_STYLE = {
    "started": "green",
    "running": "green",
    "removed": "dim",
    "not_started": "yellow",
    "failed": "red",
    "exited": "red",
    "not_found": "dim",
}


def fail(error: TallyError | str) -> NoReturn:
    """Print *error* to stderr and exit with code 1."""
    if isinstance(error, TallyError):
        err_console.print(f"[bold red]Error[/bold red] ({error.category.value}): {error.message}", soft_wrap=True)
    else:
        err_console.print(f"[bold red]Error[/bold red]: {error}", soft_wrap=True)
    raise typer.Exit(code=1)


def print_deployment_result(result: DeploymentResult) -> None:
    """Render a workflow result as a table plus a one-line summary."""
    table = Table(title=f"{result.project or 'tally'} ({result.mode})")
    table.add_column("#", justify="right")
    table.add_column("Service", style="bold cyan")
    table.add_column("Image")
    table.add_column("Container")
    table.add_column("Ports")
    table.add_column("Status")

    for svc in result.services:
        style = _STATUS_STYLE.get(svc.status, "white")
        table.add_row(
            str(svc.order),
            svc.name,
            svc.image or "-",
            svc.container_name or "-",
            ", ".join(svc.ports) or "-",
            f"[{style}]{svc.status}[/]",
        )

    console.print(table)
    colour = "green" if result.overall_status == OverallStatus.PASSED else "red"
    console.print(f"[{colour}]{result.overall_status.value}[/] {result.summary}")
    if result.error:
        err_console.print(f"[red]✗ {result.error}[/]")
