"""
CLI: ``tally env``: keep the local env file out of version control.
"""

from __future__ import annotations

from pathlib import Path

import typer

from tally.cli.utils import console, err_console

app = typer.Typer(no_args_is_help=True)


@app.command("check")
def check(
    path: Path = typer.Argument(Path(".env"), help="Env file to check."),
    repo_root: Path | None = typer.Option(None, "--repo-root", help="Repository root (default: the file's directory)."),
) -> None:
    """Check that the env file exists, is ignored and is not tracked."""
    from tally.deploy.vcs import check_env_file

    report = check_env_file(path, repo_root=repo_root)
    if report.ok:
        console.print(
            f"[green]✓ {report.path} is present and excluded from version control[/]",
            soft_wrap=True,
        )
        return
    for problem in report.problems():
        err_console.print(f"[red]✗ {problem}[/]", soft_wrap=True)
    raise typer.Exit(code=1)


@app.command("ignore")
def ignore(
    gitignore: Path = typer.Argument(Path(".gitignore"), help="Ignore file to update."),
    entry: str = typer.Option(".env", "--entry", help="Pattern to add."),
) -> None:
    """Add the env file to .gitignore if it is not already there."""
    from tally.deploy.vcs import ensure_ignored

    if ensure_ignored(gitignore, entry):
        console.print(f"[green]✓ Added {entry} to {gitignore}[/]", soft_wrap=True)
    else:
        console.print(f"[dim]{entry} already ignored by {gitignore}[/dim]", soft_wrap=True)
