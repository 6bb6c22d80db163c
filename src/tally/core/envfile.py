"""
Environment-file parsing.

Reads the ``KEY=value`` files that compose declarations reference through
``env_file``. Parsing is pure Python:

* blank lines and ``#`` comments are skipped
* ``export KEY=value`` is accepted
* single or double quotes around the value are stripped
* an unquoted `` #`` starts an inline comment

Later files override earlier ones when several are merged.

Tags:
    env-files, configuration, loader
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from pathlib import Path

from tally.core.errors import EnvFileError, MissingEnvFileError

_VAR_RE = re.compile(
    r"""
    ^                         # start of line
    \s*                       # optional leading whitespace
    (?:export\s+)?            # optional "export " prefix
    (?P<key>[A-Za-z_][\w.]*)  # variable name
    \s*=\s*                   # equals with optional whitespace
    (?P<value>.*)             # everything after =
    $                         # end of line
    """,
    re.VERBOSE,
)

ROOT_MARKERS = ("pyproject.toml", ".git", "docker-compose.yml", "compose.yaml")


def find_project_root(start: Path | None = None) -> Path:
    """Walk upward from *start* to the first directory holding a root marker.

    Falls back to *start* (or cwd) when no marker is found.
    """
    current = (start or Path.cwd()).resolve()
    for directory in (current, *current.parents):
        if any((directory / marker).exists() for marker in ROOT_MARKERS):
            return directory
    return current


def parse_env_lines(lines: Iterable[str]) -> dict[str, str]:
    """Parse ``KEY=value`` lines into a mapping."""
    result: dict[str, str] = {}
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        match = _VAR_RE.match(line)
        if match is None:
            continue
        key = match.group("key")
        value = match.group("value").strip()

        if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
            value = value[1:-1]
        elif " #" in value:
            value = value[: value.index(" #")].rstrip()

        result[key] = value
    return result


def parse_env_file(path: str | Path) -> dict[str, str]:
    """Parse a single env file.

    Raises
    ------
    MissingEnvFileError
        If *path* does not exist.
    EnvFileError
        If *path* exists but cannot be read.
    """
    path = Path(path)
    if not path.is_file():
        raise MissingEnvFileError(str(path))
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise EnvFileError(f"Cannot read environment file {path}", cause=exc).with_context(
            path=str(path)
        )
    return parse_env_lines(text.splitlines())


def load_env_files(paths: Iterable[str | Path]) -> dict[str, str]:
    """Parse and merge several env files. Later files override earlier values."""
    merged: dict[str, str] = {}
    for path in paths:
        merged.update(parse_env_file(path))
    return merged


__all__ = ["find_project_root", "load_env_files", "parse_env_file", "parse_env_lines"]
