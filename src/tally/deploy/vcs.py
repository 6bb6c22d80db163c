"""Environment-file hygiene checks.

Credentials for local runs live in an env file (``.env`` by default) that
the compose recipe references through ``env_file``. That file must stay
out of version control: present on disk, matched by ``.gitignore`` and
never tracked.

``check_env_file`` asks git when the path is inside a work tree and falls
back to reading ``.gitignore`` patterns otherwise. ``ensure_ignored``
appends the entry to ``.gitignore`` when it is missing.

Tags:
    vcs, git, gitignore, env-files, credentials
"""

from __future__ import annotations

import fnmatch
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

from tally.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class EnvFileReport:
    """Where an env file stands with respect to version control."""

    path: str
    exists: bool
    ignored: bool
    tracked: bool
    method: str = "git"

    @property
    def ok(self) -> bool:
        return self.exists and self.ignored and not self.tracked

    def problems(self) -> list[str]:
        issues = []
        if not self.exists:
            issues.append(f"{self.path} does not exist (copy .env.example to create it)")
        if not self.ignored:
            issues.append(f"{self.path} is not listed in .gitignore")
        if self.tracked:
            issues.append(f"{self.path} is tracked by git; run: git rm --cached {self.path}")
        return issues


def _git(args: list[str], cwd: Path) -> subprocess.CompletedProcess[str] | None:
    git = shutil.which("git")
    if git is None:
        return None
    try:
        return subprocess.run(
            [git, *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=15,
        )
    except (subprocess.TimeoutExpired, OSError) as exc:
        logger.warning("git.unavailable", error=str(exc))
        return None


def _in_work_tree(root: Path) -> bool:
    result = _git(["rev-parse", "--is-inside-work-tree"], root)
    return result is not None and result.returncode == 0 and result.stdout.strip() == "true"


def gitignore_matches(gitignore: Path, relative: str) -> bool:
    """Whether *relative* is matched by the patterns in *gitignore*.

    Handles plain names, globs, leading-slash anchors and ``!`` negation,
    which is what ``.env`` style entries need. Last match wins.
    """
    if not gitignore.is_file():
        return False
    name = Path(relative).name
    ignored = False
    for raw in gitignore.read_text(encoding="utf-8").splitlines():
        pattern = raw.strip()
        if not pattern or pattern.startswith("#"):
            continue
        negate = pattern.startswith("!")
        if negate:
            pattern = pattern[1:]
        pattern = pattern.rstrip("/")
        if pattern.startswith("/"):
            matched = fnmatch.fnmatch(relative, pattern[1:])
        elif "/" in pattern:
            matched = fnmatch.fnmatch(relative, pattern)
        else:
            matched = fnmatch.fnmatch(name, pattern)
        if matched:
            ignored = not negate
    return ignored


def check_env_file(path: str | Path = ".env", repo_root: str | Path | None = None) -> EnvFileReport:
    """Report whether *path* exists, is ignored and is untracked."""
    env_path = Path(path)
    if repo_root is not None:
        root = Path(repo_root).resolve()
        absolute = env_path if env_path.is_absolute() else root / env_path
    else:
        absolute = env_path.resolve()
        root = absolute.parent
    try:
        relative = absolute.resolve().relative_to(root).as_posix()
    except ValueError:
        relative = env_path.name

    exists = absolute.is_file()

    if _in_work_tree(root):
        ignore = _git(["check-ignore", "--quiet", "--no-index", relative], root)
        tracked = _git(["ls-files", "--error-unmatch", relative], root)
        report = EnvFileReport(
            path=str(path),
            exists=exists,
            ignored=ignore is not None and ignore.returncode == 0,
            tracked=tracked is not None and tracked.returncode == 0,
        )
    else:
        report = EnvFileReport(
            path=str(path),
            exists=exists,
            ignored=gitignore_matches(root / ".gitignore", relative),
            tracked=False,
            method="gitignore",
        )

    logger.debug("envfile.checked", path=str(path), ok=report.ok, method=report.method)
    return report


def ensure_ignored(gitignore: str | Path = ".gitignore", entry: str = ".env") -> bool:
    """Append *entry* to *gitignore* unless already matched. Returns True if changed."""
    gitignore = Path(gitignore)
    if gitignore_matches(gitignore, entry):
        return False

    existing = gitignore.read_text(encoding="utf-8") if gitignore.is_file() else ""
    prefix = "" if not existing or existing.endswith("\n") else "\n"
    gitignore.parent.mkdir(parents=True, exist_ok=True)
    with gitignore.open("a", encoding="utf-8") as fh:
        fh.write(f"{prefix}# local credentials\n{entry}\n")
    logger.info("gitignore.updated", path=str(gitignore), entry=entry)
    return True


__all__ = ["EnvFileReport", "check_env_file", "ensure_ignored", "gitignore_matches"]
