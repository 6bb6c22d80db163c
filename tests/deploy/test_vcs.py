"""Tests for tally.deploy.vcs (env file kept out of version control)."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from tally.deploy.vcs import EnvFileReport, check_env_file, ensure_ignored, gitignore_matches


def _git_responses(ignored: bool, tracked: bool):
    def run(cmd, **kwargs):
        sub = cmd[1]
        if sub == "rev-parse":
            return MagicMock(returncode=0, stdout="true\n", stderr="")
        if sub == "check-ignore":
            return MagicMock(returncode=0 if ignored else 1, stdout="", stderr="")
        if sub == "ls-files":
            return MagicMock(returncode=0 if tracked else 1, stdout="", stderr="")
        raise AssertionError(f"unexpected git call: {cmd}")

    return run


class TestEnvFileReport:
    def test_ok(self):
        assert EnvFileReport(".env", exists=True, ignored=True, tracked=False).ok

    @pytest.mark.parametrize(
        ("exists", "ignored", "tracked"),
        [(False, True, False), (True, False, False), (True, True, True)],
    )
    def test_not_ok(self, exists, ignored, tracked):
        report = EnvFileReport(".env", exists=exists, ignored=ignored, tracked=tracked)
        assert not report.ok
        assert len(report.problems()) == 1

    def test_tracked_problem_suggests_fix(self):
        report = EnvFileReport(".env", exists=True, ignored=True, tracked=True)
        assert "git rm --cached .env" in report.problems()[0]


class TestGitignoreMatches:
    @pytest.mark.parametrize(
        ("content", "path", "expected"),
        [
            (".env\n", ".env", True),
            ("/.env\n", ".env", True),
            ("*.env\n", "prod.env", True),
            (".env\n", "config/.env", True),
            ("/.env\n", "config/.env", False),
            (".env*\n!.env.example\n", ".env.example", False),
            (".env*\n!.env.example\n", ".env.local", True),
            ("# .env\n", ".env", False),
            ("", ".env", False),
        ],
    )
    def test_patterns(self, tmp_path, content, path, expected):
        gitignore = tmp_path / ".gitignore"
        gitignore.write_text(content)
        assert gitignore_matches(gitignore, path) is expected

    def test_missing_gitignore(self, tmp_path):
        assert gitignore_matches(tmp_path / ".gitignore", ".env") is False


class TestCheckEnvFile:
    def test_fallback_without_git(self, tmp_path):
        (tmp_path / ".env").write_text("A=1\n")
        (tmp_path / ".gitignore").write_text(".env\n")
        with patch("shutil.which", return_value=None):
            report = check_env_file(".env", repo_root=tmp_path)
        assert report.ok
        assert report.method == "gitignore"

    def test_fallback_not_ignored(self, tmp_path):
        (tmp_path / ".env").write_text("A=1\n")
        with patch("shutil.which", return_value=None):
            report = check_env_file(tmp_path / ".env")
        assert not report.ignored
        assert not report.ok

    def test_missing_file(self, tmp_path):
        (tmp_path / ".gitignore").write_text(".env\n")
        with patch("shutil.which", return_value=None):
            report = check_env_file(".env", repo_root=tmp_path)
        assert not report.exists
        assert report.ignored

    @pytest.mark.parametrize(
        ("ignored", "tracked", "ok"),
        [(True, False, True), (False, False, False), (True, True, False)],
    )
    def test_with_git(self, tmp_path, ignored, tracked, ok):
        (tmp_path / ".env").write_text("A=1\n")
        with patch("shutil.which", return_value="/usr/bin/git"), patch(
            "subprocess.run", side_effect=_git_responses(ignored, tracked)
        ) as mock_run:
            report = check_env_file(".env", repo_root=tmp_path)

        assert report.method == "git"
        assert report.ignored is ignored
        assert report.tracked is tracked
        assert report.ok is ok
        check_ignore = next(c for c in mock_run.call_args_list if c.args[0][1] == "check-ignore")
        assert check_ignore.args[0][-1] == ".env"
        assert check_ignore.kwargs["cwd"] == tmp_path.resolve()


class TestEnsureIgnored:
    def test_creates_gitignore(self, tmp_path):
        gitignore = tmp_path / ".gitignore"
        assert ensure_ignored(gitignore) is True
        assert ".env" in gitignore.read_text().splitlines()

    def test_appends_with_newline(self, tmp_path):
        gitignore = tmp_path / ".gitignore"
        gitignore.write_text("__pycache__/")
        assert ensure_ignored(gitignore) is True
        lines = gitignore.read_text().splitlines()
        assert lines[0] == "__pycache__/"
        assert lines[-1] == ".env"

    def test_idempotent(self, tmp_path):
        gitignore = tmp_path / ".gitignore"
        ensure_ignored(gitignore)
        before = gitignore.read_text()
        assert ensure_ignored(gitignore) is False
        assert gitignore.read_text() == before

    def test_already_covered_by_glob(self, tmp_path):
        gitignore = tmp_path / ".gitignore"
        gitignore.write_text(".env*\n")
        assert ensure_ignored(gitignore, ".env") is False
