"""
Shared pytest fixtures and configuration for tally tests.

This module provides:
- Settings cache reset between tests
- A fake ``docker`` binary on PATH (``subprocess.run`` is patched per test)
- A temporary project holding a compose file and an env file
- Skipping of ``docker``-marked tests when no daemon is reachable

Container runtime calls are mocked everywhere except in tests marked
``docker``.
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from unittest.mock import patch

import pytest

STACK_COMPOSE = """\
version: "3.8"
services:
  invoices:
    build: .
    ports:
      - "8080:8080"
    env_file: .env
    environment:
      TALLY_LOG_LEVEL: DEBUG
    depends_on:
      - db
  db:
    image: postgres:16-alpine
    env_file: .env
"""

STACK_ENV = """\
POSTGRES_USER=tally
POSTGRES_PASSWORD=secret
TALLY_LOG_LEVEL=INFO
"""


# =============================================================================
# Markers
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip ``docker`` tests when the runtime is unavailable."""
    docker_items = [item for item in items if item.get_closest_marker("docker")]
    if not docker_items:
        return

    from tally.deploy.container import ContainerManager

    if ContainerManager.is_runtime_available():
        return
    skip = pytest.mark.skip(reason="Docker daemon not available")
    for item in docker_items:
        item.add_marker(skip)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> Iterator[None]:
    from tally.core.settings import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def fake_docker() -> Iterator[str]:
    """Pretend ``docker`` is installed; tests patch ``subprocess.run`` themselves."""
    with patch("shutil.which", return_value="/usr/bin/docker"):
        yield "/usr/bin/docker"


@pytest.fixture
def stack_project(tmp_path: Path) -> Path:
    """A project directory with the invoices + db compose file and an env file."""
    (tmp_path / "docker-compose.yml").write_text(STACK_COMPOSE)
    (tmp_path / ".env").write_text(STACK_ENV)
    (tmp_path / "Dockerfile").write_text(
        'FROM python:3.12-slim\nWORKDIR /app\nCOPY . .\nRUN pip install .\nEXPOSE 8080\nCMD ["tally", "serve"]\n'
    )
    return tmp_path
