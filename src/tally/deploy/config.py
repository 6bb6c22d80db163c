"""Configuration model for tally's startup workflow.

``DeploymentConfig`` says which compose file to read, which services to
target, and whether to bring them up, tear them down, report their status
or just print the startup order. Every field can be overridden through
``TALLY_DEPLOY_*`` environment variables via :meth:`DeploymentConfig.from_env`.

Key Concepts:
    DeploymentConfig: compose file, project, mode, engine, targets.
    DeploymentMode: up, down, status, order.
    DeploymentEngine: native (tally drives ``docker`` directly) or
        compose (delegate to ``docker compose``).

Architecture Decisions:
    - from_env() classmethod: explicit env-var parsing; override
      precedence is kwargs > env vars > field defaults.
    - ``model_validator`` generates ``run_id`` so every pass is traceable
      in logs and container labels.

Tags:
    config, pydantic, deployment, environment
"""

from __future__ import annotations

import os
import re
import uuid
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, model_validator

from tally.deploy.compose import DEFAULT_COMPOSE_FILE

_PROJECT_NAME_RE = re.compile(r"[^a-z0-9_-]+")


class DeploymentMode(str, Enum):
    """Startup workflow operation."""

    UP = "up"  # Build and start services in dependency order
    DOWN = "down"  # Stop and remove the project's containers
    STATUS = "status"  # Report container state per service
    ORDER = "order"  # Print the startup order only


class DeploymentEngine(str, Enum):
    """Who talks to the container runtime."""

    NATIVE = "native"
    COMPOSE = "compose"


def normalize_project_name(name: str) -> str:
    """Lowercase and strip characters the runtime rejects in names."""
    cleaned = _PROJECT_NAME_RE.sub("", name.lower().replace(" ", "-"))
    return cleaned.strip("-_") or "tally"


class DeploymentConfig(BaseModel):
    """Configuration for one pass of the startup workflow.

    Example::

        config = DeploymentConfig(
            compose_file="docker-compose.yml",
            targets=["invoices"],
            mode=DeploymentMode.UP,
        )
    """

    # What to deploy
    compose_file: Path = Field(
        default=Path(DEFAULT_COMPOSE_FILE),
        description="Compose recipe to read",
    )
    targets: list[str] = Field(
        default_factory=list,
        description="Services to act on (their dependencies are included); empty = all",
    )
    mode: DeploymentMode = Field(
        default=DeploymentMode.UP,
        description="Workflow operation",
    )

    # Execution
    engine: DeploymentEngine = Field(
        default=DeploymentEngine.NATIVE,
        description="native = drive docker directly, compose = docker compose",
    )
    build: bool = Field(
        default=True,
        description="Build images for services with a build section",
    )
    timeout_seconds: int = Field(
        default=900,
        ge=1,
        description="Timeout for each runtime command",
    )

    # Networking
    project_name: str | None = Field(
        default=None,
        description="Project name (defaults to the compose name or directory name)",
    )
    network: str | None = Field(
        default=None,
        description="Network name (defaults to <project>_default)",
    )

    # Internal
    run_id: str = Field(default="", description="Unique run identifier (auto-generated)")

    @model_validator(mode="after")
    def _set_defaults(self) -> DeploymentConfig:
        if not self.run_id:
            self.run_id = uuid.uuid4().hex[:12]
        return self

    @property
    def base_dir(self) -> Path:
        """Directory relative paths in the compose file resolve against."""
        return self.compose_file.resolve().parent

    def resolve_project_name(self, compose_name: str | None = None) -> str:
        return normalize_project_name(
            self.project_name or compose_name or self.base_dir.name
        )

    def resolve_network(self, project: str) -> str:
        return self.network or f"{project}_default"

    @classmethod
    def from_env(cls, **overrides: Any) -> DeploymentConfig:
        """Create config from TALLY_DEPLOY_* environment variables."""
        env_map = {
            "compose_file": "TALLY_DEPLOY_COMPOSE_FILE",
            "targets": "TALLY_DEPLOY_TARGETS",
            "mode": "TALLY_DEPLOY_MODE",
            "engine": "TALLY_DEPLOY_ENGINE",
            "build": "TALLY_DEPLOY_BUILD",
            "timeout_seconds": "TALLY_DEPLOY_TIMEOUT_SECONDS",
            "project_name": "TALLY_DEPLOY_PROJECT_NAME",
            "network": "TALLY_DEPLOY_NETWORK",
        }

        values: dict[str, Any] = {}
        for field_name, env_var in env_map.items():
            env_val = os.environ.get(env_var)
            if env_val is not None:
                if field_name == "targets":
                    values[field_name] = [t.strip() for t in env_val.split(",") if t.strip()]
                elif field_name == "timeout_seconds":
                    values[field_name] = int(env_val)
                elif field_name == "build":
                    values[field_name] = env_val.lower() in ("true", "1", "yes")
                else:
                    values[field_name] = env_val

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


__all__ = [
    "DeploymentConfig",
    "DeploymentEngine",
    "DeploymentMode",
    "normalize_project_name",
]
