"""Result models for the startup workflow.

Every workflow pass (``up``, ``down``, ``status``, ``order``) returns a
:class:`DeploymentResult` that serializes with ``model_dump_json()`` for
the CLI's ``--json`` flag. Callers check
``result.overall_status == OverallStatus.PASSED`` instead of parsing output.

Per-service states are deliberately few. The workflow itself only knows
``not_started`` and ``started`` (container process launched) plus
``failed`` and ``removed``; ``status`` passes through whatever the runtime
reports (``running``, ``exited``, ``created``, ``not_found``...).

Tags:
    results, models, pydantic, deployment, status
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field

NOT_STARTED = "not_started"
STARTED = "started"
FAILED = "failed"
REMOVED = "removed"

_OK_STATES = frozenset({STARTED, "running", REMOVED})


class OverallStatus(str, Enum):
    """Overall status of a workflow pass."""

    PASSED = "PASSED"
    FAILED = "FAILED"
    PARTIAL = "PARTIAL"
    PENDING = "PENDING"


class ServiceStatus(BaseModel):
    """State of a single service within a pass."""

    name: str
    order: int = 0
    image: str | None = None
    container_name: str | None = None
    container_id: str | None = None
    ports: list[str] = Field(default_factory=list)
    status: str = NOT_STARTED
    started_at: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status in _OK_STATES


class DeploymentResult(BaseModel):
    """Result of one workflow pass."""

    run_id: str
    mode: str  # up, down, status, order
    project: str | None = None
    network: str | None = None
    order: list[str] = Field(default_factory=list)
    services: list[ServiceStatus] = Field(default_factory=list)
    overall_status: OverallStatus = OverallStatus.PENDING
    error: str | None = None
    started_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    completed_at: str | None = None
    duration_seconds: float = 0.0
    summary: str = ""

    def service(self, name: str) -> ServiceStatus | None:
        return next((s for s in self.services if s.name == name), None)

    def mark_complete(self, status: OverallStatus | None = None) -> None:
        """Mark the pass as complete, compute duration and status."""
        self.completed_at = datetime.now(UTC).isoformat()
        start = datetime.fromisoformat(self.started_at)
        end = datetime.fromisoformat(self.completed_at)
        self.duration_seconds = (end - start).total_seconds()

        ok = sum(1 for s in self.services if s.ok)
        total = len(self.services)

        if status:
            self.overall_status = status
        elif self.error is None and ok == total:
            self.overall_status = OverallStatus.PASSED
        elif ok:
            self.overall_status = OverallStatus.PARTIAL
        else:
            self.overall_status = OverallStatus.FAILED

        # An order pass plans every service without starting any.
        done = total if self.mode == "order" and self.error is None else ok
        self.summary = f"{done}/{total} services {_VERBS.get(self.mode, 'ok')}"
        if self.error:
            self.summary += f" ({self.error.splitlines()[0]})"


_VERBS = {"up": "started", "down": "removed", "status": "running", "order": "planned"}


__all__ = [
    "DeploymentResult",
    "FAILED",
    "NOT_STARTED",
    "OverallStatus",
    "REMOVED",
    "STARTED",
    "ServiceStatus",
]
