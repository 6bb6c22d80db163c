"""Startup workflow for tally.

Brings up a named set of service declarations together, resolving their
declared ordering dependencies: validate the compose recipe, compute the
startup order, create the project network, then for each service build
its image (when it has a build section) and launch one container with its
port mappings and environment.

Key Concepts:
    StartupWorkflow: Config -> ``DeploymentResult``. Drives the container
        runtime directly through :class:`ContainerManager`.
    ComposeRunner: Same modes delegated to the ``docker compose`` CLI.
    run_deployment(): Picks the runner from ``config.engine``.

Architecture Decisions:
    - "Started" means the container process was launched. There is no
      readiness probe between a dependency and its dependents, so a
      database may still be initializing when the application starts.
    - Single pass: the first failure stops the pass. Services already
      started stay up, nothing is retried or rolled back, and the result
      carries the error so the CLI can exit non-zero.
    - Container and image names are ``<project>-<service>``; containers
      carry ``tally.project`` / ``tally.service`` labels and the service
      name as network alias, so services reach each other by name.

Related Modules:
    - :mod:`tally.deploy.compose` parses recipes and computes the order
    - :mod:`tally.deploy.container` talks to the runtime
    - :mod:`tally.deploy.results` result models

Tags:
    workflow, deployment, startup-order, depends_on, runner
"""

from __future__ import annotations

import json
import shutil
import subprocess
from datetime import UTC, datetime

from tally.core.errors import ContainerError, RuntimeNotFoundError, TallyError
from tally.core.logging import get_logger
from tally.deploy.compose import ComposeRecipe, ServiceDeclaration, load_compose
from tally.deploy.config import DeploymentConfig, DeploymentEngine, DeploymentMode
from tally.deploy.container import ContainerManager
from tally.deploy.results import (
    FAILED,
    REMOVED,
    STARTED,
    DeploymentResult,
    OverallStatus,
    ServiceStatus,
)

logger = get_logger(__name__)

LABEL_PREFIX = "tally"


# ---------------------------------------------------------------------------
# Native runner
# ---------------------------------------------------------------------------


class StartupWorkflow:
    """Starts, stops and inspects a compose recipe's services.

    Parameters
    ----------
    config
        Deployment configuration.
    manager
        Container manager to use. Created lazily so that planning works
        without a container runtime.
    """

    def __init__(
        self,
        config: DeploymentConfig,
        manager: ContainerManager | None = None,
    ) -> None:
        self.config = config
        self._manager = manager
        self._recipe: ComposeRecipe | None = None

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def manager(self) -> ContainerManager:
        if self._manager is None:
            self._manager = ContainerManager(label_prefix=LABEL_PREFIX)
        return self._manager

    @property
    def recipe(self) -> ComposeRecipe:
        if self._recipe is None:
            self._recipe = load_compose(self.config.compose_file).validate()
        return self._recipe

    @property
    def project(self) -> str:
        return self.config.resolve_project_name(self.recipe.name)

    @property
    def network(self) -> str:
        return self.config.resolve_network(self.project)

    def container_name(self, service: str) -> str:
        return f"{self.project}-{service}"

    def image_tag(self, decl: ServiceDeclaration) -> str:
        """``image`` when declared, else ``<project>-<service>``."""
        return decl.image or f"{self.project}-{decl.name}"

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def plan(self) -> list[str]:
        """Startup order for the configured targets and their dependencies."""
        return self.recipe.startup_order(self.config.targets or None)

    def run(self) -> DeploymentResult:
        """Execute the operation selected by ``config.mode``."""
        mode = self.config.mode
        if mode == DeploymentMode.UP:
            return self.up()
        if mode == DeploymentMode.DOWN:
            return self.down()
        if mode == DeploymentMode.STATUS:
            return self.status()
        return self.order()

    def order(self) -> DeploymentResult:
        result = self._new_result(DeploymentMode.ORDER)
        try:
            self.plan_into(result)
        except TallyError as exc:
            result.error = exc.message
            result.mark_complete()
            return result
        result.mark_complete(OverallStatus.PASSED)
        return result

    def up(self) -> DeploymentResult:
        """Build and start every planned service in order.

        Stops at the first failure. Containers started before it are left
        running.
        """
        result = self._new_result(DeploymentMode.UP)
        current: ServiceStatus | None = None
        try:
            self.plan_into(result)
            self.manager.create_network(self.network)
            for current in result.services:
                self._start_service(self.recipe.service(current.name), current)
        except TallyError as exc:
            result.error = exc.message
            if current is not None:
                current.status = FAILED
                current.error = exc.message
            logger.error(
                "deploy.failed",
                run_id=self.config.run_id,
                service=current.name if current else None,
                error=exc.message,
            )

        result.mark_complete()
        logger.info(
            "deploy.up.complete",
            run_id=self.config.run_id,
            project=result.project,
            status=result.overall_status.value,
            summary=result.summary,
        )
        return result

    def down(self) -> DeploymentResult:
        """Stop and remove the project's containers in reverse start order."""
        result = self._new_result(DeploymentMode.DOWN)
        try:
            self.plan_into(result)
            for status in reversed(result.services):
                self.manager.stop_container(status.container_name or self.container_name(status.name))
                status.status = REMOVED
            self.manager.remove_network(self.network)
        except TallyError as exc:
            result.error = exc.message
        result.mark_complete()
        logger.info("deploy.down.complete", project=result.project, summary=result.summary)
        return result

    def status(self) -> DeploymentResult:
        """Report the runtime state of every planned service."""
        result = self._new_result(DeploymentMode.STATUS)
        try:
            self.plan_into(result)
            for status in result.services:
                name = status.container_name or self.container_name(status.name)
                status.status = self.manager.container_status(name)
                if status.status != "not_found":
                    status.started_at = self.manager.container_started_at(name)
        except TallyError as exc:
            result.error = exc.message
        result.mark_complete()
        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _new_result(self, mode: DeploymentMode) -> DeploymentResult:
        return DeploymentResult(run_id=self.config.run_id, mode=mode.value)

    def plan_into(self, result: DeploymentResult) -> None:
        order = self.plan()
        result.project = self.project
        result.network = self.network
        result.order = order
        for index, name in enumerate(order, start=1):
            decl = self.recipe.service(name)
            result.services.append(
                ServiceStatus(
                    name=name,
                    order=index,
                    image=self.image_tag(decl),
                    container_name=self.container_name(name),
                    ports=[p.render() for p in decl.ports],
                )
            )

    def _start_service(self, decl: ServiceDeclaration, status: ServiceStatus) -> None:
        base_dir = self.config.base_dir
        image = self.image_tag(decl)

        if decl.build is not None and self.config.build:
            context = base_dir / decl.build.context
            dockerfile = str(context / decl.build.dockerfile) if decl.build.dockerfile else None
            self.manager.build_image(
                context=str(context),
                tag=image,
                dockerfile=dockerfile,
                target=decl.build.target,
                timeout=self.config.timeout_seconds,
            )

        env = self.recipe.resolve_environment(decl.name, base_dir)
        container = status.container_name or self.container_name(decl.name)
        # Replace a leftover container from an earlier pass.
        self.manager.remove_container(container)

        info = self.manager.run_image(
            image,
            name=container,
            ports=decl.ports,
            env=env,
            network=self.network,
            network_alias=decl.name,
            timeout=self.config.timeout_seconds,
            labels={
                f"{LABEL_PREFIX}.project": self.project,
                f"{LABEL_PREFIX}.service": decl.name,
                f"{LABEL_PREFIX}.run_id": self.config.run_id,
            },
        )
        status.status = STARTED
        status.container_id = info.container_id
        status.started_at = datetime.fromtimestamp(info.started_at, UTC).isoformat()
        logger.info(
            "service.started",
            service=decl.name,
            container=container,
            order=status.order,
            depends_on=decl.depends_on,
        )


# ---------------------------------------------------------------------------
# docker compose runner
# ---------------------------------------------------------------------------


class ComposeRunner:
    """Runs the same modes through the ``docker compose`` CLI.

    Parameters
    ----------
    config
        Deployment configuration.
    """

    def __init__(self, config: DeploymentConfig) -> None:
        self.config = config
        self.workflow = StartupWorkflow(config)

    def run(self) -> DeploymentResult:
        """Execute the deployment operation."""
        if self.config.mode == DeploymentMode.ORDER:
            return self.workflow.order()

        result = DeploymentResult(run_id=self.config.run_id, mode=self.config.mode.value)
        try:
            self.workflow.plan_into(result)
            if self.config.mode == DeploymentMode.UP:
                self._compose_up(result)
            elif self.config.mode == DeploymentMode.DOWN:
                self._compose_down(result)
            else:
                self._check_status(result)
        except TallyError as exc:
            result.error = exc.message

        result.mark_complete()
        return result

    def _base_cmd(self) -> list[str]:
        docker = shutil.which("docker")
        if docker is None:
            raise RuntimeNotFoundError("docker CLI not found on PATH.")
        return [
            docker, "compose",
            "-f", str(self.config.compose_file),
            "--project-name", self.workflow.project,
        ]

    def _exec(self, args: list[str], timeout: int | None = None) -> subprocess.CompletedProcess[str]:
        cmd = [*self._base_cmd(), *args]
        logger.debug("compose.exec", cmd=" ".join(cmd))
        try:
            return subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout or self.config.timeout_seconds,
            )
        except subprocess.TimeoutExpired as exc:
            raise ContainerError(f"docker compose {args[0]} timed out", cause=exc)

    def _compose_up(self, result: DeploymentResult) -> None:
        args = ["up", "--detach"]
        if self.config.build:
            args.append("--build")
        args.extend(self.config.targets)

        proc = self._exec(args)
        if proc.returncode != 0:
            raise ContainerError(proc.stderr.strip() or "docker compose up failed")
        for status in result.services:
            status.status = STARTED

    def _compose_down(self, result: DeploymentResult) -> None:
        proc = self._exec(["down"])
        if proc.returncode != 0:
            raise ContainerError(proc.stderr.strip() or "docker compose down failed")
        for status in result.services:
            status.status = REMOVED

    def _check_status(self, result: DeploymentResult) -> None:
        proc = self._exec(["ps", "--all", "--format", "json"], timeout=30)
        if proc.returncode != 0:
            raise ContainerError(proc.stderr.strip() or "docker compose ps failed")

        states: dict[str, str] = {}
        for entry in _parse_ps_output(proc.stdout):
            states[entry.get("Service", entry.get("Name", ""))] = _map_compose_status(
                entry.get("State", "")
            )
        for status in result.services:
            status.status = states.get(status.name, "not_found")


def _parse_ps_output(stdout: str) -> list[dict]:
    """``docker compose ps --format json`` prints an array or JSON lines."""
    text = stdout.strip()
    if not text:
        return []
    if text.startswith("["):
        return json.loads(text)
    entries = []
    for line in text.splitlines():
        try:
            entries.append(json.loads(line))
        except json.JSONDecodeError:
            logger.warning("compose.ps.unparsed", line=line)
    return entries


def _map_compose_status(state: str) -> str:
    """Map Docker Compose state to our status values."""
    state = state.lower()
    if "running" in state:
        return "running"
    if "exit" in state:
        return "exited"
    if "created" in state:
        return "created"
    return state or "not_found"


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def run_deployment(
    config: DeploymentConfig,
    manager: ContainerManager | None = None,
) -> DeploymentResult:
    """Run *config* with the engine it names."""
    if config.engine == DeploymentEngine.COMPOSE:
        return ComposeRunner(config).run()
    return StartupWorkflow(config, manager=manager).run()


__all__ = ["ComposeRunner", "LABEL_PREFIX", "StartupWorkflow", "run_deployment"]
