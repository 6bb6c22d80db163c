"""Container runtime wrapper for tally.

Drives the ``docker`` CLI through ``subprocess`` for the two commands the
workflow needs (build a named image from a recipe; run a named image with a
host-to-container port mapping) plus the bookkeeping around them: stopping,
removing, inspecting, listing and reading logs.

Key Concepts:
    ContainerManager: ``build_image()``, ``run_image()``,
        ``list_image_files()``, ``stop_container()``, ...
    ImageInfo: Result of a build (tag, id, size).
    ContainerInfo: Runtime state of a started container.
    RuntimeNotFoundError: ``docker`` is not on PATH.
    BuildError / ContainerStartError / PortConflictError: Failures, raised
        to the caller with the runtime's stderr attached. Nothing is retried.

Architecture Decisions:
    - subprocess, not an SDK: works with any runtime exposing a
      docker-compatible CLI (Docker, Podman, Colima).
    - Label-based tracking: every container gets ``tally.*`` labels so a
      project's containers can be listed and torn down.
    - Only mapped ports are published. A container port without a host
      mapping stays unreachable from outside the host.

Tags:
    container, docker, build, run, subprocess, lifecycle
"""

from __future__ import annotations

import json
import shutil
import subprocess
import tarfile
import time
from dataclasses import dataclass, field
from typing import Any

from tally.core.errors import (
    BuildError,
    ContainerError,
    ContainerStartError,
    PortConflictError,
    RuntimeNotFoundError,
)
from tally.core.logging import get_logger
from tally.deploy.compose import PortMapping

logger = get_logger(__name__)

_PORT_CONFLICT_MARKERS = (
    "port is already allocated",
    "address already in use",
    "bind: address already in use",
)


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------


@dataclass
class ImageInfo:
    """A built image."""

    tag: str
    image_id: str | None = None
    size_bytes: int | None = None
    build_seconds: float = 0.0


@dataclass
class ContainerInfo:
    """Runtime information about a started container."""

    container_id: str
    container_name: str
    image: str
    ports: list[PortMapping] = field(default_factory=list)
    network: str | None = None
    started_at: float = 0.0
    labels: dict[str, str] = field(default_factory=dict)

    @property
    def uptime_seconds(self) -> float:
        return time.time() - self.started_at if self.started_at else 0.0

    def host_url(self, container_port: int, host: str = "localhost") -> str | None:
        """URL for a mapped container port, or None when it is not published."""
        for mapping in self.ports:
            if mapping.container_port == container_port and mapping.host_port:
                return f"http://{mapping.host_ip or host}:{mapping.host_port}"
        return None


class ContainerManager:
    """Builds images and manages containers via the ``docker`` CLI.

    Parameters
    ----------
    label_prefix
        Label prefix for container identification (e.g., ``tally``).
    runtime
        Name of the CLI binary to look up on PATH.

    Example::

        mgr = ContainerManager()
        mgr.build_image(".", tag="invoices")
        info = mgr.run_image("invoices", ports=[PortMapping.parse("8080:8080")])
        # ...
        mgr.stop_container(info.container_name)
    """

    def __init__(self, label_prefix: str = "tally", runtime: str = "docker") -> None:
        self.label_prefix = label_prefix
        self.runtime = runtime
        self._docker_cmd = self._find_runtime(runtime)

    # ------------------------------------------------------------------
    # Runtime discovery
    # ------------------------------------------------------------------

    @staticmethod
    def _find_runtime(runtime: str = "docker") -> str:
        binary = shutil.which(runtime)
        if binary is None:
            raise RuntimeNotFoundError(
                f"{runtime} CLI not found on PATH. Install Docker or add it to PATH."
            )
        return binary

    @staticmethod
    def is_runtime_available(runtime: str = "docker") -> bool:
        """Check if the CLI is installed and the daemon answers."""
        binary = shutil.which(runtime)
        if binary is None:
            return False
        try:
            result = subprocess.run(
                [binary, "info"],
                capture_output=True,
                timeout=10,
            )
            return result.returncode == 0
        except (subprocess.TimeoutExpired, OSError):
            return False

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    def build_image(
        self,
        context: str,
        tag: str,
        dockerfile: str | None = None,
        target: str | None = None,
        build_args: dict[str, str] | None = None,
        timeout: int = 900,
    ) -> ImageInfo:
        """Build a named image from a recipe.

        Equivalent to ``docker build -t TAG [-f FILE] [--target T] CONTEXT``.

        Raises
        ------
        BuildError
            If the build exits non-zero or times out.
        """
        cmd = ["build", "--tag", tag]
        if dockerfile:
            cmd.extend(["--file", dockerfile])
        if target:
            cmd.extend(["--target", target])
        for key, value in (build_args or {}).items():
            cmd.extend(["--build-arg", f"{key}={value}"])
        cmd.append(context)

        start = time.time()
        result = self._run(cmd, check=False, timeout=timeout, error_cls=BuildError)
        if result.returncode != 0:
            raise BuildError(
                f"Image build failed for {tag!r} (exit {result.returncode}):\n{result.stderr.strip()}",
                context={"image": tag, "context": context, "dockerfile": dockerfile},
            )
        elapsed = time.time() - start

        image_id, size = self._inspect_image(tag)
        logger.info("image.built", tag=tag, image_id=image_id, seconds=round(elapsed, 1))
        return ImageInfo(tag=tag, image_id=image_id, size_bytes=size, build_seconds=elapsed)

    def list_image_files(self, image: str) -> list[str]:
        """Return every file path inside *image*, sorted.

        Creates a stopped container, streams ``docker export`` through
        ``tarfile`` and removes the container again.
        """
        created = self._run(["create", image], error_cls=ContainerError)
        container_id = created.stdout.strip()
        try:
            with subprocess.Popen(
                [self._docker_cmd, "export", container_id],
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            ) as proc:
                assert proc.stdout is not None
                with tarfile.open(fileobj=proc.stdout, mode="r|") as archive:
                    names = sorted(member.name.removeprefix("./") for member in archive)
                proc.stdout.close()
                if proc.wait() != 0:
                    stderr = proc.stderr.read().decode() if proc.stderr else ""
                    raise ContainerError(
                        f"Export of {image!r} failed: {stderr.strip()}",
                        context={"image": image},
                    )
        finally:
            self._run(["rm", "--force", container_id], check=False)
        return [name for name in names if name]

    # ------------------------------------------------------------------
    # Containers
    # ------------------------------------------------------------------

    def run_image(
        self,
        image: str,
        name: str | None = None,
        ports: list[PortMapping] | None = None,
        env: dict[str, str] | None = None,
        network: str | None = None,
        labels: dict[str, str] | None = None,
        network_alias: str | None = None,
        detach: bool = True,
        timeout: int = 600,
    ) -> ContainerInfo:
        """Run a named image with host-to-container port mappings.

        Equivalent to ``docker run --detach -p HOST:CONTAINER IMAGE``.
        *timeout* also covers the implicit pull of an image that is not
        present locally.

        Raises
        ------
        PortConflictError
            If a requested host port is already bound.
        ContainerStartError
            For any other start failure.
        """
        ports = list(ports or [])
        cmd = ["run"]
        if detach:
            cmd.append("--detach")
        if name:
            cmd.extend(["--name", name])
        if network:
            cmd.extend(["--network", network])
            if network_alias:
                cmd.extend(["--network-alias", network_alias])

        all_labels = {f"{self.label_prefix}.managed": "true", **(labels or {})}
        for key, value in all_labels.items():
            cmd.extend(["--label", f"{key}={value}"])

        for mapping in ports:
            cmd.extend(["--publish", mapping.render()])

        for key, value in (env or {}).items():
            cmd.extend(["--env", f"{key}={value}"])

        cmd.append(image)

        started_at = time.time()
        result = self._run(cmd, check=False, timeout=timeout, error_cls=ContainerStartError)
        if result.returncode != 0:
            stderr = result.stderr.strip()
            error_cls = (
                PortConflictError
                if any(marker in stderr.lower() for marker in _PORT_CONFLICT_MARKERS)
                else ContainerStartError
            )
            raise error_cls(
                f"Container for {image!r} failed to start (exit {result.returncode}):\n{stderr}",
                context={
                    "image": image,
                    "container": name,
                    "ports": [m.render() for m in ports],
                },
            )

        container_id = result.stdout.strip()[:12]
        logger.info(
            "container.started",
            container=name or container_id,
            image=image,
            ports=[m.render() for m in ports],
        )
        return ContainerInfo(
            container_id=container_id,
            container_name=name or container_id,
            image=image,
            ports=ports,
            network=network,
            started_at=started_at,
            labels=all_labels,
        )

    def stop_container(self, name: str, timeout: int = 10) -> None:
        """Stop and remove a container (ignores missing containers)."""
        self._run(["stop", "--time", str(timeout), name], check=False)
        self.remove_container(name)
        logger.info("container.stopped", container=name)

    def remove_container(self, name: str) -> None:
        self._run(["rm", "--force", name], check=False)

    def container_status(self, name: str) -> str:
        """Container state (running, exited, created...) or ``not_found``."""
        result = self._run(
            ["inspect", "--format", "{{.State.Status}}", name],
            check=False,
        )
        return result.stdout.strip() if result.returncode == 0 else "not_found"

    def container_started_at(self, name: str) -> str | None:
        """ISO timestamp at which the container process was launched."""
        result = self._run(
            ["inspect", "--format", "{{.State.StartedAt}}", name],
            check=False,
        )
        value = result.stdout.strip()
        return value if result.returncode == 0 and value else None

    def collect_logs(self, name: str, tail: int | None = None) -> str:
        cmd = ["logs", "--timestamps"]
        if tail is not None:
            cmd.extend(["--tail", str(tail)])
        cmd.append(name)
        result = self._run(cmd, check=False)
        return result.stdout + result.stderr

    def list_containers(self, project: str | None = None) -> list[dict[str, Any]]:
        """List tally-managed containers, optionally for one project."""
        cmd = [
            "ps", "--all",
            "--filter", f"label={self.label_prefix}.managed=true",
            "--format", "{{json .}}",
        ]
        if project:
            cmd.extend(["--filter", f"label={self.label_prefix}.project={project}"])

        result = self._run(cmd, check=False)
        containers = []
        for line in result.stdout.strip().splitlines():
            if not line.strip():
                continue
            try:
                containers.append(json.loads(line))
            except json.JSONDecodeError:
                logger.warning("container.list.unparsed", line=line)
        return containers

    # ------------------------------------------------------------------
    # Networks
    # ------------------------------------------------------------------

    def create_network(self, name: str) -> str:
        """Create a bridge network; an existing network of that name is reused."""
        result = self._run(["network", "create", "--driver", "bridge", name], check=False)
        if result.returncode != 0 and "already exists" not in result.stderr:
            raise ContainerError(
                f"Cannot create network {name!r}: {result.stderr.strip()}",
                context={"network": name},
            )
        logger.info("network.created", network=name)
        return name

    def remove_network(self, name: str) -> None:
        self._run(["network", "rm", name], check=False)
        logger.debug("network.removed", network=name)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _run(
        self,
        args: list[str],
        check: bool = True,
        timeout: int = 60,
        error_cls: type[ContainerError] = ContainerError,
    ) -> subprocess.CompletedProcess[str]:
        """Run a CLI command, raising *error_cls* on failure when *check*."""
        cmd = [self._docker_cmd, *args]
        logger.debug("docker.exec", cmd=" ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise error_cls(
                f"{self.runtime} command timed out after {timeout}s: {' '.join(args)}",
                cause=exc,
            )
        if check and result.returncode != 0:
            raise error_cls(
                f"{self.runtime} command failed (exit {result.returncode}): "
                f"{' '.join(args)}\n{result.stderr}"
            )
        return result

    def _inspect_image(self, tag: str) -> tuple[str | None, int | None]:
        result = self._run(
            ["image", "inspect", "--format", "{{.Id}} {{.Size}}", tag],
            check=False,
        )
        if result.returncode != 0 or not result.stdout.strip():
            return None, None
        image_id, _, size = result.stdout.strip().partition(" ")
        return image_id or None, int(size) if size.isdigit() else None


__all__ = ["ContainerInfo", "ContainerManager", "ImageInfo"]
