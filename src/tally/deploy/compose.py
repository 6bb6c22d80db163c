"""Multi-service compose recipes for tally.

Parses, validates, orders and generates ``docker-compose.yml`` files. A
compose recipe names a set of services, each built from a source directory
or pulled as an image, with host-to-container port mappings, environment
values (inline or from env files) and named dependencies on other services.

Key Concepts:
    PortMapping: One ``HOST:CONTAINER`` publication, short or long syntax.
    ServiceDeclaration: One entry under ``services:``.
    ComposeRecipe: The whole file; ``validate()``, ``startup_order()``,
        ``resolve_environment()``, ``render()``.
    generate_stack_compose: The invoicing stack (application + database).
    write_compose_file: Persists YAML string to disk.

Architecture Decisions:
    - ``depends_on`` means start order only. Long-form conditions
      (``service_healthy``...) are parsed and written back but nothing
      waits on them.
    - Ties in the startup order keep declaration order, so repeated runs
      start services in the same sequence.
    - Environment files are read at run time and merged below inline
      ``environment`` values; their contents never land in the recipe.

Related Modules:
    - :mod:`tally.deploy.workflow` consumes ``startup_order()``
    - :mod:`tally.deploy.container` publishes ``PortMapping`` values

Tags:
    compose, docker, yaml, ports, dependencies, topological-sort
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from tally.core.envfile import parse_env_file
from tally.core.errors import ComposeError, DependencyCycleError, UnknownDependencyError
from tally.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_COMPOSE_FILE = "docker-compose.yml"
COMPOSE_FILE_NAMES = ("compose.yaml", "compose.yml", "docker-compose.yml", "docker-compose.yaml")

_SHORT_PORT_RE = re.compile(
    r"""
    ^
    (?:(?P<ip>\[[0-9a-fA-F:.]+\]|\d{1,3}(?:\.\d{1,3}){3}):)?   # optional host ip
    (?:(?P<host>\d*):)?                                      # optional host port
    (?P<container>\d+)                                       # container port
    (?:/(?P<proto>tcp|udp|sctp))?                            # optional protocol
    $
    """,
    re.VERBOSE,
)


def _yaml_dumps(data: dict[str, Any]) -> str:
    """Serialize dict to a block-style YAML string, keys in insertion order."""
    return yaml.safe_dump(data, default_flow_style=False, sort_keys=False, allow_unicode=True)


def _check_port(value: Any, what: str) -> int:
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise ComposeError(f"Invalid {what} port: {value!r}") from None
    if not 1 <= port <= 65535:
        raise ComposeError(f"{what.capitalize()} port out of range (1-65535): {port}")
    return port


# ---------------------------------------------------------------------------
# Declarations
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PortMapping:
    """A published port: host side optional, container side required."""

    container_port: int
    host_port: int | None = None
    host_ip: str | None = None
    protocol: str = "tcp"

    @classmethod
    def parse(cls, value: str | int | dict[str, Any]) -> PortMapping:
        """Parse ``"80"``, ``"8080:80"``, ``"127.0.0.1:8080:80/udp"``, an int,
        or the long mapping syntax (``target``, ``published``...)."""
        if isinstance(value, bool):
            raise ComposeError(f"Invalid port mapping: {value!r}")
        if isinstance(value, int):
            return cls(container_port=_check_port(value, "container"))
        if isinstance(value, dict):
            if "target" not in value:
                raise ComposeError(f"Long port syntax requires 'target': {value!r}")
            published = value.get("published")
            return cls(
                container_port=_check_port(value["target"], "container"),
                host_port=_check_port(published, "host") if published not in (None, "") else None,
                host_ip=value.get("host_ip"),
                protocol=str(value.get("protocol", "tcp")),
            )
        if not isinstance(value, str):
            raise ComposeError(f"Invalid port mapping: {value!r}")

        match = _SHORT_PORT_RE.match(value.strip())
        if match is None:
            raise ComposeError(f"Invalid port mapping: {value!r}")
        host = match.group("host")
        return cls(
            container_port=_check_port(match.group("container"), "container"),
            host_port=_check_port(host, "host") if host else None,
            host_ip=match.group("ip"),
            protocol=match.group("proto") or "tcp",
        )

    def render(self) -> str:
        """Short syntax, as accepted by ``docker run -p`` and compose."""
        text = str(self.container_port)
        if self.host_port is not None:
            text = f"{self.host_port}:{text}"
            if self.host_ip:
                text = f"{self.host_ip}:{text}"
        elif self.host_ip:
            text = f"{self.host_ip}::{text}"
        if self.protocol != "tcp":
            text = f"{text}/{self.protocol}"
        return text

    def __str__(self) -> str:
        return self.render()


@dataclass
class BuildSource:
    """Where a service image is built from."""

    context: str = "."
    dockerfile: str | None = None
    target: str | None = None

    @classmethod
    def parse(cls, value: str | dict[str, Any]) -> BuildSource:
        if isinstance(value, str):
            return cls(context=value)
        if isinstance(value, dict):
            return cls(
                context=str(value.get("context", ".")),
                dockerfile=value.get("dockerfile"),
                target=value.get("target"),
            )
        raise ComposeError(f"Invalid build section: {value!r}")

    def to_dict(self) -> str | dict[str, str]:
        if self.dockerfile is None and self.target is None:
            return self.context
        data = {"context": self.context}
        if self.dockerfile:
            data["dockerfile"] = self.dockerfile
        if self.target:
            data["target"] = self.target
        return data


@dataclass
class ServiceDeclaration:
    """One service under ``services:``."""

    name: str
    image: str | None = None
    build: BuildSource | None = None
    ports: list[PortMapping] = field(default_factory=list)
    # None means "take the value from the host environment".
    environment: dict[str, str | None] = field(default_factory=dict)
    env_file: list[str] = field(default_factory=list)
    depends_on: list[str] = field(default_factory=list)
    conditions: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, name: str, data: Any) -> ServiceDeclaration:
        if not isinstance(data, dict):
            raise ComposeError(f"Service {name!r} must be a mapping", context={"service": name})
        if not data.get("image") and data.get("build") is None:
            raise ComposeError(
                f"Service {name!r} needs an 'image' or a 'build' section",
                context={"service": name},
            )

        try:
            ports = [PortMapping.parse(p) for p in data.get("ports") or []]
            build = BuildSource.parse(data["build"]) if data.get("build") is not None else None
        except ComposeError as exc:
            raise exc.with_context(service=name)

        depends_on, conditions = _parse_depends_on(name, data.get("depends_on"))
        env_file = data.get("env_file") or []
        if isinstance(env_file, str):
            env_file = [env_file]

        return cls(
            name=name,
            image=data.get("image"),
            build=build,
            ports=ports,
            environment=_parse_environment(name, data.get("environment")),
            env_file=[str(f) for f in env_file],
            depends_on=depends_on,
            conditions=conditions,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.build is not None:
            data["build"] = self.build.to_dict()
        if self.image:
            data["image"] = self.image
        if self.ports:
            data["ports"] = [p.render() for p in self.ports]
        if self.env_file:
            data["env_file"] = self.env_file[0] if len(self.env_file) == 1 else list(self.env_file)
        if self.environment:
            data["environment"] = dict(self.environment)
        if self.depends_on:
            if self.conditions:
                data["depends_on"] = {
                    dep: {"condition": self.conditions.get(dep, "service_started")}
                    for dep in self.depends_on
                }
            else:
                data["depends_on"] = list(self.depends_on)
        return data


def _parse_environment(service: str, value: Any) -> dict[str, str | None]:
    if value is None:
        return {}
    if isinstance(value, dict):
        return {str(k): None if v is None else str(v) for k, v in value.items()}
    if isinstance(value, list):
        env: dict[str, str | None] = {}
        for item in value:
            key, sep, val = str(item).partition("=")
            if not key:
                raise ComposeError(
                    f"Service {service!r}: invalid environment entry {item!r}",
                    context={"service": service},
                )
            env[key] = val if sep else None
        return env
    raise ComposeError(
        f"Service {service!r}: environment must be a mapping or a list",
        context={"service": service},
    )


def _parse_depends_on(service: str, value: Any) -> tuple[list[str], dict[str, str]]:
    if value is None:
        return [], {}
    if isinstance(value, list):
        return [str(v) for v in value], {}
    if isinstance(value, dict):
        conditions = {
            str(dep): str(opts.get("condition", "service_started"))
            for dep, opts in value.items()
            if isinstance(opts, dict)
        }
        return [str(dep) for dep in value], conditions
    raise ComposeError(
        f"Service {service!r}: depends_on must be a list or a mapping",
        context={"service": service},
    )


# ---------------------------------------------------------------------------
# Recipe
# ---------------------------------------------------------------------------


@dataclass
class ComposeRecipe:
    """A parsed compose file."""

    version: str | None = None
    name: str | None = None
    services: dict[str, ServiceDeclaration] = field(default_factory=dict)

    def service(self, name: str) -> ServiceDeclaration:
        try:
            return self.services[name]
        except KeyError:
            raise ComposeError(f"Unknown service: {name!r}", context={"service": name}) from None

    def validate(self) -> ComposeRecipe:
        """Check dependencies: declared, not self-referencing, acyclic."""
        for name, svc in self.services.items():
            for dep in svc.depends_on:
                if dep == name:
                    raise DependencyCycleError([name, name])
                if dep not in self.services:
                    raise UnknownDependencyError(name, dep)
        self.startup_order()
        return self

    def startup_order(self, targets: list[str] | None = None) -> list[str]:
        """Services in an order where every dependency starts first.

        Kahn's algorithm, always picking the earliest-declared ready
        service. With *targets*, only those services and their transitive
        dependencies are returned.
        """
        selected = self._with_dependencies(targets) if targets else list(self.services)
        declared = {name: i for i, name in enumerate(self.services)}

        remaining = {
            name: [d for d in self.services[name].depends_on if d in selected]
            for name in selected
        }
        for name, deps in remaining.items():
            for dep in deps:
                if dep not in self.services:
                    raise UnknownDependencyError(name, dep)

        order: list[str] = []
        started: set[str] = set()
        while remaining:
            ready = [n for n, deps in remaining.items() if all(d in started for d in deps)]
            if not ready:
                raise DependencyCycleError(self._find_cycle(remaining))
            nxt = min(ready, key=declared.__getitem__)
            order.append(nxt)
            started.add(nxt)
            del remaining[nxt]
        return order

    def resolve_environment(self, name: str, base_dir: str | Path | None = None) -> dict[str, str]:
        """Effective environment: env files in order, then inline values.

        An inline key without a value is taken from the host environment and
        is left out when the host does not define it.
        """
        svc = self.service(name)
        base = Path(base_dir) if base_dir is not None else Path.cwd()
        env: dict[str, str] = {}
        for env_file in svc.env_file:
            path = Path(env_file)
            env.update(parse_env_file(path if path.is_absolute() else base / path))
        for key, value in svc.environment.items():
            if value is None:
                value = os.environ.get(key)
                if value is None:
                    continue
            env[key] = value
        return env

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.version:
            data["version"] = self.version
        if self.name:
            data["name"] = self.name
        data["services"] = {name: svc.to_dict() for name, svc in self.services.items()}
        return data

    def render(self) -> str:
        return _yaml_dumps(self.to_dict())

    # ------------------------------------------------------------------

    def _with_dependencies(self, targets: list[str]) -> list[str]:
        wanted: set[str] = set()
        stack = list(targets)
        while stack:
            name = stack.pop()
            if name in wanted:
                continue
            wanted.add(name)
            for dep in self.service(name).depends_on:
                if dep not in self.services:
                    raise UnknownDependencyError(name, dep)
                stack.append(dep)
        return [name for name in self.services if name in wanted]

    @staticmethod
    def _find_cycle(graph: dict[str, list[str]]) -> list[str]:
        """Walk unresolved edges until a service repeats."""
        node = next(iter(graph))
        path: list[str] = []
        while node not in path:
            path.append(node)
            node = next(d for d in graph[node] if d in graph)
        return path[path.index(node):] + [node]


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def parse_compose(text: str) -> ComposeRecipe:
    """Parse compose YAML text into a :class:`ComposeRecipe`."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ComposeError(f"Invalid YAML: {exc}", cause=exc)
    if not isinstance(data, dict):
        raise ComposeError("Compose file must be a mapping at the top level")
    services = data.get("services")
    if not isinstance(services, dict) or not services:
        raise ComposeError("Compose file must declare at least one service under 'services'")

    version = data.get("version")
    return ComposeRecipe(
        version=str(version) if version is not None else None,
        name=data.get("name"),
        services={
            str(name): ServiceDeclaration.from_dict(str(name), body)
            for name, body in services.items()
        },
    )


def load_compose(path: str | Path) -> ComposeRecipe:
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ComposeError(f"Cannot read compose file {path}", cause=exc).with_context(
            path=str(path)
        )
    recipe = parse_compose(text)
    logger.debug("compose.loaded", path=str(path), services=list(recipe.services))
    return recipe


def find_compose_file(directory: str | Path = ".") -> Path | None:
    """First of the conventional compose file names present in *directory*."""
    for name in COMPOSE_FILE_NAMES:
        candidate = Path(directory) / name
        if candidate.is_file():
            return candidate
    return None


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------


def generate_stack_compose(
    app_name: str = "invoices",
    app_port: int = 8080,
    db_name: str = "db",
    db_image: str = "postgres:16-alpine",
    env_file: str = ".env",
    version: str = "3.8",
    host_port: int | None = None,
) -> str:
    """Generate the two-service invoicing stack.

    The application is built from the current directory and publishes
    *app_port*; the database comes from *db_image*. The application
    depends on the database, and both read credentials from *env_file*.

    Returns
    -------
    str
        YAML string ready to write to a file.
    """
    recipe = ComposeRecipe(
        version=version,
        services={
            app_name: ServiceDeclaration(
                name=app_name,
                build=BuildSource(context="."),
                ports=[PortMapping(container_port=app_port, host_port=host_port or app_port)],
                env_file=[env_file],
                depends_on=[db_name],
            ),
            db_name: ServiceDeclaration(
                name=db_name,
                image=db_image,
                env_file=[env_file],
            ),
        },
    ).validate()

    header = (
        f"# Invoicing stack: {app_name} depends on {db_name}\n"
        f"# Credentials are read from {env_file} (not committed)\n"
        f"# Usage: tally up  (or: docker compose up -d --build)\n\n"
    )
    return header + recipe.render()


def write_compose_file(content: str, output_path: str | Path = DEFAULT_COMPOSE_FILE) -> str:
    """Write compose YAML to a file and return its path."""
    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    logger.info("compose.written", path=str(path))
    return str(path)


__all__ = [
    "BuildSource",
    "COMPOSE_FILE_NAMES",
    "ComposeRecipe",
    "DEFAULT_COMPOSE_FILE",
    "PortMapping",
    "ServiceDeclaration",
    "find_compose_file",
    "generate_stack_compose",
    "load_compose",
    "parse_compose",
    "write_compose_file",
]
