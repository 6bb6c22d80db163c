"""Build recipes: container build files as data.

A :class:`BuildRecipe` is an ordered list of :class:`BuildStage` objects,
each of which starts from a base image and runs a sequence of steps
(``WORKDIR``, ``ENV``, ``COPY``, ``RUN``), then declares exposed ports and
a start command. Recipes can be built in code, rendered to Dockerfile text,
or parsed back from it.

Two shapes cover how the service is packaged:

- :func:`single_stage` -- base image, working directory, copy the sources,
  run the build command, expose the port, set the start command.
- :func:`two_phase` -- the same build in a throwaway ``builder`` stage,
  followed by a minimal runtime stage that receives only the build
  artifact (``COPY --from=builder``). Sources and the build toolchain stay
  in the first phase and never reach the final image.

Key Concepts:
    CopyStep / RunStep / WorkdirStep / EnvStep: Ordered stage steps.
    BuildStage: One ``FROM`` block.
    BuildRecipe: All stages; ``render()``, ``validate_recipe()``,
        ``runtime_sources()``.
    parse_recipe: Dockerfile text → BuildRecipe.

Architecture Decisions:
    - Pydantic v2 models: ``model_dump_json()`` for ``--json`` output and
      field validation for ports.
    - Step order is preserved exactly; ``EXPOSE`` and ``CMD`` are stage
      attributes because their position does not change the build.
    - Unsupported instructions are rejected with their line number instead
      of being passed through, so ``runtime_sources()`` is never wrong.

Tags:
    recipe, dockerfile, build, multi-stage, parser
"""

from __future__ import annotations

import json
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Literal

from pydantic import BaseModel, Field, field_validator

from tally.core.errors import RecipeError
from tally.core.logging import get_logger

logger = get_logger(__name__)

BUILDER_STAGE = "builder"


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------


class CopyStep(BaseModel):
    """``COPY [--from=stage] [--chown=owner] src... dest``."""

    kind: Literal["copy"] = "copy"
    sources: list[str] = Field(min_length=1)
    destination: str
    from_stage: str | None = None
    chown: str | None = None

    def render(self) -> str:
        parts = ["COPY"]
        if self.from_stage:
            parts.append(f"--from={self.from_stage}")
        if self.chown:
            parts.append(f"--chown={self.chown}")
        paths = [*self.sources, self.destination]
        if any(" " in p for p in paths):
            parts.append(json.dumps(paths))
        else:
            parts.extend(paths)
        return " ".join(parts)


class RunStep(BaseModel):
    """``RUN command`` in shell form (str) or exec form (list)."""

    kind: Literal["run"] = "run"
    command: str | list[str]

    def render(self) -> str:
        return f"RUN {_render_command(self.command)}"


class WorkdirStep(BaseModel):
    """``WORKDIR path``."""

    kind: Literal["workdir"] = "workdir"
    path: str

    def render(self) -> str:
        return f"WORKDIR {self.path}"


class EnvStep(BaseModel):
    """``ENV KEY=value ...``."""

    kind: Literal["env"] = "env"
    values: dict[str, str] = Field(min_length=1)

    def render(self) -> str:
        pairs = [f"{key}={_quote_env(value)}" for key, value in self.values.items()]
        return "ENV " + " ".join(pairs)


Step = Annotated[CopyStep | RunStep | WorkdirStep | EnvStep, Field(discriminator="kind")]


# ---------------------------------------------------------------------------
# Stages and recipes
# ---------------------------------------------------------------------------


class BuildStage(BaseModel):
    """One ``FROM`` block of a recipe."""

    base_image: str
    name: str | None = None
    platform: str | None = None
    steps: list[Step] = Field(default_factory=list)
    expose: list[int] = Field(default_factory=list)
    cmd: str | list[str] | None = None

    @field_validator("expose")
    @classmethod
    def _check_ports(cls, ports: list[int]) -> list[int]:
        for port in ports:
            if not 1 <= port <= 65535:
                raise ValueError(f"exposed port out of range: {port}")
        return ports

    @property
    def workdir(self) -> str | None:
        """Effective working directory at the end of the stage."""
        current: str | None = None
        for step in self.steps:
            if isinstance(step, WorkdirStep):
                if step.path.startswith("/") or current is None:
                    current = step.path
                else:
                    current = f"{current.rstrip('/')}/{step.path}"
        return current

    @property
    def env(self) -> dict[str, str]:
        merged: dict[str, str] = {}
        for step in self.steps:
            if isinstance(step, EnvStep):
                merged.update(step.values)
        return merged

    @property
    def copies(self) -> list[CopyStep]:
        return [s for s in self.steps if isinstance(s, CopyStep)]

    @property
    def run_commands(self) -> list[str | list[str]]:
        return [s.command for s in self.steps if isinstance(s, RunStep)]

    def render(self) -> str:
        head = "FROM"
        if self.platform:
            head += f" --platform={self.platform}"
        head += f" {self.base_image}"
        if self.name:
            head += f" AS {self.name}"
        lines = [head]
        lines.extend(step.render() for step in self.steps)
        if self.expose:
            lines.append("EXPOSE " + " ".join(str(p) for p in self.expose))
        if self.cmd is not None:
            lines.append(f"CMD {_render_command(self.cmd)}")
        return "\n".join(lines)


@dataclass(frozen=True)
class RuntimeSource:
    """Something copied into the final image: a build-context path or a stage artifact."""

    path: str
    destination: str
    stage: str | None = None

    def __str__(self) -> str:
        origin = f"{self.stage}:{self.path}" if self.stage else self.path
        return f"{origin} -> {self.destination}"


class BuildRecipe(BaseModel):
    """A complete build description (one or more stages)."""

    stages: list[BuildStage] = Field(default_factory=list)

    @property
    def final_stage(self) -> BuildStage:
        if not self.stages:
            raise RecipeError("Recipe has no stages")
        return self.stages[-1]

    @property
    def is_multi_stage(self) -> bool:
        return len(self.stages) > 1

    def stage(self, ref: str) -> BuildStage:
        """Look up a stage by name or numeric index."""
        for stage in self.stages:
            if stage.name == ref:
                return stage
        if ref.isdigit() and int(ref) < len(self.stages):
            return self.stages[int(ref)]
        raise RecipeError(f"Unknown stage: {ref!r}")

    def runtime_sources(self) -> list[RuntimeSource]:
        """Everything the final stage copies in.

        For a two-phase recipe these are only artifacts from earlier
        stages; for a single-stage recipe they are build-context paths.
        """
        final = self.final_stage
        return [
            RuntimeSource(path=src, destination=copy.destination, stage=copy.from_stage)
            for copy in final.copies
            for src in copy.sources
        ]

    def validate_recipe(self) -> BuildRecipe:
        """Check cross-stage invariants. Returns ``self``.

        Raises
        ------
        RecipeError
            No stages, duplicate stage names, a ``COPY --from`` that does not
            name an earlier stage, or a final stage without a start command.
        """
        if not self.stages:
            raise RecipeError("Recipe has no stages")

        seen: list[str] = []
        for index, stage in enumerate(self.stages):
            if stage.name:
                if stage.name in seen:
                    raise RecipeError(f"Duplicate stage name: {stage.name!r}")
            for copy in stage.copies:
                if copy.from_stage is None:
                    continue
                ref = copy.from_stage
                if ref.isdigit():
                    if int(ref) >= index:
                        raise RecipeError(
                            f"COPY --from={ref} in stage {index} must reference an earlier stage"
                        )
                elif ref not in seen:
                    raise RecipeError(
                        f"COPY --from={ref} in stage {index} does not name an earlier stage"
                    )
            if stage.name:
                seen.append(stage.name)

        if self.final_stage.cmd is None:
            raise RecipeError("Final stage has no start command (CMD)")
        return self

    def render(self) -> str:
        """Render Dockerfile text."""
        return "\n\n".join(stage.render() for stage in self.stages) + "\n"


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def single_stage(
    base_image: str,
    *,
    workdir: str,
    port: int,
    cmd: str | list[str],
    build_command: str | None = None,
    copy: tuple[str, str] = (".", "."),
    env: dict[str, str] | None = None,
) -> BuildRecipe:
    """Build a one-stage recipe: base, workdir, copy, build, expose, start.

    Example::

        recipe = single_stage(
            "python:3.12-slim",
            workdir="/app",
            build_command="pip install --no-cache-dir .",
            port=8080,
            cmd=["tally", "serve"],
        )
    """
    steps: list[Step] = [WorkdirStep(path=workdir)]
    if env:
        steps.append(EnvStep(values=dict(env)))
    steps.append(CopyStep(sources=[copy[0]], destination=copy[1]))
    if build_command:
        steps.append(RunStep(command=build_command))
    stage = BuildStage(base_image=base_image, steps=steps, expose=[port], cmd=cmd)
    return BuildRecipe(stages=[stage]).validate_recipe()


def two_phase(
    builder_image: str,
    runtime_image: str,
    *,
    workdir: str,
    build_command: str,
    artifact: str,
    port: int,
    cmd: str | list[str],
    artifact_dest: str | None = None,
    runtime_workdir: str | None = None,
    runtime_env: dict[str, str] | None = None,
    copy: tuple[str, str] = (".", "."),
) -> BuildRecipe:
    """Build a two-phase recipe.

    The ``builder`` stage copies the sources and runs *build_command*; the
    runtime stage starts from *runtime_image* and copies only *artifact*
    out of the builder.
    """
    builder = BuildStage(
        base_image=builder_image,
        name=BUILDER_STAGE,
        steps=[
            WorkdirStep(path=workdir),
            CopyStep(sources=[copy[0]], destination=copy[1]),
            RunStep(command=build_command),
        ],
    )

    runtime_steps: list[Step] = []
    if runtime_workdir:
        runtime_steps.append(WorkdirStep(path=runtime_workdir))
    if runtime_env:
        runtime_steps.append(EnvStep(values=dict(runtime_env)))
    runtime_steps.append(
        CopyStep(
            sources=[artifact],
            destination=artifact_dest or artifact,
            from_stage=BUILDER_STAGE,
        )
    )
    runtime = BuildStage(base_image=runtime_image, steps=runtime_steps, expose=[port], cmd=cmd)
    return BuildRecipe(stages=[builder, runtime]).validate_recipe()


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _logical_lines(text: str) -> list[tuple[int, str]]:
    """Join ``\\`` continuations; drop comments and blanks. Yields (line_no, text)."""
    result: list[tuple[int, str]] = []
    buffer: list[str] = []
    start = 0
    for number, raw in enumerate(text.splitlines(), start=1):
        stripped = raw.strip()
        if stripped.startswith("#") or (not stripped and not buffer):
            continue
        if not buffer:
            start = number
        if stripped.endswith("\\"):
            buffer.append(stripped[:-1].strip())
            continue
        buffer.append(stripped)
        result.append((start, " ".join(part for part in buffer if part)))
        buffer = []
    if buffer:
        result.append((start, " ".join(part for part in buffer if part)))
    return result


def _parse_command(args: str, line: int) -> str | list[str]:
    if args.startswith("["):
        try:
            value = json.loads(args)
        except json.JSONDecodeError as exc:
            raise RecipeError(f"invalid exec form: {args}", line=line, cause=exc)
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise RecipeError(f"exec form must be a list of strings: {args}", line=line)
        return value
    return args


def _parse_flags(tokens: list[str], allowed: set[str], line: int) -> tuple[dict[str, str], list[str]]:
    flags: dict[str, str] = {}
    rest = list(tokens)
    while rest and rest[0].startswith("--"):
        flag, _, value = rest.pop(0)[2:].partition("=")
        if flag not in allowed:
            raise RecipeError(f"unsupported flag --{flag}", line=line)
        flags[flag] = value
    return flags, rest


def _parse_from(args: str, line: int) -> BuildStage:
    flags, tokens = _parse_flags(args.split(), {"platform"}, line)
    if len(tokens) == 1:
        return BuildStage(base_image=tokens[0], platform=flags.get("platform"))
    if len(tokens) == 3 and tokens[1].upper() == "AS":
        return BuildStage(base_image=tokens[0], name=tokens[2], platform=flags.get("platform"))
    raise RecipeError(f"malformed FROM: {args}", line=line)


def _parse_copy(args: str, line: int) -> CopyStep:
    flags, tokens = _parse_flags(args.split(), {"from", "chown"}, line)
    remainder = " ".join(tokens)
    if remainder.startswith("["):
        paths = _parse_command(remainder, line)
    else:
        paths = tokens
    if len(paths) < 2:
        raise RecipeError("COPY needs at least one source and a destination", line=line)
    return CopyStep(
        sources=list(paths[:-1]),
        destination=paths[-1],
        from_stage=flags.get("from"),
        chown=flags.get("chown"),
    )


def _parse_env(args: str, line: int) -> EnvStep:
    first = args.split(None, 1)
    if first and "=" not in first[0]:
        # Legacy "ENV KEY value with spaces" form.
        if len(first) != 2:
            raise RecipeError(f"malformed ENV: {args}", line=line)
        return EnvStep(values={first[0]: first[1]})
    try:
        tokens = shlex.split(args)
    except ValueError as exc:
        raise RecipeError(f"malformed ENV: {args}", line=line, cause=exc)
    values: dict[str, str] = {}
    for token in tokens:
        key, sep, value = token.partition("=")
        if not sep or not key:
            raise RecipeError(f"malformed ENV pair: {token}", line=line)
        values[key] = value
    if not values:
        raise RecipeError("ENV needs at least one KEY=value", line=line)
    return EnvStep(values=values)


def _parse_expose(args: str, line: int) -> list[int]:
    ports: list[int] = []
    for token in args.split():
        number, _, protocol = token.partition("/")
        if protocol and protocol.lower() != "tcp":
            raise RecipeError(f"only tcp ports are supported: {token}", line=line)
        if not number.isdigit() or not 1 <= int(number) <= 65535:
            raise RecipeError(f"invalid port: {token}", line=line)
        ports.append(int(number))
    if not ports:
        raise RecipeError("EXPOSE needs at least one port", line=line)
    return ports


def parse_recipe(text: str) -> BuildRecipe:
    """Parse Dockerfile text into a :class:`BuildRecipe`.

    Supported instructions: ``FROM``, ``WORKDIR``, ``COPY``, ``RUN``,
    ``ENV``, ``EXPOSE``, ``CMD``. Anything else raises :class:`RecipeError`
    with the offending line number.
    """
    stages: list[BuildStage] = []
    for line, content in _logical_lines(text):
        keyword, _, args = content.partition(" ")
        keyword = keyword.upper()
        args = args.strip()

        if keyword == "FROM":
            stages.append(_parse_from(args, line))
            continue
        if not stages:
            raise RecipeError(f"{keyword} before the first FROM", line=line)
        if not args:
            raise RecipeError(f"{keyword} needs arguments", line=line)

        stage = stages[-1]
        if keyword == "WORKDIR":
            stage.steps.append(WorkdirStep(path=args))
        elif keyword == "COPY":
            stage.steps.append(_parse_copy(args, line))
        elif keyword == "RUN":
            stage.steps.append(RunStep(command=_parse_command(args, line)))
        elif keyword == "ENV":
            stage.steps.append(_parse_env(args, line))
        elif keyword == "EXPOSE":
            stage.expose.extend(_parse_expose(args, line))
        elif keyword == "CMD":
            stage.cmd = _parse_command(args, line)
        else:
            raise RecipeError(f"unsupported instruction {keyword}", line=line)

    if not stages:
        raise RecipeError("Recipe has no FROM instruction")
    return BuildRecipe(stages=stages)


def load_recipe(path: str | Path) -> BuildRecipe:
    """Read and parse a recipe file."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise RecipeError(f"Cannot read recipe {path}", cause=exc).with_context(path=str(path))
    try:
        return parse_recipe(text)
    except RecipeError as exc:
        raise exc.with_context(path=str(path))


def write_recipe(recipe: BuildRecipe, path: str | Path) -> str:
    """Validate and write *recipe* to *path*. Returns the written path."""
    recipe.validate_recipe()
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(recipe.render(), encoding="utf-8")
    logger.info("recipe.written", path=str(path), stages=len(recipe.stages))
    return str(path)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _render_command(command: str | list[str]) -> str:
    return json.dumps(command) if isinstance(command, list) else command


def _quote_env(value: str) -> str:
    if value == "" or any(ch.isspace() or ch in "\"'\\" for ch in value):
        return json.dumps(value)
    return value


__all__ = [
    "BUILDER_STAGE",
    "BuildRecipe",
    "BuildStage",
    "CopyStep",
    "EnvStep",
    "RunStep",
    "RuntimeSource",
    "WorkdirStep",
    "load_recipe",
    "parse_recipe",
    "single_stage",
    "two_phase",
    "write_recipe",
]
