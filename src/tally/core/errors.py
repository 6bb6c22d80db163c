"""
Structured error types for tally.

Every failure the toolchain can hit while building, running or composing
containers is raised as a :class:`TallyError` subclass. Errors carry a
category, a free-form context mapping and an optional chained cause so
that the CLI can print a clear message and ``--json`` output can render
the same information for scripts.

Nothing here is retryable. The startup workflow is a single manual pass:
a failed build, a bound port or a missing env file is reported to the
operator and the pass stops.

Architecture:
    ::

        TallyError
        ├── ConfigError
        │   └── EnvFileError
        │       └── MissingEnvFileError
        ├── RecipeError
        ├── ComposeError
        │   ├── UnknownDependencyError
        │   └── DependencyCycleError
        └── ContainerError
            ├── RuntimeNotFoundError
            ├── BuildError
            └── ContainerStartError
                └── PortConflictError

Tags:
    errors, exceptions, error-hierarchy, tally
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories, used for output grouping."""

    CONFIG = "CONFIG"
    RECIPE = "RECIPE"
    COMPOSE = "COMPOSE"
    RUNTIME = "RUNTIME"
    INTERNAL = "INTERNAL"


class TallyError(Exception):
    """Base exception for all tally errors.

    Parameters
    ----------
    message
        Human-readable description, printed as-is by the CLI.
    category
        Overrides the subclass ``default_category``.
    context
        Extra metadata (service, image, port, path...).
    cause
        Underlying exception, also chained as ``__cause__``.

    Example::

        >>> err = TallyError("boom").with_context(service="db")
        >>> err.to_dict()["context"]
        {'service': 'db'}
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context: dict[str, Any] = dict(context or {})
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> TallyError:
        """Merge *kwargs* into the error context (fluent API)."""
        self.context.update(kwargs)
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to a dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
        }
        if self.context:
            result["context"] = dict(self.context)
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigError(TallyError):
    """Configuration is invalid or incomplete."""

    default_category = ErrorCategory.CONFIG


class EnvFileError(ConfigError):
    """An environment file could not be read."""


class MissingEnvFileError(EnvFileError):
    """An environment file referenced by a declaration does not exist."""

    def __init__(self, path: str, message: str | None = None):
        self.path = path
        super().__init__(
            message or f"Environment file not found: {path}",
            context={"path": path},
        )


# =============================================================================
# RECIPE ERRORS
# =============================================================================


class RecipeError(TallyError):
    """A build recipe cannot be parsed or is invalid."""

    default_category = ErrorCategory.RECIPE

    def __init__(self, message: str, *, line: int | None = None, **kwargs: Any):
        self.line = line
        if line is not None:
            message = f"line {line}: {message}"
        super().__init__(message, **kwargs)
        if line is not None:
            self.context.setdefault("line", line)


# =============================================================================
# COMPOSE ERRORS
# =============================================================================


class ComposeError(TallyError):
    """An orchestration recipe cannot be parsed or is invalid."""

    default_category = ErrorCategory.COMPOSE


class UnknownDependencyError(ComposeError):
    """A declaration depends on a service that is not declared."""

    def __init__(self, service: str, dependency: str):
        self.service = service
        self.dependency = dependency
        super().__init__(
            f"Service {service!r} depends on undeclared service {dependency!r}",
            context={"service": service, "dependency": dependency},
        )


class DependencyCycleError(ComposeError):
    """Declarations depend on each other cyclically."""

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(
            "Circular dependency: " + " -> ".join(cycle),
            context={"cycle": cycle},
        )


# =============================================================================
# CONTAINER RUNTIME ERRORS
# =============================================================================


class ContainerError(TallyError):
    """The container runtime reported a failure."""

    default_category = ErrorCategory.RUNTIME


class RuntimeNotFoundError(ContainerError):
    """The container runtime CLI is not on PATH."""


class BuildError(ContainerError):
    """An image build failed."""


class ContainerStartError(ContainerError):
    """A container failed to start."""


class PortConflictError(ContainerStartError):
    """The requested host port is already bound."""


__all__ = [
    "BuildError",
    "ComposeError",
    "ConfigError",
    "ContainerError",
    "ContainerStartError",
    "DependencyCycleError",
    "EnvFileError",
    "ErrorCategory",
    "MissingEnvFileError",
    "PortConflictError",
    "RecipeError",
    "RuntimeNotFoundError",
    "TallyError",
    "UnknownDependencyError",
]
