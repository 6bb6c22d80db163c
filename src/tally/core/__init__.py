"""Tally core -- logging, errors, settings and env-file parsing.

Layout::

    errors.py      TallyError hierarchy (config, recipe, compose, runtime)
    logging.py     structlog configuration + get_logger()
    settings.py    TallySettings (pydantic-settings, TALLY_* env vars)
    envfile.py     KEY=value env file parser
"""

from tally.core.errors import (
    BuildError,
    ComposeError,
    ConfigError,
    ContainerError,
    ContainerStartError,
    DependencyCycleError,
    EnvFileError,
    ErrorCategory,
    MissingEnvFileError,
    PortConflictError,
    RecipeError,
    RuntimeNotFoundError,
    TallyError,
    UnknownDependencyError,
)
from tally.core.logging import configure_logging, get_logger

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
    "configure_logging",
    "get_logger",
]
