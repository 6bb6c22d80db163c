"""Process settings for the tally invoicing service.

``TallySettings`` reads ``TALLY_*`` environment variables and a local
``.env`` file. The ``.env`` file is where operators keep credentials for
local runs; it is listed in ``.gitignore`` and never committed (see
:mod:`tally.deploy.vcs`).

Order of precedence (highest → lowest):
    1. Environment variables (``TALLY_PORT``, ``TALLY_LOG_LEVEL``, ...)
    2. ``.env`` file
    3. Defaults below
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tally.core.logging import LOG_LEVELS

DEFAULT_PORT = 8080
WELCOME_TEXT = "Welcome to Tally invoicing!\n"


class TallySettings(BaseSettings):
    """Settings for the HTTP service and the CLI.

    Fields
    ──────
    host          : Bind address for the HTTP service
    port          : Bind port for the HTTP service
    debug         : Enable debug mode (verbose logging)
    log_level     : structlog log level
    log_json      : Force JSON (True) or console (False) logs; None = auto
    welcome_text  : Body returned for every request
    """

    model_config = SettingsConfigDict(
        env_prefix="TALLY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Network ──────────────────────────────────────────────────
    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535, description="Bind port")

    # ── Runtime ──────────────────────────────────────────────────
    debug: bool = False
    log_level: str = Field(default="INFO", description="Log level")
    log_json: bool | None = Field(default=None, description="JSON logs (None = auto)")

    # ── Response ─────────────────────────────────────────────────
    welcome_text: str = Field(default=WELCOME_TEXT, description="Fixed response body")

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        value = value.upper()
        if value not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        return value


@lru_cache(maxsize=1)
def get_settings() -> TallySettings:
    """Cached settings, loaded once per process."""
    return TallySettings()


__all__ = ["DEFAULT_PORT", "TallySettings", "WELCOME_TEXT", "get_settings"]
