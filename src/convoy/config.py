"""Configuration models for convoy.

Two layers of configuration sit next to the parameter file:

- ``ConvoySettings``: process-wide settings (log level, docker binary,
  output directory) read from ``CONVOY_*`` environment variables or a
  ``.env`` file via pydantic-settings.
- ``DeploymentConfig``: one deployment operation (mode, target services,
  wait/readiness switches). Built by the CLI, or by CI through
  ``DeploymentConfig.from_env()`` reading ``CONVOY_DEPLOY_*``.

Architecture Decisions:
    - Override precedence: kwargs > env vars > field defaults.
    - ``run_id`` is auto-generated so every operation is traceable in the
      results directory and in log lines.

Example::

    config = DeploymentConfig(
        mode=DeploymentMode.UP,
        targets=["api"],
        params_file=Path("convoy.yml"),
    )

Tags:
    config, settings, pydantic, pydantic-settings, environment
"""

from __future__ import annotations

import os
import uuid
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConvoySettings(BaseSettings):
    """Process-wide convoy settings.

    All fields can be set via ``CONVOY_*`` environment variables (e.g.
    ``CONVOY_LOG_LEVEL=DEBUG``) or a ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="CONVOY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: Literal["auto", "console", "json"] = Field(default="auto")

    # ── Files ────────────────────────────────────────────────────
    params_file: Path = Field(default=Path("convoy.yml"))
    output_dir: Path = Field(default=Path("deploy-results"))
    render_dir: Path = Field(default=Path(".convoy"))

    # ── Docker ───────────────────────────────────────────────────
    docker_binary: str = Field(default="docker")
    command_timeout_seconds: int = Field(default=300)

    @property
    def json_logs(self) -> bool | None:
        """``None`` lets the logger auto-detect from the terminal."""
        if self.log_format == "auto":
            return None
        return self.log_format == "json"


@lru_cache(maxsize=1)
def get_settings() -> ConvoySettings:
    """Return the cached settings instance."""
    return ConvoySettings()


def reset_settings() -> None:
    """Clear the settings cache (tests, env changes)."""
    get_settings.cache_clear()


class DeploymentMode(str, Enum):
    """Deployment operation mode."""

    UP = "up"  # Converge and start services
    DOWN = "down"  # Stop and remove services
    RESTART = "restart"  # Down, then up
    STATUS = "status"  # Report service status
    LOGS = "logs"  # Collect service logs


class DeploymentConfig(BaseModel):
    """Configuration for one deployment operation."""

    # What to deploy
    mode: DeploymentMode = Field(default=DeploymentMode.UP)
    targets: list[str] = Field(
        default_factory=list,
        description="Service names to act on (empty = all)",
    )
    params_file: Path = Field(default=Path("convoy.yml"))
    project_name: str | None = Field(
        default=None,
        description="Compose project name (default: {project_id}-{environment})",
    )
    image_tag: str | None = Field(
        default=None,
        description="Tag applied to every service built by CI (usually the commit SHA)",
    )

    # Execution
    render_dir: Path = Field(
        default=Path(".convoy"),
        description="Directory for rendered compose/proxy/CI files",
    )
    pull: bool = Field(default=True, description="Pull images before starting")
    remove_orphans: bool = Field(default=True)
    wait: bool = Field(default=True, description="Wait for container healthchecks")
    check_readiness: bool = Field(default=True, description="Poll the external endpoint")
    timeout_seconds: int = Field(default=300, description="Timeout for each docker command")
    startup_timeout_seconds: int = Field(
        default=120,
        description="Per-container healthcheck timeout",
    )
    log_tail: int = Field(default=200)

    # Output
    output_dir: Path = Field(default=Path("deploy-results"))
    verbose: bool = Field(default=False)

    # Internal
    run_id: str = Field(default="", description="Unique run identifier (auto-generated)")

    @model_validator(mode="after")
    def _set_defaults(self) -> DeploymentConfig:
        if not self.run_id:
            self.run_id = uuid.uuid4().hex[:12]
        return self

    @classmethod
    def from_env(cls, **overrides: Any) -> DeploymentConfig:
        """Create config from CONVOY_DEPLOY_* environment variables."""
        env_map = {
            "mode": "CONVOY_DEPLOY_MODE",
            "targets": "CONVOY_DEPLOY_TARGETS",
            "params_file": "CONVOY_DEPLOY_PARAMS_FILE",
            "project_name": "CONVOY_DEPLOY_PROJECT_NAME",
            "image_tag": "CONVOY_DEPLOY_IMAGE_TAG",
            "pull": "CONVOY_DEPLOY_PULL",
            "wait": "CONVOY_DEPLOY_WAIT",
            "check_readiness": "CONVOY_DEPLOY_CHECK_READINESS",
            "timeout_seconds": "CONVOY_DEPLOY_TIMEOUT_SECONDS",
            "output_dir": "CONVOY_DEPLOY_OUTPUT_DIR",
            "verbose": "CONVOY_DEPLOY_VERBOSE",
        }
        values: dict[str, Any] = {}
        for field_name, env_var in env_map.items():
            env_val = os.environ.get(env_var)
            if env_val is None:
                continue
            if field_name == "targets":
                values[field_name] = [t.strip() for t in env_val.split(",") if t.strip()]
            elif field_name == "timeout_seconds":
                values[field_name] = int(env_val)
            elif field_name in ("pull", "wait", "check_readiness", "verbose"):
                values[field_name] = env_val.lower() in ("true", "1", "yes")
            else:
                values[field_name] = env_val
        values.update(overrides)
        return cls(**values)
