"""Settings models and the YAML loader consumed by ``filebridge serve``."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError

from filebridge import __version__
from filebridge.runtime.cache import DEFAULT_TTL
from filebridge.runtime.dispatcher import DEFAULT_INSTRUCTIONS
from filebridge.server.errors import ConfigurationError


class ServerSettings(BaseModel):
    """Identity advertised in the ``initialize`` handshake."""

    name: str = "filebridge"
    version: str = __version__
    instructions: str = DEFAULT_INSTRUCTIONS


class CacheSettings(BaseModel):
    enabled: bool = True
    ttl: float = Field(default=DEFAULT_TTL, gt=0, description="Seconds a cached listing stays valid.")
    max_entries: int = Field(default=1000, ge=1)
    coalesce: bool = Field(
        default=True, description="Share one computation among concurrent identical misses."
    )


class ExecutionSettings(BaseModel):
    backoff_base: float = Field(default=1.0, ge=0)
    max_backoff: float | None = Field(default=30.0, gt=0)


class SecuritySettings(BaseModel):
    """The caller identity attached to requests arriving on stdio."""

    user_id: str | None = "local"
    roles: list[str] = Field(default_factory=lambda: ["user"])
    permissions: list[str] = Field(default_factory=lambda: ["read", "write"])


class ToolOverride(BaseModel):
    """Per-tool policy adjustments.  Unset fields keep the built-in value."""

    enabled: bool = True
    requires_auth: bool | None = None
    required_permissions: list[str] | None = None
    timeout: float | None = Field(default=None, gt=0)
    max_retries: int | None = Field(default=None, ge=0)


class TelemetrySettings(BaseModel):
    enabled: bool = False
    otlp_endpoint: str | None = None


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"


class GatewaySettings(BaseModel):
    """Top-level settings parsed from YAML.  Every section is optional."""

    server: ServerSettings = Field(default_factory=ServerSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    execution: ExecutionSettings = Field(default_factory=ExecutionSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    tools: dict[str, ToolOverride] = Field(default_factory=dict)
    telemetry: TelemetrySettings = Field(default_factory=TelemetrySettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


class SettingsLoader:
    """Load and validate a settings YAML file into :class:`GatewaySettings`."""

    def __init__(self, path: Path) -> None:
        self._path = path

    def load(self) -> GatewaySettings:
        """Read YAML, interpolate env vars, and validate.

        ``${VAR}`` and ``$VAR`` references are expanded with
        :func:`os.path.expandvars` before parsing.  An empty file yields the
        defaults.

        Raises:
            ConfigurationError: On read errors, YAML errors or schema violations.
        """
        try:
            raw = self._path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigurationError(f"Cannot read {self._path}: {exc}") from exc

        expanded = os.path.expandvars(raw)

        try:
            data: Any = yaml.safe_load(expanded)
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"YAML parse error: {exc}") from exc

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigurationError("Settings YAML must be a mapping")

        try:
            return GatewaySettings.model_validate(data)
        except ValidationError as exc:
            raise ConfigurationError(str(exc)) from exc
