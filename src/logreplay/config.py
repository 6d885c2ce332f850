"""
Settings and logging setup for logreplay.

Settings are resolved once at startup, in increasing precedence:
    1. Built-in defaults
    2. An optional YAML file
    3. Environment variables

The execution mode never changes after startup; everything downstream
(command resolution, temp file placement) takes a Settings instance.

Example settings file:
    mode: contained
    container_name: crowdsec
    shared_dir: ./data/replay
    container_shared_dir: /tmp/replay
    step_timeout_seconds: 120
"""

import logging
import os
import tempfile
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from rich.logging import RichHandler

from logreplay.errors import ConfigLoadError


class ExecutionMode(str, Enum):
    """
    How the engine's command-line tools are invoked.

    DIRECT runs them on the host through an elevation wrapper (sudo).
    CONTAINED runs them inside a running container through `docker exec`.
    """

    DIRECT = "direct"
    CONTAINED = "contained"


# Accepted spellings for the mode variable
_MODE_ALIASES = {
    "direct": ExecutionMode.DIRECT,
    "host": ExecutionMode.DIRECT,
    "local": ExecutionMode.DIRECT,
    "contained": ExecutionMode.CONTAINED,
    "container": ExecutionMode.CONTAINED,
    "docker": ExecutionMode.CONTAINED,
}

# Environment variable -> settings field
ENV_VARS: dict[str, str] = {
    "LOGREPLAY_MODE": "mode",
    "CROWDSEC_MODE": "mode",
    "LOGREPLAY_CONTAINER": "container_name",
    "LOGREPLAY_SHARED_DIR": "shared_dir",
    "LOGREPLAY_CONTAINER_DIR": "container_shared_dir",
    "LOGREPLAY_ELEVATION": "elevation_wrapper",
    "LOGREPLAY_LAUNCHER": "container_launcher",
    "LOGREPLAY_STEP_TIMEOUT": "step_timeout_seconds",
    "LOGREPLAY_CORS_ORIGINS": "cors_origins",
    "LOGREPLAY_LOG_LEVEL": "log_level",
    "HOST": "host",
    "PORT": "port",
}


class Settings(BaseModel):
    """
    Process-wide configuration.

    Attributes:
        mode: Direct (sudo on the host) or contained (docker exec)
        container_name: Container running the engine, contained mode only
        shared_dir: Host directory bind-mounted into the container
        container_shared_dir: The same directory as seen inside the container
        elevation_wrapper: Executable used to elevate in direct mode
        container_launcher: Executable used to enter the container
        engine_binary: The engine daemon used for replays
        cli_binary: The engine's management CLI
        step_timeout_seconds: Per-step process timeout (0 disables)
        host: Interface the server binds to
        port: Port the server listens on
        cors_origins: Origins allowed to call the HTTP API
        log_level: Root logging level
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    mode: ExecutionMode = ExecutionMode.DIRECT
    container_name: str = Field(default="crowdsec", min_length=1)
    shared_dir: Path = Path("./data/replay")
    container_shared_dir: str = Field(default="/tmp/replay", min_length=1)
    elevation_wrapper: str = Field(default="sudo", min_length=1)
    container_launcher: str = Field(default="docker", min_length=1)
    engine_binary: str = Field(default="crowdsec", min_length=1)
    cli_binary: str = Field(default="cscli", min_length=1)
    step_timeout_seconds: float = Field(default=300.0, ge=0)
    host: str = "127.0.0.1"
    port: int = Field(default=3000, gt=0, le=65535)
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:5173"])
    log_level: str = "INFO"

    @field_validator("mode", mode="before")
    @classmethod
    def normalize_mode(cls, v: Any) -> Any:
        """Accept common spellings of the execution mode."""
        if isinstance(v, str):
            key = v.strip().lower()
            if key not in _MODE_ALIASES:
                msg = f"Unknown execution mode: {v!r} (expected 'direct' or 'contained')"
                raise ValueError(msg)
            return _MODE_ALIASES[key]
        return v

    @field_validator("cors_origins", mode="before")
    @classmethod
    def split_origins(cls, v: Any) -> Any:
        """Allow a comma-separated string of origins."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Log level must be a name the logging module knows."""
        level = v.strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            msg = f"Unknown log level: {v}"
            raise ValueError(msg)
        return level

    @property
    def is_contained(self) -> bool:
        """Whether commands run inside the container."""
        return self.mode == ExecutionMode.CONTAINED

    @property
    def step_timeout(self) -> float | None:
        """Timeout for a single step in seconds, or None when disabled."""
        return self.step_timeout_seconds or None

    @property
    def temp_dir(self) -> Path:
        """Host directory where temporary log files are written."""
        if self.is_contained:
            return self.shared_dir
        return Path(tempfile.gettempdir())


def _read_settings_file(path: Path) -> dict[str, Any]:
    """Read a YAML settings file into a dict."""
    try:
        content = path.read_text(encoding="utf-8")
        data = yaml.safe_load(content)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigLoadError(source=str(path), underlying_error=str(e)) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigLoadError(
            source=str(path),
            underlying_error="top level must be a mapping",
        )
    return data


def _read_env(environ: Mapping[str, str]) -> dict[str, Any]:
    """Collect settings overrides from environment variables."""
    values: dict[str, Any] = {}
    for var, key in ENV_VARS.items():
        raw = environ.get(var)
        if raw is not None and raw.strip():
            # First variable wins when two map to the same field
            values.setdefault(key, raw.strip())
    return values


def load_settings(
    path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    """
    Resolve settings from defaults, an optional YAML file and the environment.

    Args:
        path: Optional YAML settings file
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Validated, frozen Settings

    Raises:
        ConfigLoadError: If the file cannot be read or a value is invalid
    """
    values: dict[str, Any] = {}
    source = "environment"
    if path is not None:
        values.update(_read_settings_file(Path(path)))
        source = str(path)
    values.update(_read_env(os.environ if environ is None else environ))

    try:
        return Settings.model_validate(values)
    except ValidationError as e:
        loc = e.errors()[0]["loc"]
        raise ConfigLoadError(
            source=source,
            underlying_error=str(e),
            key=".".join(str(part) for part in loc),
        ) from e


def setup_logging(level: str = "INFO") -> None:
    """Configure root logging with a Rich handler."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(name)s: %(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )
