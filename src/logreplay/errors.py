"""
Exception hierarchy for logreplay.

All logreplay exceptions inherit from LogReplayError, allowing callers to catch
every project-specific failure with a single except clause.

Exception Categories:
    - ConfigError: Settings could not be loaded or are invalid
    - ProcessError: An external command could not be spawned or timed out
    - ArtifactError: A temporary log file could not be written
    - ProtocolError: A framed result payload could not be decoded

Only process errors escape the replay pipeline. Everything else that can go
wrong during a replay (non-zero exit codes, malformed alert JSON, cleanup
failures) is reported as output events instead of exceptions.
"""

from dataclasses import dataclass, field
from typing import Any


# =============================================================================
# Error Codes
# =============================================================================

# Config errors: 1xxx
ERROR_CONFIG_INVALID = 1001
ERROR_CONFIG_LOAD = 1002

# Process errors: 2xxx
ERROR_PROCESS_SPAWN = 2001
ERROR_PROCESS_TIMEOUT = 2002

# Artifact errors: 3xxx
ERROR_ARTIFACT_WRITE = 3001

# Protocol errors: 4xxx
ERROR_PAYLOAD_DECODE = 4001
ERROR_STREAM_INCOMPLETE = 4002


# =============================================================================
# Base Exception
# =============================================================================


@dataclass
class LogReplayError(Exception):
    """
    Base exception for all logreplay errors.

    Attributes:
        message: Human-readable error description
        code: Numeric error code for programmatic handling
        suggestion: Optional hint for how to resolve the error
        context: Optional dict with additional debugging info
    """

    message: str = ""
    code: int = 0
    suggestion: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Format error for display."""
        parts = [f"[E{self.code}] {self.message}"]
        if self.suggestion:
            parts.append(f"\nSuggestion: {self.suggestion}")
        return "".join(parts)

    def __repr__(self) -> str:
        """Format error for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code}, "
            f"context={self.context!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "suggestion": self.suggestion,
            "context": self.context,
        }


# =============================================================================
# Config Errors
# =============================================================================


@dataclass
class ConfigError(LogReplayError):
    """Raised when settings are invalid."""

    key: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if self.code == 0:
            self.code = ERROR_CONFIG_INVALID
        self.context["key"] = self.key


@dataclass
class ConfigLoadError(ConfigError):
    """Raised when a settings file or environment value cannot be parsed."""

    source: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Could not load settings from {self.source}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_CONFIG_LOAD
        super().__post_init__()
        self.context.update({
            "source": self.source,
            "underlying_error": self.underlying_error,
        })


# =============================================================================
# Process Errors
# =============================================================================


@dataclass
class ProcessError(LogReplayError):
    """
    Base class for failures to run an external command.

    A non-zero exit code is NOT a ProcessError: it is returned to the caller
    as data. These errors mean the command never ran to completion at all.

    Attributes:
        executable: The program that was being launched
        argv: Arguments passed to the program
    """

    executable: str = ""
    argv: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context.update({
            "executable": self.executable,
            "argv": self.argv,
        })


@dataclass
class ProcessSpawnError(ProcessError):
    """Raised when an executable is missing or cannot be launched."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Failed to start {self.executable}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_PROCESS_SPAWN
        if not self.suggestion:
            self.suggestion = "Run 'logreplay doctor' to check the execution mode and tools"
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class ProcessTimeoutError(ProcessError):
    """Raised when a command exceeds the per-step timeout and is killed."""

    timeout_seconds: float = 0

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"{self.executable} timed out after {self.timeout_seconds:g}s"
        if self.code == 0:
            self.code = ERROR_PROCESS_TIMEOUT
        if not self.suggestion:
            self.suggestion = "Increase step_timeout_seconds or set it to 0 to disable"
        super().__post_init__()
        self.context["timeout_seconds"] = self.timeout_seconds


# =============================================================================
# Artifact Errors
# =============================================================================


@dataclass
class ArtifactError(LogReplayError):
    """Base class for temporary artifact errors."""

    path: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["path"] = self.path


@dataclass
class ArtifactWriteError(ArtifactError):
    """Raised when log content cannot be written to its temporary file."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Could not write log file {self.path}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_ARTIFACT_WRITE
        if not self.suggestion:
            self.suggestion = "Check that the shared directory exists and is writable"
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


# =============================================================================
# Protocol Errors
# =============================================================================


@dataclass
class ProtocolError(LogReplayError):
    """Base class for output stream framing errors."""


@dataclass
class PayloadDecodeError(ProtocolError):
    """Raised when the text between result markers is not a valid result."""

    payload_preview: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Could not decode replay result payload: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_PAYLOAD_DECODE
        self.context.update({
            "payload_preview": self.payload_preview,
            "underlying_error": self.underlying_error,
        })


@dataclass
class StreamIncompleteError(ProtocolError):
    """Raised when the output stream ends without an exit event."""

    url: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Connection to {self.url} closed before the replay finished"
        if self.code == 0:
            self.code = ERROR_STREAM_INCOMPLETE
        if not self.suggestion:
            self.suggestion = "Check the server log for the replay error"
        self.context["url"] = self.url
