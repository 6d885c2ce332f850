"""
Schema definitions for logreplay.

This module defines the Pydantic models that travel over the wire:
- OutputEvent: One chunk of the replay output stream
- ReplayRequest: What the observer asks to replay
- ReplayResult: The structured outcome embedded in the stream

Design Decisions:
    - Wire names match the browser client (camelCase, `type`/`data`/`code`)
    - Python attribute names stay snake_case; aliases bridge the two
    - Results are frozen once built
    - Alerts are passed through untouched; only their container is checked
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# =============================================================================
# Constants
# =============================================================================

#: Number of non-blank lines fed to the explain step.
MAX_EXPLAIN_LINES = 10

#: Literal delimiters framing the result payload inside the stdout stream.
START_MARKER = "---RESULTS_JSON---"
END_MARKER = "---END_RESULTS---"


# =============================================================================
# Output Events
# =============================================================================


class OutputKind(str, Enum):
    """Kind of an output event."""

    STDOUT = "stdout"
    STDERR = "stderr"
    EXIT = "exit"
    ERROR = "error"


class OutputEvent(BaseModel):
    """
    A single event in the replay output stream.

    Events are produced by the process runner (one per stdout/stderr chunk)
    and by the orchestrator (progress notes, errors, the framed result and
    the terminal exit event).

    Attributes:
        kind: What sort of event this is
        text: The event's text (a raw output chunk or a message)
        exit_code: Only set on exit events
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    kind: OutputKind = Field(..., alias="type")
    text: str = Field(default="", alias="data")
    exit_code: int | None = Field(default=None, alias="code")

    @classmethod
    def stdout(cls, text: str) -> "OutputEvent":
        """Create a stdout event."""
        return cls(kind=OutputKind.STDOUT, text=text)

    @classmethod
    def stderr(cls, text: str) -> "OutputEvent":
        """Create a stderr event."""
        return cls(kind=OutputKind.STDERR, text=text)

    @classmethod
    def error(cls, text: str) -> "OutputEvent":
        """Create an error event."""
        return cls(kind=OutputKind.ERROR, text=text)

    @classmethod
    def exit(cls, exit_code: int, text: str = "") -> "OutputEvent":
        """Create a terminal exit event."""
        return cls(kind=OutputKind.EXIT, text=text, exit_code=exit_code)

    @property
    def is_terminal(self) -> bool:
        """Whether this event ends the stream."""
        return self.kind == OutputKind.EXIT

    def to_wire(self) -> dict[str, Any]:
        """Serialize using the wire field names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# =============================================================================
# Requests and Results
# =============================================================================


class ReplayRequest(BaseModel):
    """
    Payload of an inbound `replay` event.

    Emptiness is deliberately not validated here; the orchestrator rejects
    blank content or type with output events so the observer sees why.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    log_content: str = Field(default="", alias="logContent")
    log_type: str = Field(default="", alias="logType")


Alert = dict[str, Any]


class ReplayResult(BaseModel):
    """
    The structured outcome of one replay.

    Built once at the end of the pipeline, embedded in the output stream
    between START_MARKER and END_MARKER, and kept in the connection's session.

    Attributes:
        alerts: Alerts reported by the engine, passed through as-is
        replay_command: Command line used for the replay step
        alerts_command: Command line used to list alerts
        explain_output: Raw stdout of the explain step
        explain_command: Command line used for the explain step
        total_lines: Non-blank lines in the submitted content
        explained_lines: Non-blank lines fed to the explain step
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    alerts: list[Alert] = Field(default_factory=list)
    replay_command: str = Field(default="", alias="replayCommand")
    alerts_command: str = Field(default="", alias="alertsCommand")
    explain_output: str = Field(default="", alias="explainOutput")
    explain_command: str = Field(default="", alias="explainCommand")
    total_lines: int = Field(default=0, alias="totalLines", ge=0)
    explained_lines: int = Field(default=0, alias="explainedLines", ge=0)

    @field_validator("alerts", mode="before")
    @classmethod
    def drop_non_object_alerts(cls, v: Any) -> Any:
        """Keep only JSON objects from the alerts array."""
        if isinstance(v, list):
            return [item for item in v if isinstance(item, dict)]
        return v

    @model_validator(mode="after")
    def check_line_counts(self) -> "ReplayResult":
        """explained_lines must equal min(total_lines, MAX_EXPLAIN_LINES)."""
        expected = min(self.total_lines, MAX_EXPLAIN_LINES)
        if self.explained_lines != expected:
            msg = (
                f"explainedLines must be {expected} for totalLines={self.total_lines}, "
                f"got {self.explained_lines}"
            )
            raise ValueError(msg)
        return self

    def to_wire(self) -> dict[str, Any]:
        """Serialize using the wire field names."""
        return self.model_dump(mode="json", by_alias=True)
