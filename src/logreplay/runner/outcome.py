"""
Step outcomes for the replay pipeline.

Every pipeline step produces exactly one of:
    - Ok:       the process ran and exited 0
    - SoftFail: the process ran but exited non-zero (the pipeline may go on)
    - HardFail: the process could not be run at all (the pipeline aborts)

The orchestrator inspects the outcome type to decide whether to continue,
rather than mixing exceptions and return values.
"""

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

from logreplay.errors import ProcessError

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    """The step succeeded."""

    value: T


@dataclass(frozen=True)
class SoftFail:
    """The process ran but reported failure through its exit code."""

    exit_code: int
    stdout: str = ""


@dataclass(frozen=True)
class HardFail:
    """The process never completed (spawn failure or timeout)."""

    cause: ProcessError


StepOutcome = Union[Ok[T], SoftFail, HardFail]
