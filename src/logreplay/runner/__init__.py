"""
Process execution layer for logreplay.

This package holds the pieces the orchestrator drives for each step:
    - commands: map a logical step to an executable + argv for the mode
    - process: spawn a command and stream its output as events
    - artifacts: temporary log files visible to the engine
    - outcome: Ok / SoftFail / HardFail step results

Example:
    from logreplay.runner import ProcessRunner, LogicalCommand, resolve_for

    command = resolve_for(settings, LogicalCommand.LIST_RESULTS)
    result = await ProcessRunner().run(command.executable, command.argv, emit)
"""

from logreplay.runner.artifacts import TempArtifact, TempArtifactManager
from logreplay.runner.commands import (
    LogicalCommand,
    ResolvedCommand,
    ToolInvocation,
    build_invocation,
    resolve_command,
    resolve_for,
)
from logreplay.runner.outcome import HardFail, Ok, SoftFail, StepOutcome
from logreplay.runner.process import OutputCallback, ProcessResult, ProcessRunner

__all__ = [
    "HardFail",
    "LogicalCommand",
    "Ok",
    "OutputCallback",
    "ProcessResult",
    "ProcessRunner",
    "ResolvedCommand",
    "SoftFail",
    "StepOutcome",
    "TempArtifact",
    "TempArtifactManager",
    "ToolInvocation",
    "build_invocation",
    "resolve_command",
    "resolve_for",
]
