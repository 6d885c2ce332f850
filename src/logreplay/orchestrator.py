"""
Replay Orchestrator for logreplay.

Drives the fixed four-step pipeline that replays submitted log lines
through the analysis engine and collects what it detected.

Pipeline:
    1. Write the log content to a temporary file
    2. clear:   delete all alerts left by earlier replays
    3. replay:  run the engine over the file as the given log type
    4. list:    fetch the resulting alerts as JSON
    5. explain: run the line-by-line explain mode on the first lines
    6. Build the ReplayResult and emit it framed inside stdout
    7. Emit the terminal exit event

Failure policy:
    - Blank content or type: rejected before any file or process is touched
    - Replay exits non-zero: reported as an error event, pipeline continues
    - Alerts JSON malformed: reported as a stderr warning, alerts = []
    - A process cannot be spawned or times out: pipeline aborts and the
      error propagates to the caller after the stream is closed
    - Temp file removal fails: ignored

Whatever happens, the stream ends with exactly one exit event and every
temporary file is removed.

Concurrency note:
    Pipelines of different sessions can run at the same time. They share
    the engine's alert database, so one session's clear step can remove
    alerts another session is about to list. Nothing here serializes
    sessions against each other.
"""

import json
import logging
from collections.abc import Sequence
from enum import Enum
from typing import Any

from logreplay.config import Settings
from logreplay.errors import LogReplayError, ProcessError
from logreplay.framing import encode_result_frame
from logreplay.runner import (
    HardFail,
    LogicalCommand,
    Ok,
    OutputCallback,
    ProcessResult,
    ProcessRunner,
    ResolvedCommand,
    SoftFail,
    StepOutcome,
    TempArtifact,
    TempArtifactManager,
    resolve_for,
)
from logreplay.schema import MAX_EXPLAIN_LINES, Alert, OutputEvent, ReplayResult

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    """Progress of a replay pipeline."""

    IDLE = "idle"
    CLEARING_PRIOR_RESULTS = "clearing_prior_results"
    REPLAYING = "replaying"
    LISTING_RESULTS = "listing_results"
    EXPLAINING = "explaining"
    COMPLETED = "completed"
    FAILED = "failed"


def non_blank_lines(content: str) -> list[str]:
    """Lines of content that contain something other than whitespace."""
    return [line for line in content.splitlines() if line.strip()]


def parse_alerts(stdout: str) -> list[Alert]:
    """
    Decode the alert list printed by the list step.

    Empty output means no alerts. Valid JSON that is not an array is
    treated as no alerts as well.

    Raises:
        ValueError: If the output is not valid JSON
    """
    text = stdout.strip()
    if not text:
        return []
    parsed: Any = json.loads(text)
    if not isinstance(parsed, list):
        return []
    return [item for item in parsed if isinstance(item, dict)]


class ReplayOrchestrator:
    """
    Runs one replay pipeline at a time for its caller.

    An orchestrator keeps only the state of its current run, so each
    connection should use its own instance. The runner and artifact manager
    can be swapped out, which is how tests stand in for the real engine.

    Usage:
        orchestrator = ReplayOrchestrator(settings)
        result = await orchestrator.run(log_content, "nginx", emit)

    Attributes:
        settings: Execution mode and tool configuration
        runner: Spawns the engine's commands
        artifacts: Allocates the temporary log files
        state: Current pipeline state
    """

    def __init__(
        self,
        settings: Settings,
        runner: ProcessRunner | None = None,
        artifacts: TempArtifactManager | None = None,
    ) -> None:
        self.settings = settings
        self.runner = runner or ProcessRunner(timeout=settings.step_timeout)
        self.artifacts = artifacts or TempArtifactManager(settings)
        self.state = PipelineState.IDLE

    async def run(
        self,
        log_content: str,
        log_type: str,
        on_output: OutputCallback,
    ) -> ReplayResult | None:
        """
        Replay log content through the engine.

        Args:
            log_content: The raw log lines
            log_type: Engine log type label (e.g. "nginx", "syslog")
            on_output: Receives every output event, in order

        Returns:
            The ReplayResult, or None if the request was rejected

        Raises:
            ProcessError: If a step's command could not be run
            Exception: Any unexpected error, after the stream is closed
        """
        self.state = PipelineState.IDLE

        if not log_content or not log_content.strip():
            await self._reject(on_output, "Log content is empty.")
            return None
        if not log_type or not log_type.strip():
            await self._reject(on_output, "Log type is required.")
            return None
        log_type = log_type.strip()

        exit_sent = False
        artifact: TempArtifact | None = None
        try:
            artifact = self.artifacts.allocate(log_content)
            await on_output(OutputEvent.stdout(f"Wrote log to {artifact.host_path}\n"))

            result = await self._run_steps(log_content, log_type, artifact, on_output)

            await on_output(OutputEvent.stdout(encode_result_frame(result)))
            self.state = PipelineState.COMPLETED
            exit_sent = True
            await on_output(OutputEvent.exit(0, "Replay complete"))
            return result
        except Exception as e:
            self.state = PipelineState.FAILED
            message = e.message if isinstance(e, LogReplayError) else str(e)
            logger.error("Replay failed: %s", message or type(e).__name__)
            if not exit_sent:
                await on_output(OutputEvent.error(f"Error: {message}\n"))
                await on_output(OutputEvent.exit(1, "Replay failed"))
            raise
        finally:
            self.artifacts.release(artifact)

    async def _run_steps(
        self,
        log_content: str,
        log_type: str,
        artifact: TempArtifact,
        on_output: OutputCallback,
    ) -> ReplayResult:
        """Run clear, replay, list and explain; build the result."""
        # Step: clear earlier alerts; only its streamed output matters
        self.state = PipelineState.CLEARING_PRIOR_RESULTS
        clear_cmd = resolve_for(self.settings, LogicalCommand.CLEAR_RESULTS)
        self._unwrap(await self._step(clear_cmd, on_output))

        # Step: replay the full log
        self.state = PipelineState.REPLAYING
        replay_cmd = resolve_for(
            self.settings,
            LogicalCommand.REPLAY,
            path=artifact.execution_path,
            log_type=log_type,
        )
        outcome = await self._step(replay_cmd, on_output)
        self._unwrap(outcome)
        if isinstance(outcome, SoftFail):
            await on_output(
                OutputEvent.error(f"CrowdSec replay exited with code {outcome.exit_code}\n")
            )
        else:
            await on_output(OutputEvent.stdout("Replay completed successfully.\n"))

        # Step: list the alerts the replay produced
        self.state = PipelineState.LISTING_RESULTS
        list_cmd = resolve_for(self.settings, LogicalCommand.LIST_RESULTS)
        list_stdout = self._unwrap(await self._step(list_cmd, on_output))
        try:
            alerts = parse_alerts(list_stdout)
        except ValueError:
            await on_output(OutputEvent.stderr("Warning: Could not parse alerts JSON.\n"))
            alerts = []

        # Step: explain the first lines from a separate file
        self.state = PipelineState.EXPLAINING
        lines = non_blank_lines(log_content)
        explain_lines = lines[:MAX_EXPLAIN_LINES]
        if len(lines) > MAX_EXPLAIN_LINES:
            await on_output(
                OutputEvent.stdout(
                    f"\nNote: explain runs on the first {MAX_EXPLAIN_LINES} of "
                    f"{len(lines)} lines.\n"
                )
            )
        with self.artifacts.artifact("\n".join(explain_lines) + "\n") as explain_artifact:
            explain_cmd = resolve_for(
                self.settings,
                LogicalCommand.EXPLAIN,
                path=explain_artifact.execution_path,
                log_type=log_type,
            )
            explain_output = self._unwrap(await self._step(explain_cmd, on_output))

        return ReplayResult(
            alerts=alerts,
            replay_command=replay_cmd.display(),
            alerts_command=list_cmd.display(),
            explain_output=explain_output,
            explain_command=explain_cmd.display(),
            total_lines=len(lines),
            explained_lines=len(explain_lines),
        )

    async def _step(
        self,
        command: ResolvedCommand,
        on_output: OutputCallback,
    ) -> StepOutcome[str]:
        """Announce and run one command, classifying how it ended."""
        await on_output(OutputEvent.stdout(f"\nRunning: {command.display()}\n"))
        try:
            result: ProcessResult = await self.runner.run(
                command.executable, command.argv, on_output
            )
        except ProcessError as e:
            return HardFail(e)
        if result.exit_code != 0:
            return SoftFail(result.exit_code, result.stdout)
        return Ok(result.stdout)

    @staticmethod
    def _unwrap(outcome: StepOutcome[str]) -> str:
        """Return a step's stdout, or raise the cause of a hard failure."""
        if isinstance(outcome, HardFail):
            raise outcome.cause
        if isinstance(outcome, SoftFail):
            return outcome.stdout
        return outcome.value

    @staticmethod
    async def _reject(on_output: OutputCallback, message: str) -> None:
        await on_output(OutputEvent.error(message))
        await on_output(OutputEvent.exit(1, "Validation failed"))


def command_lines(settings: Settings, log_type: str, path: str = "<log file>") -> Sequence[tuple[str, str]]:
    """The command line of every pipeline step under the given settings."""
    return [
        ("clear", resolve_for(settings, LogicalCommand.CLEAR_RESULTS).display()),
        ("replay", resolve_for(settings, LogicalCommand.REPLAY, path=path, log_type=log_type).display()),
        ("list", resolve_for(settings, LogicalCommand.LIST_RESULTS).display()),
        ("explain", resolve_for(settings, LogicalCommand.EXPLAIN, path=path, log_type=log_type).display()),
    ]
