"""
Unit tests for the replay orchestrator.

The engine is replaced by FakeRunner, so these tests check the pipeline's
event sequence and failure policy without spawning anything.

Tests cover:
- Request validation
- Step order and command lines
- Soft failures (non-zero exit) and hard failures (spawn errors)
- Alert parsing
- Explain truncation
- Exactly one terminal exit event
- Temp file cleanup
"""

from pathlib import Path

import pytest

from logreplay.config import Settings
from logreplay.errors import ArtifactWriteError, ProcessSpawnError, ProcessTimeoutError
from logreplay.framing import StreamResultParser
from logreplay.orchestrator import (
    PipelineState,
    ReplayOrchestrator,
    command_lines,
    non_blank_lines,
    parse_alerts,
)
from logreplay.runner import ProcessResult, TempArtifactManager
from logreplay.schema import OutputEvent, OutputKind


class RecordingArtifacts(TempArtifactManager):
    """TempArtifactManager that remembers every file it handed out."""

    def __init__(self, settings: Settings) -> None:
        super().__init__(settings)
        self.allocated: list[Path] = []

    def allocate(self, content: str):
        artifact = super().allocate(content)
        self.allocated.append(artifact.host_path)
        return artifact


def make_orchestrator(settings: Settings, runner) -> tuple[ReplayOrchestrator, RecordingArtifacts]:
    artifacts = RecordingArtifacts(settings)
    return ReplayOrchestrator(settings, runner=runner, artifacts=artifacts), artifacts


def assert_single_trailing_exit(events: list[OutputEvent], code: int) -> None:
    exits = [e for e in events if e.kind == OutputKind.EXIT]
    assert len(exits) == 1
    assert events[-1] is exits[0]
    assert exits[0].exit_code == code


def parse_stream(events: list[OutputEvent]) -> StreamResultParser:
    parser = StreamResultParser()
    parser.begin()
    for event in events:
        parser.feed(event)
    return parser


class TestHelpers:
    """Tests for module-level helpers."""

    def test_non_blank_lines(self) -> None:
        assert non_blank_lines("a\n\n  \nb\r\nc") == ["a", "b", "c"]
        assert non_blank_lines("") == []

    def test_parse_alerts(self, sample_alert: dict) -> None:
        import json

        assert parse_alerts(json.dumps([sample_alert])) == [sample_alert]
        assert parse_alerts("") == []
        assert parse_alerts("  \n") == []
        assert parse_alerts("null") == []
        assert parse_alerts('{"alerts": []}') == []
        assert parse_alerts('[{"id": 1}, 2, "x"]') == [{"id": 1}]

    def test_parse_alerts_invalid(self) -> None:
        with pytest.raises(ValueError):
            parse_alerts("not json at all")

    def test_command_lines(self) -> None:
        lines = dict(command_lines(Settings(mode="contained"), "nginx", path="/tmp/replay/x.log"))
        assert list(lines) == ["clear", "replay", "list", "explain"]
        assert lines["replay"] == (
            "docker exec crowdsec crowdsec --dsn file:///tmp/replay/x.log --type nginx --no-api"
        )


class TestValidation:
    """Blank requests are rejected before anything runs."""

    @pytest.mark.parametrize(
        "content,log_type,message",
        [
            ("", "nginx", "Log content is empty."),
            ("   \n\t", "nginx", "Log content is empty."),
            ("line", "", "Log type is required."),
            ("line", "  ", "Log type is required."),
        ],
    )
    async def test_rejected(
        self, direct_settings, fake_runner, collector, content, log_type, message
    ) -> None:
        orchestrator, artifacts = make_orchestrator(direct_settings, fake_runner)

        result = await orchestrator.run(content, log_type, collector)

        assert result is None
        assert collector.events == [
            OutputEvent.error(message),
            OutputEvent.exit(1, "Validation failed"),
        ]
        assert fake_runner.calls == []
        assert artifacts.allocated == []


class TestHappyPath:
    """A replay where every step succeeds."""

    async def test_steps_in_order(self, direct_settings, alert_runner, collector, nginx_line) -> None:
        orchestrator, _ = make_orchestrator(direct_settings, alert_runner)

        await orchestrator.run(nginx_line + "\n", "nginx", collector)

        assert alert_runner.steps() == ["clear", "replay", "list", "explain"]
        assert all(executable == "sudo" for executable, _ in alert_runner.calls)
        assert orchestrator.state == PipelineState.COMPLETED

    async def test_result(self, direct_settings, alert_runner, collector, nginx_line, sample_alert) -> None:
        orchestrator, _ = make_orchestrator(direct_settings, alert_runner)

        result = await orchestrator.run(nginx_line + "\n", "nginx", collector)

        assert result is not None
        assert result.alerts == [sample_alert]
        assert result.total_lines == 1
        assert result.explained_lines == 1
        assert result.explain_output == "explained\n"
        assert result.alerts_command == "sudo cscli alerts list -o json"
        assert result.replay_command.startswith("sudo crowdsec --dsn file://")
        assert result.replay_command.endswith("--type nginx --no-api")
        assert result.explain_command.startswith("sudo cscli explain -f ")

    async def test_stream_carries_result(self, direct_settings, alert_runner, collector, nginx_line) -> None:
        """Test that an observer recovers the returned result from the stream."""
        orchestrator, _ = make_orchestrator(direct_settings, alert_runner)

        result = await orchestrator.run(nginx_line, "nginx", collector)

        parser = parse_stream(collector.events)
        assert parser.result == result
        assert parser.exit_code == 0

    async def test_events(self, direct_settings, fake_runner, collector) -> None:
        orchestrator, artifacts = make_orchestrator(direct_settings, fake_runner)

        await orchestrator.run("a\n", "syslog", collector)

        stdout = collector.stdout()
        assert f"Wrote log to {artifacts.allocated[0]}\n" in stdout
        assert stdout.count("\nRunning: ") == 4
        assert "Replay completed successfully.\n" in stdout
        assert_single_trailing_exit(collector.events, 0)
        assert collector.events[-1].text == "Replay complete"
        assert collector.texts(OutputKind.ERROR) == []

    async def test_log_type_trimmed(self, direct_settings, fake_runner, collector) -> None:
        orchestrator, _ = make_orchestrator(direct_settings, fake_runner)
        await orchestrator.run("a", "  nginx ", collector)
        _, replay_argv = fake_runner.calls[1]
        assert replay_argv[replay_argv.index("--type") + 1] == "nginx"

    async def test_replay_sees_full_content(self, direct_settings, fake_runner, collector) -> None:
        content = "\n".join(f"line {i}" for i in range(15)) + "\n"
        orchestrator, _ = make_orchestrator(direct_settings, fake_runner)
        await orchestrator.run(content, "syslog", collector)
        assert fake_runner.replay_input == content

    async def test_temp_files_removed(self, direct_settings, fake_runner, collector) -> None:
        orchestrator, artifacts = make_orchestrator(direct_settings, fake_runner)
        await orchestrator.run("a\nb\n", "syslog", collector)
        assert len(artifacts.allocated) == 2
        assert not any(path.exists() for path in artifacts.allocated)

    async def test_contained_mode(self, contained_settings, fake_runner, collector) -> None:
        orchestrator, artifacts = make_orchestrator(contained_settings, fake_runner)

        result = await orchestrator.run("a\n", "nginx", collector)

        assert all(executable == "docker" for executable, _ in fake_runner.calls)
        _, replay_argv = fake_runner.calls[1]
        assert replay_argv[:3] == ["exec", "crowdsec", "crowdsec"]
        assert f"file:///tmp/replay/{artifacts.allocated[0].name}" in replay_argv
        assert result is not None
        assert "/tmp/replay/" in result.explain_command


class TestExplainTruncation:
    """The explain step only sees the first lines."""

    async def test_short_input_not_truncated(self, direct_settings, fake_runner, collector) -> None:
        content = "\n".join(f"line {i}" for i in range(10))
        orchestrator, _ = make_orchestrator(direct_settings, fake_runner)

        result = await orchestrator.run(content, "syslog", collector)

        assert result is not None
        assert (result.total_lines, result.explained_lines) == (10, 10)
        assert "Note: explain runs" not in collector.stdout()

    async def test_long_input_truncated(self, direct_settings, fake_runner, collector) -> None:
        lines = [f"Oct 10 13:55:36 host sshd[{i}]: Failed password for root" for i in range(15)]
        orchestrator, _ = make_orchestrator(direct_settings, fake_runner)

        result = await orchestrator.run("\n".join(lines) + "\n", "syslog", collector)

        assert result is not None
        assert (result.total_lines, result.explained_lines) == (15, 10)
        assert "\nNote: explain runs on the first 10 of 15 lines.\n" in collector.texts(OutputKind.STDOUT)
        assert fake_runner.explain_input == "\n".join(lines[:10]) + "\n"

    async def test_blank_lines_not_counted(self, direct_settings, fake_runner, collector) -> None:
        content = "\n\n".join(f"line {i}" for i in range(12)) + "\n\n\n"
        orchestrator, _ = make_orchestrator(direct_settings, fake_runner)

        result = await orchestrator.run(content, "syslog", collector)

        assert result is not None
        assert (result.total_lines, result.explained_lines) == (12, 10)
        assert fake_runner.explain_input is not None
        assert "\n\n" not in fake_runner.explain_input


class TestSoftFailures:
    """Failures that are reported and do not stop the pipeline."""

    async def test_replay_nonzero_exit(self, direct_settings, make_runner, collector) -> None:
        runner = make_runner({"replay": ProcessResult(stdout="", exit_code=2, stderr="bad type\n")})
        orchestrator, _ = make_orchestrator(direct_settings, runner)

        result = await orchestrator.run("a", "unknown-type", collector)

        assert result is not None
        assert "CrowdSec replay exited with code 2\n" in collector.texts(OutputKind.ERROR)
        assert "Replay completed successfully.\n" not in collector.stdout()
        assert runner.steps() == ["clear", "replay", "list", "explain"]
        assert_single_trailing_exit(collector.events, 0)

    async def test_other_nonzero_exits_continue(self, direct_settings, make_runner, collector) -> None:
        runner = make_runner({
            "clear": ProcessResult(stdout="", exit_code=1),
            "explain": ProcessResult(stdout="partial", exit_code=1),
        })
        orchestrator, _ = make_orchestrator(direct_settings, runner)

        result = await orchestrator.run("a", "nginx", collector)

        assert result is not None
        assert result.explain_output == "partial"
        assert_single_trailing_exit(collector.events, 0)

    async def test_invalid_alerts_json(self, direct_settings, make_runner, collector) -> None:
        runner = make_runner({"list": ProcessResult(stdout="this is not json", exit_code=0)})
        orchestrator, _ = make_orchestrator(direct_settings, runner)

        result = await orchestrator.run("a", "nginx", collector)

        assert result is not None
        assert result.alerts == []
        assert "Warning: Could not parse alerts JSON.\n" in collector.texts(OutputKind.STDERR)
        assert_single_trailing_exit(collector.events, 0)


class TestHardFailures:
    """Failures that abort the pipeline."""

    @pytest.mark.parametrize("step", ["clear", "replay", "list", "explain"])
    async def test_spawn_failure(self, direct_settings, make_runner, collector, step) -> None:
        error = ProcessSpawnError(executable="sudo", underlying_error="No such file or directory")
        runner = make_runner({step: error})
        orchestrator, artifacts = make_orchestrator(direct_settings, runner)

        with pytest.raises(ProcessSpawnError):
            await orchestrator.run("a\n", "nginx", collector)

        assert runner.steps()[-1] == step
        assert collector.events[-2] == OutputEvent.error(f"Error: {error.message}\n")
        assert collector.events[-1] == OutputEvent.exit(1, "Replay failed")
        assert_single_trailing_exit(collector.events, 1)
        assert orchestrator.state == PipelineState.FAILED
        assert not any(path.exists() for path in artifacts.allocated)

    async def test_timeout(self, direct_settings, make_runner, collector) -> None:
        runner = make_runner({"replay": ProcessTimeoutError(executable="sudo", timeout_seconds=1)})
        orchestrator, _ = make_orchestrator(direct_settings, runner)

        with pytest.raises(ProcessTimeoutError):
            await orchestrator.run("a", "nginx", collector)

        assert runner.steps() == ["clear", "replay"]
        assert_single_trailing_exit(collector.events, 1)

    async def test_no_result_frame_after_failure(self, direct_settings, make_runner, collector) -> None:
        runner = make_runner({"list": ProcessSpawnError(executable="sudo")})
        orchestrator, _ = make_orchestrator(direct_settings, runner)

        with pytest.raises(ProcessSpawnError):
            await orchestrator.run("a", "nginx", collector)

        parser = parse_stream(collector.events)
        assert parser.result is None
        assert parser.exit_code == 1

    async def test_artifact_write_failure(self, temp_dir, fake_runner, collector) -> None:
        blocker = temp_dir / "blocker"
        blocker.write_text("")
        settings = Settings(mode="contained", shared_dir=blocker / "shared")
        orchestrator = ReplayOrchestrator(settings, runner=fake_runner)

        with pytest.raises(ArtifactWriteError):
            await orchestrator.run("a", "nginx", collector)

        assert fake_runner.calls == []
        assert_single_trailing_exit(collector.events, 1)

    async def test_unexpected_error(self, direct_settings, make_runner, collector) -> None:
        runner = make_runner({"clear": RuntimeError("socket exploded")})
        orchestrator, _ = make_orchestrator(direct_settings, runner)

        with pytest.raises(RuntimeError):
            await orchestrator.run("a", "nginx", collector)

        assert OutputEvent.error("Error: socket exploded\n") in collector.events
        assert_single_trailing_exit(collector.events, 1)

    async def test_failure_in_final_exit_not_repeated(self, direct_settings, fake_runner) -> None:
        """Test that an observer failing on the exit event gets no second exit."""
        events: list[OutputEvent] = []

        async def flaky(event: OutputEvent) -> None:
            events.append(event)
            if event.kind == OutputKind.EXIT:
                raise ConnectionError("gone")

        orchestrator, _ = make_orchestrator(direct_settings, fake_runner)
        with pytest.raises(ConnectionError):
            await orchestrator.run("a", "nginx", flaky)

        assert len([e for e in events if e.kind == OutputKind.EXIT]) == 1


class TestReuse:
    """One orchestrator can run several replays in sequence."""

    async def test_sequential_runs(self, direct_settings, fake_runner, collector) -> None:
        orchestrator, artifacts = make_orchestrator(direct_settings, fake_runner)

        first = await orchestrator.run("a", "nginx", collector)
        second = await orchestrator.run("b\nc", "syslog", collector)

        assert first is not None and second is not None
        assert first.total_lines == 1
        assert second.total_lines == 2
        assert len(collector.exits()) == 2
        assert len(set(artifacts.allocated)) == 4
