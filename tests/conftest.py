"""
Pytest configuration and fixtures for logreplay tests.

This module provides shared fixtures used across unit, integration,
and security tests: settings for both execution modes, a scripted
stand-in for the process runner, and an output event collector.
"""

import json
import stat
import tempfile
from collections.abc import Sequence
from pathlib import Path
from typing import Generator

import pytest

from logreplay.config import ExecutionMode, Settings
from logreplay.runner import ProcessResult
from logreplay.runner.process import OutputCallback
from logreplay.schema import OutputEvent, OutputKind


SAMPLE_ALERT = {
    "id": 1,
    "scenario": "crowdsecurity/CVE-2017-9841",
    "message": "Ip 1.2.3.4 performed 'crowdsecurity/CVE-2017-9841' (1 events over 0s)",
    "events_count": 1,
    "source": {"ip": "1.2.3.4", "scope": "Ip", "value": "1.2.3.4"},
    "decisions": [{"type": "ban", "value": "1.2.3.4", "duration": "4h"}],
}

NGINX_LINE = (
    '1.2.3.4 - - [10/Oct/2024:13:55:36 +0000] '
    '"POST /vendor/phpunit/phpunit/src/Util/PHP/eval-stdin.php HTTP/1.1" 404 153 "-" "curl/7.68.0"'
)


class EventCollector:
    """Async output callback that records every event it receives."""

    def __init__(self) -> None:
        self.events: list[OutputEvent] = []

    async def __call__(self, event: OutputEvent) -> None:
        self.events.append(event)

    def kinds(self) -> list[OutputKind]:
        return [e.kind for e in self.events]

    def texts(self, kind: OutputKind) -> list[str]:
        return [e.text for e in self.events if e.kind == kind]

    def stdout(self) -> str:
        return "".join(self.texts(OutputKind.STDOUT))

    def exits(self) -> list[OutputEvent]:
        return [e for e in self.events if e.kind == OutputKind.EXIT]


def step_of(args: Sequence[str]) -> str:
    """Name the pipeline step a resolved argument vector belongs to."""
    if "--dsn" in args:
        return "replay"
    if "explain" in args:
        return "explain"
    if "delete" in args:
        return "clear"
    if "list" in args:
        return "list"
    return "unknown"


class FakeRunner:
    """
    Stands in for ProcessRunner.

    Each step answers with a scripted ProcessResult, or raises a scripted
    exception. Stdout and stderr are streamed through on_output like the
    real runner does.

    Attributes:
        calls: (executable, argv) of every run, in order
        explain_input: Content of the explain file at the time it ran
    """

    def __init__(self, responses: dict[str, ProcessResult | Exception] | None = None) -> None:
        self.responses: dict[str, ProcessResult | Exception] = {
            "clear": ProcessResult(stdout="", exit_code=0),
            "replay": ProcessResult(stdout="replaying\n", exit_code=0),
            "list": ProcessResult(stdout="[]", exit_code=0),
            "explain": ProcessResult(stdout="explained\n", exit_code=0),
        }
        self.responses.update(responses or {})
        self.calls: list[tuple[str, list[str]]] = []
        self.explain_input: str | None = None
        self.replay_input: str | None = None

    def steps(self) -> list[str]:
        return [step_of(argv) for _, argv in self.calls]

    async def run(self, executable: str, args: Sequence[str], on_output: OutputCallback) -> ProcessResult:
        argv = list(args)
        self.calls.append((executable, argv))
        step = step_of(argv)

        if step == "explain":
            self.explain_input = _read_if_exists(argv[argv.index("-f") + 1])
        elif step == "replay":
            dsn = argv[argv.index("--dsn") + 1]
            self.replay_input = _read_if_exists(dsn.removeprefix("file://"))

        response = self.responses[step]
        if isinstance(response, Exception):
            raise response
        if response.stdout:
            await on_output(OutputEvent.stdout(response.stdout))
        if response.stderr:
            await on_output(OutputEvent.stderr(response.stderr))
        return response


def _read_if_exists(path: str) -> str | None:
    try:
        return Path(path).read_text(encoding="utf-8")
    except OSError:
        return None


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def direct_settings() -> Settings:
    """Settings for direct (sudo) execution."""
    return Settings(mode=ExecutionMode.DIRECT, step_timeout_seconds=10)


@pytest.fixture
def contained_settings(temp_dir: Path) -> Settings:
    """Settings for contained (docker exec) execution with a temp shared dir."""
    return Settings(
        mode=ExecutionMode.CONTAINED,
        container_name="crowdsec",
        shared_dir=temp_dir / "shared",
        container_shared_dir="/tmp/replay",
        step_timeout_seconds=10,
    )


@pytest.fixture
def collector() -> EventCollector:
    """Collects output events."""
    return EventCollector()


@pytest.fixture
def fake_runner() -> FakeRunner:
    """A runner where every step succeeds with no alerts."""
    return FakeRunner()


@pytest.fixture
def alert_runner() -> FakeRunner:
    """A runner whose list step reports one CVE-2017-9841 alert."""
    return FakeRunner({"list": ProcessResult(stdout=json.dumps([SAMPLE_ALERT]), exit_code=0)})


@pytest.fixture
def make_runner() -> type[FakeRunner]:
    """The FakeRunner class, for tests that script their own responses."""
    return FakeRunner


@pytest.fixture
def sample_alert() -> dict:
    """One alert as printed by the alert list command."""
    return json.loads(json.dumps(SAMPLE_ALERT))


@pytest.fixture
def nginx_line() -> str:
    """An access log line that triggers CVE-2017-9841."""
    return NGINX_LINE


FAKE_ENGINE_SCRIPT = """#!/bin/sh
# Stand-in for the elevation wrapper or container launcher plus the engine tools.
STATE="{state}"
if [ "$1" = "exec" ]; then
    shift 2
fi
tool="$1"
shift
case "$tool" in
    crowdsec)
        file="${{2#file://}}"
        echo "Starting processing data"
        if grep -q "eval-stdin.php" "$file"; then
            cp "$STATE/alert-template.json" "$STATE/alerts.json"
        fi
        echo "Acquisition is finished, shutting down" >&2
        exit 0
        ;;
    cscli)
        case "$1" in
            alerts)
                if [ "$2" = "delete" ]; then
                    rm -f "$STATE/alerts.json"
                    echo "alert(s) deleted"
                    exit 0
                fi
                if [ -f "$STATE/alerts.json" ]; then
                    cat "$STATE/alerts.json"
                else
                    echo "[]"
                fi
                exit 0
                ;;
            explain)
                while IFS= read -r line; do
                    echo "line: $line"
                    echo "    ├ s00-raw"
                done < "$3"
                exit 0
                ;;
        esac
        ;;
esac
echo "unknown command: $tool $*" >&2
exit 127
"""


@pytest.fixture
def fake_engine(temp_dir: Path) -> Path:
    """
    Write an executable shell script that imitates the engine's tools.

    The replay step records an alert when the log contains the
    CVE-2017-9841 probe; list prints the recorded alerts; explain echoes
    each line it was given.
    """
    state = temp_dir / "engine-state"
    state.mkdir()
    (state / "alert-template.json").write_text(json.dumps([SAMPLE_ALERT]), encoding="utf-8")

    script = temp_dir / "fake-engine"
    script.write_text(FAKE_ENGINE_SCRIPT.format(state=state), encoding="utf-8")
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return script
