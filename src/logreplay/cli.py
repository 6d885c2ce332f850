"""
CLI entry point for logreplay.

This module provides the Typer-based command-line interface.

Commands:
    serve       Run the HTTP/WebSocket replay server
    replay      Replay a log file, in-process or against a running server
    commands    Show the command lines each pipeline step would run
    doctor      Check the execution environment

Architecture Note:
    The CLI is intentionally thin: it loads settings once, then delegates
    to the server, the orchestrator or the client.
"""

import asyncio
import json
import shutil
import subprocess
import sys
import traceback
from pathlib import Path
from typing import Annotated, Any, Optional

import httpx
import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from websockets.exceptions import WebSocketException

from logreplay import __version__
from logreplay.client import ReplayClient, ReplayOutcome, replay_in_process
from logreplay.config import ExecutionMode, Settings, load_settings, setup_logging
from logreplay.errors import LogReplayError
from logreplay.orchestrator import ReplayOrchestrator, command_lines
from logreplay.report import generate_console_report, generate_json_report, print_output_event

app = typer.Typer(
    name="logreplay",
    help="Replay log lines through CrowdSec and inspect the alerts they trigger.",
    add_completion=False,
    no_args_is_help=True,
)

# Rich console for formatted output
console = Console()

ConfigOption = Annotated[
    Optional[Path],
    typer.Option(
        "--config",
        "-c",
        help="Path to a YAML settings file. Environment variables override it.",
        exists=True,
        readable=True,
        resolve_path=True,
    ),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]logreplay[/bold] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """
    logreplay - Replay logs through a log-analysis engine.

    Submit log lines, run them through the engine's replay, alert listing
    and explain tools, and watch the output as it streams.
    """
    pass


def _load_settings_or_exit(config: Path | None, **overrides: Any) -> Settings:
    """Load settings, apply CLI overrides and configure logging."""
    try:
        settings = load_settings(config)
        updates = {k: v for k, v in overrides.items() if v is not None}
        if updates:
            settings = Settings.model_validate({**settings.model_dump(), **updates})
    except LogReplayError as e:
        console.print(f"[red]Error loading settings: {escape(e.message)}[/red]")
        raise typer.Exit(code=1)
    except ValueError as e:
        console.print(f"[red]Invalid option: {escape(str(e))}[/red]")
        raise typer.Exit(code=1)
    setup_logging(settings.log_level)
    return settings


@app.command()
def serve(
    config: ConfigOption = None,
    host: Annotated[
        Optional[str],
        typer.Option("--host", help="Interface to bind (default from settings)."),
    ] = None,
    port: Annotated[
        Optional[int],
        typer.Option("--port", "-p", help="Port to listen on (default from settings)."),
    ] = None,
    mode: Annotated[
        Optional[ExecutionMode],
        typer.Option("--mode", "-m", help="Execution mode: direct or contained."),
    ] = None,
) -> None:
    """
    Run the replay server.

    Serves the health endpoint and the /ws replay channel.

    Example:
        $ logreplay serve --port 3000 --mode contained
    """
    from logreplay.server import serve as run_server

    settings = _load_settings_or_exit(config, host=host, port=port, mode=mode)
    run_server(settings)


@app.command()
def replay(
    log_file: Annotated[
        Path,
        typer.Argument(
            help="Log file to replay ('-' reads standard input).",
            allow_dash=True,
        ),
    ],
    log_type: Annotated[
        str,
        typer.Option("--type", "-t", help="Log type label, e.g. nginx or syslog."),
    ],
    url: Annotated[
        Optional[str],
        typer.Option(
            "--url",
            "-u",
            help="Replay on a running server (ws://host:port/ws) instead of in-process.",
        ),
    ] = None,
    config: ConfigOption = None,
    mode: Annotated[
        Optional[ExecutionMode],
        typer.Option("--mode", "-m", help="Execution mode for in-process replays."),
    ] = None,
    quiet: Annotated[
        bool,
        typer.Option("--quiet", "-q", help="Do not stream tool output."),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", help="Show the complete explain output."),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output the result in JSON format."),
    ] = False,
    debug: Annotated[
        bool,
        typer.Option("--debug", help="Enable debug mode with full error tracebacks."),
    ] = False,
) -> None:
    """
    Replay a log file and show the alerts it triggers.

    Without --url the pipeline runs in this process using the configured
    execution mode. With --url it runs on a logreplay server.

    Example:
        $ logreplay replay access.log --type nginx
        $ cat auth.log | logreplay replay - --type syslog --url ws://127.0.0.1:3000/ws
    """
    settings = _load_settings_or_exit(config, mode=mode)

    try:
        if str(log_file) == "-":
            content = sys.stdin.read()
        else:
            content = log_file.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        console.print(f"[red]Error reading {escape(str(log_file))}: {escape(str(e))}[/red]")
        raise typer.Exit(code=1)

    stream = not quiet and not json_output

    def on_output(event: Any) -> None:
        if stream:
            print_output_event(console, event)

    try:
        if url:
            outcome = asyncio.run(ReplayClient(url).replay(content, log_type, on_output=on_output))
        else:
            orchestrator = ReplayOrchestrator(settings)
            outcome = asyncio.run(replay_in_process(orchestrator, content, log_type, on_output=on_output))
    except LogReplayError as e:
        _report_error("replay_error", e.message, json_output, debug, details=e.to_dict())
        raise typer.Exit(code=1)
    except (OSError, WebSocketException) as e:
        _report_error("connection_error", str(e), json_output, debug)
        raise typer.Exit(code=1)

    _display_outcome(outcome, json_output, verbose)
    raise typer.Exit(code=0 if outcome.success else 1)


def _display_outcome(outcome: ReplayOutcome, json_output: bool, verbose: bool) -> None:
    """Print the result of a replay."""
    if json_output:
        print(generate_json_report(outcome.exit_code, outcome.result, outcome.output))
        return
    console.print()
    generate_console_report(outcome.result, outcome.exit_code, console=console, verbose=verbose)


def _report_error(
    error_type: str,
    message: str,
    json_output: bool,
    debug: bool,
    details: dict[str, Any] | None = None,
) -> None:
    """Print an error as text or JSON."""
    if json_output:
        output: dict[str, Any] = {
            "error": True,
            "error_type": error_type,
            "message": message,
        }
        if details is not None:
            output["details"] = details
        if debug:
            output["traceback"] = traceback.format_exc()
        print(json.dumps(output, indent=2))
        return
    console.print(f"[red]Error: {escape(message)}[/red]")
    if details and details.get("suggestion"):
        console.print(f"[dim]Suggestion: {escape(details['suggestion'])}[/dim]")
    if debug:
        console.print(f"[dim]{traceback.format_exc()}[/dim]")


@app.command("commands")
def show_commands(
    log_type: Annotated[
        str,
        typer.Option("--type", "-t", help="Log type label to show in the commands."),
    ] = "nginx",
    config: ConfigOption = None,
    mode: Annotated[
        Optional[ExecutionMode],
        typer.Option("--mode", "-m", help="Execution mode to resolve for."),
    ] = None,
) -> None:
    """
    Show the command line of every pipeline step.

    Example:
        $ logreplay commands --mode contained --type syslog
    """
    settings = _load_settings_or_exit(config, mode=mode)
    path = f"{settings.container_shared_dir}/replay-<id>.log" if settings.is_contained else "<tmp>/replay-<id>.log"

    table = Table(show_header=True, header_style="bold")
    table.add_column("Step", style="cyan")
    table.add_column("Command", overflow="fold")
    for step, line in command_lines(settings, log_type, path=path):
        table.add_row(step, line)

    console.print(f"[dim]Mode: {settings.mode.value}[/dim]")
    console.print(table)


@app.command()
def doctor(
    config: ConfigOption = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output results in JSON format."),
    ] = False,
) -> None:
    """
    Check the execution environment.

    Verifies that:
    - Python is 3.11+
    - The wrapper (direct) or launcher (contained) is on PATH
    - The engine tools are installed (direct) or the container is running
    - The shared directory is writable (contained)
    - A local server answers on the configured port (informational)

    Example:
        $ logreplay doctor
    """
    settings = _load_settings_or_exit(config)
    checks: list[dict[str, Any]] = []

    py_version = sys.version_info
    checks.append({
        "name": "Python version",
        "ok": py_version >= (3, 11),
        "value": f"{py_version.major}.{py_version.minor}.{py_version.micro}",
        "message": "OK" if py_version >= (3, 11) else "Requires Python 3.11+",
    })

    if settings.is_contained:
        checks.append(_which_check("Container launcher", settings.container_launcher))
        checks.append(_container_check(settings))
        checks.append(_shared_dir_check(settings.shared_dir))
    else:
        checks.append(_which_check("Elevation wrapper", settings.elevation_wrapper))
        checks.append(_which_check("Engine", settings.engine_binary))
        checks.append(_which_check("Engine CLI", settings.cli_binary))

    server = _server_check(settings)
    all_ok = all(check["ok"] for check in checks)
    checks.append(server)

    if json_output:
        output = {
            "ok": all_ok,
            "version": __version__,
            "mode": settings.mode.value,
            "checks": checks,
        }
        print(json.dumps(output, indent=2))
    else:
        console.print(f"[bold]logreplay doctor[/bold] v{__version__} [dim](mode: {settings.mode.value})[/dim]")
        console.print()
        for check in checks:
            icon = "[green]✓[/green]" if check["ok"] else "[red]✗[/red]"
            if check["ok"]:
                console.print(f"{icon} {check['name']}: [dim]{escape(check['value'])}[/dim] - {escape(check['message'])}")
            else:
                console.print(f"{icon} {check['name']}: [dim]{escape(check['value'])}[/dim]")
                console.print(f"    [red]{escape(check['message'])}[/red]")
        console.print()
        if all_ok:
            console.print("[green]All checks passed![/green]")
        else:
            console.print("[yellow]Some checks failed. See above for details.[/yellow]")

    raise typer.Exit(code=0 if all_ok else 1)


def _which_check(name: str, executable: str) -> dict[str, Any]:
    """Check that an executable is on PATH."""
    found = shutil.which(executable)
    return {
        "name": name,
        "ok": found is not None,
        "value": executable,
        "message": found or f"{executable} not found on PATH",
    }


def _container_check(settings: Settings) -> dict[str, Any]:
    """Check that the engine container is running."""
    cmd = [
        settings.container_launcher,
        "inspect",
        "-f",
        "{{.State.Running}}",
        settings.container_name,
    ]
    try:
        proc = subprocess.run(cmd, capture_output=True, text=True, timeout=10, shell=False)
    except (OSError, subprocess.TimeoutExpired) as e:
        return {"name": "Container", "ok": False, "value": settings.container_name, "message": str(e)}

    running = proc.returncode == 0 and proc.stdout.strip() == "true"
    if running:
        message = "Running"
    elif proc.returncode == 0:
        message = "Container exists but is not running"
    else:
        message = proc.stderr.strip() or f"inspect exited with code {proc.returncode}"
    return {"name": "Container", "ok": running, "value": settings.container_name, "message": message}


def _shared_dir_check(shared_dir: Path) -> dict[str, Any]:
    """Check that the shared directory exists or can be created."""
    try:
        shared_dir.mkdir(parents=True, exist_ok=True)
        probe = shared_dir / ".logreplay-doctor"
        probe.write_text("ok", encoding="utf-8")
        probe.unlink()
    except OSError as e:
        return {"name": "Shared directory", "ok": False, "value": str(shared_dir), "message": str(e)}
    return {"name": "Shared directory", "ok": True, "value": str(shared_dir), "message": "Writable"}


def _server_check(settings: Settings) -> dict[str, Any]:
    """Probe the health endpoint of a local server. Never fails the doctor."""
    url = f"http://{settings.host}:{settings.port}/api/health"
    try:
        with httpx.Client(timeout=2.0) as client:
            response = client.get(url)
        if response.status_code == 200 and response.json().get("status") == "ok":
            message = "Server is running"
        else:
            message = f"HTTP {response.status_code}"
    except httpx.HTTPError:
        message = "Not running (start with: logreplay serve)"
    except ValueError:
        message = "Unexpected response"
    return {"name": "Server", "ok": True, "value": url, "message": message}


if __name__ == "__main__":
    app()
