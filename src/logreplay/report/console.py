"""
Console report generator for logreplay.

Renders replay output and results in the terminal using Rich:
    - Live output events, colored by kind, as they stream in
    - A header with the outcome and alert count
    - One row per alert: scenario, source IP, event count, decisions
    - The commands that were executed
    - The explain output (a preview unless verbose)

Alerts are engine records passed through untouched, so every field is
read defensively; a missing field is shown as a dash.
"""

from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from logreplay.schema import START_MARKER, OutputEvent, OutputKind, ReplayResult


# Lines of explain output shown without --verbose
EXPLAIN_PREVIEW_LINES = 20

_KIND_STYLES = {
    OutputKind.STDOUT: "",
    OutputKind.STDERR: "yellow",
    OutputKind.ERROR: "bold red",
    OutputKind.EXIT: "dim",
}


def print_output_event(console: Console, event: OutputEvent, show_frame: bool = False) -> None:
    """
    Print one streamed output event.

    The framed result chunk is machine-readable and is skipped unless
    show_frame is set.
    """
    if event.kind == OutputKind.EXIT:
        console.print(Text(f"[exit {event.exit_code}] {event.text}", style=_KIND_STYLES[event.kind]))
        return
    if not show_frame and event.kind == OutputKind.STDOUT and event.text.startswith(START_MARKER):
        return
    console.print(Text(event.text, style=_KIND_STYLES[event.kind]), end="")


def generate_console_report(
    result: ReplayResult | None,
    exit_code: int = 0,
    console: Console | None = None,
    verbose: bool = False,
) -> None:
    """
    Print a report for a finished replay.

    Args:
        result: The decoded result, or None if the replay produced none
        exit_code: Code of the stream's exit event
        console: Rich Console instance (creates one if not provided)
        verbose: Show the complete explain output
    """
    if console is None:
        console = Console()

    _print_header(console, result, exit_code)
    console.print()

    if result is None:
        console.print("[dim]No replay result available.[/dim]")
        return

    _print_alerts(console, result.alerts)
    console.print()
    _print_commands(console, result)
    console.print()
    _print_explain(console, result, verbose)


def _print_header(console: Console, result: ReplayResult | None, exit_code: int) -> None:
    """Print the outcome panel."""
    ok = exit_code == 0 and result is not None
    header = Text()
    header.append(" Replay Results ", style="bold")
    header.append("│ ", style="dim")
    header.append("COMPLETED" if ok else "FAILED", style="bold green" if ok else "bold red")
    header.append(" ✓" if ok else " ✗", style="green" if ok else "red")
    if result is not None:
        header.append(" │ ", style="dim")
        header.append(f"Alerts ({len(result.alerts)})", style="bold cyan")
    console.print(Panel(header, expand=False))

    if result is not None:
        console.print(
            f"  [dim]Lines:[/dim] {result.total_lines} replayed, "
            f"{result.explained_lines} explained"
        )


def _print_alerts(console: Console, alerts: list[dict[str, Any]]) -> None:
    """Print one row per alert."""
    console.print(f"[bold]Alerts ({len(alerts)})[/bold]")
    console.print()

    if not alerts:
        console.print("  [dim]No alerts were triggered.[/dim]")
        return

    table = Table(show_header=True, header_style="bold", expand=True)
    table.add_column("#", style="dim", width=3, justify="right")
    table.add_column("Scenario", style="cyan", overflow="fold")
    table.add_column("Source IP", width=18)
    table.add_column("Events", justify="right", width=7)
    table.add_column("Decisions", overflow="fold")

    for index, alert in enumerate(alerts, start=1):
        source = alert.get("source")
        if not isinstance(source, dict):
            source = {}
        table.add_row(
            str(index),
            escape(str(alert.get("scenario") or "—")),
            escape(str(source.get("ip") or source.get("value") or "—")),
            str(alert.get("events_count", "—")),
            _format_decisions(alert.get("decisions")),
        )

    console.print(table)

    for alert in alerts:
        message = alert.get("message")
        if message:
            console.print(f"  • {escape(str(message))}")


def _format_decisions(decisions: Any) -> str:
    """Summarize an alert's decisions as 'type value (duration)'."""
    if not decisions:
        return "[dim]none[/dim]"
    parts = []
    for decision in decisions:
        if not isinstance(decision, dict):
            continue
        text = f"{decision.get('type', '?')} {decision.get('value', '?')}"
        if decision.get("duration"):
            text += f" ({decision['duration']})"
        parts.append(escape(text))
    return "\n".join(parts) if parts else "[dim]none[/dim]"


def _print_commands(console: Console, result: ReplayResult) -> None:
    """Print the executed command lines."""
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Step", style="dim")
    table.add_column("Command", overflow="fold")
    table.add_row("Replay", escape(result.replay_command))
    table.add_row("Alerts", escape(result.alerts_command))
    table.add_row("Explain", escape(result.explain_command))

    console.print("[bold]Commands[/bold]")
    console.print(table)


def _print_explain(console: Console, result: ReplayResult, verbose: bool) -> None:
    """Print the explain output, truncated unless verbose."""
    console.print("[bold]Explain Output[/bold]")
    if result.explained_lines < result.total_lines:
        console.print(
            f"  [dim]First {result.explained_lines} of {result.total_lines} lines[/dim]"
        )
    console.print()

    output = result.explain_output.rstrip()
    if not output:
        console.print("  [dim]No explain output.[/dim]")
        return

    lines = output.splitlines()
    if not verbose and len(lines) > EXPLAIN_PREVIEW_LINES:
        shown = "\n".join(lines[:EXPLAIN_PREVIEW_LINES])
        console.print(Text(shown))
        console.print(
            f"[dim]... {len(lines) - EXPLAIN_PREVIEW_LINES} more lines (use --verbose)[/dim]"
        )
    else:
        console.print(Text(output))
