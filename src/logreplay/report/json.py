"""
JSON report generator for logreplay.

Produces a machine-readable summary of a finished replay. The result is
included using its wire field names, so the output can be fed to anything
that already understands the framed payload.
"""

import json
from typing import Any

from logreplay.schema import OutputEvent, OutputKind, ReplayResult


def build_report_dict(
    exit_code: int,
    result: ReplayResult | None,
    output: list[OutputEvent] | None = None,
) -> dict[str, Any]:
    """
    Build a report dictionary for a replay.

    Args:
        exit_code: Code of the stream's exit event
        result: The decoded result, if any
        output: The replay's output events, used for error/warning counts

    Returns:
        Dictionary with status, counts and the result
    """
    events = output or []
    errors = [e.text.strip() for e in events if e.kind == OutputKind.ERROR]
    warnings = [e.text.strip() for e in events if e.kind == OutputKind.STDERR]

    return {
        "status": "completed" if exit_code == 0 and result is not None else "failed",
        "exit_code": exit_code,
        "alert_count": len(result.alerts) if result is not None else 0,
        "errors": errors,
        "stderr_chunks": len(warnings),
        "result": result.to_wire() if result is not None else None,
    }


def generate_json_report(
    exit_code: int,
    result: ReplayResult | None,
    output: list[OutputEvent] | None = None,
    indent: int = 2,
) -> str:
    """Serialize build_report_dict() as a JSON string."""
    return json.dumps(build_report_dict(exit_code, result, output), indent=indent)
