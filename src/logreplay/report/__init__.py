"""
Reporting module for logreplay.

Renders replay output and results for the command line.

Output formats:
    - Console: Rich terminal output (live events, alerts table, explain output)
    - JSON: Structured output for programmatic consumption

Example:
    from logreplay.report import generate_console_report, generate_json_report

    generate_console_report(result, exit_code=0)
    print(generate_json_report(0, result))
"""

from logreplay.report.console import generate_console_report, print_output_event
from logreplay.report.json import build_report_dict, generate_json_report

__all__ = [
    "build_report_dict",
    "generate_console_report",
    "generate_json_report",
    "print_output_event",
]
