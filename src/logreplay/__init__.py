"""
logreplay - Replay log lines through a log-analysis engine and watch the results.

An operator submits log lines and a log type; logreplay writes them to a
temporary file, runs the engine's tools over it step by step, streams every
line of tool output back over a WebSocket, and finishes with a structured
result (alerts, commands, explain output) framed inside that stream.

It provides:
- Direct (sudo) or containerized (docker exec) execution of the engine tools
- Incremental output streaming with a guaranteed terminal exit event
- Marker-framed result payloads and an incremental receiver-side parser
- Per-connection sessions

Example usage:
    $ logreplay serve --port 3000
    $ logreplay replay access.log --type nginx
    $ logreplay replay auth.log --type syslog --url ws://127.0.0.1:3000/ws
"""

__version__ = "0.1.0"
__author__ = "logreplay Contributors"

__all__ = [
    "__version__",
    "__author__",
]
