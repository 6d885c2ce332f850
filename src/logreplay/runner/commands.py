"""
Command resolution for logreplay.

Turns a logical step of the replay pipeline into the concrete executable and
argument vector for the active execution mode:

    direct:     sudo <tool> <args...>
    contained:  docker exec <container> <tool> <args...>

resolve_command() is a pure function of its inputs. The mode and container
name come from Settings, which are resolved once at startup.

Commands are always built as argument lists. Nothing here goes through a
shell, so a log type like "nginx; rm -rf /" stays a single argument.
"""

import shlex
from dataclasses import dataclass
from enum import Enum

from logreplay.config import ExecutionMode, Settings


class LogicalCommand(str, Enum):
    """The engine operations the replay pipeline needs."""

    CLEAR_RESULTS = "clear-all-results"
    REPLAY = "replay-file-as-type"
    LIST_RESULTS = "list-results-as-json"
    EXPLAIN = "explain-file-as-type"


@dataclass(frozen=True)
class ToolInvocation:
    """A tool name plus its arguments, independent of execution mode."""

    tool: str
    args: tuple[str, ...] = ()


@dataclass(frozen=True)
class ResolvedCommand:
    """
    A command ready to hand to the process runner.

    Attributes:
        executable: Program to spawn (the wrapper or launcher)
        argv: Arguments after the executable
    """

    executable: str
    argv: tuple[str, ...]

    def display(self) -> str:
        """The command line as a human would type it."""
        return shlex.join([self.executable, *self.argv])


def resolve_command(
    mode: ExecutionMode,
    tool: str,
    args: tuple[str, ...] | list[str] = (),
    *,
    container_name: str = "crowdsec",
    elevation_wrapper: str = "sudo",
    container_launcher: str = "docker",
) -> ResolvedCommand:
    """
    Resolve a tool invocation for an execution mode.

    Args:
        mode: Direct or contained execution
        tool: The tool to run (e.g. "cscli")
        args: Arguments for the tool
        container_name: Container to exec into (contained mode only)
        elevation_wrapper: Wrapper used in direct mode
        container_launcher: Launcher used in contained mode

    Returns:
        The concrete executable and argument vector
    """
    if mode == ExecutionMode.CONTAINED:
        return ResolvedCommand(
            executable=container_launcher,
            argv=("exec", container_name, tool, *args),
        )
    if mode == ExecutionMode.DIRECT:
        return ResolvedCommand(executable=elevation_wrapper, argv=(tool, *args))
    msg = f"Unsupported execution mode: {mode!r}"
    raise ValueError(msg)


def build_invocation(
    command: LogicalCommand,
    settings: Settings,
    path: str | None = None,
    log_type: str | None = None,
) -> ToolInvocation:
    """
    Map a logical command to the engine tool and arguments.

    Args:
        command: Which pipeline operation to build
        settings: Supplies the engine binary names
        path: Log file path as seen by the tool (replay and explain)
        log_type: Log type label (replay and explain)

    Raises:
        ValueError: If a file-based command is missing its path or type
    """
    if command == LogicalCommand.CLEAR_RESULTS:
        return ToolInvocation(settings.cli_binary, ("alerts", "delete", "--all"))
    if command == LogicalCommand.LIST_RESULTS:
        return ToolInvocation(settings.cli_binary, ("alerts", "list", "-o", "json"))

    if not path or not log_type:
        msg = f"{command.value} needs both a file path and a log type"
        raise ValueError(msg)

    if command == LogicalCommand.REPLAY:
        return ToolInvocation(
            settings.engine_binary,
            ("--dsn", f"file://{path}", "--type", log_type, "--no-api"),
        )
    return ToolInvocation(settings.cli_binary, ("explain", "-f", path, "-t", log_type))


def resolve_for(
    settings: Settings,
    command: LogicalCommand,
    path: str | None = None,
    log_type: str | None = None,
) -> ResolvedCommand:
    """Build and resolve a logical command under the configured mode."""
    invocation = build_invocation(command, settings, path=path, log_type=log_type)
    return resolve_command(
        settings.mode,
        invocation.tool,
        invocation.args,
        container_name=settings.container_name,
        elevation_wrapper=settings.elevation_wrapper,
        container_launcher=settings.container_launcher,
    )
