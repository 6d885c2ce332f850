"""
Process runner for logreplay.

Spawns one external command and streams its output as it arrives:
every chunk read from stdout or stderr is sent to the caller as an
OutputEvent before the process has finished.

Contract:
    - A non-zero exit code is returned as data, never raised
    - Failing to start the program raises ProcessSpawnError
    - Exceeding the step timeout kills the process and raises ProcessTimeoutError
    - run() returns only after both pipes are at EOF and the process has exited

Commands are spawned with an argument vector (no shell), each in its own
process group so a timeout stops the whole tree.
"""

import asyncio
import codecs
import contextlib
import logging
import os
import shlex
import signal
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

from logreplay.errors import ProcessSpawnError, ProcessTimeoutError
from logreplay.schema import OutputEvent, OutputKind

logger = logging.getLogger(__name__)

OutputCallback = Callable[[OutputEvent], Awaitable[None]]

# Bytes requested per read; chunks may be shorter
DEFAULT_CHUNK_SIZE = 4096

# Seconds between SIGTERM and SIGKILL when a step is stopped
KILL_GRACE_SECONDS = 2.0


@dataclass(frozen=True)
class ProcessResult:
    """
    Aggregated outcome of one process.

    Attributes:
        stdout: Everything the process wrote to stdout
        exit_code: The process exit status (1 if none was reported)
        stderr: Everything the process wrote to stderr
    """

    stdout: str
    exit_code: int
    stderr: str = ""

    @property
    def ok(self) -> bool:
        """Whether the process exited with status 0."""
        return self.exit_code == 0


class ProcessRunner:
    """
    Runs external commands and streams their output.

    Usage:
        runner = ProcessRunner(timeout=300)
        result = await runner.run("sudo", ["cscli", "alerts", "list"], emit)

    Attributes:
        timeout: Seconds before a process is killed (None waits forever)
        chunk_size: Maximum bytes read from a pipe at a time
    """

    def __init__(self, timeout: float | None = None, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        self.timeout = timeout
        self.chunk_size = chunk_size

    async def run(
        self,
        executable: str,
        args: Sequence[str],
        on_output: OutputCallback,
    ) -> ProcessResult:
        """
        Run a command to completion, streaming its output.

        Args:
            executable: Program to start
            args: Arguments for the program
            on_output: Awaited once per stdout/stderr chunk, in arrival order

        Returns:
            ProcessResult with the aggregated stdout and the exit code

        Raises:
            ProcessSpawnError: If the program cannot be started
            ProcessTimeoutError: If the program runs longer than the timeout
        """
        args = list(args)
        try:
            proc = await asyncio.create_subprocess_exec(
                executable,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            raise ProcessSpawnError(
                executable=executable,
                argv=args,
                underlying_error=e.strerror or str(e),
            ) from e

        stdout_parts: list[str] = []
        stderr_parts: list[str] = []
        emit_lock = asyncio.Lock()

        async def pump(stream: asyncio.StreamReader, kind: OutputKind, sink: list[str]) -> None:
            decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
            while True:
                chunk = await stream.read(self.chunk_size)
                text = decoder.decode(chunk, final=not chunk)
                if text:
                    sink.append(text)
                    async with emit_lock:
                        await on_output(OutputEvent(kind=kind, text=text))
                if not chunk:
                    return

        assert proc.stdout is not None and proc.stderr is not None
        try:
            await asyncio.wait_for(
                asyncio.gather(
                    pump(proc.stdout, OutputKind.STDOUT, stdout_parts),
                    pump(proc.stderr, OutputKind.STDERR, stderr_parts),
                    proc.wait(),
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            await _kill(proc)
            raise ProcessTimeoutError(
                executable=executable,
                argv=args,
                timeout_seconds=self.timeout or 0,
            ) from e
        except BaseException:
            await _kill(proc)
            raise

        exit_code = proc.returncode if proc.returncode is not None else 1
        stdout = "".join(stdout_parts)
        stderr = "".join(stderr_parts)

        if exit_code != 0 and stderr:
            logger.warning(
                'Command "%s" exited with code %d: %s',
                shlex.join([executable, *args]),
                exit_code,
                stderr.strip(),
            )

        return ProcessResult(stdout=stdout, exit_code=exit_code, stderr=stderr)


async def _kill(proc: asyncio.subprocess.Process) -> None:
    """
    Stop a process and everything it started, then reap it.

    The process leads its own group. SIGTERM goes to the whole group first
    so wrappers such as sudo can relay it to their child, then SIGKILL
    removes whatever is left.
    """
    if proc.returncode is None:
        _signal_group(proc, signal.SIGTERM)
        try:
            await asyncio.wait_for(proc.wait(), timeout=KILL_GRACE_SECONDS)
        except asyncio.TimeoutError:
            pass
    _signal_group(proc, signal.SIGKILL)
    if proc.returncode is None:
        await proc.wait()


def _signal_group(proc: asyncio.subprocess.Process, sig: signal.Signals) -> None:
    try:
        os.killpg(proc.pid, sig)
    except ProcessLookupError:
        return
    except PermissionError:
        # Members owned by another user (root under sudo) are out of reach
        with contextlib.suppress(ProcessLookupError):
            proc.send_signal(sig)
