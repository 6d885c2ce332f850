"""
Temporary log files for the replay pipeline.

Each replay writes the submitted log content to a uniquely named file the
engine can read. Where the file lives depends on the execution mode:

    direct:     <system temp dir>/replay-<id>.log, same path for the tool
    contained:  <shared_dir>/replay-<id>.log on the host, seen by the tool
                as <container_shared_dir>/replay-<id>.log

Files are created exclusively with a random 128-bit name, so concurrent
sessions sharing the directory never collide. release() is best-effort and
never raises.
"""

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from logreplay.config import Settings
from logreplay.errors import ArtifactWriteError

logger = logging.getLogger(__name__)

ARTIFACT_PREFIX = "replay-"
ARTIFACT_SUFFIX = ".log"


@dataclass(frozen=True)
class TempArtifact:
    """
    A temporary log file.

    Attributes:
        host_path: Where the file was physically written
        execution_path: The path handed to the engine's tools
        content_lines: Number of lines written
    """

    host_path: Path
    execution_path: str
    content_lines: int

    @property
    def name(self) -> str:
        """File name shared by both paths."""
        return self.host_path.name


class TempArtifactManager:
    """
    Allocates and releases temporary log files.

    Usage:
        manager = TempArtifactManager(settings)
        artifact = manager.allocate(log_content)
        try:
            ...  # run tools against artifact.execution_path
        finally:
            manager.release(artifact)
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._dir_ready = False

    @property
    def directory(self) -> Path:
        """Host directory artifacts are written to."""
        return self.settings.temp_dir

    def _ensure_directory(self) -> None:
        if self._dir_ready or not self.settings.is_contained:
            return
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ArtifactWriteError(path=str(self.directory), underlying_error=str(e)) from e
        self._dir_ready = True

    def _execution_path(self, name: str, host_path: Path) -> str:
        if self.settings.is_contained:
            return str(PurePosixPath(self.settings.container_shared_dir) / name)
        return str(host_path)

    def allocate(self, content: str) -> TempArtifact:
        """
        Write content to a new, uniquely named file.

        Raises:
            ArtifactWriteError: If the file cannot be created or written
        """
        self._ensure_directory()
        name = f"{ARTIFACT_PREFIX}{uuid.uuid4().hex}{ARTIFACT_SUFFIX}"
        host_path = self.directory / name
        try:
            # "x" refuses to reuse an existing name
            with open(host_path, "x", encoding="utf-8") as f:
                f.write(content)
        except OSError as e:
            raise ArtifactWriteError(path=str(host_path), underlying_error=str(e)) from e

        return TempArtifact(
            host_path=host_path,
            execution_path=self._execution_path(name, host_path),
            content_lines=len(content.splitlines()),
        )

    def release(self, artifact: TempArtifact | None) -> None:
        """Delete an artifact's host file, ignoring any failure."""
        if artifact is None:
            return
        try:
            artifact.host_path.unlink()
        except OSError as e:
            logger.debug("Could not remove %s: %s", artifact.host_path, e)

    @contextmanager
    def artifact(self, content: str) -> Iterator[TempArtifact]:
        """Allocate an artifact for the duration of a with-block."""
        allocated = self.allocate(content)
        try:
            yield allocated
        finally:
            self.release(allocated)
