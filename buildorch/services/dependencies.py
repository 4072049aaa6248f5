"""
Dependency accumulation and make-style depfiles.

Every phase of a run appends the paths it read; the accumulator is flushed
once, after the terminal output exists, into `<output>.d`.
"""

from __future__ import annotations

from collections.abc import Iterable

from ..core.exceptions import PipelineError
from ..core.logging import get_logger
from ..storage import WorkspaceStorage

logger = get_logger(__name__)


def depfile_contents(target: str, deps: Iterable[str]) -> str:
    """Render a depfile record for `target`.

    Spaces inside paths are escaped; each dependency goes on its own
    continuation line.
    """
    escaped = [dep.replace(" ", "\\ ") for dep in deps]
    return "%s: \\\n %s\n" % (target, " \\\n ".join(escaped))


class DependencyAccumulator:
    """Append-only list of input paths for one terminal output."""

    def __init__(self, storage: WorkspaceStorage, initial: Iterable[str] = ()) -> None:
        self.storage = storage
        self._paths: list[str] = [p for p in initial if p]
        self._flushed_to: str | None = None

    def append(self, paths: Iterable[str]) -> None:
        """Add paths in order. Duplicates are kept."""
        if self._flushed_to is not None:
            raise PipelineError(
                message=f"Dependencies already flushed for '{self._flushed_to}'",
                state="dependencies_flushed",
            )
        self._paths.extend(p for p in paths if p)

    def add(self, *paths: str) -> None:
        self.append(paths)

    @property
    def paths(self) -> list[str]:
        return list(self._paths)

    @property
    def flushed(self) -> bool:
        return self._flushed_to is not None

    def __len__(self) -> int:
        return len(self._paths)

    def flush(self, output_path: str) -> str:
        """Write `<output_path>.d` listing every accumulated path.

        Returns:
            The depfile path, relative to the top directory when `output_path` is

        Raises:
            PipelineError: If already flushed, or the output was never produced.
            WorkspaceIOError: If the depfile cannot be written.
        """
        if self._flushed_to is not None:
            raise PipelineError(
                message=f"Dependencies already flushed for '{self._flushed_to}'",
                state="dependencies_flushed",
            )
        if not self.storage.exists(output_path):
            raise PipelineError(
                message=f"Refusing to write a depfile for '{output_path}', which was never produced",
                state="terminal_action_running",
            )
        depfile = output_path + ".d"
        self.storage.write_bytes(
            depfile, depfile_contents(output_path, self._paths).encode("utf-8")
        )
        self._flushed_to = output_path
        logger.info("Wrote depfile", depfile=depfile, deps=len(self._paths))
        return depfile
