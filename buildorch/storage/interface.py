"""
Workspace storage interface.

Every file the orchestrator reads or writes is addressed relative to the top
of the source tree; absolute paths are used as given.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path


class WorkspaceStorage(ABC):
    """Abstract workspace storage interface."""

    @abstractmethod
    def join(self, path: str) -> Path:
        """Resolve a top-relative or absolute path.

        Args:
            path: Path relative to the top directory, or absolute

        Returns:
            The filesystem path
        """
        ...

    @abstractmethod
    def exists(self, path: str) -> bool:
        """Check whether a path exists."""
        ...

    @abstractmethod
    def read_bytes(self, path: str) -> bytes:
        """Read a file.

        Raises:
            WorkspaceIOError: If the file cannot be read.
        """
        ...

    @abstractmethod
    def read_bytes_if_exists(self, path: str) -> bytes | None:
        """Read a file, returning None when it does not exist.

        Raises:
            WorkspaceIOError: On any failure other than a missing file.
        """
        ...

    @abstractmethod
    def write_bytes(self, path: str, data: bytes) -> None:
        """Write a file, creating parent directories.

        Raises:
            WorkspaceIOError: If the file cannot be written.
        """
        ...

    @abstractmethod
    def write_if_changed(self, path: str, data: bytes) -> bool:
        """Write a file unless it already holds exactly `data`.

        Returns:
            True if the file was written
        """
        ...

    @abstractmethod
    def write_read_only(self, directory: str, relative_path: str, contents: str) -> Path:
        """Write a 0444 file under `directory`, replacing any previous one.

        Returns:
            The written path
        """
        ...

    @abstractmethod
    def touch(self, path: str) -> None:
        """Create the file if needed and set its modification time to now."""
        ...

    @abstractmethod
    def remove_tree(self, path: str) -> None:
        """Remove a file or directory tree if present."""
        ...
