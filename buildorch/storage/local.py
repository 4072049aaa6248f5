"""
Local filesystem workspace storage.

Wraps OSError into WorkspaceIOError so every failure carries the path and the
operation that failed.
"""

from __future__ import annotations

import os
import shutil
import stat
from pathlib import Path

from ..core.exceptions import WorkspaceIOError
from .interface import WorkspaceStorage


def join_path(top_dir: str, path: str) -> Path:
    """Join `path` under `top_dir` unless it is already absolute."""
    if os.path.isabs(path):
        return Path(path)
    return Path(top_dir or ".") / path


class LocalWorkspace(WorkspaceStorage):
    """Workspace storage on the local filesystem."""

    def __init__(self, top_dir: str) -> None:
        """Initialize local storage.

        Args:
            top_dir: Top directory of the source tree
        """
        self.top_dir = top_dir

    def join(self, path: str) -> Path:
        return join_path(self.top_dir, path)

    def exists(self, path: str) -> bool:
        return self.join(path).exists()

    def read_bytes(self, path: str) -> bytes:
        full_path = self.join(path)
        try:
            return full_path.read_bytes()
        except OSError as e:
            raise WorkspaceIOError(
                message=str(e), path=str(full_path), operation="reading", cause=e
            ) from e

    def read_bytes_if_exists(self, path: str) -> bytes | None:
        full_path = self.join(path)
        try:
            return full_path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise WorkspaceIOError(
                message=str(e), path=str(full_path), operation="reading", cause=e
            ) from e

    def write_bytes(self, path: str, data: bytes) -> None:
        full_path = self.join(path)
        try:
            full_path.parent.mkdir(parents=True, exist_ok=True)
            full_path.write_bytes(data)
        except OSError as e:
            raise WorkspaceIOError(
                message=str(e), path=str(full_path), operation="writing", cause=e
            ) from e

    def write_if_changed(self, path: str, data: bytes) -> bool:
        if self.read_bytes_if_exists(path) == data:
            return False
        self.write_bytes(path, data)
        return True

    def write_read_only(self, directory: str, relative_path: str, contents: str) -> Path:
        full_path = self.join(directory) / relative_path
        try:
            full_path.parent.mkdir(parents=True, exist_ok=True)
            # A previous run left this file read-only.
            if full_path.exists() or full_path.is_symlink():
                full_path.unlink()
            full_path.write_text(contents, encoding="utf-8")
            full_path.chmod(stat.S_IRUSR | stat.S_IRGRP | stat.S_IROTH)
        except OSError as e:
            raise WorkspaceIOError(
                message=str(e), path=str(full_path), operation="writing", cause=e
            ) from e
        return full_path

    def touch(self, path: str) -> None:
        full_path = self.join(path)
        try:
            full_path.parent.mkdir(parents=True, exist_ok=True)
            with open(full_path, "a"):
                pass
            # utime(None) sets both times to the current time
            os.utime(full_path, None)
        except OSError as e:
            raise WorkspaceIOError(
                message=str(e), path=str(full_path), operation="touching", cause=e
            ) from e

    def remove_tree(self, path: str) -> None:
        full_path = self.join(path)
        try:
            if full_path.is_symlink() or full_path.is_file():
                full_path.unlink()
            elif full_path.is_dir():
                shutil.rmtree(full_path)
        except OSError as e:
            raise WorkspaceIOError(
                message=str(e), path=str(full_path), operation="removing", cause=e
            ) from e
