"""Workspace storage for buildorch outputs."""

from .interface import WorkspaceStorage
from .local import LocalWorkspace, join_path

__all__ = ["WorkspaceStorage", "LocalWorkspace", "join_path"]
