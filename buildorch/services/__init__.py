"""Run services: mode selection, dependency tracking, environment, forests."""

from .dependencies import DependencyAccumulator, depfile_contents
from .environment import EnvironmentTracker, env_file_contents, env_from_bytes
from .globs import glob_directory, write_build_globs
from .mixed_build import MixedBuildHook, SubprocessPartitioner, WorkPartitioner
from .mode_selector import select_mode
from .symlink_forest import SymlinkForestPlanner, plant_symlink_forest

__all__ = [
    "DependencyAccumulator",
    "depfile_contents",
    "EnvironmentTracker",
    "env_file_contents",
    "env_from_bytes",
    "glob_directory",
    "write_build_globs",
    "MixedBuildHook",
    "SubprocessPartitioner",
    "WorkPartitioner",
    "select_mode",
    "SymlinkForestPlanner",
    "plant_symlink_forest",
]
