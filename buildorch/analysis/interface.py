"""
Analysis pipeline contract.

The orchestrator only drives the pipeline through these entry points; how
modules are loaded, mutated and turned into actions is the pipeline's business.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from enum import Enum
from typing import IO

from ..core.config import BuildConfiguration
from ..core.types import StopBefore
from ..models import GlobResult, Module
from ..storage import WorkspaceStorage

BeforeBuildActionsHook = Callable[[], None]


class PipelineVariant(str, Enum):
    """Which set of passes the pipeline registers."""

    BUILD = "build"
    BAZEL_CONVERSION = "bazel_conversion"
    API_CONVERSION = "api_conversion"


class AnalysisPipeline(ABC):
    """Module-graph construction and build-action generation."""

    @abstractmethod
    def set_before_prepare_build_actions_hook(self, hook: BeforeBuildActionsHook) -> None:
        """Register a callback run exactly once, right before build actions are prepared."""
        ...

    @abstractmethod
    def run(self, stop_before: StopBefore) -> list[str]:
        """Load and analyse modules up to `stop_before`.

        Returns:
            Every file read while doing so
        """
        ...

    @abstractmethod
    def list_module_paths(self, root: str) -> list[str]:
        """Declaration files under `root`, relative to the top directory."""
        ...

    @abstractmethod
    def globs(self) -> list[GlobResult]:
        """Globs evaluated during the last run."""
        ...

    @abstractmethod
    def modules(self) -> list[Module]:
        """Loaded modules, in declaration order."""
        ...

    @abstractmethod
    def emit_graph_and_actions_as_json(self, graph: IO[str], actions: IO[str]) -> None:
        """Dump the module graph and the build actions."""
        ...

    @abstractmethod
    def write_docs(self, path: str) -> None:
        """Write module documentation to `path`."""
        ...


PipelineFactory = Callable[[BuildConfiguration, WorkspaceStorage, PipelineVariant], AnalysisPipeline]
