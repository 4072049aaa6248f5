"""
Contract of the second-build-system code generator.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable

from ..analysis.interface import AnalysisPipeline
from ..core.config import BuildConfiguration
from ..models import BazelFile, CodegenMode, CodegenOutput


class CodeGenerator(ABC):
    """Converts an analysed module graph into BUILD files."""

    @abstractmethod
    def codegen(self, mode: CodegenMode) -> CodegenOutput:
        """Generate workspace files for `mode`."""
        ...

    @abstractmethod
    def additional_dependency_paths(self) -> list[str]:
        """Files read by the generator beyond the pipeline's own inputs."""
        ...

    @abstractmethod
    def soong_injection_files(self, output: CodegenOutput) -> list[BazelFile]:
        """Files that expose build configuration to the second build system."""
        ...


CodeGeneratorFactory = Callable[[BuildConfiguration, AnalysisPipeline], CodeGenerator]
