"""
Code generation models for the second build system.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class CodegenMode(str, Enum):
    """What the generator converts."""

    BP2BUILD = "bp2build"
    QUERY_VIEW = "queryview"
    API_BP2BUILD = "api_bp2build"


class BazelFile(BaseModel):
    """A generated file, relative to the workspace it is written into."""

    dir: str = Field(default="", description="Directory relative to the workspace root")
    basename: str
    contents: str

    @property
    def relative_path(self) -> str:
        return f"{self.dir}/{self.basename}" if self.dir else self.basename


class CodegenMetrics(BaseModel):
    """Conversion statistics reported by the generator."""

    rule_class_count: dict[str, int] = Field(default_factory=dict)
    converted_modules: list[str] = Field(default_factory=list)
    unconverted_modules: list[str] = Field(default_factory=list)
    generated_file_count: int = Field(default=0)

    @property
    def converted_count(self) -> int:
        return len(self.converted_modules)

    @property
    def total_count(self) -> int:
        return len(self.converted_modules) + len(self.unconverted_modules)


class CodegenOutput(BaseModel):
    """Files and metrics produced by one codegen pass."""

    files: list[BazelFile] = Field(default_factory=list)
    metrics: CodegenMetrics = Field(default_factory=CodegenMetrics)
