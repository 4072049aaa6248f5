"""
buildorch data models.

Pydantic models for module declarations, the analysed build graph and the
files produced for the second build system.
"""

from .codegen import BazelFile, CodegenMetrics, CodegenMode, CodegenOutput
from .module import BuildAction, DeclarationFile, GlobResult, Module, ModuleDecl

__all__ = [
    "BazelFile",
    "CodegenMetrics",
    "CodegenMode",
    "CodegenOutput",
    "BuildAction",
    "DeclarationFile",
    "GlobResult",
    "Module",
    "ModuleDecl",
]
