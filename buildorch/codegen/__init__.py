"""Second-build-system code generation."""

from .interface import CodeGenerator, CodeGeneratorFactory
from .starlark import StarlarkGenerator

__all__ = ["CodeGenerator", "CodeGeneratorFactory", "StarlarkGenerator"]
