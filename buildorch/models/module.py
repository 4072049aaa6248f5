"""
Module declaration and build graph models.

Declarations are read by the bundled analysis pipeline from JSON files named
in the module list file.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class ModuleDecl(BaseModel):
    """A declared unit of the build (library, binary, generated source...)."""

    name: str = Field(description="Unique module name")
    type: str = Field(default="filegroup", description="Module type")
    deps: list[str] = Field(default_factory=list, description="Names of modules this one depends on")
    srcs: list[str] = Field(default_factory=list, description="Source files or glob patterns, relative to the declaration")
    outs: list[str] = Field(default_factory=list, description="Files produced by `cmd`")
    cmd: str | None = Field(default=None, description="Command producing `outs` from `srcs`")
    doc: str = Field(default="", description="Free-form documentation")


class DeclarationFile(BaseModel):
    """Content of one declaration file."""

    modules: list[ModuleDecl] = Field(default_factory=list)


class Module(BaseModel):
    """A module after loading: declaration plus where it came from."""

    decl: ModuleDecl
    declared_in: str = Field(description="Declaration file, relative to the top directory")
    package_dir: str = Field(description="Directory of the declaration file")
    resolved_srcs: list[str] = Field(default_factory=list, description="Expanded sources, relative to the top directory")
    resolved_deps: list[str] = Field(default_factory=list, description="Dependencies that exist in the graph")

    @property
    def name(self) -> str:
        return self.decl.name


class BuildAction(BaseModel):
    """One command with explicit inputs and outputs."""

    module: str
    command: str
    inputs: list[str] = Field(default_factory=list)
    outputs: list[str] = Field(default_factory=list)


class GlobResult(BaseModel):
    """A glob evaluated during loading; its listing must be re-checked next run."""

    pattern: str = Field(description="Pattern relative to the top directory")
    matches: list[str] = Field(default_factory=list)
    deps: list[str] = Field(default_factory=list, description="Directories read while globbing")
