"""
Bundled analysis pipeline for JSON module declarations.

The module list file names one declaration file per line (relative to the top
directory). Each declaration file holds `{"modules": [...]}`; sources may be
glob patterns, evaluated relative to the declaration file.
"""

from __future__ import annotations

import json
import os
from typing import IO

from pydantic import ValidationError

from ..core.config import BuildConfiguration
from ..core.exceptions import ConfigurationError, WorkspaceIOError
from ..core.logging import get_logger
from ..core.types import StopBefore
from ..models import BuildAction, DeclarationFile, GlobResult, Module
from ..services.globs import is_glob, match_glob
from ..storage import WorkspaceStorage
from .interface import AnalysisPipeline, BeforeBuildActionsHook, PipelineVariant

logger = get_logger(__name__)


def _ninja_escape_path(path: str) -> str:
    return path.replace("$", "$$").replace(" ", "$ ").replace(":", "$:")


class DeclarativePipeline(AnalysisPipeline):
    """Loads JSON declarations, resolves dependencies and emits actions."""

    def __init__(
        self,
        configuration: BuildConfiguration,
        storage: WorkspaceStorage,
        variant: PipelineVariant = PipelineVariant.BUILD,
    ) -> None:
        self.configuration = configuration
        self.storage = storage
        self.variant = variant
        self._hook: BeforeBuildActionsHook | None = None
        self._modules: list[Module] = []
        self._globs: list[GlobResult] = []
        self._actions: list[BuildAction] = []
        self.actions_prepared = False

    def set_before_prepare_build_actions_hook(self, hook: BeforeBuildActionsHook) -> None:
        self._hook = hook

    def list_module_paths(self, root: str) -> list[str]:
        module_list = self.configuration.flags.module_list_file
        if not module_list:
            raise ConfigurationError(message="module list file (-l) not set")
        try:
            text = self.storage.read_bytes(module_list).decode("utf-8")
        except (WorkspaceIOError, UnicodeDecodeError) as e:
            raise ConfigurationError(
                message="cannot read module list file", path=module_list, cause=e
            ) from e
        paths = [line.strip() for line in text.splitlines() if line.strip()]
        if root in ("", "."):
            return paths
        prefix = root.rstrip("/") + "/"
        return [p for p in paths if p.startswith(prefix)]

    def run(self, stop_before: StopBefore) -> list[str]:
        logger.info("Running analysis pipeline", variant=self.variant.value, stop_before=stop_before.value)
        declaration_files = self.list_module_paths(".")
        deps = [self.configuration.flags.module_list_file, *declaration_files]

        self._modules = []
        self._globs = []
        self._actions = []
        self.actions_prepared = False
        for path in declaration_files:
            self._load(path)
        self._resolve_deps()

        if stop_before == StopBefore.STOP_BEFORE_BUILD_ACTIONS:
            return deps

        if self._hook is not None:
            self._hook()
        self._prepare_build_actions()

        if stop_before == StopBefore.STOP_BEFORE_WRITE_OUTPUT:
            return deps

        self._write_ninja()
        return deps

    def globs(self) -> list[GlobResult]:
        return list(self._globs)

    def modules(self) -> list[Module]:
        return list(self._modules)

    def actions(self) -> list[BuildAction]:
        return list(self._actions)

    def emit_graph_and_actions_as_json(self, graph: IO[str], actions: IO[str]) -> None:
        graph_entries = [
            {
                "Name": m.name,
                "Type": m.decl.type,
                "Blueprint": m.declared_in,
                "Deps": [{"Name": dep} for dep in m.resolved_deps],
            }
            for m in self._modules
        ]
        json.dump(graph_entries, graph, indent=2)
        graph.write("\n")

        by_module: dict[str, list[BuildAction]] = {}
        for action in self._actions:
            by_module.setdefault(action.module, []).append(action)
        action_entries = [
            {
                "Name": name,
                "Actions": [
                    {"Inputs": a.inputs, "Outputs": a.outputs, "Command": a.command}
                    for a in module_actions
                ],
            }
            for name, module_actions in by_module.items()
        ]
        json.dump(action_entries, actions, indent=2)
        actions.write("\n")

    def write_docs(self, path: str) -> None:
        lines = ["# Modules", ""]
        by_type: dict[str, list[Module]] = {}
        for m in self._modules:
            by_type.setdefault(m.decl.type, []).append(m)
        for module_type in sorted(by_type):
            lines.append(f"## {module_type}")
            lines.append("")
            for m in sorted(by_type[module_type], key=lambda m: m.name):
                summary = f": {m.decl.doc}" if m.decl.doc else ""
                lines.append(f"- `{m.name}` ({m.declared_in}){summary}")
            lines.append("")
        self.storage.write_bytes(path, "\n".join(lines).encode("utf-8"))

    def _load(self, path: str) -> None:
        try:
            declarations = DeclarationFile.model_validate_json(self.storage.read_bytes(path))
        except WorkspaceIOError as e:
            raise ConfigurationError(message="cannot read declaration file", path=path, cause=e) from e
        except ValidationError as e:
            raise ConfigurationError(message="malformed declaration file", path=path, cause=e) from e

        package_dir = os.path.dirname(path)
        for decl in declarations.modules:
            srcs: list[str] = []
            for src in decl.srcs:
                relative = os.path.normpath(os.path.join(package_dir, src))
                if is_glob(src):
                    srcs.extend(self._glob(relative))
                else:
                    srcs.append(relative)
            self._modules.append(
                Module(decl=decl, declared_in=path, package_dir=package_dir, resolved_srcs=srcs)
            )

    def _glob(self, pattern: str) -> list[str]:
        result = match_glob(str(self.storage.join(".")), pattern)
        self._globs.append(result)
        return result.matches

    def _resolve_deps(self) -> None:
        names: dict[str, Module] = {}
        for m in self._modules:
            if m.name in names:
                raise ConfigurationError(
                    message=f"module '{m.name}' already defined in {names[m.name].declared_in}",
                    path=m.declared_in,
                )
            names[m.name] = m
        for m in self._modules:
            for dep in m.decl.deps:
                if dep in names:
                    m.resolved_deps.append(dep)
                elif self.configuration.allow_missing_dependencies:
                    logger.warning("Missing dependency", module=m.name, dep=dep)
                else:
                    raise ConfigurationError(
                        message=f"module '{m.name}' depends on undefined module '{dep}'",
                        path=m.declared_in,
                    )

    def _prepare_build_actions(self) -> None:
        intermediates = os.path.join(self.configuration.soong_out_dir, ".intermediates")
        for m in self._modules:
            if not m.decl.cmd:
                continue
            self._actions.append(
                BuildAction(
                    module=m.name,
                    command=m.decl.cmd,
                    inputs=list(m.resolved_srcs),
                    outputs=[
                        os.path.join(intermediates, m.package_dir, m.name, out)
                        for out in m.decl.outs
                    ],
                )
            )
        self.actions_prepared = True
        logger.info("Prepared build actions", modules=len(self._modules), actions=len(self._actions))

    def _write_ninja(self) -> None:
        out_file = self.configuration.flags.out_file
        if self.configuration.flags.empty_ninja_file:
            self.storage.write_bytes(out_file, b"")
            return
        lines = [
            "# Generated by buildorch. Do not edit.",
            "",
            "rule cmd",
            "  command = $cmd",
            "",
        ]
        for action in self._actions:
            if not action.outputs:
                continue
            outputs = " ".join(_ninja_escape_path(p) for p in action.outputs)
            inputs = " ".join(_ninja_escape_path(p) for p in action.inputs)
            lines.append(f"build {outputs}: cmd {inputs}".rstrip())
            lines.append(f"  cmd = {action.command.replace('$', '$$')}")
            lines.append("")
        self.storage.write_bytes(out_file, "\n".join(lines).encode("utf-8"))
