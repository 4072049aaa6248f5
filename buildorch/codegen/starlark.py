"""
Bundled BUILD file generator.

One BUILD.bazel per package directory. QueryView converts every module into a
generic `soong_module` target; bp2build only converts module types that have
a native rule; api_bp2build only converts API contributions.
"""

from __future__ import annotations

import json
import os
from collections import defaultdict

from ..analysis.interface import AnalysisPipeline
from ..core.config import BuildConfiguration
from ..core.logging import get_logger
from ..models import BazelFile, CodegenMetrics, CodegenMode, CodegenOutput, Module
from .interface import CodeGenerator

logger = get_logger(__name__)

CONVERTIBLE_RULES = {
    "filegroup": "filegroup",
    "genrule": "genrule",
    "cc_library": "cc_library",
    "cc_binary": "cc_binary",
    "java_library": "java_library",
}

API_CONTRIBUTION_SUFFIX = "_api_contribution"

QUERYVIEW_SHIM = '''def _soong_module_impl(ctx):
    return []

soong_module = rule(
    implementation = _soong_module_impl,
    attrs = {
        "module_name": attr.string(mandatory = True),
        "module_type": attr.string(mandatory = True),
        "module_deps": attr.label_list(),
    },
)
'''


def _starlark_list(values: list[str]) -> str:
    if not values:
        return "[]"
    return "[\n" + "".join(f"        {json.dumps(v)},\n" for v in values) + "    ]"


def _label(module: Module, by_name: dict[str, Module], dep: str) -> str:
    target = by_name[dep]
    if target.package_dir == module.package_dir:
        return f":{dep}"
    return f"//{target.package_dir}:{dep}"


class StarlarkGenerator(CodeGenerator):
    """Generates BUILD.bazel files from the pipeline's module graph."""

    def __init__(self, configuration: BuildConfiguration, pipeline: AnalysisPipeline) -> None:
        self.configuration = configuration
        self.pipeline = pipeline

    def codegen(self, mode: CodegenMode) -> CodegenOutput:
        modules = self.pipeline.modules()
        by_name = {m.name: m for m in modules}
        metrics = CodegenMetrics()
        targets: dict[str, list[str]] = defaultdict(list)

        for module in modules:
            target = self._convert(mode, module, by_name)
            if target is None:
                metrics.unconverted_modules.append(module.name)
                continue
            rule_class, text = target
            targets[module.package_dir].append(text)
            metrics.converted_modules.append(module.name)
            metrics.rule_class_count[rule_class] = metrics.rule_class_count.get(rule_class, 0) + 1

        files = [BazelFile(basename="WORKSPACE", contents="")]
        if mode == CodegenMode.QUERY_VIEW:
            files.append(BazelFile(basename="BUILD.bazel", contents=""))
            files.append(BazelFile(dir="build_defs", basename="BUILD.bazel", contents=""))
            files.append(BazelFile(dir="build_defs", basename="soong_module.bzl", contents=QUERYVIEW_SHIM))
        for package_dir in sorted(targets):
            header = ""
            if mode == CodegenMode.QUERY_VIEW:
                header = 'load("//build_defs:soong_module.bzl", "soong_module")\n\n'
            files.append(
                BazelFile(
                    dir=package_dir,
                    basename="BUILD.bazel",
                    contents=header + "\n".join(targets[package_dir]),
                )
            )
        metrics.generated_file_count = len(files)
        logger.info(
            "Generated BUILD files",
            mode=mode.value,
            converted=metrics.converted_count,
            total=metrics.total_count,
        )
        return CodegenOutput(files=files, metrics=metrics)

    def additional_dependency_paths(self) -> list[str]:
        # Conversion reads nothing beyond the pipeline's declaration files.
        return []

    def soong_injection_files(self, output: CodegenOutput) -> list[BazelFile]:
        product_vars = json.dumps(self.configuration.product_variables, indent=4, sort_keys=True)
        return [
            BazelFile(dir="product_config", basename="BUILD.bazel", contents=""),
            BazelFile(
                dir="product_config",
                basename="product_variables.bzl",
                contents=f"product_vars = {product_vars}\n",
            ),
            BazelFile(dir="metrics", basename="BUILD.bazel", contents=""),
            BazelFile(
                dir="metrics",
                basename="converted_modules.txt",
                contents="".join(f"{name}\n" for name in sorted(output.metrics.converted_modules)),
            ),
        ]

    def _convert(
        self, mode: CodegenMode, module: Module, by_name: dict[str, Module]
    ) -> tuple[str, str] | None:
        deps = [_label(module, by_name, d) for d in module.resolved_deps]
        srcs = [
            os.path.relpath(src, module.package_dir) if module.package_dir else src
            for src in module.resolved_srcs
        ]

        if mode == CodegenMode.QUERY_VIEW:
            return "soong_module", (
                "soong_module(\n"
                f"    name = {json.dumps(module.name)},\n"
                f"    module_name = {json.dumps(module.name)},\n"
                f"    module_type = {json.dumps(module.decl.type)},\n"
                f"    module_deps = {_starlark_list(deps)},\n"
                ")\n"
            )

        if mode == CodegenMode.API_BP2BUILD:
            if not module.decl.type.endswith(API_CONTRIBUTION_SUFFIX):
                return None
            rule_class = module.decl.type
            return rule_class, (
                f"{rule_class}(\n"
                f"    name = {json.dumps(module.name)},\n"
                f"    api = {_starlark_list(srcs)},\n"
                ")\n"
            )

        rule_class = CONVERTIBLE_RULES.get(module.decl.type)
        if rule_class is None:
            return None
        lines = [f"{rule_class}(", f"    name = {json.dumps(module.name)},"]
        if srcs:
            lines.append(f"    srcs = {_starlark_list(srcs)},")
        if rule_class == "genrule":
            lines.append(f"    outs = {_starlark_list(module.decl.outs)},")
            lines.append(f"    cmd = {json.dumps(module.decl.cmd or '')},")
        if deps and rule_class not in ("filegroup", "genrule"):
            lines.append(f"    deps = {_starlark_list(deps)},")
        lines.append(")\n")
        return rule_class, "\n".join(lines)
