"""
Run orchestration.

One run per process: select the mode, run the analysis pipeline, collect glob
dependencies, perform the mode's terminal action, flush the depfile for the
terminal output, then persist the used environment. The run is a Prefect flow
and each phase a task; phases run strictly in that order, in-process, and any
failure aborts the run.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Callable
from typing import TypeVar

from prefect import flow
from rich.console import Console
from rich.table import Table

from ..analysis import AnalysisPipeline, DeclarativePipeline, PipelineFactory, PipelineVariant
from ..codegen import CodeGenerator, CodeGeneratorFactory, StarlarkGenerator
from ..core.config import Bp2BuildAllowlist, BuildConfiguration, BuildFlags, ToolSettings, get_settings
from ..core.exceptions import BuildOrchError, ConfigurationError, PipelineError, WorkspaceIOError
from ..core.logging import bind_context, clear_context, get_logger
from ..core.types import BuildMode, RunRecord, RunState, StopBefore
from ..models import BazelFile, CodegenMetrics, CodegenMode, CodegenOutput
from ..services.dependencies import DependencyAccumulator
from ..services.environment import EnvironmentTracker
from ..services.excludes import api_build_file_excludes, bazel_artifacts, bp2build_excludes
from ..services.globs import glob_directory, write_build_globs
from ..services.mixed_build import MixedBuildHook, SubprocessPartitioner, WorkPartitioner
from ..services.mode_selector import select_mode
from ..services.symlink_forest import SymlinkForestPlanner
from ..storage import LocalWorkspace, WorkspaceStorage
from .tasks import run_phase

T = TypeVar("T")

logger = get_logger(__name__)

SOONG_INJECTION_DIR_NAME = "soong_injection"


def print_codegen_metrics(metrics: CodegenMetrics, console: Console | None = None) -> None:
    """Show conversion statistics as a table."""
    console = console or Console(stderr=True)
    table = Table(title="bp2build conversion")
    table.add_column("Rule class", style="cyan")
    table.add_column("Targets", justify="right")
    for rule_class in sorted(metrics.rule_class_count):
        table.add_row(rule_class, str(metrics.rule_class_count[rule_class]))
    console.print(table)
    console.print(
        f"Converted {metrics.converted_count}/{metrics.total_count} modules, "
        f"{metrics.generated_file_count} files generated"
    )


class RunOrchestrator:
    """Drives a single run for the mode selected from `flags`."""

    def __init__(
        self,
        flags: BuildFlags,
        storage: WorkspaceStorage | None = None,
        pipeline_factory: PipelineFactory = DeclarativePipeline,
        codegen_factory: CodeGeneratorFactory = StarlarkGenerator,
        partitioner: WorkPartitioner | None = None,
        settings: ToolSettings | None = None,
        allowlist: Bp2BuildAllowlist | None = None,
    ) -> None:
        self.flags = flags
        self.storage = storage or LocalWorkspace(flags.top_dir)
        self.pipeline_factory = pipeline_factory
        self.codegen_factory = codegen_factory
        self.settings = settings or get_settings()
        self.partitioner = partitioner or SubprocessPartitioner(self.settings.partitioner_command)
        self.allowlist = allowlist
        self.environment = EnvironmentTracker(self.storage)
        self.record = RunRecord(run_id=str(uuid.uuid4())[:8])

    def run(self) -> RunRecord:
        """Execute the run as a Prefect flow.

        Returns:
            The completed run record

        Raises:
            BuildOrchError: On any fatal condition; `self.record` is FAILED.
                Errors that are not BuildOrchErrors arrive as PipelineError.
        """
        buildorch_flow.with_options(flow_run_name=f"buildorch-{self.record.run_id}")(self)
        return self.record

    def execute(self) -> None:
        """Body of the run flow."""
        record = self.record
        clear_context()
        bind_context(run_id=record.run_id)
        try:
            mode = select_mode(self.flags)
            record.mode = mode
            record.advance(RunState.MODE_SELECTED)
            bind_context(mode=mode.value)
            logger.info("Selected build mode", mode=mode.value)

            available = self.environment.load_available(self.flags.available_env_file)
            configuration = BuildConfiguration.create(
                self.flags, mode, available, allowlist=self.allowlist
            )
            accumulator = DependencyAccumulator(
                self.storage,
                [configuration.product_variables_file_name, self.flags.used_env_file],
            )

            output = self.do_chosen_activity(configuration, accumulator)
            record.output_file = output
            record.dependency_count = len(accumulator)

            record.environment_rewritten = self._phase(
                "used_environment",
                lambda: self.environment.flush_if_changed(
                    self.flags.used_env_file,
                    self.environment.current_used(configuration),
                    output,
                ),
            )
            record.advance(RunState.ENVIRONMENT_CHECKED)
            record.advance(RunState.DONE)
        except BuildOrchError as e:
            record.fail(str(e))
            logger.error("Run failed", error=str(e))
            raise
        except Exception as e:
            record.fail(str(e))
            logger.error("Run failed", error=str(e), error_type=type(e).__name__)
            raise PipelineError(
                message=f"unexpected {type(e).__name__}: {e}",
                state=RunState.FAILED.value,
                run_id=record.run_id,
                cause=e,
            ) from e

        logger.info(
            "Run completed",
            output=record.output_file,
            deps=record.dependency_count,
            environment_rewritten=record.environment_rewritten,
        )

    def do_chosen_activity(
        self, configuration: BuildConfiguration, accumulator: DependencyAccumulator
    ) -> str:
        """Run the mode's activity and return its terminal output file."""
        mode = configuration.build_mode
        if mode == BuildMode.BP2BUILD:
            return self._run_bp2build(configuration, accumulator)
        if configuration.is_mixed_build_enabled:
            return self._run_mixed_build(configuration, accumulator)
        if mode == BuildMode.API_BP2BUILD:
            return self._run_api_bp2build(configuration, accumulator)

        if mode == BuildMode.GENERATE_MODULE_GRAPH:
            stop_before = StopBefore.STOP_BEFORE_WRITE_OUTPUT
        elif mode in (BuildMode.GENERATE_QUERY_VIEW, BuildMode.GENERATE_DOC_FILE):
            stop_before = StopBefore.STOP_BEFORE_BUILD_ACTIONS
        else:
            stop_before = StopBefore.DO_EVERYTHING

        pipeline = self.pipeline_factory(configuration, self.storage, PipelineVariant.BUILD)
        self._run_pipeline(configuration, pipeline, stop_before, accumulator)

        if mode == BuildMode.GENERATE_QUERY_VIEW:
            marker = self.flags.bazel_queryview_dir + ".marker"

            def queryview() -> None:
                generator = self._new_generator(configuration, pipeline)
                self._codegen(generator, CodegenMode.QUERY_VIEW, self.flags.bazel_queryview_dir)
                self.storage.touch(marker)

            self._phase("queryview", queryview)
            return self._flush(accumulator, marker)

        if mode == BuildMode.GENERATE_MODULE_GRAPH:
            self._phase(
                "module_graph",
                lambda: self._write_json_module_graph_and_actions(
                    pipeline, self.flags.module_graph_file, self.flags.module_actions_file
                ),
            )
            return self._flush(accumulator, self.flags.module_graph_file)

        if mode == BuildMode.GENERATE_DOC_FILE:
            self._phase(
                "docs",
                lambda: self._call_external(
                    "analysis pipeline", lambda: pipeline.write_docs(self.flags.doc_file)
                ),
            )
            return self._flush(accumulator, self.flags.doc_file)

        # The build graph itself was written by the pipeline.
        return self._flush(accumulator, self.flags.out_file)

    def _run_mixed_build(
        self, configuration: BuildConfiguration, accumulator: DependencyAccumulator
    ) -> str:
        pipeline = self.pipeline_factory(configuration, self.storage, PipelineVariant.BUILD)
        hook = MixedBuildHook(configuration, accumulator, self.partitioner, self.storage)
        self._run_pipeline(
            configuration, pipeline, StopBefore.DO_EVERYTHING, accumulator, hook=hook
        )
        return self._flush(accumulator, self.flags.out_file)

    def _run_bp2build(
        self, configuration: BuildConfiguration, accumulator: DependencyAccumulator
    ) -> str:
        pipeline = self.pipeline_factory(
            configuration, self.storage, PipelineVariant.BAZEL_CONVERSION
        )
        self._run_pipeline(
            configuration, pipeline, StopBefore.STOP_BEFORE_BUILD_ACTIONS, accumulator
        )

        generator = self._new_generator(configuration, pipeline)
        generated_root = os.path.join(configuration.soong_out_dir, "bp2build")
        workspace_root = os.path.join(configuration.soong_out_dir, "workspace")
        output = self._phase(
            "codegen", lambda: self._codegen(generator, CodegenMode.BP2BUILD, generated_root)
        )

        verbose = configuration.is_env_true("BP2BUILD_VERBOSE")
        excludes = bp2build_excludes(self.storage, configuration)
        planner = SymlinkForestPlanner(self.storage, verbose=verbose)
        accumulator.append(
            self._phase(
                "symlink_forest",
                lambda: planner.plant(workspace_root, generated_root, ".", excludes),
            )
        )
        accumulator.append(
            self._call_external("code generator", generator.additional_dependency_paths)
        )

        marker = self.flags.bp2build_marker
        self.storage.touch(marker)
        depfile_target = self._flush(accumulator, marker)

        if verbose:
            print_codegen_metrics(output.metrics)
        return depfile_target

    def _run_api_bp2build(
        self, configuration: BuildConfiguration, accumulator: DependencyAccumulator
    ) -> str:
        pipeline = self.pipeline_factory(
            configuration, self.storage, PipelineVariant.API_CONVERSION
        )
        accumulator.append(
            self._call_external("analysis pipeline", lambda: pipeline.list_module_paths("."))
        )
        self._run_pipeline(
            configuration, pipeline, StopBefore.STOP_BEFORE_BUILD_ACTIONS, accumulator
        )

        api_dir = self.flags.bazel_api_bp2build_dir
        generator = self._new_generator(configuration, pipeline)
        output = self._phase(
            "codegen", lambda: self._codegen(generator, CodegenMode.API_BP2BUILD, api_dir)
        )
        accumulator.append(
            self._call_external("code generator", generator.additional_dependency_paths)
        )

        injection_dir = os.path.join(configuration.soong_out_dir, SOONG_INJECTION_DIR_NAME)
        injection_files = self._call_external(
            "code generator", lambda: generator.soong_injection_files(output)
        )
        for bazel_file in injection_files:
            self.storage.write_read_only(injection_dir, bazel_file.relative_path, bazel_file.contents)

        workspace = os.path.join(configuration.soong_out_dir, "api_bp2build")
        excludes = bazel_artifacts(self.flags.top_dir)
        excludes.extend(api_build_file_excludes(self.storage, self.flags.module_list_file))
        planner = SymlinkForestPlanner(self.storage)
        accumulator.append(
            self._phase("symlink_forest", lambda: planner.plant(workspace, api_dir, ".", excludes))
        )

        marker = workspace + ".marker"
        self.storage.touch(marker)
        return self._flush(accumulator, marker)

    def _run_pipeline(
        self,
        configuration: BuildConfiguration,
        pipeline: AnalysisPipeline,
        stop_before: StopBefore,
        accumulator: DependencyAccumulator,
        hook: MixedBuildHook | None = None,
    ) -> None:
        self.record.advance(RunState.PIPELINE_RUNNING)
        if hook is not None:
            def before_build_actions() -> None:
                self.record.advance(RunState.MIXED_BUILD_HOOK_INVOKED)
                self._phase("mixed_build_hook", hook)

            pipeline.set_before_prepare_build_actions_hook(before_build_actions)

        deps = self._phase(
            "analysis",
            lambda: self._call_external("analysis pipeline", lambda: pipeline.run(stop_before)),
        )
        if hook is not None and not hook.invoked:
            raise PipelineError(
                message="Analysis finished without invoking the mixed-build hook",
                state=self.record.state.value,
                run_id=self.record.run_id,
            )
        accumulator.append(deps)

        glob_dir = glob_directory(configuration.soong_out_dir, self.flags.glob_list_dir)
        accumulator.append(
            self._phase(
                "globs",
                lambda: write_build_globs(
                    self.storage, pipeline.globs(), self.flags.glob_file, glob_dir
                ),
            )
        )
        self.record.advance(RunState.TERMINAL_ACTION_RUNNING)

    def _new_generator(
        self, configuration: BuildConfiguration, pipeline: AnalysisPipeline
    ) -> CodeGenerator:
        return self._call_external(
            "code generator", lambda: self.codegen_factory(configuration, pipeline)
        )

    def _codegen(
        self, generator: CodeGenerator, mode: CodegenMode, directory: str
    ) -> CodegenOutput:
        output = self._call_external("code generator", lambda: generator.codegen(mode))
        self._create_bazel_workspace(output.files, directory)
        return output

    def _call_external(self, collaborator: str, call: Callable[[], T]) -> T:
        """Invoke a plugged-in collaborator, mapping foreign errors to PipelineError."""
        try:
            return call()
        except BuildOrchError:
            raise
        except Exception as e:
            raise PipelineError(
                message=f"{collaborator} failed: {e}",
                state=self.record.state.value,
                run_id=self.record.run_id,
                cause=e,
            ) from e

    def _flush(self, accumulator: DependencyAccumulator, output: str) -> str:
        self._phase("ninja_deps", lambda: accumulator.flush(output))
        self.record.advance(RunState.DEPENDENCIES_FLUSHED)
        return output

    def _create_bazel_workspace(self, files: list[BazelFile], directory: str) -> None:
        self.storage.remove_tree(directory)
        for bazel_file in files:
            self.storage.write_read_only(directory, bazel_file.relative_path, bazel_file.contents)

    def _write_json_module_graph_and_actions(
        self, pipeline: AnalysisPipeline, graph_path: str, actions_path: str
    ) -> None:
        if not actions_path:
            raise ConfigurationError(message="--module_actions_file must be set with --module_graph_file")
        graph_file = self.storage.join(graph_path)
        actions_file = self.storage.join(actions_path)
        try:
            graph_file.parent.mkdir(parents=True, exist_ok=True)
            actions_file.parent.mkdir(parents=True, exist_ok=True)
            with open(graph_file, "w", encoding="utf-8") as graph, open(
                actions_file, "w", encoding="utf-8"
            ) as actions:
                self._call_external(
                    "analysis pipeline",
                    lambda: pipeline.emit_graph_and_actions_as_json(graph, actions),
                )
        except OSError as e:
            raise WorkspaceIOError(
                message=str(e), path=str(e.filename or graph_file), operation="writing", cause=e
            ) from e

    def _phase(self, name: str, action: Callable[[], T]) -> T:
        phase = self.record.begin_phase(name)
        try:
            result = run_phase(name, action)
        except Exception as e:
            phase.mark_failed(str(e))
            raise
        phase.mark_completed()
        logger.debug("Phase completed", phase=name, duration=phase.duration_seconds)
        return result


@flow(
    name="buildorch",
    description="One build orchestration run",
    version="1.0.0",
    retries=0,
    validate_parameters=False,
)
def buildorch_flow(orchestrator: RunOrchestrator) -> None:
    """Execute one orchestrated build.

    Args:
        orchestrator: The run to execute; its record holds the outcome
    """
    orchestrator.execute()


def run_build(flags: BuildFlags, **kwargs) -> RunRecord:
    """Convenience function to run one orchestrated build."""
    return RunOrchestrator(flags, **kwargs).run()
