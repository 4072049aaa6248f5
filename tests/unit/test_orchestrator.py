"""Tests for run orchestration across build modes."""

import json
import os
import stat

import pytest

from buildorch.analysis import AnalysisPipeline, DeclarativePipeline
from buildorch.core.exceptions import ConfigurationError, EnvironmentReadError, ExternalToolError, PipelineError
from buildorch.core.types import BuildMode, RunState
from buildorch.orchestration import RunOrchestrator, run_build
from buildorch.services.environment import env_from_bytes
from buildorch.services.mixed_build import DEPS_FILE_VARIABLE, WorkPartitioner
from buildorch.storage import LocalWorkspace

OLD = 1_000_000_000


def depfile_deps(path):
    """Dependencies listed in a depfile, in order."""
    lines = path.read_text().splitlines()
    return [line.strip().rstrip("\\").strip() for line in lines[1:]]


class RecordingPartitioner(WorkPartitioner):
    def __init__(self, events, error=None):
        self.events = events
        self.error = error

    def invoke(self, configuration):
        self.events.append("partitioner")
        if self.error:
            raise self.error


class RecordingPipeline(AnalysisPipeline):
    """Pipeline double that records the order of its phases."""

    def __init__(self, configuration, storage, variant, events, call_hook=True, error=None):
        self.configuration = configuration
        self.storage = storage
        self.variant = variant
        self.events = events
        self.call_hook = call_hook
        self.error = error
        self.hook = None

    def set_before_prepare_build_actions_hook(self, hook):
        self.hook = hook

    def run(self, stop_before):
        self.events.append("load")
        if self.error:
            raise self.error
        if self.call_hook and self.hook is not None:
            self.hook()
        self.events.append("prepare_build_actions")
        self.storage.write_bytes(self.configuration.flags.out_file, b"# ninja\n")
        return ["decl.json"]

    def list_module_paths(self, root):
        return []

    def globs(self):
        return []

    def modules(self):
        return []

    def emit_graph_and_actions_as_json(self, graph, actions):
        pass

    def write_docs(self, path):
        pass


@pytest.fixture
def with_deps_file(source_tree, write_files, env_text):
    """Make BAZEL_DEPS_FILE available and point it at a deps listing."""
    write_files(source_tree, {
        "out/bazel.deps": "build/bazel/rules.bzl\n",
        "out/soong/soong.environment.available": env_text({
            "HOME": "/home/builder",
            DEPS_FILE_VARIABLE: "out/bazel.deps",
        }),
    })
    return source_tree


class TestNormalBuild:
    """Tests for the default mode."""

    def test_outputs_and_depfile(self, make_flags, source_tree, settings):
        """Test that a normal build writes the graph, its depfile and the used env.

        Verifies the depfile starts with the product variables and used env files.
        """
        record = RunOrchestrator(make_flags(), settings=settings).run()

        assert record.state == RunState.DONE
        assert record.mode == BuildMode.NORMAL_BUILD
        assert (source_tree / "out/soong/build.ninja").exists()
        deps = depfile_deps(source_tree / "out/soong/build.ninja.d")
        assert deps[:2] == ["out/soong/soong.variables", "out/soong/soong.environment.used.build"]
        assert "foo/Android.bp.json" in deps
        assert any(d.endswith(".glob") for d in deps)
        used = env_from_bytes((source_tree / "out/soong/soong.environment.used.build").read_bytes())
        assert used == {"ALLOW_MISSING_DEPENDENCIES": ""}

    def test_state_history(self, make_flags, settings):
        record = RunOrchestrator(make_flags(), settings=settings).run()
        assert record.history == [
            RunState.INIT,
            RunState.MODE_SELECTED,
            RunState.PIPELINE_RUNNING,
            RunState.TERMINAL_ACTION_RUNNING,
            RunState.DEPENDENCIES_FLUSHED,
            RunState.ENVIRONMENT_CHECKED,
            RunState.DONE,
        ]

    def test_unchanged_environment_not_rewritten(self, make_flags, source_tree, settings):
        """Test that a second identical run leaves the used env file alone."""
        RunOrchestrator(make_flags(), settings=settings).run()
        used = source_tree / "out/soong/soong.environment.used.build"
        os.utime(used, (OLD, OLD))

        record = RunOrchestrator(make_flags(), settings=settings).run()

        assert not record.environment_rewritten
        assert used.stat().st_mtime == OLD

    def test_changed_environment_rewritten(self, make_flags, source_tree, write_files, env_text, settings):
        """Test that a changed consumed variable rewrites the used env file.

        Verifies that the output is not older than the snapshot afterwards.
        """
        RunOrchestrator(make_flags(), settings=settings).run()
        write_files(source_tree, {
            "out/soong/soong.environment.available": env_text({"ALLOW_MISSING_DEPENDENCIES": "true"}),
        })

        record = RunOrchestrator(make_flags(), settings=settings).run()

        used = source_tree / "out/soong/soong.environment.used.build"
        output = source_tree / "out/soong/build.ninja"
        assert record.environment_rewritten
        assert env_from_bytes(used.read_bytes()) == {"ALLOW_MISSING_DEPENDENCIES": "true"}
        assert output.stat().st_mtime >= used.stat().st_mtime

    def test_unconsumed_variable_change_ignored(self, make_flags, source_tree, write_files, env_text, settings):
        RunOrchestrator(make_flags(), settings=settings).run()
        write_files(source_tree, {
            "out/soong/soong.environment.available": env_text({
                "ALLOW_MISSING_DEPENDENCIES": "",
                "HOME": "/somewhere/else",
            }),
        })
        record = RunOrchestrator(make_flags(), settings=settings).run()
        assert not record.environment_rewritten


class TestModuleGraph:
    """Tests for module graph generation."""

    def test_graph_and_depfile(self, make_flags, source_tree, settings):
        flags = make_flags(module_graph_file="out/graph.json", module_actions_file="out/actions.json")
        record = RunOrchestrator(flags, settings=settings).run()

        assert record.mode == BuildMode.GENERATE_MODULE_GRAPH
        graph = json.loads((source_tree / "out/graph.json").read_text())
        assert [entry["Name"] for entry in graph] == ["foo"]
        assert (source_tree / "out/actions.json").exists()
        assert "out/.module_paths/Android.bp.list" in depfile_deps(source_tree / "out/graph.json.d")
        assert not (source_tree / "out/soong/build.ninja").exists()

    def test_actions_file_required(self, make_flags, settings):
        orchestrator = RunOrchestrator(make_flags(module_graph_file="out/graph.json"), settings=settings)
        with pytest.raises(ConfigurationError):
            orchestrator.run()
        assert orchestrator.record.state == RunState.FAILED


class TestDocAndQueryView:
    """Tests for the documentation and queryview modes."""

    def test_doc_file(self, make_flags, source_tree, settings):
        RunOrchestrator(make_flags(doc_file="out/docs.md"), settings=settings).run()
        assert "`foo`" in (source_tree / "out/docs.md").read_text()
        assert (source_tree / "out/docs.md.d").exists()

    def test_queryview(self, make_flags, source_tree, settings):
        """Test that queryview writes read-only BUILD files and a marker."""
        record = RunOrchestrator(make_flags(bazel_queryview_dir="out/queryview"), settings=settings).run()

        build_file = source_tree / "out/queryview/foo/BUILD.bazel"
        assert 'module_type = "filegroup"' in build_file.read_text()
        assert not build_file.stat().st_mode & stat.S_IWUSR
        assert record.output_file == "out/queryview.marker"
        assert (source_tree / "out/queryview.marker.d").exists()

    def test_queryview_rerun(self, make_flags, source_tree, settings):
        """Test that read-only files from a previous run are replaced."""
        flags = make_flags(bazel_queryview_dir="out/queryview")
        RunOrchestrator(flags, settings=settings).run()
        record = RunOrchestrator(flags, settings=settings).run()
        assert record.succeeded


class TestBp2Build:
    """Tests for the bp2build workspace mode."""

    def test_workspace_forest(self, make_flags, source_tree, settings):
        """Test that the workspace merges generated BUILD files over the sources.

        Verifies the out directory is excluded and the marker depfile lists
        visited directories.
        """
        flags = make_flags(bp2build_marker="out/soong/bp2build_workspace_marker")
        record = RunOrchestrator(flags, settings=settings).run()

        workspace = source_tree / "out/soong/workspace"
        assert record.mode == BuildMode.BP2BUILD
        assert "filegroup(" in (workspace / "foo/BUILD.bazel").read_text()
        assert (workspace / "foo/a.txt").read_text() == "a\n"
        assert (workspace / "bar").is_symlink()
        assert not os.path.lexists(workspace / "out")
        assert (source_tree / "out/soong/bp2build_workspace_marker").exists()
        deps = depfile_deps(source_tree / "out/soong/bp2build_workspace_marker.d")
        assert "foo" in deps
        assert "out/soong/bp2build" in deps

    def test_kept_build_file_merged(self, make_flags, source_tree, write_files, settings):
        from buildorch.core.config import Bp2BuildAllowlist

        write_files(source_tree, {
            "foo/BUILD.bazel": "# handwritten\n",
            "out/.module_paths/bazel.list": "foo/BUILD.bazel\n",
        })
        flags = make_flags(bp2build_marker="out/soong/bp2build_workspace_marker")
        allowlist = Bp2BuildAllowlist(keep_existing_build_file={"foo": False})
        RunOrchestrator(flags, settings=settings, allowlist=allowlist).run()

        merged = (source_tree / "out/soong/workspace/foo/BUILD.bazel").read_text()
        assert merged.index("filegroup(") < merged.index("# handwritten")

    def test_ignored_build_file_not_merged(self, make_flags, source_tree, write_files, settings):
        write_files(source_tree, {
            "foo/BUILD.bazel": "# handwritten\n",
            "out/.module_paths/bazel.list": "foo/BUILD.bazel\n",
        })
        flags = make_flags(bp2build_marker="out/soong/bp2build_workspace_marker")
        RunOrchestrator(flags, settings=settings).run()

        merged = (source_tree / "out/soong/workspace/foo/BUILD.bazel").read_text()
        assert "# handwritten" not in merged


class TestApiBp2Build:
    """Tests for the api_bp2build mode."""

    def test_workspace_and_injection(self, make_flags, source_tree, settings):
        flags = make_flags(bazel_api_bp2build_dir="out/api_bp2build")
        record = RunOrchestrator(flags, settings=settings).run()

        assert record.mode == BuildMode.API_BP2BUILD
        assert record.output_file == "out/soong/api_bp2build.marker"
        injected = source_tree / "out/soong/soong_injection/product_config/product_variables.bzl"
        assert injected.read_text().startswith("product_vars = ")
        assert not injected.stat().st_mode & stat.S_IWUSR
        assert (source_tree / "out/soong/api_bp2build/WORKSPACE").is_symlink()
        deps = depfile_deps(source_tree / "out/soong/api_bp2build.marker.d")
        assert "foo/Android.bp.json" in deps


class TestMixedBuild:
    """Tests for the mixed build modes."""

    def test_hook_ordering(self, make_flags, with_deps_file, settings):
        """Test that the partitioner runs after loading and before build actions.

        Verifies its declared inputs reach the depfile.
        """
        events = []

        def factory(configuration, storage, variant):
            return RecordingPipeline(configuration, storage, variant, events)

        record = RunOrchestrator(
            make_flags(bazel_mode=True),
            pipeline_factory=factory,
            partitioner=RecordingPartitioner(events),
            settings=settings,
        ).run()

        assert events == ["load", "partitioner", "prepare_build_actions"]
        assert record.mode == BuildMode.BAZEL_PROD_MODE
        assert RunState.MIXED_BUILD_HOOK_INVOKED in record.history
        deps = depfile_deps(with_deps_file / "out/soong/build.ninja.d")
        assert "build/bazel/rules.bzl" in deps
        used = env_from_bytes((with_deps_file / "out/soong/soong.environment.used.build").read_bytes())
        assert used[DEPS_FILE_VARIABLE] == "out/bazel.deps"

    def test_hook_never_invoked(self, make_flags, with_deps_file, settings):
        events = []

        def factory(configuration, storage, variant):
            return RecordingPipeline(configuration, storage, variant, events, call_hook=False)

        orchestrator = RunOrchestrator(
            make_flags(bazel_mode_dev=True),
            pipeline_factory=factory,
            partitioner=RecordingPartitioner(events),
            settings=settings,
        )
        with pytest.raises(PipelineError):
            orchestrator.run()
        assert not (with_deps_file / "out/soong/build.ninja.d").exists()

    def test_partitioner_failure_aborts(self, make_flags, with_deps_file, settings):
        """Test that a partitioner failure fails the run without a depfile."""
        events = []
        orchestrator = RunOrchestrator(
            make_flags(bazel_mode_staging=True),
            partitioner=RecordingPartitioner(events, ExternalToolError(message="boom", tool_name="bazel")),
            settings=settings,
        )
        with pytest.raises(ExternalToolError):
            orchestrator.run()
        assert orchestrator.record.state == RunState.FAILED
        assert orchestrator.record.mode == BuildMode.BAZEL_STAGING_MODE
        assert not (with_deps_file / "out/soong/build.ninja.d").exists()

    def test_bundled_pipeline(self, make_flags, with_deps_file, settings):
        events = []
        RunOrchestrator(
            make_flags(bazel_mode=True),
            pipeline_factory=DeclarativePipeline,
            partitioner=RecordingPartitioner(events),
            settings=settings,
        ).run()
        assert events == ["partitioner"]


class TestFailures:
    """Tests for fatal conditions."""

    def test_missing_available_env(self, make_flags, settings):
        orchestrator = RunOrchestrator(make_flags(available_env_file="out/none"), settings=settings)
        with pytest.raises(EnvironmentReadError):
            orchestrator.run()
        assert orchestrator.record.state == RunState.FAILED
        assert orchestrator.record.error

    def test_foreign_pipeline_error_wrapped(self, make_flags, source_tree, settings):
        events = []

        def factory(configuration, storage, variant):
            return RecordingPipeline(configuration, storage, variant, events, error=KeyError("x"))

        with pytest.raises(PipelineError) as exc_info:
            RunOrchestrator(make_flags(), pipeline_factory=factory, settings=settings).run()
        assert isinstance(exc_info.value.cause, KeyError)
        assert not (source_tree / "out/soong/soong.environment.used.build").exists()

    def test_failed_phase_recorded(self, make_flags, source_tree, write_files, settings):
        write_files(source_tree, {"foo/Android.bp.json": "[]"})
        orchestrator = RunOrchestrator(make_flags(), settings=settings)
        with pytest.raises(ConfigurationError):
            orchestrator.run()
        assert orchestrator.record.get_phase("analysis").status.value == "failed"

    def test_undecodable_product_variables(self, make_flags, source_tree, settings):
        """Test that a product variables file that is not UTF-8 fails the run cleanly."""
        (source_tree / "out/soong/soong.variables").write_bytes(b"\xff\xfe{}")
        orchestrator = RunOrchestrator(make_flags(), settings=settings)
        with pytest.raises(ConfigurationError):
            orchestrator.run()
        assert orchestrator.record.state == RunState.FAILED

    def test_undecodable_bazel_list(self, make_flags, source_tree, settings):
        (source_tree / "out/.module_paths/bazel.list").write_bytes(b"foo/\xff/BUILD\n")
        orchestrator = RunOrchestrator(
            make_flags(bp2build_marker="out/soong/bp2build_workspace_marker"), settings=settings
        )
        with pytest.raises(ConfigurationError):
            orchestrator.run()
        assert orchestrator.record.state == RunState.FAILED
        assert not (source_tree / "out/soong/bp2build_workspace_marker.d").exists()

    def test_foreign_codegen_error_wrapped(self, make_flags, source_tree, settings):
        """Test that a code generator raising a foreign exception fails the run.

        Verifies it surfaces as PipelineError carrying the original cause.
        """

        class BrokenGenerator:
            def __init__(self, configuration, pipeline):
                pass

            def codegen(self, mode):
                raise KeyError("rule_class")

        orchestrator = RunOrchestrator(
            make_flags(bazel_api_bp2build_dir="out/api_bp2build"),
            codegen_factory=BrokenGenerator,
            settings=settings,
        )
        with pytest.raises(PipelineError) as exc_info:
            orchestrator.run()
        assert isinstance(exc_info.value.cause, KeyError)
        assert orchestrator.record.state == RunState.FAILED
        assert orchestrator.record.get_phase("codegen").status.value == "failed"

    def test_unexpected_error_fails_record(self, make_flags, settings, monkeypatch):
        """Test that an exception outside any collaborator still ends the run as FAILED."""

        def broken_globs(*args, **kwargs):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr("buildorch.orchestration.orchestrator.write_build_globs", broken_globs)
        orchestrator = RunOrchestrator(make_flags(), settings=settings)
        with pytest.raises(PipelineError) as exc_info:
            orchestrator.run()
        assert isinstance(exc_info.value.cause, RuntimeError)
        assert orchestrator.record.state == RunState.FAILED
        assert orchestrator.record.error == "disk on fire"


def test_storage_is_rooted_at_top(make_flags, source_tree, settings):
    orchestrator = RunOrchestrator(make_flags(), settings=settings)
    assert isinstance(orchestrator.storage, LocalWorkspace)
    assert orchestrator.storage.top_dir == str(source_tree)


def test_run_build(make_flags, source_tree, settings):
    record = run_build(make_flags(), settings=settings)
    assert record.succeeded
    assert record.output_file == "out/soong/build.ninja"


def test_run_is_a_flow_of_phase_tasks(make_flags, settings):
    """Test that a run executes as a Prefect flow whose phases are task runs."""
    from prefect import Flow, Task

    from buildorch.orchestration.orchestrator import buildorch_flow
    from buildorch.orchestration.tasks import run_phase

    assert isinstance(buildorch_flow, Flow)
    assert isinstance(run_phase, Task)
    assert run_phase.retries == 0

    record = RunOrchestrator(make_flags(), settings=settings).run()

    assert [phase.name for phase in record.phases] == ["analysis", "globs", "ninja_deps", "used_environment"]
    assert all(phase.status.value == "completed" for phase in record.phases)
