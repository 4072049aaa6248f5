"""
Mixed-build coordination.

In a mixed build some modules are analyzed by an external work-partitioning
system (bazel). The analysis pipeline calls the hook once, right before it
prepares build actions, because module analysis consults the partitioner's
results during that phase. The hook runs the partitioner synchronously and
adds the files it declares as its own inputs to the run's dependencies.
"""

from __future__ import annotations

import shlex
import subprocess
from abc import ABC, abstractmethod

from ..core.config import BuildConfiguration
from ..core.exceptions import ConfigurationError, ExternalToolError, PipelineError, WorkspaceIOError
from ..core.logging import get_logger
from ..storage import WorkspaceStorage
from .dependencies import DependencyAccumulator

logger = get_logger(__name__)

DEPS_FILE_VARIABLE = "BAZEL_DEPS_FILE"


class WorkPartitioner(ABC):
    """External system that takes over analysis of some modules."""

    @abstractmethod
    def invoke(self, configuration: BuildConfiguration) -> None:
        """Run the partitioner to completion.

        Raises:
            ExternalToolError: If the partitioner fails.
        """
        ...


class SubprocessPartitioner(WorkPartitioner):
    """Runs the partitioner as a child process in the top directory.

    No timeout is applied; the partitioner owns its own failure policy.
    """

    def __init__(self, command: list[str]) -> None:
        self.command = list(command)

    def invoke(self, configuration: BuildConfiguration) -> None:
        cmd_str = shlex.join(self.command)
        cwd = configuration.flags.top_dir or None
        logger.info("Invoking work partitioner", command=cmd_str, cwd=cwd)
        try:
            result = subprocess.run(
                self.command,
                cwd=cwd,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
            )
        except OSError as e:
            raise ExternalToolError(
                message=f"cannot start partitioner: {e}",
                tool_name=self.command[0] if self.command else "",
                command=cmd_str,
                cause=e,
            ) from e
        if result.returncode != 0:
            logger.error("Work partitioner failed", command=cmd_str, stderr=result.stderr[-500:])
            raise ExternalToolError(
                message="partitioner exited with an error",
                context={"stderr": result.stderr[-500:]},
                tool_name=self.command[0],
                command=cmd_str,
                returncode=result.returncode,
            )
        logger.info("Work partitioner completed", command=cmd_str)


def read_partitioner_deps(storage: WorkspaceStorage, configuration: BuildConfiguration) -> list[str]:
    """Files the partitioner declared as its inputs, one per line.

    Raises:
        ConfigurationError: If the deps file is not set or cannot be read.
    """
    deps_path = configuration.getenv(DEPS_FILE_VARIABLE)
    if not deps_path:
        raise ConfigurationError(message=f"Bazel deps file not set: {DEPS_FILE_VARIABLE}")
    try:
        text = storage.read_bytes(deps_path).decode("utf-8").strip()
    except (WorkspaceIOError, UnicodeDecodeError) as e:
        raise ConfigurationError(
            message="Cannot read Bazel deps file", path=deps_path, cause=e
        ) from e
    return text.split("\n") if text else []


class MixedBuildHook:
    """Zero-argument callback handed to the analysis pipeline.

    Callable at most once per run.
    """

    def __init__(
        self,
        configuration: BuildConfiguration,
        accumulator: DependencyAccumulator,
        partitioner: WorkPartitioner,
        storage: WorkspaceStorage,
    ) -> None:
        self.configuration = configuration
        self.accumulator = accumulator
        self.partitioner = partitioner
        self.storage = storage
        self.invoked = False

    def __call__(self) -> None:
        if self.invoked:
            raise PipelineError(
                message="Mixed-build hook invoked more than once",
                state="mixed_build_hook_invoked",
            )
        self.invoked = True
        self.partitioner.invoke(self.configuration)
        deps = read_partitioner_deps(self.storage, self.configuration)
        self.accumulator.append(deps)
        logger.info("Merged partitioner dependencies", count=len(deps))
