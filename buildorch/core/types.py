"""
Core type definitions for buildorch.

Build modes, pipeline stop points and the run state machine shared by the
orchestrator and its collaborators.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from .exceptions import PipelineError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BuildMode(str, Enum):
    """The single generation pipeline selected for a run."""

    NORMAL_BUILD = "normal_build"
    BP2BUILD = "bp2build"
    GENERATE_QUERY_VIEW = "generate_query_view"
    API_BP2BUILD = "api_bp2build"
    GENERATE_MODULE_GRAPH = "generate_module_graph"
    GENERATE_DOC_FILE = "generate_doc_file"
    BAZEL_DEV_MODE = "bazel_dev_mode"
    BAZEL_PROD_MODE = "bazel_prod_mode"
    BAZEL_STAGING_MODE = "bazel_staging_mode"

    @property
    def is_mixed_build(self) -> bool:
        """Whether some modules are delegated to the external partitioner.

        Mixed modes still produce the normal build graph.
        """
        return self in (
            BuildMode.BAZEL_DEV_MODE,
            BuildMode.BAZEL_PROD_MODE,
            BuildMode.BAZEL_STAGING_MODE,
        )


class StopBefore(str, Enum):
    """How far the analysis pipeline runs before returning."""

    DO_EVERYTHING = "do_everything"
    STOP_BEFORE_BUILD_ACTIONS = "stop_before_build_actions"
    STOP_BEFORE_WRITE_OUTPUT = "stop_before_write_output"


class RunState(str, Enum):
    """States of a single run. Transitions only move forward."""

    INIT = "init"
    MODE_SELECTED = "mode_selected"
    PIPELINE_RUNNING = "pipeline_running"
    MIXED_BUILD_HOOK_INVOKED = "mixed_build_hook_invoked"
    TERMINAL_ACTION_RUNNING = "terminal_action_running"
    DEPENDENCIES_FLUSHED = "dependencies_flushed"
    ENVIRONMENT_CHECKED = "environment_checked"
    DONE = "done"
    FAILED = "failed"


_STATE_ORDER = [
    RunState.INIT,
    RunState.MODE_SELECTED,
    RunState.PIPELINE_RUNNING,
    RunState.MIXED_BUILD_HOOK_INVOKED,
    RunState.TERMINAL_ACTION_RUNNING,
    RunState.DEPENDENCIES_FLUSHED,
    RunState.ENVIRONMENT_CHECKED,
    RunState.DONE,
]


class PhaseStatus(str, Enum):
    """Status of a timed orchestration phase."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class PhaseResult(BaseModel):
    """Timing and outcome of one orchestration phase (e.g. `symlink_forest`)."""

    name: str = Field(description="Phase name")
    status: PhaseStatus = Field(default=PhaseStatus.RUNNING)
    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: datetime | None = Field(default=None)
    duration_seconds: float = Field(default=0.0)
    error_message: str | None = Field(default=None)
    metadata: dict[str, Any] = Field(default_factory=dict)

    def mark_completed(self, **metadata: Any) -> None:
        """Mark phase as successfully completed."""
        self.status = PhaseStatus.COMPLETED
        self.completed_at = _utcnow()
        self.metadata.update(metadata)
        self.duration_seconds = (self.completed_at - self.started_at).total_seconds()

    def mark_failed(self, error: str) -> None:
        """Mark phase as failed."""
        self.status = PhaseStatus.FAILED
        self.completed_at = _utcnow()
        self.error_message = error
        self.duration_seconds = (self.completed_at - self.started_at).total_seconds()


class RunRecord(BaseModel):
    """A complete orchestrator run: state history, phases and final output."""

    run_id: str = Field(description="Unique run identifier")
    mode: BuildMode | None = Field(default=None)
    state: RunState = Field(default=RunState.INIT)
    history: list[RunState] = Field(default_factory=lambda: [RunState.INIT])
    phases: list[PhaseResult] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: datetime | None = Field(default=None)
    output_file: str | None = Field(default=None)
    dependency_count: int = Field(default=0)
    environment_rewritten: bool = Field(default=False)
    error: str | None = Field(default=None)

    def advance(self, state: RunState) -> None:
        """Move to a later state.

        Raises:
            PipelineError: On any backward or repeated transition, or any
                transition out of a terminal state.
        """
        if self.state in (RunState.DONE, RunState.FAILED):
            raise PipelineError(
                message=f"Run already finished, cannot enter '{state.value}'",
                state=self.state.value,
                run_id=self.run_id,
            )
        if state == RunState.FAILED:
            self._enter(state)
            return
        if _STATE_ORDER.index(state) <= _STATE_ORDER.index(self.state):
            raise PipelineError(
                message=f"Backward transition to '{state.value}'",
                state=self.state.value,
                run_id=self.run_id,
            )
        self._enter(state)

    def fail(self, error: str) -> None:
        """Abort to the terminal FAILED state."""
        self.error = error
        if self.state != RunState.FAILED:
            self._enter(RunState.FAILED)

    def _enter(self, state: RunState) -> None:
        self.state = state
        self.history.append(state)
        if state in (RunState.DONE, RunState.FAILED):
            self.completed_at = _utcnow()

    def begin_phase(self, name: str) -> PhaseResult:
        """Start timing a named phase."""
        phase = PhaseResult(name=name)
        self.phases.append(phase)
        return phase

    def get_phase(self, name: str) -> PhaseResult | None:
        """Get a phase result by name."""
        for phase in self.phases:
            if phase.name == name:
                return phase
        return None

    @property
    def succeeded(self) -> bool:
        return self.state == RunState.DONE
