"""Core infrastructure components for buildorch."""

from .exceptions import (
    BuildOrchError,
    ConfigurationError,
    EnvironmentReadError,
    ExternalToolError,
    PipelineError,
    WorkspaceIOError,
)
from .types import BuildMode, PhaseResult, RunRecord, RunState, StopBefore
from .config import (
    Bp2BuildAllowlist,
    BuildConfiguration,
    BuildFlags,
    ToolSettings,
    TrackedEnvironment,
    get_settings,
)
from .logging import bind_context, clear_context, get_logger, setup_logging

__all__ = [
    "BuildOrchError",
    "ConfigurationError",
    "EnvironmentReadError",
    "ExternalToolError",
    "PipelineError",
    "WorkspaceIOError",
    "BuildMode",
    "PhaseResult",
    "RunRecord",
    "RunState",
    "StopBefore",
    "Bp2BuildAllowlist",
    "BuildConfiguration",
    "BuildFlags",
    "ToolSettings",
    "TrackedEnvironment",
    "get_settings",
    "bind_context",
    "clear_context",
    "get_logger",
    "setup_logging",
]
