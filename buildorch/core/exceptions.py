"""
Exception hierarchy for buildorch.

Every fatal condition of a run derives from BuildOrchError so the command line
can report a single diagnostic line and exit non-zero.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class BuildOrchError(Exception):
    """Base exception for all buildorch errors."""

    message: str
    context: dict[str, Any] = field(default_factory=dict)
    cause: Exception | None = None

    def __str__(self) -> str:
        ctx = f" | context: {self.context}" if self.context else ""
        cause = f" | caused by: {self.cause}" if self.cause else ""
        return f"{self.message}{ctx}{cause}"


@dataclass
class ConfigurationError(BuildOrchError):
    """Raised when a required input is missing or malformed."""

    path: str = ""

    def __str__(self) -> str:
        base = super().__str__()
        if self.path:
            return f"Configuration error for '{self.path}': {base}"
        return f"Configuration error: {base}"


@dataclass
class EnvironmentReadError(ConfigurationError):
    """Raised when the available-environment file cannot be read or parsed.

    Without it environment access goes unobserved, so the run cannot continue.
    """


@dataclass
class ExternalToolError(BuildOrchError):
    """Raised when the external work-partitioning system fails.

    Never retried: analysis may already depend on a partial result.
    """

    tool_name: str = ""
    command: str = ""
    returncode: int | None = None

    def __str__(self) -> str:
        base = super().__str__()
        code = f" (exit {self.returncode})" if self.returncode is not None else ""
        return f"[{self.tool_name}]{code}: {base}"


@dataclass
class WorkspaceIOError(BuildOrchError):
    """Raised when reading or writing a depfile, env file or workspace entry fails."""

    path: str = ""
    operation: str = ""

    def __str__(self) -> str:
        base = super().__str__()
        return f"Error {self.operation} '{self.path}': {base}"


@dataclass
class PipelineError(BuildOrchError):
    """Raised when run orchestration fails or a phase ordering rule is broken."""

    state: str = ""
    run_id: str = ""

    def __str__(self) -> str:
        base = super().__str__()
        return f"Pipeline error in state '{self.state}' (run: {self.run_id}): {base}"
