"""Orchestration module for buildorch."""

from .orchestrator import RunOrchestrator, buildorch_flow, print_codegen_metrics, run_build
from .tasks import run_phase

__all__ = ["RunOrchestrator", "buildorch_flow", "print_codegen_metrics", "run_build", "run_phase"]
