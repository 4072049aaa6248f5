"""
Prefect tasks for the buildorch run.

A run is one flow; each of its phases (analysis, globs, codegen, forest,
depfile, environment) is one task run. Phases never retry: a failed phase
fails the run and its exception reaches the caller unchanged.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TypeVar

from prefect import task
from prefect.cache_policies import NO_CACHE

from ..core.logging import get_logger

T = TypeVar("T")

logger = get_logger(__name__)


@task(
    name="phase",
    description="Run one phase of an orchestrated build",
    task_run_name="{name}",
    retries=0,
    cache_policy=NO_CACHE,
)
def run_phase(name: str, action: Callable[[], T]) -> T:
    """Run one phase.

    Args:
        name: Phase name, also used as the task run name
        action: The phase body

    Returns:
        Whatever the phase body returns
    """
    logger.debug("Phase started", phase=name)
    return action()
