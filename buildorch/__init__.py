"""
buildorch: build-mode orchestration and incremental invalidation.

Selects one generation pipeline per run, accumulates every filesystem input
that must invalidate the run's output, tracks consumed environment variables,
and plants symlink forests that overlay generated BUILD files on a source tree.
"""

__version__ = "1.0.0"
__author__ = "buildorch developers"
