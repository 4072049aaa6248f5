"""
Build mode selection.

A pure function of the command-line flags. Conflicting mode options are not
rejected: the first match in a fixed priority order wins.
"""

from __future__ import annotations

from ..core.config import BuildFlags
from ..core.types import BuildMode


def select_mode(flags: BuildFlags) -> BuildMode:
    """Select the single build mode for a run.

    Priority: bp2build marker, queryview dir, api_bp2build dir, module graph
    file, doc file, bazel dev mode, bazel prod mode, bazel staging mode, and
    finally the normal build.
    """
    if flags.bp2build_marker:
        return BuildMode.BP2BUILD
    if flags.bazel_queryview_dir:
        return BuildMode.GENERATE_QUERY_VIEW
    if flags.bazel_api_bp2build_dir:
        return BuildMode.API_BP2BUILD
    if flags.module_graph_file:
        return BuildMode.GENERATE_MODULE_GRAPH
    if flags.doc_file:
        return BuildMode.GENERATE_DOC_FILE
    if flags.bazel_mode_dev:
        return BuildMode.BAZEL_DEV_MODE
    if flags.bazel_mode:
        return BuildMode.BAZEL_PROD_MODE
    if flags.bazel_mode_staging:
        return BuildMode.BAZEL_STAGING_MODE
    return BuildMode.NORMAL_BUILD
