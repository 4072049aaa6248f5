"""
Exclude sets for symlink forests.

Static entries (bazel output directories, known symlink cycles) plus entries
discovered from the `bazel.list` file the finder writes next to the module
list: checked-in BUILD files that must not shadow generated ones.
"""

from __future__ import annotations

import os
import stat

from ..core.config import BuildConfiguration, Bp2BuildAllowlist
from ..core.exceptions import ConfigurationError, WorkspaceIOError
from ..core.logging import get_logger
from ..storage import WorkspaceStorage

logger = get_logger(__name__)

BAZEL_LIST_FILE_NAME = "bazel.list"


def bazel_artifacts(top_dir: str) -> list[str]:
    """Bazel convenience symlinks that would otherwise loop back into the tree."""
    top_name = os.path.basename(os.path.abspath(top_dir or "."))
    return [
        "bazel-bin",
        "bazel-genfiles",
        "bazel-out",
        "bazel-testlogs",
        "bazel-" + top_name,
    ]


def temporary_excludes() -> list[str]:
    """Subtrees that break `bazel build //external/...` when linked."""
    return [
        # autotest_lib links back to external/autotest: infinite expansion.
        "external/autotest/venv/autotest_lib",
        "external/autotest/autotest_lib",
        "external/autotest/client/autotest_lib/client",
        # Symlinks back into source dirs whose BUILD files are ignored.
        "external/google-fruit/extras/bazel_root/third_party/fruit",
        # Filegroup escaping issue.
        "frameworks/compile/slang",
    ]


def existing_bazel_related_files(storage: WorkspaceStorage, module_list_file: str) -> list[str]:
    """Read `bazel.list`, the finder's listing of BUILD/WORKSPACE-like files.

    Raises:
        ConfigurationError: If the listing cannot be read.
    """
    listing = os.path.join(os.path.dirname(module_list_file), BAZEL_LIST_FILE_NAME)
    try:
        text = storage.read_bytes(listing).decode("utf-8").strip()
    except (WorkspaceIOError, UnicodeDecodeError) as e:
        raise ConfigurationError(
            message="Error determining existing Bazel-related files",
            path=listing,
            cause=e,
        ) from e
    if not text:
        return []
    return text.split("\n")


def ignored_build_files(
    storage: WorkspaceStorage,
    allowlist: Bp2BuildAllowlist,
    bazel_files: list[str],
    verbose: bool = False,
) -> list[str]:
    """Checked-in BUILD files whose directory is not allowlisted.

    Entries that cannot be accessed are warned about and skipped; directories
    are never ignored as a whole.
    """
    paths: list[str] = []
    for relative in bazel_files:
        full_path = storage.join(relative)
        try:
            mode = full_path.stat().st_mode
        except OSError as e:
            logger.warning("Error accessing path", path=str(full_path), error=str(e))
            continue
        if stat.S_ISDIR(mode):
            continue
        if full_path.name not in ("BUILD", "BUILD.bazel"):
            continue
        if allowlist.should_keep_existing_build_file_for_dir(os.path.dirname(relative) or "."):
            continue
        if verbose:
            logger.info("Ignoring existing BUILD file", path=relative)
        paths.append(relative)
    return paths


def bp2build_excludes(storage: WorkspaceStorage, configuration: BuildConfiguration) -> list[str]:
    """Full exclude set for the bp2build workspace."""
    flags = configuration.flags
    excludes = bazel_artifacts(flags.top_dir)
    if flags.out_dir and not os.path.isabs(flags.out_dir):
        excludes.append(flags.out_dir)
    bazel_files = existing_bazel_related_files(storage, flags.module_list_file)
    excludes.extend(
        ignored_build_files(
            storage,
            configuration.allowlist,
            bazel_files,
            verbose=configuration.is_env_true("BP2BUILD_VERBOSE"),
        )
    )
    excludes.extend(temporary_excludes())
    return excludes


def api_build_file_excludes(storage: WorkspaceStorage, module_list_file: str) -> list[str]:
    """Every bazel-related source file except the ones api_bp2build relies on."""
    excludes = []
    for src in existing_bazel_related_files(storage, module_list_file):
        if src in ("WORKSPACE", "BUILD", "BUILD.bazel"):
            continue
        if src.startswith("build/bazel") or src.startswith("prebuilts/clang"):
            continue
        excludes.append(src)
    return excludes
