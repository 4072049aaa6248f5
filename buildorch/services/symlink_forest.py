"""
Symlink forest planting.

Merges a generated tree (BUILD files produced by codegen) and the real source
tree into one workspace directory:

- an excluded path is left out of the real tree; a generated entry at the
  same path still appears,
- an entry that exists only on one side is linked as a whole,
- directories present on both sides (or holding an excluded descendant) are
  recreated and merged entry by entry,
- a generated file shadows the source file at the same path, except that a
  kept BUILD file is merged with the generated one (generated content first).

Every directory that was listed is reported so the caller can depend on it:
adding or removing an entry there must replant the forest. The forest root is
cleared first, so entries from a previous, different plan never survive.
"""

from __future__ import annotations

import os
from collections.abc import Iterable
from dataclasses import dataclass, field

from ..core.exceptions import WorkspaceIOError
from ..core.logging import get_logger
from ..storage import WorkspaceStorage

logger = get_logger(__name__)

BUILD_FILE_NAMES = ("BUILD", "BUILD.bazel")


@dataclass
class ExcludeNode:
    """Node of the exclude tree, keyed by path component."""

    excluded: bool = False
    children: dict[str, ExcludeNode] = field(default_factory=dict)


def build_exclude_tree(excludes: Iterable[str]) -> ExcludeNode:
    """Turn relative exclude paths into a component tree."""
    root = ExcludeNode()
    for exclude in excludes:
        node = root
        for part in os.path.normpath(exclude).split(os.sep):
            if part in ("", "."):
                continue
            node = node.children.setdefault(part, ExcludeNode())
        if node is not root:
            node.excluded = True
    return root


class SymlinkForestPlanner:
    """Plants a symlink forest rooted at the top directory of `storage`."""

    def __init__(self, storage: WorkspaceStorage, verbose: bool = False) -> None:
        self.storage = storage
        self.verbose = verbose

    def plant(
        self,
        forest_dir: str,
        generated_dir: str,
        src_dir: str,
        excludes: Iterable[str],
    ) -> list[str]:
        """Plant `forest_dir` from `generated_dir` over `src_dir`.

        All paths are relative to the top directory.

        Returns:
            Directories that were listed, plus source BUILD files merged into
            the forest, in traversal order.

        Raises:
            WorkspaceIOError: On a file/directory mismatch between the trees or
                any filesystem failure.
        """
        deps: list[str] = []
        self.storage.remove_tree(forest_dir)
        self._plant_dir(forest_dir, generated_dir, src_dir, build_exclude_tree(excludes), deps)
        logger.info(
            "Planted symlink forest",
            forest=forest_dir,
            generated=generated_dir,
            src=src_dir,
            deps=len(deps),
        )
        return deps

    def _plant_dir(
        self,
        forest_dir: str,
        generated_dir: str | None,
        src_dir: str | None,
        excludes: ExcludeNode | None,
        deps: list[str],
    ) -> None:
        src_entries = self._list(src_dir, deps)
        generated_entries = self._list(generated_dir, deps)
        self._mkdir(forest_dir)

        for name in sorted(set(src_entries) | set(generated_entries)):
            child_excludes = excludes.children.get(name) if excludes else None
            forest_child = _join(forest_dir, name)
            src_child = _join(src_dir, name) if name in src_entries else None
            generated_child = _join(generated_dir, name) if name in generated_entries else None

            if child_excludes is not None and child_excludes.excluded:
                if self.verbose:
                    logger.debug("Excluded from forest", path=src_child)
                if generated_child is None:
                    continue
                src_child = None

            if src_child is None:
                self._symlink(forest_child, generated_child)
                continue

            src_is_dir = src_entries[name]
            if generated_child is None:
                if src_is_dir and child_excludes is not None and child_excludes.children:
                    self._plant_dir(forest_child, None, src_child, child_excludes, deps)
                else:
                    self._symlink(forest_child, src_child)
                continue

            generated_is_dir = generated_entries[name]
            if src_is_dir and generated_is_dir:
                self._plant_dir(forest_child, generated_child, src_child, child_excludes, deps)
            elif not src_is_dir and not generated_is_dir:
                if name in BUILD_FILE_NAMES:
                    deps.append(src_child)
                    self._merge_build_files(forest_child, src_child, generated_child)
                else:
                    self._symlink(forest_child, generated_child)
            else:
                raise WorkspaceIOError(
                    message=(
                        f"directory/file mismatch: '{src_child}' (dir={src_is_dir}) "
                        f"vs '{generated_child}' (dir={generated_is_dir})"
                    ),
                    path=forest_child,
                    operation="planting",
                )

    def _list(self, directory: str | None, deps: list[str]) -> dict[str, bool]:
        """Map entry name to is-directory, following symlinks."""
        if directory is None:
            return {}
        full_path = self.storage.join(directory)
        if not full_path.is_dir():
            return {}
        deps.append(directory)
        entries: dict[str, bool] = {}
        try:
            with os.scandir(full_path) as it:
                for entry in it:
                    try:
                        entries[entry.name] = entry.is_dir(follow_symlinks=True)
                    except OSError:
                        # Dangling or looping symlink: link it as a file.
                        entries[entry.name] = False
        except OSError as e:
            raise WorkspaceIOError(
                message=str(e), path=str(full_path), operation="listing", cause=e
            ) from e
        return entries

    def _mkdir(self, directory: str) -> None:
        full_path = self.storage.join(directory)
        try:
            full_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise WorkspaceIOError(
                message=str(e), path=str(full_path), operation="creating", cause=e
            ) from e

    def _symlink(self, forest_path: str, target: str) -> None:
        link = self.storage.join(forest_path)
        relative_target = os.path.relpath(
            os.path.abspath(self.storage.join(target)),
            os.path.abspath(link.parent),
        )
        try:
            os.symlink(relative_target, link)
        except OSError as e:
            raise WorkspaceIOError(
                message=str(e), path=str(link), operation="symlinking", cause=e
            ) from e

    def _merge_build_files(self, forest_path: str, src_file: str, generated_file: str) -> None:
        generated = self.storage.read_bytes(generated_file)
        src = self.storage.read_bytes(src_file)
        if generated and not generated.endswith(b"\n"):
            generated += b"\n"
        self.storage.write_bytes(forest_path, generated + src)
        if self.verbose:
            logger.info("Merged BUILD file", src=src_file, generated=generated_file)


def _join(directory: str | None, name: str) -> str:
    if directory in (None, "", "."):
        return name
    return os.path.join(directory, name)


def plant_symlink_forest(
    storage: WorkspaceStorage,
    forest_dir: str,
    generated_dir: str,
    src_dir: str,
    excludes: Iterable[str],
    verbose: bool = False,
) -> list[str]:
    """Convenience wrapper around SymlinkForestPlanner.plant()."""
    return SymlinkForestPlanner(storage, verbose=verbose).plant(
        forest_dir, generated_dir, src_dir, excludes
    )
