"""
Glob dependency files.

Each glob evaluated by the pipeline gets a list file holding its current
matches, plus a ninja statement that re-evaluates it when any directory it
read changes. The list files become dependencies of the run's output, so a
changed glob result triggers regeneration.
"""

from __future__ import annotations

import fnmatch
import glob as globlib
import hashlib
import os
import shlex

from ..core.logging import get_logger
from ..models import GlobResult
from ..storage import WorkspaceStorage

logger = get_logger(__name__)


_GLOB_CHARS = ("*", "?", "[")


def is_glob(pattern: str) -> bool:
    return any(c in pattern for c in _GLOB_CHARS)


def _listed_dirs(top: str, base: str, parts: list[str]) -> set[str]:
    """Directories whose listings decide the matches of `parts` below `base`."""
    dirs = {base}
    current = [base]
    for index, part in enumerate(parts):
        last = index == len(parts) - 1
        if part == "**":
            walked: list[str] = []
            for directory in current:
                for dirpath, _, _ in os.walk(os.path.join(top, directory)):
                    walked.append(os.path.normpath(os.path.relpath(dirpath, top)))
            dirs.update(walked)
            current = walked
            continue
        dirs.update(current)
        if last:
            break
        if not is_glob(part):
            current = [
                os.path.normpath(os.path.join(d, part))
                for d in current
                if os.path.isdir(os.path.join(top, d, part))
            ]
            continue
        children: list[str] = []
        for directory in current:
            try:
                names = os.listdir(os.path.join(top, directory))
            except OSError:
                continue
            for name in fnmatch.filter(names, part):
                if name.startswith(".") and not part.startswith("."):
                    continue
                if os.path.isdir(os.path.join(top, directory, name)):
                    children.append(os.path.normpath(os.path.join(directory, name)))
        current = children
    return dirs


def match_glob(top_dir: str, pattern: str) -> GlobResult:
    """Evaluate `pattern` relative to `top_dir`.

    The result lists matching files and every directory whose listing the
    matches depend on, both relative to `top_dir`. Once a wildcard component
    is reached, each directory scanned while expanding the rest of the pattern
    counts, including those where nothing matched.
    """
    top = os.path.abspath(top_dir or ".")
    matches = sorted(
        os.path.relpath(m, top)
        for m in globlib.glob(os.path.join(top, pattern), recursive=True)
        if os.path.isfile(m)
    )

    parts = pattern.split("/")
    base_parts: list[str] = []
    for part in parts:
        if is_glob(part):
            break
        base_parts.append(part)
    base = "/".join(base_parts) or "."
    dirs = _listed_dirs(top, base, parts[len(base_parts):])
    return GlobResult(pattern=pattern, matches=matches, deps=sorted(dirs))


def glob_list_contents(matches: list[str]) -> bytes:
    return "".join(f"{match}\n" for match in matches).encode("utf-8")


def glob_directory(build_dir: str, glob_list_dir: str) -> str:
    return os.path.join(build_dir, "globs", glob_list_dir)


def glob_list_file(glob_dir: str, pattern: str) -> str:
    digest = hashlib.sha256(pattern.encode("utf-8")).hexdigest()[:16]
    return os.path.join(glob_dir, digest + ".glob")


def _escape(path: str) -> str:
    return path.replace("$", "$$").replace(" ", "$ ").replace(":", "$:")


def write_build_globs(
    storage: WorkspaceStorage,
    globs: list[GlobResult],
    glob_file: str,
    glob_dir: str,
) -> list[str]:
    """Write the glob ninja file and one list file per distinct glob.

    List files are only rewritten when their matches change.

    Returns:
        The list files, in glob order
    """
    list_files: list[str] = []
    lines = [
        "# Generated by buildorch. Do not edit.",
        "",
        "rule glob",
        "  command = buildorch glob -o $out $pattern",
        "  restat = true",
        "",
    ]
    seen: set[str] = set()
    for result in globs:
        if result.pattern in seen:
            continue
        seen.add(result.pattern)
        list_file = glob_list_file(glob_dir, result.pattern)
        storage.write_if_changed(list_file, glob_list_contents(result.matches))
        list_files.append(list_file)
        dirs = " ".join(_escape(d) for d in result.deps)
        lines.append(f"build {_escape(list_file)}: glob | {dirs}".rstrip(" |"))
        lines.append(f"  pattern = {shlex.quote(result.pattern).replace('$', '$$')}")
        lines.append("")

    storage.write_if_changed(os.path.join(glob_dir, glob_file), "\n".join(lines).encode("utf-8"))
    logger.info("Wrote glob files", globs=len(list_files), glob_dir=glob_dir)
    return list_files
