"""Test configuration for buildorch."""

import json
import tempfile
from pathlib import Path

import pytest
from prefect.testing.utilities import prefect_test_harness

from buildorch.core.config import BuildFlags, ToolSettings


def write_tree(root: Path, files: dict) -> None:
    """Create files under root from a {relative_path: content} mapping."""
    for relative, content in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)


def env_file(entries: dict) -> str:
    """Serialize an environment file the way the parent process writes it."""
    return json.dumps([{"Key": k, "Value": v} for k, v in sorted(entries.items())], indent=4) + "\n"


@pytest.fixture(autouse=True, scope="session")
def prefect_backend():
    """Run every flow against a throwaway Prefect backend."""
    with prefect_test_harness():
        yield


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests.

    Yields:
        Path: A Path object pointing to the temporary directory.
            The directory is automatically cleaned up after the test.
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def source_tree(temp_dir):
    """Create a small source tree with one declared module, `foo`.

    Returns:
        Path: The top directory of the tree.
    """
    top = temp_dir / "top"
    write_tree(top, {
        "foo/Android.bp.json": json.dumps({
            "modules": [{"name": "foo", "type": "filegroup", "srcs": ["*.txt"]}],
        }),
        "foo/a.txt": "a\n",
        "foo/b.txt": "b\n",
        "bar/readme.md": "bar\n",
        "out/.module_paths/Android.bp.list": "foo/Android.bp.json\n",
        "out/.module_paths/bazel.list": "",
        "out/soong/soong.environment.available": env_file({
            "ALLOW_MISSING_DEPENDENCIES": "",
            "HOME": "/home/builder",
            "TARGET_PRODUCT": "aosp_arm64",
        }),
    })
    return top


@pytest.fixture
def make_flags(source_tree):
    """Factory for BuildFlags rooted at the source tree fixture."""

    def factory(**overrides) -> BuildFlags:
        values = {
            "top_dir": str(source_tree),
            "soong_out_dir": "out/soong",
            "out_dir": "out",
            "available_env_file": "out/soong/soong.environment.available",
            "used_env_file": "out/soong/soong.environment.used.build",
            "glob_list_dir": "build",
            "module_list_file": "out/.module_paths/Android.bp.list",
            "out_file": "out/soong/build.ninja",
        }
        values.update(overrides)
        return BuildFlags(**values)

    return factory


@pytest.fixture
def settings():
    """Tool settings with a partitioner that is never started for real."""
    return ToolSettings(partitioner_command=["false"])


@pytest.fixture
def write_files():
    """The write_tree helper, as a fixture."""
    return write_tree


@pytest.fixture
def env_text():
    """The env_file helper, as a fixture."""
    return env_file
