"""
Configuration management for buildorch.

Three layers:
- BuildFlags: the immutable command-line value object, built once at startup
  and passed explicitly to every component.
- ToolSettings: tool behaviour driven by the process environment (and .env).
- BuildConfiguration: the per-run configuration object. Environment access
  goes through it so every consumed variable is recorded.
"""

from __future__ import annotations

import json
import os
import shlex
from functools import lru_cache
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from ..storage.local import join_path
from .exceptions import ConfigurationError
from .types import BuildMode

# Load .env file if it exists (looks in cwd and parent directories)
load_dotenv()

PRODUCT_VARIABLES_FILE_NAME = "soong.variables"


class BuildFlags(BaseModel):
    """Command-line options of a single run. Frozen after construction."""

    model_config = ConfigDict(frozen=True)

    top_dir: str = Field(default="", description="Top directory of the source tree")
    soong_out_dir: str = Field(default="", description="Tool output directory (usually out/soong)")
    out_dir: str = Field(default="", description="The ninja builddir directory")
    available_env_file: str = Field(default="", description="File listing available environment variables")
    used_env_file: str = Field(default="", description="File recording used environment variables")
    glob_file: str = Field(default="build-globs.ninja", description="Ninja file of globs to output")
    glob_list_dir: str = Field(default="", description="Directory holding the glob list files")
    module_list_file: str = Field(default="", description="File listing declaration files to parse")
    out_file: str = Field(default="build.ninja", description="Ninja file to output")

    # Mode-selecting options
    module_graph_file: str = Field(default="", description="JSON module graph file to output")
    module_actions_file: str = Field(default="", description="JSON file of module action inputs/outputs")
    doc_file: str = Field(default="", description="Build documentation file to output")
    bazel_queryview_dir: str = Field(default="", description="Queryview directory relative to top")
    bazel_api_bp2build_dir: str = Field(default="", description="api_bp2build directory relative to top")
    bp2build_marker: str = Field(default="", description="Run bp2build, touch this marker then exit")
    empty_ninja_file: bool = Field(default=False, description="Write out a 0-byte ninja file")
    bazel_mode: bool = Field(default=False, description="Delegate certain modules to bazel")
    bazel_mode_staging: bool = Field(default=False, description="Delegate near-ready modules to bazel")
    bazel_mode_dev: bool = Field(default=False, description="Delegate a large number of modules to bazel")


class ToolSettings(BaseModel):
    """Tool settings that do not influence build outputs."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Logging level"
    )
    log_format: Literal["auto", "console", "json"] = Field(
        default="auto", description="Log renderer; auto picks console on a terminal"
    )
    partitioner_command: list[str] = Field(
        default_factory=lambda: ["bazel", "build", "--config=bp2build", "//..."],
        description="Command that runs the external work-partitioning system",
    )

    model_config = {"extra": "ignore"}

    @classmethod
    def from_env(cls) -> ToolSettings:
        """Create settings from environment variables."""
        settings = cls(
            log_level=os.environ.get("BUILDORCH_LOG_LEVEL", "INFO").upper(),  # type: ignore
            log_format=os.environ.get("BUILDORCH_LOG_FORMAT", "auto").lower(),  # type: ignore
        )
        command = os.environ.get("BUILDORCH_PARTITIONER_CMD")
        if command:
            settings.partitioner_command = shlex.split(command)
        return settings


@lru_cache(maxsize=1)
def get_settings() -> ToolSettings:
    """Get cached settings instance."""
    return ToolSettings.from_env()


class TrackedEnvironment:
    """Environment variables available to the run, with access tracking.

    Only variables read through getenv() end up in env_deps(); an unset
    variable that was queried is recorded with an empty value so that setting
    it later also invalidates the output.
    """

    def __init__(self, available: dict[str, str]) -> None:
        self._available = dict(available)
        self._used: dict[str, str] = {}

    def getenv(self, key: str) -> str:
        value = self._available.get(key, "")
        self._used[key] = value
        return value

    def is_env_true(self, key: str) -> bool:
        value = self.getenv(key)
        return value in ("1", "y", "yes", "on", "true")

    def env_deps(self) -> dict[str, str]:
        return dict(self._used)


# Directories whose checked-in BUILD files survive bp2build. True means the
# whole subtree is kept.
DEFAULT_KEEP_EXISTING_BUILD_FILE: dict[str, bool] = {
    "build/bazel": True,
    "build/bazel_common_rules": True,
    "build/make/tools": True,
    "external/bazel-skylib": True,
    "external/bazelbuild-rules_android": True,
    "external/bazelbuild-kotlin-rules": True,
    "external/guava": True,
    "external/jsr305": True,
    "frameworks/ex/common": True,
    "prebuilts/bazel": True,
    "prebuilts/clang/host/linux-x86": False,
    "prebuilts/jdk/jdk11": False,
    "prebuilts/sdk": False,
}


class Bp2BuildAllowlist(BaseModel):
    """Allowlist of directories whose existing BUILD files are kept."""

    keep_existing_build_file: dict[str, bool] = Field(
        default_factory=lambda: dict(DEFAULT_KEEP_EXISTING_BUILD_FILE)
    )

    def should_keep_existing_build_file_for_dir(self, directory: str) -> bool:
        """True on an exact match, or when an ancestor is allowlisted recursively."""
        if directory in self.keep_existing_build_file:
            return True
        parts = directory.split("/")
        for i in range(1, len(parts)):
            prefix = "/".join(parts[:i])
            if self.keep_existing_build_file.get(prefix, False):
                return True
        return False


class BuildConfiguration:
    """Per-run configuration passed to the pipeline, codegen and services."""

    def __init__(
        self,
        flags: BuildFlags,
        mode: BuildMode,
        available_env: dict[str, str],
        product_variables: dict[str, object] | None = None,
        allowlist: Bp2BuildAllowlist | None = None,
    ) -> None:
        self.flags = flags
        self.build_mode = mode
        self.env = TrackedEnvironment(available_env)
        self.product_variables = product_variables or {}
        self.allowlist = allowlist or Bp2BuildAllowlist()
        self.allow_missing_dependencies = False

    @classmethod
    def create(
        cls,
        flags: BuildFlags,
        mode: BuildMode,
        available_env: dict[str, str],
        allowlist: Bp2BuildAllowlist | None = None,
    ) -> BuildConfiguration:
        """Build the run configuration, loading product variables from disk.

        Raises:
            ConfigurationError: If the product variables file is malformed.
        """
        configuration = cls(
            flags,
            mode,
            available_env,
            product_variables=None,
            allowlist=allowlist,
        )
        configuration.product_variables = _load_product_variables(
            join_path(flags.top_dir, configuration.product_variables_file_name)
        )
        if configuration.getenv("ALLOW_MISSING_DEPENDENCIES") == "true":
            configuration.allow_missing_dependencies = True
        return configuration

    @property
    def soong_out_dir(self) -> str:
        return self.flags.soong_out_dir

    @property
    def product_variables_file_name(self) -> str:
        return os.path.join(self.flags.soong_out_dir, PRODUCT_VARIABLES_FILE_NAME)

    @property
    def is_mixed_build_enabled(self) -> bool:
        return self.build_mode.is_mixed_build

    def getenv(self, key: str) -> str:
        return self.env.getenv(key)

    def is_env_true(self, key: str) -> bool:
        return self.env.is_env_true(key)

    def env_deps(self) -> dict[str, str]:
        return self.env.env_deps()


def _load_product_variables(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ConfigurationError(
            message="Cannot load product variables",
            path=str(path),
            cause=e,
        ) from e
    if not isinstance(data, dict):
        raise ConfigurationError(
            message="Product variables must be a JSON object",
            path=str(path),
        )
    return data
