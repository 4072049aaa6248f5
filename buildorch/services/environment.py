"""
Environment snapshot tracking.

The parent process dumps every environment variable it could pass into the
available-environment file; the run sees nothing else. Variables read through
the configuration object are recorded, and at the end of the run the used
snapshot is written out. The file is only rewritten when its content changes,
so a run that consumed the same values does not look "changed" downstream.

Both files hold a JSON array of {"Key": ..., "Value": ...} entries sorted by
key.
"""

from __future__ import annotations

import json

from pydantic import BaseModel, TypeAdapter, ValidationError

from ..core.config import BuildConfiguration
from ..core.exceptions import ConfigurationError, EnvironmentReadError, WorkspaceIOError
from ..core.logging import get_logger
from ..storage import WorkspaceStorage

logger = get_logger(__name__)


class EnvFileEntry(BaseModel):
    """One variable of an environment file."""

    Key: str
    Value: str


_ENTRIES = TypeAdapter(list[EnvFileEntry])


def env_file_contents(env: dict[str, str]) -> bytes:
    """Serialize a variable mapping deterministically."""
    entries = [{"Key": key, "Value": env[key]} for key in sorted(env)]
    return (json.dumps(entries, indent=4) + "\n").encode("utf-8")


def env_from_bytes(data: bytes) -> dict[str, str]:
    """Parse an environment file.

    Raises:
        pydantic.ValidationError: If the content is not a list of entries.
    """
    return {entry.Key: entry.Value for entry in _ENTRIES.validate_json(data)}


class EnvironmentTracker:
    """Loads the available environment and persists the used one."""

    def __init__(self, storage: WorkspaceStorage) -> None:
        self.storage = storage

    def load_available(self, path: str) -> dict[str, str]:
        """Read the available-environment file.

        Raises:
            ConfigurationError: If no path was given.
            EnvironmentReadError: If the file is absent or malformed.
        """
        if not path:
            raise ConfigurationError(message="--available_env not set")
        try:
            data = self.storage.read_bytes(path)
        except WorkspaceIOError as e:
            raise EnvironmentReadError(
                message="error reading available environment file",
                path=path,
                cause=e.cause or e,
            ) from e
        try:
            return env_from_bytes(data)
        except ValidationError as e:
            raise EnvironmentReadError(
                message="malformed available environment file",
                path=path,
                cause=e,
            ) from e

    @staticmethod
    def current_used(configuration: BuildConfiguration) -> dict[str, str]:
        """Every variable read through the configuration so far."""
        return configuration.env_deps()

    def flush_if_changed(self, path: str, used: dict[str, str], final_output: str) -> bool:
        """Write the used snapshot to `path` unless it is byte-identical.

        After a rewrite the terminal output is touched so it is never older
        than the snapshot.

        Returns:
            True if the snapshot was written

        Raises:
            WorkspaceIOError: If the prior snapshot cannot be read for a reason
                other than absence, or the new one cannot be written.
        """
        if not path:
            return False
        data = env_file_contents(used)
        previous = self.storage.read_bytes_if_exists(path)
        if previous == data:
            logger.debug("Used environment unchanged", path=path)
            return False
        self.storage.write_bytes(path, data)
        # Written last: writing earlier would miss variables read while writing outputs.
        self.storage.touch(final_output)
        logger.info("Used environment changed", path=path, variables=len(used))
        return True
