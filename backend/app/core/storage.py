import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Protocol

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Whole-value JSON records addressed by a fixed key."""

    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...


class StorageWriteError(Exception):
    """Raised when a record cannot be written to the workspace."""


class JsonFileStore:
    """
    One JSON file per key under the workspace directory.
    Writes go through a temp file + os.replace so a crash never leaves a
    half-written record behind.
    """

    def __init__(self, workspace_dir: str | Path | None = None):
        workspace_dir = workspace_dir or os.getenv("COURIER_WORKSPACE", "./workspace")
        self.base_dir = Path(workspace_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.base_dir / f"{key}.json"

    def _atomic_write(self, target_path: Path, data: Any):
        target_path.parent.mkdir(parents=True, exist_ok=True)
        tmp = target_path.with_suffix(".tmp")
        if hasattr(data, "model_dump"):
            payload = json.dumps(data.model_dump(), indent=2)
        else:
            payload = json.dumps(data, indent=2)
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, target_path)

    def get(self, key: str, default: Any = None) -> Any:
        path = self._path(key)
        if not path.exists():
            return default
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError):
            logger.warning("Unreadable record %s, using default", path, exc_info=True)
            return default

    def set(self, key: str, value: Any) -> None:
        try:
            self._atomic_write(self._path(key), value)
        except (OSError, TypeError) as ex:
            raise StorageWriteError(f"Cannot write '{key}': {ex}") from ex

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass


class MemoryStore:
    """In-process store; values are deep-copied in and out like the file store."""

    def __init__(self, initial: Dict[str, Any] | None = None):
        self._data: Dict[str, Any] = copy.deepcopy(initial) if initial else {}

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        if hasattr(value, "model_dump"):
            value = value.model_dump()
        self._data[key] = copy.deepcopy(value)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)
