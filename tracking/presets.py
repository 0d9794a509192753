"""
Task preset history for pre-filling the setup form.

Keeps the most recent tasks (newest first, bounded) and persists them
through a small key-value store. The default store is a JSON file in
the user data directory, written atomically.
"""

import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

import config

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Minimal persistence interface used by the preset history."""

    def get(self, key: str, default: Any = None) -> Any:
        ...

    def set(self, key: str, value: Any) -> None:
        ...


class JsonFileStore:
    """Key-value store backed by a single JSON object on disk (thread-safe)."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
            if isinstance(data, dict):
                return data
            logger.warning(f"Ignoring non-object JSON in {self.path}")
        except (json.JSONDecodeError, IOError, OSError, PermissionError) as e:
            logger.warning(f"Failed to load {self.path}: {e}. Starting fresh.")
        return {}

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._load().get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._load()
            data[key] = value
            self._save(data)

    def _save(self, data: Dict[str, Any]) -> None:
        """Write to a temp file then rename, so a crash never leaves half a file."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            temp_fd, temp_path = tempfile.mkstemp(
                suffix='.tmp',
                prefix='presets_',
                dir=self.path.parent
            )
            try:
                with os.fdopen(temp_fd, 'w') as f:
                    json.dump(data, f, indent=2)
                os.replace(temp_path, self.path)
            except Exception:
                try:
                    os.unlink(temp_path)
                except OSError:
                    pass
                raise
        except (IOError, OSError, PermissionError) as e:
            logger.error(f"Failed to save {self.path}: {e}")


class MemoryStore:
    """In-memory key-value store (no persistence)."""

    def __init__(self):
        self._data: Dict[str, Any] = {}

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value


@dataclass(frozen=True)
class TaskPreset:
    """A previously started task, used to pre-fill setup."""

    description: str
    approved_tools_description: str
    time: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TaskPreset':
        return cls(
            description=str(data["description"]),
            approved_tools_description=str(data.get("approved_tools_description", "")),
            time=int(data.get("time", config.DEFAULT_DURATION_MINUTES)),
        )


class PresetHistory:
    """
    Bounded most-recent-first list of task presets.

    A task whose description is already in the history is not added again.
    """

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        key: str = config.PRESETS_KEY,
        limit: int = config.PRESETS_LIMIT,
    ):
        self.store = store if store is not None else JsonFileStore(config.PRESETS_FILE)
        self.key = key
        self.limit = limit
        self._presets: List[TaskPreset] = self._load()

    def _load(self) -> List[TaskPreset]:
        raw = self.store.get(self.key, []) or []
        presets = []
        for item in raw:
            try:
                presets.append(TaskPreset.from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed preset {item!r}: {e}")
        return presets[:self.limit]

    @property
    def presets(self) -> List[TaskPreset]:
        return list(self._presets)

    def add(self, preset: TaskPreset) -> bool:
        """
        Record a task at the front of the history.

        Returns:
            True if the preset was added, False if its description was already present.
        """
        if any(p.description == preset.description for p in self._presets):
            return False
        self._presets = [preset] + self._presets
        self._presets = self._presets[:self.limit]
        self.store.set(self.key, [p.to_dict() for p in self._presets])
        return True

    def __len__(self) -> int:
        return len(self._presets)
