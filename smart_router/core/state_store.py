"""Key-value persistence boundary for routing state.

The engine only needs get, set, whole-store replace and iteration.
Performance history is keyed by model id and learned preferences by context
pattern; any store offering this protocol can back them.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Protocol, Tuple, Union, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any) -> None: ...

    def replace_all(self, values: Dict[str, Any]) -> None: ...

    def items(self) -> Iterator[Tuple[str, Any]]: ...


class InMemoryStore:
    """Dict-backed store; values are JSON round-tripped to catch unserializable state."""

    def __init__(self):
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def set(self, key: str, value: Any) -> None:
        encoded = json.dumps(value)
        with self._lock:
            self._data[key] = encoded

    def replace_all(self, values: Dict[str, Any]) -> None:
        """Make values the entire contents of the store."""
        encoded = {key: json.dumps(value) for key, value in values.items()}
        with self._lock:
            self._data = encoded

    def items(self) -> Iterator[Tuple[str, Any]]:
        with self._lock:
            snapshot = list(self._data.items())
        for key, raw in snapshot:
            yield key, json.loads(raw)

    def __len__(self) -> int:
        return len(self._data)


class JsonFileStore:
    """Single JSON object file; every write replaces the file atomically."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.Lock()
        # Held from snapshot to file replace so writes land in order
        self._write_lock = threading.Lock()
        self._data: Dict[str, Any] = self._read()

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable state file {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring state file {self.path}: top level is not an object")
            return {}
        return data

    def _write(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            dir=self.path.parent,
            prefix=f".{self.path.name}.",
            suffix=".tmp",
            delete=False,
        ) as f:
            json.dump(data, f, indent=2, sort_keys=True)
            temp_path = f.name
        try:
            os.replace(temp_path, self.path)
        except OSError:
            os.unlink(temp_path)
            raise

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        with self._write_lock:
            with self._lock:
                self._data[key] = value
                snapshot = dict(self._data)
            self._write(snapshot)

    def set_many(self, values: Dict[str, Any]) -> None:
        """Set several keys with a single file write."""
        with self._write_lock:
            with self._lock:
                self._data.update(values)
                snapshot = dict(self._data)
            self._write(snapshot)

    def replace_all(self, values: Dict[str, Any]) -> None:
        """Overwrite the file with exactly these keys; absent keys are dropped."""
        with self._write_lock:
            with self._lock:
                self._data = dict(values)
                snapshot = dict(self._data)
            self._write(snapshot)

    def items(self) -> Iterator[Tuple[str, Any]]:
        with self._lock:
            snapshot = list(self._data.items())
        yield from snapshot

    def reload(self) -> None:
        with self._lock:
            self._data = self._read()
