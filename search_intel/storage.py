"""
Durable key-value storage for analytics and privacy records.

Values are opaque strings. Stores may carry a byte quota; a write that would
exceed it raises StorageCapacityExceeded and leaves the store unchanged.
"""

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional, Union


class StorageError(Exception):
    """Base error for durable storage failures."""
    pass


class StorageCapacityExceeded(StorageError):
    """Raised when a write would exceed the store's quota."""
    pass


class KeyValueStore(ABC):
    """Abstract base class for durable key-value stores."""

    def __init__(self, quota_bytes: Optional[int] = None):
        self.quota_bytes = quota_bytes

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored value or None."""
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``."""
        pass

    @abstractmethod
    def remove(self, key: str) -> None:
        """Delete ``key``; missing keys are ignored."""
        pass

    def _check_quota(self, data: Dict[str, str], key: str, value: str) -> None:
        if self.quota_bytes is None:
            return
        size = sum(len(k) + len(v.encode('utf-8')) for k, v in data.items() if k != key)
        size += len(key) + len(value.encode('utf-8'))
        if size > self.quota_bytes:
            raise StorageCapacityExceeded(
                f"Storage quota exceeded: {size} bytes > {self.quota_bytes} bytes"
            )


class MemoryStore(KeyValueStore):
    """Process-local store, mainly for tests and ephemeral sessions."""

    def __init__(self, quota_bytes: Optional[int] = None):
        super().__init__(quota_bytes)
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._check_quota(self._data, key, value)
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()


class JsonFileStore(KeyValueStore):
    """
    Store backed by a single JSON object on disk.

    Every write replaces the file atomically, so a crash mid-write never
    leaves a truncated document behind.
    """

    def __init__(self, path: Union[str, Path], quota_bytes: Optional[int] = None):
        super().__init__(quota_bytes)
        self.path = Path(path)
        self.logger = logging.getLogger(f"{__name__}.JsonFileStore")

    def _read_all(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            self.logger.warning(f"Unreadable store file {self.path}, starting empty: {e}")
            return {}
        if not isinstance(data, dict):
            self.logger.warning(f"Store file {self.path} does not hold an object, starting empty")
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _write_all(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f)
            os.replace(tmp_path, self.path)
        except OSError as e:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise StorageError(f"Failed to write {self.path}: {e}") from e

    def get(self, key: str) -> Optional[str]:
        return self._read_all().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._read_all()
        self._check_quota(data, key, value)
        data[key] = value
        self._write_all(data)

    def remove(self, key: str) -> None:
        data = self._read_all()
        if key in data:
            del data[key]
            self._write_all(data)
