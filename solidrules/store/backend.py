"""
Durable Key-Value Backends
==========================

The primitive persistence layer the RecordStore builds on: a JSON document on
disk for real use and an in-memory dictionary for tests and embedding.
"""

import asyncio
import copy
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from loguru import logger

from solidrules.errors import StoreWriteError
from solidrules.utils.file_ops import safe_write_file


class KeyValueBackend(ABC):
    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return a deep copy of the stored value, or None when absent."""

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """Durably store ``value`` under ``key``."""


class MemoryBackend(KeyValueBackend):
    """In-process backend; records every write for inspection."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = copy.deepcopy(initial) if initial else {}
        self.writes: List[str] = []
        self.fail_writes = False

    async def get(self, key: str) -> Optional[Any]:
        value = self._data.get(key)
        return copy.deepcopy(value)

    async def set(self, key: str, value: Any) -> None:
        if self.fail_writes:
            raise StoreWriteError(key, "backend refused the write")
        self._data[key] = copy.deepcopy(value)
        self.writes.append(key)

    def write_count(self, key: Optional[str] = None) -> int:
        if key is None:
            return len(self.writes)
        return sum(1 for written in self.writes if written == key)


class JsonFileBackend(KeyValueBackend):
    """Keeps every key in one JSON document, rewritten atomically on each set."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._data: Optional[Dict[str, Any]] = None

    def _load(self) -> Dict[str, Any]:
        if self._data is None:
            if self.path.exists() and self.path.stat().st_size > 0:
                try:
                    self._data = json.loads(self.path.read_text(encoding="utf-8"))
                except json.JSONDecodeError:
                    logger.warning("Invalid JSON in store file {}, starting empty", self.path)
                    self._data = {}
            else:
                self._data = {}
        return self._data

    async def get(self, key: str) -> Optional[Any]:
        data = self._load()
        return copy.deepcopy(data.get(key))

    async def set(self, key: str, value: Any) -> None:
        data = dict(self._load())
        data[key] = copy.deepcopy(value)
        payload = json.dumps(data, indent=2)
        try:
            await asyncio.to_thread(safe_write_file, self.path, payload + "\n")
        except OSError as e:
            raise StoreWriteError(key, str(e)) from e
        self._data = data
