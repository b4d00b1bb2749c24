"""A JSON-backed mapping of stored file names, safe across threads."""

from __future__ import annotations

import json
import logging
import os
import threading
from collections.abc import Iterator, MutableMapping

log = logging.getLogger(__name__)


class FileNameMap(MutableMapping):
    """Mapping of server file names to names, persisted to a JSON file."""

    def __init__(self, path) -> None:
        self.path = os.fspath(path)
        self._data: dict[str, str] = {}
        self._lock = threading.RLock()

    def load(self) -> None:
        """Replace the contents with the file's, if it exists and is valid."""
        with self._lock:
            if not os.path.exists(self.path):
                return
            try:
                with open(self.path, encoding="utf-8") as fh:
                    data = json.load(fh)
                if not isinstance(data, dict) or not all(
                    isinstance(value, str) for value in data.values()
                ):
                    raise ValueError("mapping must be an object of strings")
            except (OSError, ValueError) as exc:
                log.error("Failed to load filename mapping: %s", exc)
                return
            self._data = dict(data)

    def save(self) -> None:
        """Write the mapping as indented JSON; failures are logged."""
        with self._lock:
            try:
                with open(self.path, "w", encoding="utf-8") as fh:
                    json.dump(self._data, fh, indent=2, sort_keys=True, ensure_ascii=False)
            except OSError as exc:
                log.error("Failed to save filename map: %s", exc)

    def discard(self, name: str) -> None:
        """Reload, drop ``name`` if present and save again."""
        with self._lock:
            self.load()
            self._data.pop(name, None)
            self.save()

    def __getitem__(self, key: str) -> str:
        with self._lock:
            return self._data[key]

    def __setitem__(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def __delitem__(self, key: str) -> None:
        with self._lock:
            del self._data[key]

    def __iter__(self) -> Iterator[str]:
        with self._lock:
            return iter(list(self._data))

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)