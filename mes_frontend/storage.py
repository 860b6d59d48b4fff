"""File-backed key/value store standing in for the browser's local storage."""
from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path

__all__ = ["LocalStore", "TOKEN_KEY", "SESSION_KEY"]

logger = logging.getLogger(__name__)

TOKEN_KEY = "token"
SESSION_KEY = "productionSession"


class LocalStore:
    """Persist string values under string keys in a single JSON document.

    Values are stored as strings, the same way the browser's ``localStorage``
    keeps them; callers serialise structured data themselves.
    """

    def __init__(self, path: str | os.PathLike[str]):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except json.JSONDecodeError:
            logger.warning("Local storage at %s is unreadable; starting empty", self.path)
            return {}
        if not isinstance(payload, dict):
            logger.warning("Local storage at %s is not an object; starting empty", self.path)
            return {}
        return {str(key): str(value) for key, value in payload.items()}

    def _write(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".storage-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, ensure_ascii=False, indent=2)
            os.replace(tmp_name, self.path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if key not in data:
                return
            del data[key]
            self._write(data)

    def clear(self) -> None:
        with self._lock:
            self._write({})
