"""
File-backed stand-in for the browser's localStorage.

Keys used by the front-end: ``token``, ``user`` (JSON) and ``themeMode``.
"""
import json
import logging
import os
import tempfile
import threading
from pathlib import Path

from petalbid import config

log = logging.getLogger(__name__)

TOKEN_KEY = "token"
USER_KEY = "user"
THEME_KEY = "themeMode"


class LocalStorage:
    def __init__(self, path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            log.error(f"Could not read local storage {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            log.error(f"Local storage {self.path} is not an object, ignoring it")
            return {}
        return data

    def _write(self, data: dict):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=str(self.path.parent), prefix=".storage-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp, self.path)
        except OSError:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise

    def get_item(self, key: str):
        with self._lock:
            value = self._read().get(key)
        return None if value is None else str(value)

    def set_item(self, key: str, value: str):
        with self._lock:
            data = self._read()
            data[key] = str(value)
            self._write(data)

    def remove_item(self, key: str):
        with self._lock:
            data = self._read()
            if key in data:
                del data[key]
                self._write(data)

    def clear(self):
        with self._lock:
            self._write({})


def session_storage(session_id: str) -> LocalStorage:
    """Storage for one front-end session; sessions never see each other's keys."""
    return LocalStorage(config.STORAGE_DIR / f"{session_id}.json")
