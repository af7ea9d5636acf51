"""File-backed stand-ins for browser localStorage and cookies."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class KeyValueStore:
    """
    String key/value store persisted as one JSON object.

    Every change rewrites the whole file through a temp file and ``os.replace``,
    so a reader sees either the old or the new object, never a partial one.

    Passing ``path=None`` keeps everything in memory, which is what tests and
    throwaway sessions want.
    """

    def __init__(self, path: Optional[Path | str] = None):
        self.path = Path(path) if path else None
        self._memory: Dict[str, Any] = {}

    def _read(self) -> Dict[str, Any]:
        if self.path is None:
            return dict(self._memory)
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable store %s: %s", self.path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, Any]) -> None:
        if self.path is None:
            self._memory = dict(data)
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, ensure_ascii=False, indent=2)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def keys(self) -> list[str]:
        return sorted(self._read())


class LocalStorage(KeyValueStore):
    """Mirror of ``window.localStorage``: string values, no expiry, no namespacing."""

    def get_item(self, key: str) -> Optional[str]:
        value = self._read().get(key)
        return None if value is None else str(value)

    def set_item(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = str(value)
        self._write(data)

    def remove_item(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)

    def clear(self) -> None:
        self._write({})


class CookieStore(KeyValueStore):
    """Cookies with an optional expiry, the way js-cookie stores the auth token."""

    def get(self, name: str) -> Optional[str]:
        entry = self._read().get(name)
        if not isinstance(entry, dict):
            return None
        expires = entry.get("expires")
        if expires:
            try:
                expired = datetime.fromisoformat(expires) <= datetime.now(timezone.utc)
            except ValueError:
                expired = True
            if expired:
                self.remove(name)
                return None
        value = entry.get("value")
        return None if value is None else str(value)

    def set(self, name: str, value: str, *, expires_days: Optional[float] = None) -> None:
        entry: Dict[str, Any] = {"value": value}
        if expires_days is not None:
            expires = datetime.now(timezone.utc) + timedelta(days=expires_days)
            entry["expires"] = expires.isoformat()
        data = self._read()
        data[name] = entry
        self._write(data)

    def remove(self, name: str) -> None:
        data = self._read()
        if name in data:
            del data[name]
            self._write(data)
