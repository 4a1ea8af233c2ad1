from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class PreferencesStore(Protocol):
    """Opaque persistence for the UI's last-used preferences."""

    def load(self) -> dict[str, Any]:
        ...

    def save(self, prefs: dict[str, Any]) -> None:
        ...

    def update(self, **fields: Any) -> dict[str, Any]:
        ...


class JsonPreferencesStore:
    """Preferences kept in a single JSON document on disk."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8") or "{}")
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable preferences file %s: %s", self._path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def save(self, prefs: dict[str, Any]) -> None:
        with self._lock:
            self._write(prefs)

    def update(self, **fields: Any) -> dict[str, Any]:
        with self._lock:
            prefs = self.load()
            prefs.update(fields)
            self._write(prefs)
        return prefs

    def _write(self, prefs: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        temp_path.write_text(json.dumps(prefs, indent=2, ensure_ascii=False), encoding="utf-8")
        temp_path.replace(self._path)


class InMemoryPreferencesStore:
    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._prefs: dict[str, Any] = dict(initial or {})

    def load(self) -> dict[str, Any]:
        return dict(self._prefs)

    def save(self, prefs: dict[str, Any]) -> None:
        self._prefs = dict(prefs)

    def update(self, **fields: Any) -> dict[str, Any]:
        self._prefs.update(fields)
        return dict(self._prefs)
