"""File-backed credential storage shared between processes."""
from __future__ import annotations

import json
import logging
from pathlib import Path

from filelock import FileLock

from ksef_gui.domain import Credential

logger = logging.getLogger(__name__)


class TokenStore:
    """JSON mapping of identity key to credential, guarded by a lock file."""

    def __init__(self, path: Path, *, lock_timeout: float = 30.0) -> None:
        self._path = Path(path)
        self._lock = FileLock(str(self._path) + ".lock", timeout=lock_timeout)

    @property
    def path(self) -> Path:
        return self._path

    def _read_all(self) -> dict[str, dict]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8") or "{}")
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable token store %s: %s", self._path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict[str, dict]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        temp_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        temp_path.replace(self._path)

    def get(self, key: str) -> Credential | None:
        with self._lock:
            entry = self._read_all().get(key)
        if not entry:
            return None
        try:
            return Credential.from_dict(entry)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Ignoring malformed credential for %s: %s", key[:12], exc)
            return None

    def set(self, key: str, credential: Credential) -> None:
        with self._lock:
            data = self._read_all()
            data[key] = credential.to_dict()
            self._write_all(data)
