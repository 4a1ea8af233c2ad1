"""DuckDB-backed cache of the latest search results per identity."""
from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path

import duckdb

from ksef_gui.domain import CachedResults, ResultItem, SearchQuery

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS invoice_cache (
    profile_key TEXT PRIMARY KEY,
    params_json TEXT,
    invoices_json TEXT NOT NULL,
    fetched_at TEXT NOT NULL
)
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _dump_items(items: list[ResultItem]) -> str:
    return json.dumps([item.to_remote() for item in items], ensure_ascii=False)


class ResultCache:
    """One row per identity key. Blocking; async callers go through ``asyncio.to_thread``."""

    def __init__(self, path: Path | str = ":memory:") -> None:
        database = str(path)
        if database != ":memory:":
            Path(database).parent.mkdir(parents=True, exist_ok=True)
        self._conn = duckdb.connect(database)
        self._lock = threading.Lock()
        with self._lock:
            self._conn.execute(_SCHEMA)

    def load(self, key: str) -> CachedResults | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT params_json, invoices_json, fetched_at FROM invoice_cache WHERE profile_key = ?",
                [key],
            ).fetchone()
        if row is None:
            logger.debug("Result cache MISS for %s", key[:12])
            return None

        params_json, invoices_json, fetched_at = row
        try:
            items = [ResultItem.from_remote(entry) for entry in json.loads(invoices_json)]
            query = SearchQuery.from_dict(json.loads(params_json)) if params_json else None
            fetched = datetime.fromisoformat(fetched_at) if fetched_at else None
        except (TypeError, ValueError, KeyError, AttributeError) as exc:
            logger.warning("Result cache CORRUPT for %s, treating as miss: %s", key[:12], exc)
            return None

        logger.debug("Result cache HIT for %s (%d items)", key[:12], len(items))
        return CachedResults(items=items, query=query, fetched_at=fetched)

    def exists(self, key: str) -> bool:
        with self._lock:
            row = self._conn.execute(
                "SELECT COUNT(*) FROM invoice_cache WHERE profile_key = ?", [key]
            ).fetchone()
        return bool(row and row[0])

    def save(self, key: str, query: SearchQuery, items: list[ResultItem]) -> None:
        params_json = json.dumps(query.to_dict(), ensure_ascii=False)
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO invoice_cache (profile_key, params_json, invoices_json, fetched_at) "
                "VALUES (?, ?, ?, ?)",
                [key, params_json, _dump_items(items), _now()],
            )
        logger.debug("Result cache WRITE for %s (%d items)", key[:12], len(items))

    def save_items_only(self, key: str, items: list[ResultItem]) -> int:
        """Replace the stored items, keeping the stored query. Returns rows updated."""

        with self._lock:
            row = self._conn.execute(
                "SELECT COUNT(*) FROM invoice_cache WHERE profile_key = ?", [key]
            ).fetchone()
            if not row or not row[0]:
                return 0
            self._conn.execute(
                "UPDATE invoice_cache SET invoices_json = ?, fetched_at = ? WHERE profile_key = ?",
                [_dump_items(items), _now(), key],
            )
        logger.debug("Result cache WRITE (items only) for %s (%d items)", key[:12], len(items))
        return 1

    def close(self) -> None:
        with self._lock:
            self._conn.close()
