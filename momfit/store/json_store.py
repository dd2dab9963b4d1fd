"""
JSON-based data store for local development and tests.
Implements IDataStore with lock-guarded file operations.
"""

import asyncio
import json
import logging
import os
import shutil
import uuid
from typing import Optional, Sequence

from momfit.shared.config import StoreConfig
from momfit.shared.interfaces import IDataStore
from momfit.shared.models import utc_now_iso

logger = logging.getLogger(__name__)


def row_matches(row: dict, filters: Optional[dict]) -> bool:
    """Equality filter; list values mean IN, None means IS NULL."""
    for column, expected in (filters or {}).items():
        value = row.get(column)
        if expected is None:
            if value is not None:
                return False
        elif isinstance(expected, (list, tuple, set)):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True


def _sort_key(column: str):
    # Rows missing the column sort first, so a descending sort puts them last.
    def key(row: dict):
        value = row.get(column)
        return (value is not None, value if value is not None else "")
    return key


class JSONDataStore(IDataStore):
    """Persistent single-file store: {"tables": {name: [rows]}}."""

    def __init__(self, config: StoreConfig):
        self._config = config
        self._lock = asyncio.Lock()
        self._ensure_file_exists()

    def _ensure_file_exists(self) -> None:
        directory = os.path.dirname(self._config.file_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        if not os.path.exists(self._config.file_path):
            self._write_raw({"tables": {}})

    def _read_raw(self) -> dict:
        try:
            with open(self._config.file_path, "r") as f:
                data = json.load(f)
        except (json.JSONDecodeError, FileNotFoundError):
            return {"tables": {}}
        if not isinstance(data, dict) or not isinstance(data.get("tables"), dict):
            return {"tables": {}}
        return data

    def _write_raw(self, data: dict) -> None:
        if self._config.backup_on_write and os.path.exists(self._config.file_path):
            shutil.copy2(self._config.file_path, self._config.file_path + ".bak")
        with open(self._config.file_path, "w") as f:
            json.dump(data, f, indent=2, default=str)

    async def select(
        self,
        table: str,
        filters: Optional[dict] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict]:
        async with self._lock:
            rows = self._read_raw()["tables"].get(table, [])
        result = [dict(r) for r in rows if row_matches(r, filters)]
        if order_by:
            result.sort(key=_sort_key(order_by), reverse=descending)
        if limit is not None:
            result = result[:limit]
        return result

    async def get(self, table: str, filters: dict) -> Optional[dict]:
        rows = await self.select(table, filters, limit=1)
        return rows[0] if rows else None

    async def insert(self, table: str, row: dict) -> dict:
        stored = dict(row)
        stored.setdefault("id", uuid.uuid4().hex)
        if not stored.get("created_at"):
            stored["created_at"] = utc_now_iso()
        async with self._lock:
            data = self._read_raw()
            data["tables"].setdefault(table, []).append(stored)
            self._write_raw(data)
        logger.debug(f"Inserted into {table}: {stored['id']}")
        return dict(stored)

    async def update(self, table: str, filters: dict, values: dict) -> list[dict]:
        updated = []
        async with self._lock:
            data = self._read_raw()
            for row in data["tables"].get(table, []):
                if row_matches(row, filters):
                    row.update(values)
                    updated.append(dict(row))
            if updated:
                self._write_raw(data)
        return updated

    async def upsert(self, table: str, row: dict, on_conflict: Sequence[str]) -> dict:
        key = {column: row.get(column) for column in on_conflict}
        async with self._lock:
            data = self._read_raw()
            rows = data["tables"].setdefault(table, [])
            for existing in rows:
                if row_matches(existing, key):
                    existing.update(row)
                    self._write_raw(data)
                    return dict(existing)
            stored = dict(row)
            stored.setdefault("id", uuid.uuid4().hex)
            if not stored.get("created_at"):
                stored["created_at"] = utc_now_iso()
            rows.append(stored)
            self._write_raw(data)
            return dict(stored)

    async def delete(self, table: str, filters: dict) -> int:
        async with self._lock:
            data = self._read_raw()
            rows = data["tables"].get(table, [])
            kept = [r for r in rows if not row_matches(r, filters)]
            removed = len(rows) - len(kept)
            if removed:
                data["tables"][table] = kept
                self._write_raw(data)
        return removed
