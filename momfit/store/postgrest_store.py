"""
REST-over-Postgres data store (Supabase / PostgREST compatible).
Implements IDataStore on top of aiohttp; every call is one HTTP request.
"""

import logging
import uuid
from typing import Optional, Sequence

import aiohttp

from momfit.shared.config import StoreConfig
from momfit.shared.interfaces import IDataStore
from momfit.shared.models import utc_now_iso

logger = logging.getLogger(__name__)


def _format_value(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_filter_params(filters: Optional[dict]) -> list[tuple[str, str]]:
    """Translate an equality map into PostgREST operator query params."""
    params = []
    for column, expected in (filters or {}).items():
        if expected is None:
            params.append((column, "is.null"))
        elif isinstance(expected, (list, tuple, set)):
            quoted = ",".join(f'"{_format_value(v)}"' for v in expected)
            params.append((column, f"in.({quoted})"))
        else:
            params.append((column, f"eq.{_format_value(expected)}"))
    return params


class PostgrestDataStore(IDataStore):
    """Talks to ``{postgrest_url}/rest/v1/{table}`` with the service key."""

    def __init__(self, config: StoreConfig):
        self._config = config
        self._base_url = config.postgrest_url.rstrip("/") + "/rest/v1"
        self._timeout = aiohttp.ClientTimeout(total=config.request_timeout_seconds)

    def _headers(self, prefer: str = "") -> dict:
        headers = {
            "apikey": self._config.service_key,
            "Authorization": f"Bearer {self._config.service_key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _request(
        self,
        method: str,
        table: str,
        params: Optional[list] = None,
        json_body=None,
        prefer: str = "",
    ) -> list[dict]:
        url = f"{self._base_url}/{table}"
        async with aiohttp.ClientSession(timeout=self._timeout) as session:
            async with session.request(
                method, url, params=params or [], json=json_body, headers=self._headers(prefer)
            ) as resp:
                if resp.status >= 300:
                    body = await resp.text()
                    logger.error(f"PostgREST {method} {table} failed: HTTP {resp.status} {body[:200]}")
                    raise RuntimeError(f"{method} {table} failed with HTTP {resp.status}: {body[:200]}")
                if resp.status == 204:
                    return []
                data = await resp.json(content_type=None)
        if data is None:
            return []
        return data if isinstance(data, list) else [data]

    async def select(
        self,
        table: str,
        filters: Optional[dict] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict]:
        params = [("select", "*")] + build_filter_params(filters)
        if order_by:
            params.append(("order", f"{order_by}.{'desc' if descending else 'asc'}"))
        if limit is not None:
            params.append(("limit", str(limit)))
        return await self._request("GET", table, params=params)

    async def get(self, table: str, filters: dict) -> Optional[dict]:
        rows = await self.select(table, filters, limit=1)
        return rows[0] if rows else None

    async def insert(self, table: str, row: dict) -> dict:
        body = dict(row)
        body.setdefault("id", uuid.uuid4().hex)
        if not body.get("created_at"):
            body["created_at"] = utc_now_iso()
        rows = await self._request("POST", table, json_body=body, prefer="return=representation")
        return rows[0] if rows else body

    async def update(self, table: str, filters: dict, values: dict) -> list[dict]:
        return await self._request(
            "PATCH",
            table,
            params=build_filter_params(filters),
            json_body=values,
            prefer="return=representation",
        )

    async def upsert(self, table: str, row: dict, on_conflict: Sequence[str]) -> dict:
        rows = await self._request(
            "POST",
            table,
            params=[("on_conflict", ",".join(on_conflict))],
            json_body=row,
            prefer="resolution=merge-duplicates,return=representation",
        )
        return rows[0] if rows else dict(row)

    async def delete(self, table: str, filters: dict) -> int:
        rows = await self._request(
            "DELETE",
            table,
            params=build_filter_params(filters),
            prefer="return=representation",
        )
        return len(rows)
