"""Cache-aside catalog reads against PostgreSQL via asyncpg."""

from __future__ import annotations

import logging
import time
from typing import Any, Awaitable, Callable, TypeVar

import asyncpg

from .cache import PostgresCacheManager
from .models import (
    ColumnDetail,
    ConnectionLike,
    DBStats,
    PrimaryKeyInfo,
    SchemaInfo,
    TableInfo,
)

LOG = logging.getLogger(__name__)

T = TypeVar("T")


class CatalogError(RuntimeError):
    """Raised when catalog metadata cannot be fetched from the server."""


class PostgresCatalog:
    """Serves schema metadata from the cache, querying the server on a miss."""

    _SCHEMAS_QUERY = """
        SELECT nspname AS name
        FROM pg_namespace
        WHERE nspname NOT IN ('pg_catalog', 'information_schema', 'pg_toast')
          AND nspname NOT LIKE 'pg_temp_%'
          AND nspname NOT LIKE 'pg_toast_temp_%'
        ORDER BY nspname
    """

    _TABLES_QUERY = """
        SELECT table_schema AS schema, table_name AS name, table_type AS type
        FROM information_schema.tables
        WHERE table_schema NOT IN ('pg_catalog', 'information_schema', 'pg_toast')
          AND table_type = 'BASE TABLE'
          AND ($1::text IS NULL OR table_schema = $1::text)
        ORDER BY table_schema, table_name
    """

    _PRIMARY_KEYS_QUERY = """
        SELECT a.attname AS column_name
        FROM pg_index i
        JOIN pg_attribute a ON a.attrelid = i.indrelid AND a.attnum = ANY(i.indkey)
        WHERE i.indrelid = format('%I.%I', $1::text, $2::text)::regclass
          AND i.indisprimary
    """

    _DB_STATS_QUERY = """
        SELECT
          (SELECT COUNT(*)
           FROM information_schema.tables
           WHERE table_schema = current_schema() AND table_type = 'BASE TABLE') AS total_tables,
          (SELECT COALESCE(SUM(n_live_tup), 0)
           FROM pg_stat_user_tables
           WHERE schemaname = current_schema()) AS total_rows,
          (pg_database_size(current_database()) / (1024.0 * 1024.0)) AS total_db_size_mb
    """

    _TABLE_DETAILS_QUERY = """
        SELECT
          a.attname AS name,
          format_type(a.atttypid, a.atttypmod) AS type,
          a.attnotnull AS not_nullable,
          pg_get_expr(d.adbin, d.adrelid) AS default_value,
          COALESCE((SELECT TRUE FROM pg_constraint pc
                    WHERE pc.conrelid = a.attrelid AND a.attnum = ANY(pc.conkey)
                      AND pc.contype = 'p' LIMIT 1), FALSE) AS is_primary_key,
          COALESCE((SELECT TRUE FROM pg_constraint fc
                    WHERE fc.conrelid = a.attrelid AND a.attnum = ANY(fc.conkey)
                      AND fc.contype = 'f' LIMIT 1), FALSE) AS is_foreign_key,
          a.attnum AS ordinal_position
        FROM pg_attribute a
        LEFT JOIN pg_attrdef d ON d.adrelid = a.attrelid AND d.adnum = a.attnum
        WHERE a.attrelid = format('%I.%I', $1::text, $2::text)::regclass
          AND a.attnum > 0
          AND NOT a.attisdropped
        ORDER BY a.attnum
    """

    def __init__(self, cache: PostgresCacheManager, *, connect_timeout: float = 5.0) -> None:
        self._cache = cache
        self._connect_timeout = connect_timeout

    @property
    def cache(self) -> PostgresCacheManager:
        return self._cache

    async def list_schemas(self, connection: ConnectionLike) -> list[SchemaInfo]:
        cached = self._cache.get_schemas(connection)
        if cached is not None:
            return cached
        rows = await self._fetch(connection, self._SCHEMAS_QUERY)
        result: list[SchemaInfo] = [{"name": str(row["name"])} for row in rows]
        self._cache.set_schemas(connection, result)
        return result

    async def list_tables(self, connection: ConnectionLike, schema: str | None = None) -> list[TableInfo]:
        cached = self._cache.get_table_list(connection, schema)
        if cached is not None:
            return cached
        rows = await self._fetch(connection, self._TABLES_QUERY, schema)
        result: list[TableInfo] = [
            {"schema": str(row["schema"]), "name": str(row["name"]), "type": str(row["type"])}
            for row in rows
        ]
        self._cache.set_table_list(connection, result, schema)
        return result

    async def primary_keys(self, connection: ConnectionLike, schema: str, table: str) -> list[PrimaryKeyInfo]:
        cached = self._cache.get_primary_keys(connection, schema, table)
        if cached is not None:
            return cached
        rows = await self._fetch(connection, self._PRIMARY_KEYS_QUERY, schema, table)
        result: list[PrimaryKeyInfo] = [{"column_name": str(row["column_name"])} for row in rows]
        self._cache.set_primary_keys(connection, schema, table, result)
        return result

    async def db_stats(self, connection: ConnectionLike) -> DBStats:
        cached = self._cache.get_db_stats(connection)
        if cached is not None:
            return cached
        rows = await self._fetch(connection, self._DB_STATS_QUERY)
        row = rows[0] if rows else {}
        result: DBStats = {
            "total_tables": int(row.get("total_tables") or 0),
            "total_db_size_mb": float(row.get("total_db_size_mb") or 0),
            "total_rows": int(row.get("total_rows") or 0),
        }
        self._cache.set_db_stats(connection, result)
        return result

    async def table_details(self, connection: ConnectionLike, schema: str, table: str) -> list[ColumnDetail]:
        cached = self._cache.get_table_details(connection, schema, table)
        if cached is not None:
            return cached
        rows = await self._fetch(connection, self._TABLE_DETAILS_QUERY, schema, table)
        result: list[ColumnDetail] = [
            {
                "name": str(row["name"]),
                "type": str(row["type"]),
                "not_nullable": bool(row["not_nullable"]),
                "default_value": row["default_value"],
                "is_primary_key": bool(row["is_primary_key"]),
                "is_foreign_key": bool(row["is_foreign_key"]),
                "ordinal_position": int(row["ordinal_position"]),
            }
            for row in rows
        ]
        self._cache.set_table_details(connection, schema, table, result)
        return result

    def refresh(self, connection: ConnectionLike) -> None:
        """Drop cached metadata so the next read hits the server."""

        self._cache.clear_for_connection(connection)

    async def _fetch(self, connection: ConnectionLike, query: str, *args: Any) -> list[Any]:
        return await self._with_connection(connection, lambda conn: conn.fetch(query, *args))

    async def _with_connection(
        self,
        connection: ConnectionLike,
        action: Callable[[Any], Awaitable[T]],
    ) -> T:
        kwargs = self._connect_kwargs(connection)
        started = time.perf_counter()
        try:
            conn = await asyncpg.connect(**kwargs)
        except Exception as exc:
            raise CatalogError(f"Failed to connect to '{kwargs.get('host')}': {exc}") from exc
        try:
            result = await action(conn)
        except Exception as exc:
            raise CatalogError(f"Catalog query failed on '{kwargs.get('host')}': {exc}") from exc
        finally:
            try:
                await conn.close()
            except Exception:  # pragma: no cover - best effort cleanup
                LOG.debug("Failed to close catalog connection", exc_info=True)
        LOG.debug(
            "Catalog query finished",
            extra={"host": kwargs.get("host"), "elapsed_ms": int((time.perf_counter() - started) * 1000)},
        )
        return result

    def _connect_kwargs(self, connection: ConnectionLike) -> dict[str, object]:
        fields = _as_mapping(connection)
        kwargs: dict[str, object] = {"host": fields.get("host") or "localhost"}
        for key in ("port", "user", "password", "database"):
            value = fields.get(key)
            if value not in (None, ""):
                kwargs[key] = value
        sslmode = fields.get("sslmode")
        if sslmode:
            kwargs["ssl"] = sslmode
        elif fields.get("ssl"):
            kwargs["ssl"] = "require"
        kwargs.setdefault("timeout", self._connect_timeout)
        return kwargs


def _as_mapping(connection: ConnectionLike) -> dict[str, Any]:
    if isinstance(connection, dict):
        return dict(connection)
    if hasattr(connection, "keys"):
        return {key: connection[key] for key in connection.keys()}  # type: ignore[index]
    return {
        name: getattr(connection, name, None)
        for name in ("host", "port", "user", "password", "database", "ssl", "sslmode")
    }


__all__ = ["CatalogError", "PostgresCatalog"]
