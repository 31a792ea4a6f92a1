"""Per-engine TTL caches for catalog metadata keyed by connection fingerprint."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Generic, Mapping, Sequence, TypeVar

from .models import (
    MYSQL_DEFAULT_PORT,
    POSTGRES_DEFAULT_PORT,
    ColumnDetail,
    ConnectionLike,
    DBStats,
    Fingerprint,
    SchemaInfo,
    TableInfo,
    fingerprint,
)

LOG = logging.getLogger(__name__)

CACHE_TTL = 60.0
STATS_CACHE_TTL = 30.0
SCHEMA_CACHE_TTL = 300.0

T = TypeVar("T")
CacheKey = tuple[Any, ...]


@dataclass(slots=True)
class CacheEntry(Generic[T]):
    """Cached payload with the moment it was stored and its lifetime in seconds."""

    data: T
    timestamp: float
    ttl: float

    def is_live(self, now: float) -> bool:
        return now - self.timestamp < self.ttl


class Dimension(str, Enum):
    """Independent cache categories; values double as `get_stats` keys."""

    TABLE_LIST = "tableLists"
    COLUMNS = "columns"
    PRIMARY_KEYS = "primaryKeys"
    DB_STATS = "dbStats"
    SCHEMAS = "schemas"
    TABLE_DETAILS = "tableDetails"


DEFAULT_TTLS: Mapping[Dimension, float] = {
    Dimension.TABLE_LIST: CACHE_TTL,
    Dimension.COLUMNS: CACHE_TTL,
    Dimension.PRIMARY_KEYS: CACHE_TTL,
    Dimension.DB_STATS: STATS_CACHE_TTL,
    Dimension.SCHEMAS: SCHEMA_CACHE_TTL,
    Dimension.TABLE_DETAILS: CACHE_TTL,
}

_TABLE_DIMENSIONS = (Dimension.COLUMNS, Dimension.PRIMARY_KEYS, Dimension.TABLE_DETAILS)


class ConnectorCacheManager:
    """In-memory memoization of catalog lookups for one database engine.

    Every key starts with the connection fingerprint, so entries for one
    target never leak into another. Expiry is checked lazily when an entry is
    read; nothing sweeps in the background.
    """

    engine = "generic"
    default_port = POSTGRES_DEFAULT_PORT

    def __init__(
        self,
        *,
        ttls: Mapping[Dimension | str, float] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttls: dict[Dimension, float] = dict(DEFAULT_TTLS)
        for dimension, ttl in (ttls or {}).items():
            resolved = Dimension(dimension)
            if ttl <= 0:
                raise ValueError(f"TTL for {resolved.value} must be positive, got {ttl!r}.")
            self._ttls[resolved] = float(ttl)
        self._clock = clock
        self._lock = threading.RLock()
        self._stores: dict[Dimension, dict[CacheKey, CacheEntry[Any]]] = {
            dimension: {} for dimension in Dimension
        }

    def fingerprint(self, connection: ConnectionLike) -> Fingerprint:
        """Identity of a connection: host, port, user and database only."""

        return fingerprint(connection, default_port=self.default_port)

    def ttl_for(self, dimension: Dimension | str) -> float:
        return self._ttls[Dimension(dimension)]

    # Table lists

    def get_table_list(self, connection: ConnectionLike, schema: str | None = None) -> list[TableInfo] | None:
        return self._get(Dimension.TABLE_LIST, (self.fingerprint(connection), schema))

    def set_table_list(
        self,
        connection: ConnectionLike,
        data: Sequence[TableInfo],
        schema: str | None = None,
    ) -> None:
        self._set(Dimension.TABLE_LIST, (self.fingerprint(connection), schema), data)

    # Columns

    def get_columns(self, connection: ConnectionLike, schema: str, table: str) -> list[Mapping[str, Any]] | None:
        return self._get(Dimension.COLUMNS, self._table_key(connection, schema, table))

    def set_columns(
        self,
        connection: ConnectionLike,
        schema: str,
        table: str,
        data: Sequence[Mapping[str, Any]],
    ) -> None:
        self._set(Dimension.COLUMNS, self._table_key(connection, schema, table), data)

    # Primary keys

    def get_primary_keys(self, connection: ConnectionLike, schema: str, table: str) -> list[Any] | None:
        return self._get(Dimension.PRIMARY_KEYS, self._table_key(connection, schema, table))

    def set_primary_keys(self, connection: ConnectionLike, schema: str, table: str, data: Sequence[Any]) -> None:
        self._set(Dimension.PRIMARY_KEYS, self._table_key(connection, schema, table), data)

    # Database stats

    def get_db_stats(self, connection: ConnectionLike) -> DBStats | None:
        return self._get(Dimension.DB_STATS, (self.fingerprint(connection),))

    def set_db_stats(self, connection: ConnectionLike, data: DBStats) -> None:
        self._set(Dimension.DB_STATS, (self.fingerprint(connection),), data)

    # Schemas

    def get_schemas(self, connection: ConnectionLike) -> list[SchemaInfo] | None:
        return self._get(Dimension.SCHEMAS, (self.fingerprint(connection),))

    def set_schemas(self, connection: ConnectionLike, data: Sequence[SchemaInfo]) -> None:
        self._set(Dimension.SCHEMAS, (self.fingerprint(connection),), data)

    # Table details

    def get_table_details(self, connection: ConnectionLike, schema: str, table: str) -> list[ColumnDetail] | None:
        return self._get(Dimension.TABLE_DETAILS, self._table_key(connection, schema, table))

    def set_table_details(
        self,
        connection: ConnectionLike,
        schema: str,
        table: str,
        data: Sequence[ColumnDetail],
    ) -> None:
        self._set(Dimension.TABLE_DETAILS, self._table_key(connection, schema, table), data)

    # Invalidation

    def clear_for_connection(self, connection: ConnectionLike) -> None:
        """Drop every entry, in every dimension, belonging to this connection."""

        target = self.fingerprint(connection)
        removed = 0
        with self._lock:
            for store in self._stores.values():
                stale = [key for key in store if key[0] == target]
                for key in stale:
                    del store[key]
                removed += len(stale)
        LOG.debug(
            "Cleared connection cache",
            extra={"engine": self.engine, "fingerprint": target, "removed": removed},
        )

    def clear_table_cache(self, connection: ConnectionLike, schema: str, table: str) -> None:
        """Drop column-level entries for one table (after DDL)."""

        key = self._table_key(connection, schema, table)
        with self._lock:
            for dimension in _TABLE_DIMENSIONS:
                self._stores[dimension].pop(key, None)
        LOG.debug("Cleared table cache", extra={"engine": self.engine, "key": key})

    def clear_all(self) -> None:
        with self._lock:
            for store in self._stores.values():
                store.clear()
        LOG.debug("Cleared all caches", extra={"engine": self.engine})

    def get_stats(self) -> dict[str, int]:
        """Live entry counts per dimension across all connections."""

        now = self._clock()
        stats: dict[str, int] = {}
        with self._lock:
            for dimension, store in self._stores.items():
                expired = [key for key, entry in store.items() if not entry.is_live(now)]
                for key in expired:
                    del store[key]
                stats[dimension.value] = len(store)
        return stats

    def _table_key(self, connection: ConnectionLike, schema: str, table: str) -> CacheKey:
        return (self.fingerprint(connection), schema, table)

    def _get(self, dimension: Dimension, key: CacheKey) -> Any | None:
        with self._lock:
            store = self._stores[dimension]
            entry = store.get(key)
            if entry is None:
                return None
            if not entry.is_live(self._clock()):
                del store[key]
                LOG.debug("Cache expired", extra={"engine": self.engine, "dimension": dimension.value, "key": key})
                return None
        LOG.debug("Cache hit", extra={"engine": self.engine, "dimension": dimension.value, "key": key})
        return entry.data

    def _set(self, dimension: Dimension, key: CacheKey, data: Any) -> None:
        entry = CacheEntry(data=data, timestamp=self._clock(), ttl=self._ttls[dimension])
        with self._lock:
            self._stores[dimension][key] = entry
        LOG.debug("Cache set", extra={"engine": self.engine, "dimension": dimension.value, "key": key})


class PostgresCacheManager(ConnectorCacheManager):
    """Catalog cache for PostgreSQL connections."""

    engine = "postgres"
    default_port = POSTGRES_DEFAULT_PORT


class MySQLCacheManager(ConnectorCacheManager):
    """Catalog cache for MySQL and MariaDB connections."""

    engine = "mysql"
    default_port = MYSQL_DEFAULT_PORT


class ConnectorCaches:
    """Process-lifetime holder of one cache manager per engine type."""

    def __init__(
        self,
        *,
        postgres: PostgresCacheManager | None = None,
        mysql: MySQLCacheManager | None = None,
    ) -> None:
        self.postgres = postgres or PostgresCacheManager()
        self.mysql = mysql or MySQLCacheManager()
        self._by_engine: dict[str, ConnectorCacheManager] = {
            "postgres": self.postgres,
            "postgresql": self.postgres,
            "mysql": self.mysql,
            "mariadb": self.mysql,
        }

    def for_engine(self, engine: str) -> ConnectorCacheManager:
        """Return the manager for an engine type such as ``"POSTGRES"``."""

        manager = self._by_engine.get(str(engine).lower())
        if manager is None:
            raise ValueError(f"Unsupported database type '{engine}'.")
        return manager

    def clear_all(self) -> None:
        self.postgres.clear_all()
        self.mysql.clear_all()

    def get_stats(self) -> dict[str, dict[str, int]]:
        return {
            self.postgres.engine: self.postgres.get_stats(),
            self.mysql.engine: self.mysql.get_stats(),
        }


__all__ = [
    "CACHE_TTL",
    "CacheEntry",
    "ConnectorCacheManager",
    "ConnectorCaches",
    "DEFAULT_TTLS",
    "Dimension",
    "MySQLCacheManager",
    "PostgresCacheManager",
    "SCHEMA_CACHE_TTL",
    "STATS_CACHE_TTL",
]
