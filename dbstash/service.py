"""Validated facade over the registry and metadata caches for the RPC layer."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from .cache import ConnectorCacheManager, ConnectorCaches
from .config import StoreSettings
from .models import ConnectionConfig, MySQLConnection, PostgresConnection
from .store import ConnectionRecord, DbStore, NotFoundError

LOG = logging.getLogger(__name__)

REQUIRED_FIELDS = ("name", "host", "port", "user", "database", "type")
_IDENTITY_FIELDS = ("host", "port", "user", "database", "type")
_HIDDEN_FIELDS = ("password", "credential_id", "credentialId")


class ValidationError(ValueError):
    """Raised when a request payload is missing required data."""


class DatabaseService:
    """Connection CRUD plus descriptor assembly for live database calls."""

    def __init__(self, store: DbStore, caches: ConnectorCaches | None = None) -> None:
        self._store = store
        self._caches = caches or ConnectorCaches()

    @classmethod
    def from_settings(
        cls,
        settings: StoreSettings,
        *,
        caches: ConnectorCaches | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> DatabaseService:
        return cls(DbStore(**settings.store_kwargs(environ)), caches)

    @property
    def store(self) -> DbStore:
        return self._store

    @property
    def caches(self) -> ConnectorCaches:
        return self._caches

    async def add_database(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        for field in REQUIRED_FIELDS:
            value = payload.get(field)
            if value is None or value == "":
                raise ValidationError(f"Missing required field: {field}")
        try:
            self._caches.for_engine(str(payload["type"]))
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        record = await self._store.add_db(payload)
        return _public(record)

    async def list_databases(self) -> list[dict[str, Any]]:
        return [_public(record) for record in await self._store.list_dbs()]

    async def get_database(self, db_id: str) -> dict[str, Any]:
        return _public(await self._require(db_id))

    async def update_database(self, db_id: str, payload: Mapping[str, Any]) -> dict[str, Any]:
        current = await self._require(db_id)
        updated = await self._store.update_db(db_id, payload)
        if any(getattr(current, name) != getattr(updated, name) for name in _IDENTITY_FIELDS):
            self._forget_metadata(current)
        return _public(updated)

    async def delete_database(self, db_id: str) -> None:
        record = await self._require(db_id)
        await self._store.delete_db(db_id)
        self._forget_metadata(record)

    async def get_database_connection(self, db_id: str) -> ConnectionConfig:
        """Build the engine-specific descriptor, password included."""

        record = await self._require(db_id)
        password = await self._store.get_password_for(record)
        return connection_for(record, password)

    async def cache_for(self, db_id: str) -> ConnectorCacheManager:
        record = await self._require(db_id)
        return self._caches.for_engine(record.type or "")

    async def _require(self, db_id: str) -> ConnectionRecord:
        if not db_id:
            raise ValidationError("Missing id")
        record = await self._store.get_db(db_id)
        if record is None:
            raise NotFoundError("Database not found")
        return record

    def _forget_metadata(self, record: ConnectionRecord) -> None:
        try:
            manager = self._caches.for_engine(record.type or "")
        except ValueError:
            return
        manager.clear_for_connection(connection_for(record, None))
        LOG.debug("Dropped cached metadata", extra={"db_id": record.id})


def connection_for(record: ConnectionRecord, password: str | None) -> ConnectionConfig:
    """Translate a stored record into a live connection descriptor."""

    engine = (record.type or "").lower()
    common = {
        "host": record.host,
        "port": record.port,
        "user": record.user,
        "password": password,
        "database": record.database,
    }
    if engine in {"mysql", "mariadb"}:
        return MySQLConnection(**common, ssl=record.ssl)
    if engine in {"postgres", "postgresql"}:
        return PostgresConnection(**common, ssl=record.ssl, sslmode=record.sslmode)
    return ConnectionConfig(**common)


def _public(record: ConnectionRecord) -> dict[str, Any]:
    data = record.to_json()
    for name in _HIDDEN_FIELDS:
        data.pop(name, None)
    return data


__all__ = [
    "DatabaseService",
    "REQUIRED_FIELDS",
    "ValidationError",
    "connection_for",
]
