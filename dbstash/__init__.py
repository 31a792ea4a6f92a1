"""Connection metadata caches and the encrypted connection registry."""

from __future__ import annotations

from .cache import (
    CACHE_TTL,
    SCHEMA_CACHE_TTL,
    STATS_CACHE_TTL,
    CacheEntry,
    ConnectorCacheManager,
    ConnectorCaches,
    Dimension,
    MySQLCacheManager,
    PostgresCacheManager,
)
from .catalog import CatalogError, PostgresCatalog
from .config import SettingsError, StoreSettings, load_settings
from .crypto import CredentialCipher, DecryptionError, decrypt, encrypt
from .models import ConnectionConfig, MySQLConnection, PostgresConnection
from .service import DatabaseService, ValidationError
from .store import ConfigCorruptError, ConnectionRecord, DbStore, NotFoundError, StoreError

__all__ = [
    "CACHE_TTL",
    "CacheEntry",
    "CatalogError",
    "ConfigCorruptError",
    "ConnectionConfig",
    "ConnectionRecord",
    "ConnectorCacheManager",
    "ConnectorCaches",
    "CredentialCipher",
    "DatabaseService",
    "DbStore",
    "DecryptionError",
    "Dimension",
    "MySQLCacheManager",
    "MySQLConnection",
    "NotFoundError",
    "PostgresCacheManager",
    "PostgresCatalog",
    "PostgresConnection",
    "SCHEMA_CACHE_TTL",
    "STATS_CACHE_TTL",
    "SettingsError",
    "StoreError",
    "StoreSettings",
    "ValidationError",
    "decrypt",
    "encrypt",
    "load_settings",
]
