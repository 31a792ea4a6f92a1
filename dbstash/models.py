"""Connection descriptors and catalog payload shapes shared across modules."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, TypedDict

Fingerprint = tuple[str, int, str, str]

POSTGRES_DEFAULT_PORT = 5432
MYSQL_DEFAULT_PORT = 3306


@dataclass(frozen=True, slots=True)
class ConnectionConfig:
    """Runtime representation of a live database target."""

    host: str
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None


@dataclass(frozen=True, slots=True)
class PostgresConnection(ConnectionConfig):
    """Postgres target; ssl fields only affect transport."""

    ssl: bool | None = None
    sslmode: str | None = None


@dataclass(frozen=True, slots=True)
class MySQLConnection(ConnectionConfig):
    """MySQL / MariaDB target."""

    ssl: bool | None = None


ConnectionLike = ConnectionConfig | Mapping[str, Any]


class TableInfo(TypedDict):
    schema: str
    name: str
    type: str


class SchemaInfo(TypedDict):
    name: str


class PrimaryKeyInfo(TypedDict):
    column_name: str


class DBStats(TypedDict):
    total_tables: int
    total_db_size_mb: float
    total_rows: int


class ColumnDetail(TypedDict, total=False):
    name: str
    type: str
    not_nullable: bool
    default_value: str | None
    is_primary_key: bool
    is_foreign_key: bool
    ordinal_position: int
    max_length: int | None


def fingerprint(connection: ConnectionLike, *, default_port: int) -> Fingerprint:
    """Return the identity tuple for a connection, ignoring secrets and transport."""

    if isinstance(connection, ConnectionConfig):
        host, port, user, database = (
            connection.host,
            connection.port,
            connection.user,
            connection.database,
        )
    elif isinstance(connection, Mapping):
        host = connection.get("host")
        port = connection.get("port")
        user = connection.get("user")
        database = connection.get("database")
    else:
        raise ValueError(f"Unsupported connection descriptor: {type(connection).__name__}")
    if not host:
        raise ValueError("Connection descriptor is missing 'host'.")
    try:
        resolved_port = int(port) if port not in (None, "") else default_port
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid port {port!r} for host '{host}'.") from exc
    return (str(host), resolved_port, str(user or ""), str(database or ""))


__all__ = [
    "ColumnDetail",
    "ConnectionConfig",
    "ConnectionLike",
    "DBStats",
    "Fingerprint",
    "MYSQL_DEFAULT_PORT",
    "MySQLConnection",
    "POSTGRES_DEFAULT_PORT",
    "PostgresConnection",
    "PrimaryKeyInfo",
    "SchemaInfo",
    "TableInfo",
    "fingerprint",
]
