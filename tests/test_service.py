"""Tests for the database service facade."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from dbstash.cache import ConnectorCaches
from dbstash.config import StoreSettings
from dbstash.models import ConnectionConfig, MySQLConnection, PostgresConnection
from dbstash.service import REQUIRED_FIELDS, DatabaseService, ValidationError
from dbstash.store import DbStore, NotFoundError

INPUT: dict[str, Any] = {
    "name": "TestDB",
    "host": "localhost",
    "port": 5432,
    "user": "testuser",
    "database": "testdb",
    "type": "POSTGRES",
    "ssl": True,
    "password": "hunter2",
}


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def service(tmp_path: Path) -> DatabaseService:
    store = DbStore(tmp_path, tmp_path / "databases.json", tmp_path / ".credentials", "key", 30_000, False)
    return DatabaseService(store, ConnectorCaches())


@pytest.mark.anyio
@pytest.mark.parametrize("field", REQUIRED_FIELDS)
async def test_add_requires_fields(service: DatabaseService, field: str) -> None:
    payload = {key: value for key, value in INPUT.items() if key != field}

    with pytest.raises(ValidationError, match=f"Missing required field: {field}"):
        await service.add_database(payload)
    assert await service.list_databases() == []


@pytest.mark.anyio
async def test_add_rejects_unknown_engine(service: DatabaseService) -> None:
    with pytest.raises(ValidationError):
        await service.add_database({**INPUT, "type": "ORACLE"})


@pytest.mark.anyio
async def test_listing_hides_credentials(service: DatabaseService) -> None:
    created = await service.add_database(INPUT)

    listed = await service.list_databases()

    assert [entry["id"] for entry in listed] == [created["id"]]
    for entry in listed:
        assert "password" not in entry
        assert "credentialId" not in entry
        assert "credential_id" not in entry


@pytest.mark.anyio
async def test_missing_and_unknown_ids(service: DatabaseService) -> None:
    with pytest.raises(ValidationError, match="Missing id"):
        await service.update_database("", {"name": "UpdatedName"})
    with pytest.raises(ValidationError, match="Missing id"):
        await service.delete_database("")
    with pytest.raises(NotFoundError, match="Database not found"):
        await service.delete_database("nonexistent-database-id")
    with pytest.raises(NotFoundError, match="Database not found"):
        await service.get_database_connection("nonexistent-id")
    with pytest.raises(NotFoundError):
        await service.get_database("nonexistent-id")


@pytest.mark.anyio
async def test_delete_existing_database(service: DatabaseService) -> None:
    created = await service.add_database({**INPUT, "name": "DeleteTestDB"})

    await service.delete_database(created["id"])

    assert all(entry["id"] != created["id"] for entry in await service.list_databases())


@pytest.mark.anyio
async def test_connection_descriptor_includes_password(service: DatabaseService) -> None:
    created = await service.add_database(INPUT)

    connection = await service.get_database_connection(created["id"])

    assert isinstance(connection, PostgresConnection)
    assert connection.password == "hunter2"
    assert connection.ssl is True
    assert connection.database == "testdb"


@pytest.mark.anyio
async def test_mysql_records_get_mysql_descriptor(service: DatabaseService) -> None:
    payload = {key: value for key, value in INPUT.items() if key != "password"}
    created = await service.add_database({**payload, "type": "MYSQL", "port": 3306})

    connection = await service.get_database_connection(created["id"])

    assert isinstance(connection, MySQLConnection)
    assert isinstance(connection, ConnectionConfig)
    assert connection.password is None
    assert await service.cache_for(created["id"]) is service.caches.mysql


@pytest.mark.anyio
async def test_identity_change_drops_cached_metadata(service: DatabaseService) -> None:
    created = await service.add_database(INPUT)
    before = await service.get_database_connection(created["id"])
    cache = await service.cache_for(created["id"])
    cache.set_schemas(before, [{"name": "public"}])

    await service.update_database(created["id"], {"name": "Renamed"})
    assert cache.get_schemas(before) == [{"name": "public"}]

    await service.update_database(created["id"], {"database": "otherdb"})
    assert cache.get_schemas(before) is None


@pytest.mark.anyio
async def test_delete_drops_cached_metadata(service: DatabaseService) -> None:
    created = await service.add_database(INPUT)
    connection = await service.get_database_connection(created["id"])
    service.caches.postgres.set_db_stats(
        connection, {"total_tables": 1, "total_db_size_mb": 1.0, "total_rows": 1}
    )

    await service.delete_database(created["id"])

    assert service.caches.postgres.get_db_stats(connection) is None


@pytest.mark.anyio
async def test_from_settings_builds_store(tmp_path: Path) -> None:
    settings = StoreSettings(config_folder=tmp_path, auto_preload=False)
    service = DatabaseService.from_settings(settings, environ={"DBSTASH_ENCRYPTION_KEY": "k"})

    created = await service.add_database(INPUT)

    assert service.store.config_file == tmp_path / "databases.json"
    assert (await service.get_database_connection(created["id"])).password == "hunter2"
