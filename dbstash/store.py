"""Persisted connection registry with an encrypted credential side file."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Mapping, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from .cache import CacheEntry
from .crypto import CredentialCipher, EncryptionKey

LOG = logging.getLogger(__name__)

DEFAULT_CACHE_TTL_MS = 30_000

# Never persisted in the config file; passwords live in the credentials file.
_SECRET_FIELDS = frozenset({"password", "credential_id", "credentialId"})
_MANAGED_FIELDS = frozenset({"id", "created_at", "updated_at"})

T = TypeVar("T")


class StoreError(RuntimeError):
    """Base class for registry failures."""


class NotFoundError(StoreError, LookupError):
    """Raised when a connection id does not exist."""


class ConfigCorruptError(StoreError):
    """Raised when a registry file exists but cannot be parsed."""


class ConnectionRecord(BaseModel):
    """Connection entry stored in the registry's JSON config file."""

    model_config = ConfigDict(extra="allow", frozen=True)

    id: str
    name: str
    host: str
    port: int | None = None
    user: str | None = None
    database: str | None = None
    type: str | None = None
    ssl: bool | None = None
    sslmode: str | None = None
    created_at: str
    updated_at: str

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class DbStore:
    """Registry of saved connections backed by two JSON files.

    The config file holds connection records; the credentials file maps record
    ids to encrypted passwords. Reads are served from an in-memory copy of each
    file until it is older than ``cache_ttl_ms``. Every write runs under a
    per-store lock, commits both files, then refreshes the in-memory copy before
    returning, so callers never observe a stale registry after a write.
    """

    def __init__(
        self,
        config_folder: str | os.PathLike[str],
        config_file: str | os.PathLike[str],
        credentials_file: str | os.PathLike[str],
        encryption_key: EncryptionKey,
        cache_ttl_ms: float = DEFAULT_CACHE_TTL_MS,
        auto_preload: bool = True,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if cache_ttl_ms <= 0:
            raise ValueError(f"cache_ttl_ms must be positive, got {cache_ttl_ms!r}.")
        self._config_folder = Path(config_folder)
        self._config_file = Path(config_file)
        self._credentials_file = Path(credentials_file)
        self._cipher = CredentialCipher(encryption_key)
        self._ttl = cache_ttl_ms / 1000.0
        self._clock = clock
        self._lock = asyncio.Lock()
        self._config_cache: CacheEntry[tuple[ConnectionRecord, ...]] | None = None
        self._credentials_cache: CacheEntry[dict[str, str]] | None = None
        self._preload_requested = auto_preload
        self._preloaded = False
        self._preload_task: asyncio.Future[None] | None = None
        if auto_preload:
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                LOG.debug("No running loop; preload deferred until wait_until_ready()")
            else:
                self._start_preload()

    @property
    def config_file(self) -> Path:
        return self._config_file

    @property
    def credentials_file(self) -> Path:
        return self._credentials_file

    # Reads

    async def list_dbs(self) -> list[ConnectionRecord]:
        """Return every saved connection, from cache when it is still fresh."""

        cached = self._live(self._config_cache)
        if cached is not None:
            return list(cached)
        async with self._lock:
            return list(await self._records_locked())

    async def get_db(self, db_id: str) -> ConnectionRecord | None:
        for record in await self.list_dbs():
            if record.id == db_id:
                return record
        return None

    async def get_password_for(self, record: ConnectionRecord | Mapping[str, Any]) -> str | None:
        """Decrypt the stored password for ``record``; ``None`` when none was saved."""

        db_id = _record_id(record)
        secrets = self._live(self._credentials_cache)
        if secrets is None:
            async with self._lock:
                secrets = await self._credentials_locked()
        token = secrets.get(db_id)
        if token is None:
            return None
        return self._cipher.decrypt(token)

    # Writes

    async def add_db(self, payload: Mapping[str, Any]) -> ConnectionRecord:
        """Persist a new connection, encrypting its password if one is given."""

        fields = _strip_fields(payload)
        password = payload.get("password")
        now = _utcnow()
        record = ConnectionRecord.model_validate(
            {**fields, "id": uuid.uuid4().hex, "created_at": now, "updated_at": now}
        )
        async with self._lock:
            records = await self._records_locked()
            secrets = await self._credentials_locked()
            new_secrets = dict(secrets)
            if password:
                new_secrets[record.id] = self._cipher.encrypt(str(password))
            await self._commit_locked((*records, record), secrets, new_secrets)
        LOG.info("Added connection", extra={"db_id": record.id, "db_name": record.name})
        return record

    async def update_db(self, db_id: str, partial: Mapping[str, Any]) -> ConnectionRecord:
        """Merge ``partial`` into an existing record; re-encrypt a new password."""

        changes = _strip_fields(partial)
        password = partial.get("password")
        async with self._lock:
            records = await self._records_locked()
            index = next((i for i, record in enumerate(records) if record.id == db_id), None)
            if index is None:
                raise NotFoundError(f"Database '{db_id}' not found.")
            current = records[index]
            updated = ConnectionRecord.model_validate(
                {**current.model_dump(), **changes, "updated_at": _utcnow()}
            )
            secrets = await self._credentials_locked()
            new_secrets = dict(secrets)
            if password:
                new_secrets[db_id] = self._cipher.encrypt(str(password))
            new_records = records[:index] + (updated,) + records[index + 1 :]
            await self._commit_locked(new_records, secrets, new_secrets)
        LOG.info("Updated connection", extra={"db_id": db_id, "password_changed": bool(password)})
        return updated

    async def delete_db(self, db_id: str) -> None:
        """Remove a connection and its secret; unknown ids are ignored."""

        async with self._lock:
            records = await self._records_locked()
            secrets = await self._credentials_locked()
            remaining = tuple(record for record in records if record.id != db_id)
            if len(remaining) == len(records) and db_id not in secrets:
                LOG.debug("Delete skipped; unknown connection", extra={"db_id": db_id})
                return
            new_secrets = {key: value for key, value in secrets.items() if key != db_id}
            await self._commit_locked(remaining, secrets, new_secrets)
        LOG.info("Deleted connection", extra={"db_id": db_id})

    # Cache lifecycle

    def invalidate_cache(self) -> None:
        """Forget both in-memory copies; the next read goes back to disk."""

        self._config_cache = None
        self._credentials_cache = None
        LOG.debug("Registry cache invalidated")

    def get_cache_stats(self) -> dict[str, Any]:
        records = self._live(self._config_cache)
        return {
            "configCached": records is not None,
            "dbCount": len(records) if records is not None else 0,
            "credentialsCached": self._live(self._credentials_cache) is not None,
            "isPreloaded": self._preloaded,
        }

    def is_ready(self) -> bool:
        if self._live(self._config_cache) is None:
            return False
        if self._preload_requested:
            return self._live(self._credentials_cache) is not None
        return True

    async def preload_cache(self) -> None:
        """Load both files into memory; concurrent callers share one load."""

        self._preload_requested = True
        task = self._preload_task
        if task is not None and not task.done():
            await task
            return
        if self.is_ready():
            self._preloaded = True
            return
        await self._start_preload()

    async def wait_until_ready(self) -> None:
        if self._preload_requested:
            await self.preload_cache()
        elif not self.is_ready():
            await self.list_dbs()

    # Internals

    def _start_preload(self) -> asyncio.Future[None]:
        task = asyncio.ensure_future(self._preload())
        task.add_done_callback(_log_preload_failure)
        self._preload_task = task
        return task

    async def _preload(self) -> None:
        started = time.perf_counter()
        async with self._lock:
            records = await self._records_locked()
            await self._credentials_locked()
        self._preloaded = True
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        LOG.debug("Registry preloaded", extra={"db_count": len(records), "elapsed_ms": elapsed_ms})

    def _live(self, entry: CacheEntry[T] | None) -> T | None:
        if entry is None or not entry.is_live(self._clock()):
            return None
        return entry.data

    async def _records_locked(self) -> tuple[ConnectionRecord, ...]:
        cached = self._live(self._config_cache)
        if cached is not None:
            return cached
        raw = await asyncio.to_thread(self._read_json_file, self._config_file)
        records = _parse_records(raw, self._config_file)
        self._config_cache = CacheEntry(data=records, timestamp=self._clock(), ttl=self._ttl)
        return records

    async def _credentials_locked(self) -> dict[str, str]:
        cached = self._live(self._credentials_cache)
        if cached is not None:
            return cached
        raw = await asyncio.to_thread(self._read_json_file, self._credentials_file)
        secrets = _parse_secrets(raw, self._credentials_file)
        self._credentials_cache = CacheEntry(data=secrets, timestamp=self._clock(), ttl=self._ttl)
        return secrets

    async def _commit_locked(
        self,
        records: tuple[ConnectionRecord, ...],
        previous_secrets: dict[str, str],
        secrets: dict[str, str],
    ) -> None:
        """Write both files, restoring the credentials file if the config write fails."""

        secrets_changed = secrets != previous_secrets
        if secrets_changed:
            await asyncio.to_thread(self._write_json_file, self._credentials_file, secrets, 0o600)
        try:
            payload = [record.to_json() for record in records]
            await asyncio.to_thread(self._write_json_file, self._config_file, payload, None)
        except Exception:
            # Disk state is uncertain for readers; force the next read back to disk.
            self.invalidate_cache()
            if secrets_changed:
                LOG.error("Config write failed; restoring credentials file", extra={"path": str(self._config_file)})
                try:
                    await asyncio.to_thread(
                        self._write_json_file, self._credentials_file, previous_secrets, 0o600
                    )
                except Exception:
                    LOG.exception(
                        "Could not restore credentials file", extra={"path": str(self._credentials_file)}
                    )
            raise
        now = self._clock()
        self._config_cache = CacheEntry(data=records, timestamp=now, ttl=self._ttl)
        self._credentials_cache = CacheEntry(data=secrets, timestamp=now, ttl=self._ttl)

    def _read_json_file(self, path: Path) -> Any | None:
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            return None
        if not raw.strip():
            return None
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            LOG.error("Registry file is not valid JSON", extra={"path": str(path)})
            raise ConfigCorruptError(f"Failed to parse '{path}': {exc}") from exc

    def _write_json_file(self, path: Path, data: Any, mode: int | None) -> None:
        self._config_folder.mkdir(parents=True, exist_ok=True)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2)
                handle.write("\n")
            if mode is not None:
                os.chmod(tmp_name, mode)
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise


def _parse_records(raw: Any, path: Path) -> tuple[ConnectionRecord, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise ConfigCorruptError(f"Expected a JSON array of connections in '{path}'.")
    try:
        return tuple(ConnectionRecord.model_validate(item) for item in raw)
    except PydanticValidationError as exc:
        raise ConfigCorruptError(f"Invalid connection record in '{path}': {exc}") from exc


def _parse_secrets(raw: Any, path: Path) -> dict[str, str]:
    if raw is None:
        return {}
    if not isinstance(raw, dict) or not all(isinstance(value, str) for value in raw.values()):
        raise ConfigCorruptError(f"Expected a JSON object of encrypted secrets in '{path}'.")
    return {str(key): value for key, value in raw.items()}


def _strip_fields(payload: Mapping[str, Any]) -> dict[str, Any]:
    return {
        key: value
        for key, value in payload.items()
        if key not in _SECRET_FIELDS and key not in _MANAGED_FIELDS
    }


def _record_id(record: ConnectionRecord | Mapping[str, Any]) -> str:
    if isinstance(record, ConnectionRecord):
        return record.id
    if isinstance(record, Mapping) and record.get("id"):
        return str(record["id"])
    raise ValueError("Connection record has no id.")


def _utcnow() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


def _log_preload_failure(task: asyncio.Future[None]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        LOG.error("Registry preload failed", exc_info=exc)


__all__ = [
    "ConfigCorruptError",
    "ConnectionRecord",
    "DEFAULT_CACHE_TTL_MS",
    "DbStore",
    "NotFoundError",
    "StoreError",
]
