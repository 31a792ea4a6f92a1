"""Settings loading helpers for the connection registry."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping

import tomllib

from pydantic import BaseModel, Field, field_validator

SETTINGS_FILE = Path.home() / ".config" / "dbstash" / "settings.toml"
DEFAULT_CONFIG_FOLDER = Path.home() / ".config" / "dbstash"
DEFAULT_KEY_ENV = "DBSTASH_ENCRYPTION_KEY"


class SettingsError(ValueError):
    """Raised when settings cannot produce a usable store configuration."""


class StoreSettings(BaseModel):
    """Shape of the optional settings.toml file."""

    config_folder: Path = Field(default_factory=lambda: DEFAULT_CONFIG_FOLDER)
    config_file: str = "databases.json"
    credentials_file: str = ".credentials"
    cache_ttl_ms: int = 30_000
    auto_preload: bool = True
    encryption_key_env: str = DEFAULT_KEY_ENV

    @field_validator("cache_ttl_ms")
    @classmethod
    def _positive_ttl(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("cache_ttl_ms must be positive")
        return value

    def config_path(self) -> Path:
        return _resolve(self.config_folder, self.config_file)

    def credentials_path(self) -> Path:
        return _resolve(self.config_folder, self.credentials_file)

    def encryption_key(self, environ: Mapping[str, str] | None = None) -> str:
        """Resolve the encryption key from the environment, never from disk."""

        env = os.environ if environ is None else environ
        key = env.get(self.encryption_key_env)
        if not key:
            raise SettingsError(
                f"Set {self.encryption_key_env} to the key used to encrypt stored passwords."
            )
        return key

    def store_kwargs(self, environ: Mapping[str, str] | None = None) -> dict[str, Any]:
        """Constructor arguments for :class:`dbstash.store.DbStore`."""

        return {
            "config_folder": self.config_folder,
            "config_file": self.config_path(),
            "credentials_file": self.credentials_path(),
            "encryption_key": self.encryption_key(environ),
            "cache_ttl_ms": self.cache_ttl_ms,
            "auto_preload": self.auto_preload,
        }


def load_settings() -> StoreSettings:
    """Load settings from disk; fall back to defaults if missing or unreadable."""

    try:
        data = _read_settings_file()
    except FileNotFoundError:
        return StoreSettings()
    except (tomllib.TOMLDecodeError, OSError):
        return StoreSettings()
    return StoreSettings(**data)


def _read_settings_file() -> dict[str, object]:
    with SETTINGS_FILE.open("rb") as handle:
        raw = tomllib.load(handle)
    section = raw.get("store", raw)
    data: dict[str, object] = {}
    if not isinstance(section, dict):
        return data
    for key in ("config_folder", "config_file", "credentials_file", "encryption_key_env"):
        value = section.get(key)
        if isinstance(value, str) and value:
            data[key] = Path(value).expanduser() if key == "config_folder" else value
    ttl = section.get("cache_ttl_ms")
    if isinstance(ttl, int) and not isinstance(ttl, bool) and ttl > 0:
        data["cache_ttl_ms"] = ttl
    preload = section.get("auto_preload")
    if isinstance(preload, bool):
        data["auto_preload"] = preload
    return data


def _resolve(folder: Path, name: str) -> Path:
    path = Path(name).expanduser()
    return path if path.is_absolute() else folder / path


__all__ = [
    "DEFAULT_KEY_ENV",
    "SETTINGS_FILE",
    "SettingsError",
    "StoreSettings",
    "load_settings",
]
