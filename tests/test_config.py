"""Tests for StoreSettings helpers."""

from __future__ import annotations

from pathlib import Path

import pytest

from dbstash import config as config_module
from dbstash.config import SettingsError, StoreSettings, load_settings


def test_load_settings_returns_defaults_when_missing(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config_module, "SETTINGS_FILE", tmp_path / "settings.toml")

    result = load_settings()

    assert result == StoreSettings()


def test_load_settings_reads_values(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    settings_path = tmp_path / "settings.toml"
    settings_path.write_text(
        f"""
[store]
config_folder = "{tmp_path / 'registry'}"
config_file = "connections.json"
credentials_file = "secrets.json"
cache_ttl_ms = 5000
auto_preload = false
encryption_key_env = "MY_KEY"
"""
    )
    monkeypatch.setattr(config_module, "SETTINGS_FILE", settings_path)

    result = load_settings()

    assert result.config_folder == tmp_path / "registry"
    assert result.config_path() == tmp_path / "registry" / "connections.json"
    assert result.credentials_path() == tmp_path / "registry" / "secrets.json"
    assert result.cache_ttl_ms == 5000
    assert result.auto_preload is False
    assert result.encryption_key_env == "MY_KEY"


def test_load_settings_ignores_invalid_values(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    settings_path = tmp_path / "settings.toml"
    settings_path.write_text("cache_ttl_ms = -1\nauto_preload = \"yes\"\nconfig_file = 3\n")
    monkeypatch.setattr(config_module, "SETTINGS_FILE", settings_path)

    result = load_settings()

    assert result == StoreSettings()


def test_load_settings_handles_toml_errors(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    settings_path = tmp_path / "settings.toml"
    settings_path.write_text("cache_ttl_ms = [unterminated")
    monkeypatch.setattr(config_module, "SETTINGS_FILE", settings_path)

    assert load_settings() == StoreSettings()


def test_absolute_file_names_are_kept(tmp_path: Path) -> None:
    settings = StoreSettings(config_folder=tmp_path, credentials_file=str(tmp_path / "elsewhere" / ".creds"))

    assert settings.credentials_path() == tmp_path / "elsewhere" / ".creds"
    assert settings.config_path() == tmp_path / "databases.json"


def test_encryption_key_comes_from_environment(tmp_path: Path) -> None:
    settings = StoreSettings(config_folder=tmp_path)

    with pytest.raises(SettingsError):
        settings.encryption_key({})
    kwargs = settings.store_kwargs({"DBSTASH_ENCRYPTION_KEY": "secret"})

    assert kwargs["encryption_key"] == "secret"
    assert kwargs["config_file"] == tmp_path / "databases.json"
    assert kwargs["credentials_file"] == tmp_path / ".credentials"
    assert kwargs["cache_ttl_ms"] == 30_000
    assert kwargs["auto_preload"] is True


def test_ttl_must_be_positive() -> None:
    with pytest.raises(ValueError):
        StoreSettings(cache_ttl_ms=0)
