"""Tests for FacadeConfig helpers."""

from __future__ import annotations

from pathlib import Path

import pytest

from asyncdb import config as config_module
from asyncdb.config import AsyncOptions, ConnectionConfig, FacadeConfig, load_config, save_config
from asyncdb.errors import ConfigurationError


def test_load_config_returns_defaults_when_missing(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config_module, "CONFIG_FILE", tmp_path / "config.toml")

    result = load_config()

    assert result == FacadeConfig()
    assert result.connections == {}


def test_load_config_reads_values(tmp_path: Path) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text(
        """
strict_arguments = true

[connections.default]
schema_identifier = "examples.schema:Base"
dsn = "postgresql+asyncpg://localhost:5432/app"
user = "app"
password = "secret"

[connections.default.backend_options]
echo = true

[connections.default.async_options]
workers = 8

[connections.reporting]
schema_identifier = "examples.schema:Base"
dsn = "sqlite+aiosqlite:///reports.db"
"""
    )

    result = load_config(config_path)

    assert result.strict_arguments is True
    default = result.connection("default")
    assert default.dsn == "postgresql+asyncpg://localhost:5432/app"
    assert default.user == "app"
    assert default.backend_options == {"echo": True}
    assert default.async_options.workers == 8
    assert result.connection("reporting").async_options == AsyncOptions()


def test_load_config_accepts_legacy_keys(tmp_path: Path) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text(
        """
[connections.default]
schema_class = "examples.schema:Base"
dsn = "memory://"

[connections.default.options]
latency = 0.1

[connections.default.async]
workers = 2
"""
    )

    default = load_config(config_path).connection("default")

    assert default.schema_identifier == "examples.schema:Base"
    assert default.backend_options == {"latency": 0.1}
    assert default.async_options.workers == 2


def test_load_config_rejects_malformed_file(tmp_path: Path) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text("[connections.default\n")

    with pytest.raises(ConfigurationError):
        load_config(config_path)


def test_invalid_worker_count_is_a_configuration_error() -> None:
    with pytest.raises(ConfigurationError, match="default"):
        FacadeConfig.from_mapping(
            {"connections": {"default": {"dsn": "memory://", "async_options": {"workers": 0}}}}
        )


def test_connection_lookup_raises_for_unknown_name() -> None:
    config = FacadeConfig()

    with pytest.raises(ConfigurationError, match="No configuration for connection 'missing'"):
        config.connection("missing")


def test_require_complete_flags_missing_fields() -> None:
    without_schema = ConnectionConfig(name="a", dsn="memory://")
    without_dsn = ConnectionConfig(name="b", schema_identifier="demo")

    with pytest.raises(ConfigurationError, match="schema_identifier"):
        without_schema.require_complete()
    with pytest.raises(ConfigurationError, match="dsn"):
        without_dsn.require_complete()


def test_with_connection_returns_updated_copy() -> None:
    original = FacadeConfig()
    connection = ConnectionConfig(name="default", schema_identifier="demo", dsn="memory://")

    updated = original.with_connection(connection)

    assert original.connections == {}
    assert updated.connection("default") == connection


def test_save_config_round_trips(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    target = tmp_path / "nested" / "config.toml"
    monkeypatch.setattr(config_module, "CONFIG_FILE", target)
    config = FacadeConfig(strict_arguments=True).with_connection(
        ConnectionConfig(
            name="default",
            schema_identifier="examples.schema:Base",
            dsn="postgresql+asyncpg://localhost/app",
            password='pa"ss',
            backend_options={"echo": False, "connect_args": {"timeout": 5}},
            async_options=AsyncOptions(workers=3),
        )
    )

    save_config(config)

    assert target.exists()
    assert load_config() == config
