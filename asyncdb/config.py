"""Connection configuration loading helpers."""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigurationError

CONFIG_FILE = Path.home() / ".config" / "asyncdb" / "config.toml"

# Section keys used by older deployments of the plugin.
_LEGACY_KEYS = {
    "schema_class": "schema_identifier",
    "options": "backend_options",
    "async": "async_options",
}


class AsyncOptions(BaseModel):
    """Background execution settings for one connection."""

    model_config = ConfigDict(frozen=True)

    workers: int = Field(default=4, ge=1)


class ConnectionConfig(BaseModel):
    """Connection section stored in config.toml."""

    model_config = ConfigDict(frozen=True)

    name: str
    schema_identifier: str | None = None
    dsn: str | None = None
    user: str | None = None
    password: str | None = None
    backend_options: dict[str, Any] = Field(default_factory=dict)
    async_options: AsyncOptions = Field(default_factory=AsyncOptions)

    def require_complete(self) -> ConnectionConfig:
        """Return self, or raise if the section cannot build a connection."""

        if not self.schema_identifier:
            raise ConfigurationError(f"Connection '{self.name}' requires a schema_identifier")
        if not self.dsn:
            raise ConfigurationError(f"Connection '{self.name}' requires a dsn")
        return self


class FacadeConfig(BaseModel):
    """Shape of the configuration file."""

    strict_arguments: bool = False
    connections: dict[str, ConnectionConfig] = Field(default_factory=dict)

    def connection(self, name: str) -> ConnectionConfig:
        """Look up the section for ``name``."""

        try:
            return self.connections[name]
        except KeyError:
            raise ConfigurationError(f"No configuration for connection '{name}'") from None

    def with_connection(self, connection: ConnectionConfig) -> FacadeConfig:
        """Return a copy with the given connection section added or replaced."""

        connections = dict(self.connections)
        connections[connection.name] = connection
        return self.model_copy(update={"connections": connections})

    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> FacadeConfig:
        """Build a config from a host framework's settings dictionary."""

        sections = data.get("connections", {})
        if not isinstance(sections, Mapping):
            raise ConfigurationError("'connections' must be a table of connection sections")
        connections: dict[str, ConnectionConfig] = {}
        for name, section in sections.items():
            if not isinstance(section, Mapping):
                raise ConfigurationError(f"Connection '{name}' must be a table")
            connections[str(name)] = _parse_connection(str(name), section)
        try:
            return cls(
                strict_arguments=data.get("strict_arguments", False),
                connections=connections,
            )
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid configuration: {exc}") from exc


def load_config(path: Path | None = None) -> FacadeConfig:
    """Load configuration from disk; an absent file yields no connections."""

    target = path or CONFIG_FILE
    try:
        data = _read_config_file(target)
    except FileNotFoundError:
        return FacadeConfig()
    except (tomllib.TOMLDecodeError, OSError) as exc:
        raise ConfigurationError(f"Unable to read configuration from {target}: {exc}") from exc
    return FacadeConfig.from_mapping(data)


def save_config(config: FacadeConfig, path: Path | None = None) -> None:
    """Persist configuration to disk."""

    target = path or CONFIG_FILE
    target.parent.mkdir(parents=True, exist_ok=True)
    lines: list[str] = [f"strict_arguments = {_toml_value(config.strict_arguments)}"]
    for name in sorted(config.connections):
        connection = config.connections[name]
        lines.append("")
        lines.append(f"[connections.{_toml_key(name)}]")
        for key in ("schema_identifier", "dsn", "user", "password"):
            value = getattr(connection, key)
            if value is not None:
                lines.append(f"{key} = {_toml_value(value)}")
        if connection.backend_options:
            lines.append("")
            lines.append(f"[connections.{_toml_key(name)}.backend_options]")
            for key in sorted(connection.backend_options):
                lines.append(f"{_toml_key(key)} = {_toml_value(connection.backend_options[key])}")
        lines.append("")
        lines.append(f"[connections.{_toml_key(name)}.async_options]")
        lines.append(f"workers = {connection.async_options.workers}")
    target.write_text("\n".join(lines) + "\n")


def _read_config_file(path: Path) -> dict[str, object]:
    with path.open("rb") as handle:
        raw = tomllib.load(handle)
    return raw if isinstance(raw, dict) else {}


def _parse_connection(name: str, section: Mapping[str, object]) -> ConnectionConfig:
    fields: dict[str, object] = {"name": name}
    for key, value in section.items():
        fields[_LEGACY_KEYS.get(key, key)] = value
    try:
        return ConnectionConfig(**fields)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration for connection '{name}': {exc}") from exc


def _toml_key(key: str) -> str:
    if key.replace("_", "").replace("-", "").isalnum():
        return key
    return _toml_value(key)


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(_toml_value(item) for item in value) + "]"
    if isinstance(value, Mapping):
        items = ", ".join(f"{_toml_key(str(key))} = {_toml_value(item)}" for key, item in value.items())
        return "{ " + items + " }" if items else "{}"
    text = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{text}"'


__all__ = [
    "AsyncOptions",
    "CONFIG_FILE",
    "ConnectionConfig",
    "FacadeConfig",
    "load_config",
    "save_config",
]
