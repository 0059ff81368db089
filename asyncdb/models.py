"""Shared dataclasses used across registry/dispatcher modules."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Mapping, Sequence, Union

if TYPE_CHECKING:
    from .schema import AsyncSchema

DEFAULT_CONNECTION = "default"
PRIMARY_KEY = "id"

Condition = Union[Mapping[str, Any], Sequence[Mapping[str, Any]]]
DeflatedRecord = dict[str, Any]


@dataclass(frozen=True, slots=True)
class ConnectionInstance:
    """A named connection bound to the registry's shared worker pool."""

    name: str
    schema: "AsyncSchema"


@dataclass(frozen=True, slots=True)
class CanonicalRequest:
    """Fully resolved arguments for a single dispatcher operation."""

    source: str
    condition_or_id: Any = None
    connection_name: str = DEFAULT_CONNECTION
    data: Mapping[str, Any] | None = None


__all__ = [
    "CanonicalRequest",
    "Condition",
    "ConnectionInstance",
    "DEFAULT_CONNECTION",
    "DeflatedRecord",
    "PRIMARY_KEY",
]
