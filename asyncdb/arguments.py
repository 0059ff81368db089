"""Normalize the overloaded call shapes accepted by the dispatcher.

Every operation takes an optional trailing connection name. Callers who omit
an optional argument tend to shift a condition mapping into that slot, so by
default the normalizer corrects such calls instead of rejecting them:

* a structured value (mapping, list or tuple) in the connection-name slot
  means "no name given" and selects ``"default"``; any other scalar is
  kept as the name, so a mistyped name fails to resolve;
* ``update``/``delete`` accept a scalar primary key in place of a condition
  and rewrite it to ``{"id": value}``;
* ``search`` swaps its condition and connection name back when they arrive
  in the wrong order.

With ``strict=True`` every correction other than the primary-key rewrite
raises :class:`AmbiguousArgumentError` instead.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from .errors import AmbiguousArgumentError
from .models import DEFAULT_CONNECTION, PRIMARY_KEY, CanonicalRequest

LOG = logging.getLogger(__name__)


def is_structured(value: object) -> bool:
    """True for condition-shaped values rather than plain identifiers."""

    return isinstance(value, (Mapping, list, tuple))


def connection_name(value: object) -> str:
    """Connection-name resolution used by the registry.

    Only a missing or structured value falls back to ``"default"``; any other
    scalar is kept so that an unknown name fails to resolve.
    """

    if value is None or is_structured(value):
        return DEFAULT_CONNECTION
    return str(value)


def primary_key_condition(value: object) -> Any:
    """Rewrite a scalar id into an equality condition on ``id``."""

    if is_structured(value):
        return value
    return {PRIMARY_KEY: value}


class ArgumentNormalizer:
    """Collapses dispatcher arguments into :class:`CanonicalRequest` objects."""

    def __init__(self, *, strict: bool = False) -> None:
        self._strict = strict

    @property
    def strict(self) -> bool:
        return self._strict

    def name(self, value: object, *, operation: str = "db") -> str:
        if value is None:
            return DEFAULT_CONNECTION
        if is_structured(value):
            self._ambiguous(operation, f"connection name slot holds {type(value).__name__}")
            return DEFAULT_CONNECTION
        return str(value)

    def count(self, source: str, name: object = None) -> CanonicalRequest:
        return CanonicalRequest(source=source, connection_name=self.name(name, operation="count"))

    def find(self, source: str, ident: object, name: object = None) -> CanonicalRequest:
        return CanonicalRequest(
            source=source,
            condition_or_id=ident,
            connection_name=self.name(name, operation="find"),
        )

    def search(self, source: str, condition: object = None, name: object = None) -> CanonicalRequest:
        if is_structured(name) and not is_structured(condition):
            self._ambiguous("search", "condition and connection name appear swapped")
            condition, name = name, condition
        return CanonicalRequest(
            source=source,
            condition_or_id=condition,
            connection_name=self.name(name, operation="search"),
        )

    def create(self, source: str, data: Mapping[str, Any], name: object = None) -> CanonicalRequest:
        return CanonicalRequest(
            source=source,
            connection_name=self.name(name, operation="create"),
            data=data,
        )

    def update(
        self,
        source: str,
        condition_or_id: object,
        data: Mapping[str, Any],
        name: object = None,
    ) -> CanonicalRequest:
        return CanonicalRequest(
            source=source,
            condition_or_id=primary_key_condition(condition_or_id),
            connection_name=self.name(name, operation="update"),
            data=data,
        )

    def delete(self, source: str, condition_or_id: object, name: object = None) -> CanonicalRequest:
        return CanonicalRequest(
            source=source,
            condition_or_id=primary_key_condition(condition_or_id),
            connection_name=self.name(name, operation="delete"),
        )

    def _ambiguous(self, operation: str, reason: str) -> None:
        if self._strict:
            raise AmbiguousArgumentError(f"Ambiguous arguments for {operation}: {reason}")
        LOG.debug("Correcting ambiguous arguments", extra={"operation": operation, "reason": reason})


__all__ = [
    "ArgumentNormalizer",
    "connection_name",
    "is_structured",
    "primary_key_condition",
]
