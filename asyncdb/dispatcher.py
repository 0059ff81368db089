"""Public CRUD surface returning futures of detached values."""

from __future__ import annotations

import logging
from concurrent.futures import Future
from typing import Any, Callable, Mapping, TypeVar

from .arguments import ArgumentNormalizer
from .deflate import deflate, deflate_all
from .errors import BackendError
from .futures import transform
from .models import CanonicalRequest, DeflatedRecord
from .registry import ConnectionRegistry
from .schema import AsyncSchema, ResultSet

LOG = logging.getLogger(__name__)

T = TypeVar("T")


class QueryDispatcher:
    """Issues CRUD operations against named connections.

    Every operation returns a :class:`concurrent.futures.Future` straight
    away. Configuration problems (unknown connection, unknown source) raise
    synchronously; anything that goes wrong while the query runs arrives as
    a :class:`BackendError` on the future.

    Example::

        users = dispatcher.search("User", {"active": True})
        total = dispatcher.count("User")
        rows, count = gather(users, total)
    """

    def __init__(self, registry: ConnectionRegistry, *, strict: bool | None = None) -> None:
        self._registry = registry
        if strict is None:
            strict = registry.config.strict_arguments
        self._arguments = ArgumentNormalizer(strict=strict)

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    @property
    def arguments(self) -> ArgumentNormalizer:
        return self._arguments

    def db(self, name: object = None) -> AsyncSchema:
        """Raw schema handle for collaborator-level work."""

        return self._registry.resolve(self._arguments.name(name, operation="db")).schema

    def resultset(self, source: str, name: object = None) -> ResultSet:
        """Chainable proxy whose terminal methods return futures of raw rows."""

        return self._registry.resolve(self._arguments.name(name, operation="resultset")).schema.resultset(source)

    def count(self, source: str, name: object = None) -> Future[int]:
        request = self._arguments.count(source, name)
        return self._settle(request, "count", self._resultset(request, "count").count(), _as_count)

    def find(self, source: str, ident: object, name: object = None) -> Future[DeflatedRecord | None]:
        request = self._arguments.find(source, ident, name)
        return self._settle(request, "find", self._resultset(request, "find").find(request.condition_or_id), deflate)

    def search(self, source: str, condition: object = None, name: object = None) -> Future[list[DeflatedRecord]]:
        request = self._arguments.search(source, condition, name)
        resultset = self._resultset(request, "search").search(request.condition_or_id)
        return self._settle(request, "search", resultset.all(), deflate_all)

    def create(self, source: str, data: Mapping[str, Any], name: object = None) -> Future[DeflatedRecord | None]:
        request = self._arguments.create(source, data, name)
        return self._settle(request, "create", self._resultset(request, "create").create(request.data or {}), deflate)

    def update(
        self,
        source: str,
        condition_or_id: object,
        data: Mapping[str, Any],
        name: object = None,
    ) -> Future[int]:
        request = self._arguments.update(source, condition_or_id, data, name)
        resultset = self._resultset(request, "update").search(request.condition_or_id)
        return self._settle(request, "update", resultset.update(request.data or {}), _as_count)

    def delete(self, source: str, condition_or_id: object, name: object = None) -> Future[int]:
        request = self._arguments.delete(source, condition_or_id, name)
        resultset = self._resultset(request, "delete").search(request.condition_or_id)
        return self._settle(request, "delete", resultset.delete(), _as_count)

    def _resultset(self, request: CanonicalRequest, operation: str) -> ResultSet:
        instance = self._registry.resolve(request.connection_name)
        LOG.debug(
            "Dispatching operation",
            extra={"operation": operation, "source": request.source, "connection": instance.name},
        )
        return instance.schema.resultset(request.source)

    def _settle(
        self,
        request: CanonicalRequest,
        operation: str,
        future: Future[Any],
        convert: Callable[[Any], T],
    ) -> Future[T]:
        """Convert the raw result once it arrives; conversion failures become :class:`BackendError`."""

        def _done(value: Any) -> T:
            try:
                return convert(value)
            except Exception as exc:
                LOG.warning(
                    "Unable to convert backend result",
                    extra={"operation": operation, "source": request.source, "connection": request.connection_name},
                )
                raise BackendError(f"{operation} on '{request.source}' returned an unusable result: {exc}") from exc

        return transform(future, _done)


def _as_count(value: object) -> int:
    if value is None:
        return 0
    return max(int(value), 0)


__all__ = ["QueryDispatcher"]
