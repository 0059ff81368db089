"""Registry of named connections, built lazily from configuration."""

from __future__ import annotations

import logging
import threading
from types import TracebackType
from typing import Callable

from .arguments import connection_name
from .config import ConnectionConfig, FacadeConfig
from .models import ConnectionInstance
from .schema import AsyncSchema, connect
from .workers import WorkerPool

LOG = logging.getLogger(__name__)

Connector = Callable[[ConnectionConfig, WorkerPool], AsyncSchema]


class ConnectionRegistry:
    """Maps connection names to one shared :class:`ConnectionInstance` each.

    Lookups of cached names never take a lock. The first resolution of a
    name constructs its schema under a per-name lock, so concurrent callers
    racing on a new name all receive the same instance. Every connection
    shares one :class:`WorkerPool`, created with the first connection.
    """

    def __init__(
        self,
        config: FacadeConfig,
        *,
        connector: Connector | None = None,
        pool_factory: Callable[[], WorkerPool] = WorkerPool,
    ) -> None:
        self._config = config
        self._connector = connector or connect
        self._pool_factory = pool_factory
        self._pool: WorkerPool | None = None
        self._instances: dict[str, ConnectionInstance] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    @property
    def config(self) -> FacadeConfig:
        return self._config

    @property
    def names(self) -> tuple[str, ...]:
        """Names of the connections constructed so far."""

        return tuple(self._instances)

    @property
    def pool(self) -> WorkerPool | None:
        return self._pool

    def __contains__(self, name: object) -> bool:
        return name in self._instances

    def resolve(self, name: object = None) -> ConnectionInstance:
        """Return the instance for ``name``, constructing it on first use.

        Raises :class:`ConfigurationError` when the name has no usable
        configuration section.
        """

        key = connection_name(name)
        instance = self._instances.get(key)
        if instance is not None:
            return instance
        with self._lock_for(key):
            instance = self._instances.get(key)
            if instance is None:
                instance = self._construct(key)
                self._instances[key] = instance
            else:
                LOG.debug("Connection constructed by a concurrent caller", extra={"connection": key})
        return instance

    def shutdown(self) -> None:
        """Dispose every connection and stop the shared worker loop."""

        with self._guard:
            instances = tuple(self._instances.values())
            pool = self._pool
            self._instances.clear()
            self._locks.clear()
            self._pool = None
        if pool is None:
            return
        for instance in instances:
            try:
                pool.run(instance.schema.dispose())
            except Exception:
                LOG.exception("Failed to dispose connection", extra={"connection": instance.name})
        pool.shutdown()
        LOG.info("Connection registry shut down", extra={"connections": [i.name for i in instances]})

    def __enter__(self) -> ConnectionRegistry:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.shutdown()

    def _lock_for(self, name: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(name, threading.Lock())

    def _shared_pool(self) -> WorkerPool:
        with self._guard:
            if self._pool is None:
                self._pool = self._pool_factory()
            return self._pool

    def _construct(self, name: str) -> ConnectionInstance:
        config = self._config.connection(name).require_complete()
        schema = self._connector(config, self._shared_pool())
        LOG.info(
            "Connection constructed",
            extra={"connection": name, "schema_identifier": config.schema_identifier},
        )
        return ConnectionInstance(name=name, schema=schema)


__all__ = ["ConnectionRegistry", "Connector"]
