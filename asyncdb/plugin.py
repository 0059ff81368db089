"""Keyword bindings that expose the dispatcher to a host application."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping, NamedTuple, Sequence

from . import __version__ as CORE_VERSION
from .config import FacadeConfig, load_config
from .dispatcher import QueryDispatcher
from .registry import ConnectionRegistry

LOG = logging.getLogger(__name__)

KeywordHandler = Callable[..., Any]


class PluginContext(NamedTuple):
    """Runtime dependencies handed over by the host."""

    app: Any | None = None
    config: FacadeConfig | Mapping[str, object] | None = None
    registry: ConnectionRegistry | None = None


@dataclass(frozen=True, slots=True)
class KeywordCapability:
    """A named callable contributed to the host's namespace."""

    name: str
    description: str
    handler: KeywordHandler | None = None


class KeywordRegistry:
    """Collects keyword capabilities exposed by plugins."""

    def __init__(self) -> None:
        self._keywords: dict[str, KeywordCapability] = {}

    def register(self, capability: KeywordCapability) -> None:
        """Register a keyword capability."""

        if capability.handler is None:
            raise ValueError(f"Keyword '{capability.name}' is missing a handler")
        self._keywords[capability.name] = capability

    def register_many(self, capabilities: Iterable[KeywordCapability]) -> None:
        for capability in capabilities:
            self.register(capability)

    def list_keywords(self) -> list[KeywordCapability]:
        """Return the known keywords."""

        return list(self._keywords.values())

    def as_mapping(self) -> dict[str, KeywordHandler]:
        """Plain ``{name: callable}`` view for template or route namespaces."""

        return {name: capability.handler for name, capability in self._keywords.items() if capability.handler}

    def call(self, name: str, *args: object, **kwargs: object) -> Any:
        """Invoke a registered keyword by name."""

        capability = self._keywords[name]
        handler = capability.handler
        assert handler is not None  # register() guards this
        return handler(*args, **kwargs)


class AsyncDBPlugin:
    """Descriptor wiring a :class:`QueryDispatcher` into a host application."""

    name = "asyncdb"
    version = CORE_VERSION

    def __init__(self, dispatcher: QueryDispatcher | None = None) -> None:
        self._dispatcher = dispatcher

    @property
    def dispatcher(self) -> QueryDispatcher | None:
        return self._dispatcher

    def register(self, ctx: PluginContext) -> Sequence[KeywordCapability]:
        dispatcher = self._dispatcher or self._build_dispatcher(ctx)
        self._dispatcher = dispatcher
        return [
            KeywordCapability(
                name="async_db",
                description="Raw schema handle for a connection (defaults to 'default').",
                handler=dispatcher.db,
            ),
            KeywordCapability(
                name="async_rs",
                description="Chainable resultset proxy whose terminal methods return futures.",
                handler=dispatcher.resultset,
            ),
            KeywordCapability(
                name="async_count",
                description="Future resolving to the number of rows in a source.",
                handler=dispatcher.count,
            ),
            KeywordCapability(
                name="async_find",
                description="Future resolving to one record by primary key, or None.",
                handler=dispatcher.find,
            ),
            KeywordCapability(
                name="async_search",
                description="Future resolving to a list of records matching a condition.",
                handler=dispatcher.search,
            ),
            KeywordCapability(
                name="async_create",
                description="Future resolving to the newly created record.",
                handler=dispatcher.create,
            ),
            KeywordCapability(
                name="async_update",
                description="Future resolving to the number of rows updated (id or condition).",
                handler=dispatcher.update,
            ),
            KeywordCapability(
                name="async_delete",
                description="Future resolving to the number of rows deleted (id or condition).",
                handler=dispatcher.delete,
            ),
        ]

    def keywords(self, ctx: PluginContext | None = None) -> dict[str, KeywordHandler]:
        """Register into a fresh :class:`KeywordRegistry` and return its mapping."""

        registry = KeywordRegistry()
        registry.register_many(self.register(ctx or PluginContext()))
        return registry.as_mapping()

    async def on_shutdown(self) -> None:
        if self._dispatcher is None:
            return
        await asyncio.to_thread(self._dispatcher.registry.shutdown)
        LOG.debug("Plugin shut down", extra={"plugin": self.name})

    @staticmethod
    def _build_dispatcher(ctx: PluginContext) -> QueryDispatcher:
        if ctx.registry is not None:
            return QueryDispatcher(ctx.registry)
        config = ctx.config
        if config is None:
            config = load_config()
        elif not isinstance(config, FacadeConfig):
            config = FacadeConfig.from_mapping(config)
        return QueryDispatcher(ConnectionRegistry(config))


__all__ = [
    "AsyncDBPlugin",
    "KeywordCapability",
    "KeywordHandler",
    "KeywordRegistry",
    "PluginContext",
]
