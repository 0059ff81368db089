"""Connection-multiplexing asynchronous query façade."""

from __future__ import annotations

__version__ = "0.1.0"

from .arguments import ArgumentNormalizer
from .config import AsyncOptions, ConnectionConfig, FacadeConfig, load_config, save_config
from .deflate import deflate, deflate_all
from .dispatcher import QueryDispatcher
from .errors import (
    AmbiguousArgumentError,
    AsyncDBError,
    BackendError,
    ConfigurationError,
    UnknownSourceError,
)
from .futures import aresult, gather, transform, wait_all
from .models import CanonicalRequest, ConnectionInstance
from .plugin import AsyncDBPlugin, KeywordCapability, KeywordRegistry, PluginContext
from .registry import ConnectionRegistry
from .schema import AsyncSchema, MemorySchema, ResultSet, SqlAlchemySchema
from .workers import WorkerPool

__all__ = [
    "AmbiguousArgumentError",
    "ArgumentNormalizer",
    "AsyncDBError",
    "AsyncDBPlugin",
    "AsyncOptions",
    "AsyncSchema",
    "BackendError",
    "CanonicalRequest",
    "ConfigurationError",
    "ConnectionConfig",
    "ConnectionInstance",
    "ConnectionRegistry",
    "FacadeConfig",
    "KeywordCapability",
    "KeywordRegistry",
    "MemorySchema",
    "PluginContext",
    "QueryDispatcher",
    "ResultSet",
    "SqlAlchemySchema",
    "UnknownSourceError",
    "WorkerPool",
    "__version__",
    "aresult",
    "deflate",
    "deflate_all",
    "gather",
    "load_config",
    "save_config",
    "transform",
    "wait_all",
]
