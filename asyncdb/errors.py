"""Exception hierarchy shared by the registry, dispatcher and schemas."""

from __future__ import annotations


class AsyncDBError(RuntimeError):
    """Base error for the query façade."""


class ConfigurationError(AsyncDBError):
    """Raised synchronously when a connection cannot be built from configuration."""


class UnknownSourceError(ConfigurationError):
    """Raised when a schema has no source with the requested name."""


class BackendError(AsyncDBError):
    """Failure while executing an operation; delivered through the future."""


class AmbiguousArgumentError(ValueError):
    """Raised by the strict argument normalizer instead of guessing."""


__all__ = [
    "AmbiguousArgumentError",
    "AsyncDBError",
    "BackendError",
    "ConfigurationError",
    "UnknownSourceError",
]
