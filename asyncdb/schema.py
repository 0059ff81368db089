"""Schema collaborators backing the dispatcher.

A schema maps source names (``"User"``) to tables and hands out
:class:`ResultSet` proxies. Resultsets are immutable and chainable; their
terminal methods schedule work on the registry's shared :class:`WorkerPool`
and return :class:`concurrent.futures.Future` objects resolving to raw rows.
"""

from __future__ import annotations

import asyncio
import importlib
import logging
from concurrent.futures import Future
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Mapping, Protocol, Sequence, TypeVar, runtime_checkable

from sqlalchemy import delete as sa_delete
from sqlalchemy import func, select
from sqlalchemy import inspect as sa_inspect
from sqlalchemy import update as sa_update
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.sql import Select

from .conditions import ConditionError, Node, combine, matches, to_clause
from .config import ConnectionConfig
from .errors import BackendError, ConfigurationError, UnknownSourceError
from .models import PRIMARY_KEY
from .workers import WorkerPool

LOG = logging.getLogger(__name__)

MEMORY_SCHEME = "memory"

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Query:
    """Accumulated state of a chained resultset."""

    source: str
    conditions: tuple[object, ...] = ()
    order: tuple[str, ...] = ()
    limit: int | None = None
    offset: int | None = None

    @property
    def condition(self) -> Node:
        return combine(self.conditions)

    def unbounded(self) -> Query:
        """Same filter without ordering or paging (for bulk writes)."""

        return replace(self, order=(), limit=None, offset=None)


@runtime_checkable
class AsyncSchema(Protocol):
    """Protocol implemented by schema collaborators."""

    name: str

    def resultset(self, source: str) -> "ResultSet":
        """Return a chainable proxy for ``source``."""

    def sources(self) -> tuple[str, ...]:
        """Names of the sources this schema can serve."""

    async def dispose(self) -> None:
        """Release backend resources (runs on the worker loop)."""


class ResultSet:
    """Chainable query over one source whose terminal methods return futures."""

    __slots__ = ("_schema", "_query")

    def __init__(self, schema: BaseSchema, query: Query) -> None:
        self._schema = schema
        self._query = query

    @property
    def source(self) -> str:
        return self._query.source

    @property
    def query(self) -> Query:
        return self._query

    def search(self, condition: object = None) -> ResultSet:
        """Narrow the resultset; conditions from chained calls are AND-ed."""

        if condition is None:
            return self
        return self._derive(conditions=self._query.conditions + (condition,))

    def order_by(self, *columns: str) -> ResultSet:
        """Order by the given columns; prefix a column with ``-`` for descending."""

        return self._derive(order=tuple(columns))

    def limit(self, rows: int) -> ResultSet:
        if rows < 0:
            raise ValueError("limit must be non-negative")
        return self._derive(limit=rows)

    def offset(self, rows: int) -> ResultSet:
        if rows < 0:
            raise ValueError("offset must be non-negative")
        return self._derive(offset=rows)

    def page(self, number: int, rows: int = 10) -> ResultSet:
        if number < 1 or rows < 1:
            raise ValueError("page numbers and sizes start at 1")
        return self._derive(limit=rows, offset=(number - 1) * rows)

    def all(self) -> Future[list[Any]]:
        query = self._query
        return self._schema.submit("all", query.source, lambda: self._schema.fetch_all(query))

    def first(self) -> Future[Any]:
        query = replace(self._query, limit=1)
        return self._schema.submit("first", query.source, lambda: self._schema.fetch_first(query))

    def count(self) -> Future[int]:
        query = self._query
        return self._schema.submit("count", query.source, lambda: self._schema.fetch_count(query))

    def find(self, ident: object) -> Future[Any]:
        query = self._query
        return self._schema.submit("find", query.source, lambda: self._schema.fetch_one(query, ident))

    def create(self, data: Mapping[str, Any]) -> Future[Any]:
        query = self._query
        return self._schema.submit("create", query.source, lambda: self._schema.insert(query, data))

    def update(self, data: Mapping[str, Any]) -> Future[int]:
        query = self._query.unbounded()
        return self._schema.submit("update", query.source, lambda: self._schema.update_rows(query, data))

    def delete(self) -> Future[int]:
        query = self._query.unbounded()
        return self._schema.submit("delete", query.source, lambda: self._schema.delete_rows(query))

    def _derive(self, **changes: Any) -> ResultSet:
        return ResultSet(self._schema, replace(self._query, **changes))

    def __repr__(self) -> str:
        return f"ResultSet(connection={self._schema.name!r}, query={self._query!r})"


class BaseSchema:
    """Source lookup, worker submission and error wrapping shared by backends."""

    def __init__(self, name: str, *, pool: WorkerPool, workers: int = 4) -> None:
        self.name = name
        self._pool = pool
        self._limiter = asyncio.Semaphore(workers)

    def resultset(self, source: str) -> ResultSet:
        if not self.has_source(source):
            raise UnknownSourceError(f"Schema for connection '{self.name}' has no source '{source}'")
        return ResultSet(self, Query(source=source))

    def has_source(self, source: str) -> bool:
        return source in self.sources()

    def sources(self) -> tuple[str, ...]:
        raise NotImplementedError

    def submit(self, operation: str, source: str, work: Callable[[], Awaitable[T]]) -> Future[T]:
        """Run ``work()`` on the worker loop, bounded by the connection's worker count."""

        async def _guarded() -> T:
            async with self._limiter:
                try:
                    return await work()
                except BackendError:
                    raise
                except Exception as exc:
                    LOG.warning(
                        "Backend operation failed",
                        extra={"connection": self.name, "source": source, "operation": operation},
                    )
                    raise BackendError(
                        f"{operation} on '{source}' failed for connection '{self.name}': {exc}"
                    ) from exc

        return self._pool.submit(_guarded)

    async def dispose(self) -> None:
        return None

    async def fetch_all(self, query: Query) -> list[Any]:
        raise NotImplementedError

    async def fetch_first(self, query: Query) -> Any:
        rows = await self.fetch_all(replace(query, limit=1))
        return rows[0] if rows else None

    async def fetch_count(self, query: Query) -> int:
        raise NotImplementedError

    async def fetch_one(self, query: Query, ident: object) -> Any:
        raise NotImplementedError

    async def insert(self, query: Query, data: Mapping[str, Any]) -> Any:
        raise NotImplementedError

    async def update_rows(self, query: Query, data: Mapping[str, Any]) -> int:
        raise NotImplementedError

    async def delete_rows(self, query: Query) -> int:
        raise NotImplementedError


class SqlAlchemySchema(BaseSchema):
    """Schema backed by SQLAlchemy declarative models and an async engine."""

    def __init__(
        self,
        name: str,
        base: Any,
        engine: AsyncEngine,
        *,
        pool: WorkerPool,
        workers: int = 4,
    ) -> None:
        super().__init__(name, pool=pool, workers=workers)
        self._base = base
        self._engine = engine
        self._sessions = async_sessionmaker(bind=engine, expire_on_commit=False)
        self._models = _index_models(base)

    @classmethod
    def connect(cls, config: ConnectionConfig, pool: WorkerPool) -> SqlAlchemySchema:
        """Bind the configured declarative base to a new async engine.

        No connection is opened here; the engine connects lazily on the
        worker loop the first time a query runs.
        """

        base = load_schema(str(config.schema_identifier))
        try:
            url = make_url(str(config.dsn))
            if config.user is not None:
                url = url.set(username=config.user)
            if config.password is not None:
                url = url.set(password=config.password)
            options = dict(config.backend_options)
            if url.get_backend_name() != "sqlite":
                options.setdefault("pool_size", config.async_options.workers)
            engine = create_async_engine(url, **options)
        except (SQLAlchemyError, ImportError, TypeError, ValueError) as exc:
            raise ConfigurationError(f"Unable to create engine for connection '{config.name}': {exc}") from exc
        return cls(config.name, base, engine, pool=pool, workers=config.async_options.workers)

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @property
    def base(self) -> Any:
        return self._base

    def sources(self) -> tuple[str, ...]:
        return tuple(sorted({model.__name__ for model in self._models.values()}))

    def has_source(self, source: str) -> bool:
        return source in self._models

    def model_for(self, source: str) -> type:
        try:
            return self._models[source]
        except KeyError:
            raise UnknownSourceError(f"Schema for connection '{self.name}' has no source '{source}'") from None

    def txn_do(self, work: Callable[[AsyncSession], Awaitable[T]]) -> Future[T]:
        """Run ``work(session)`` inside a single transaction on the worker loop."""

        async def _transaction() -> T:
            async with self._sessions() as session:
                async with session.begin():
                    return await work(session)

        return self.submit("txn_do", "*", _transaction)

    async def dispose(self) -> None:
        await self._engine.dispose()

    async def fetch_all(self, query: Query) -> list[Any]:
        statement = self._statement(query)
        async with self._sessions() as session:
            result = await session.execute(statement)
            return list(result.scalars().all())

    async def fetch_count(self, query: Query) -> int:
        statement = select(func.count()).select_from(self._statement(query).subquery())
        async with self._sessions() as session:
            return int(await session.scalar(statement) or 0)

    async def fetch_one(self, query: Query, ident: object) -> Any:
        model = self.model_for(query.source)
        primary_key = sa_inspect(model).primary_key
        values = ident if isinstance(ident, tuple) else (ident,)
        if len(values) != len(primary_key):
            raise ConditionError(
                f"'{query.source}' has a {len(primary_key)}-column primary key, got {len(values)} value(s)"
            )
        statement = self._statement(replace(query, limit=None, offset=None))
        statement = statement.where(*(column == value for column, value in zip(primary_key, values))).limit(1)
        async with self._sessions() as session:
            result = await session.execute(statement)
            return result.scalars().first()

    async def insert(self, query: Query, data: Mapping[str, Any]) -> Any:
        model = self.model_for(query.source)
        row = model(**dict(data))
        async with self._sessions() as session:
            session.add(row)
            await session.commit()
            await session.refresh(row)
        return row

    async def update_rows(self, query: Query, data: Mapping[str, Any]) -> int:
        if not data:
            return 0
        model = self.model_for(query.source)
        statement = (
            sa_update(model)
            .where(to_clause(sa_inspect(model).columns, query.condition))
            .values(dict(data))
            .execution_options(synchronize_session=False)
        )
        async with self._sessions() as session:
            result = await session.execute(statement)
            affected = result.rowcount
            await session.commit()
        return affected

    async def delete_rows(self, query: Query) -> int:
        model = self.model_for(query.source)
        statement = (
            sa_delete(model)
            .where(to_clause(sa_inspect(model).columns, query.condition))
            .execution_options(synchronize_session=False)
        )
        async with self._sessions() as session:
            result = await session.execute(statement)
            affected = result.rowcount
            await session.commit()
        return affected

    def _statement(self, query: Query) -> Select[Any]:
        model = self.model_for(query.source)
        columns = sa_inspect(model).columns
        statement = select(model).where(to_clause(columns, query.condition))
        for key in query.order:
            name = key.lstrip("-")
            try:
                column = columns[name]
            except KeyError:
                raise ConditionError(f"Unknown column '{name}' in order_by") from None
            statement = statement.order_by(column.desc() if key.startswith("-") else column.asc())
        if query.offset:
            statement = statement.offset(query.offset)
        if query.limit is not None:
            statement = statement.limit(query.limit)
        return statement


class MemoryRow:
    """Live handle on a stored in-memory record."""

    __slots__ = ("source", "_values")

    def __init__(self, source: str, values: dict[str, Any]) -> None:
        self.source = source
        self._values = values

    def get_columns(self) -> Mapping[str, Any]:
        return self._values

    def get_column(self, name: str) -> Any:
        return self._values.get(name)

    def __repr__(self) -> str:
        return f"MemoryRow({self.source!r}, id={self._values.get(PRIMARY_KEY)!r})"


class MemorySchema(BaseSchema):
    """Dict-backed schema for demos and tests, with optional per-call latency."""

    def __init__(
        self,
        name: str,
        *,
        pool: WorkerPool,
        workers: int = 4,
        latency: float = 0.0,
        sources: Sequence[str] | None = None,
    ) -> None:
        super().__init__(name, pool=pool, workers=workers)
        self._latency = latency
        self._declared = tuple(sources) if sources else None
        self._tables: dict[str, dict[Any, dict[str, Any]]] = {}
        self._sequences: dict[str, int] = {}

    @classmethod
    def connect(cls, config: ConnectionConfig, pool: WorkerPool) -> MemorySchema:
        options = config.backend_options
        try:
            latency = float(options.get("latency", 0.0))
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid latency for connection '{config.name}': {exc}") from exc
        sources = options.get("sources")
        if isinstance(sources, str):
            sources = (sources,)
        return cls(
            config.name,
            pool=pool,
            workers=config.async_options.workers,
            latency=latency,
            sources=sources,
        )

    def sources(self) -> tuple[str, ...]:
        if self._declared is not None:
            return self._declared
        return tuple(sorted(self._tables))

    def has_source(self, source: str) -> bool:
        return self._declared is None or source in self._declared

    async def fetch_all(self, query: Query) -> list[Any]:
        await self._pause()
        return [MemoryRow(query.source, values) for values in self._select(query)]

    async def fetch_count(self, query: Query) -> int:
        await self._pause()
        return len(self._select(query))

    async def fetch_one(self, query: Query, ident: object) -> Any:
        await self._pause()
        values = self._table(query.source).get(ident)
        if values is None or not matches(values, query.condition):
            return None
        return MemoryRow(query.source, values)

    async def insert(self, query: Query, data: Mapping[str, Any]) -> Any:
        await self._pause()
        table = self._table(query.source)
        values = dict(data)
        ident = values.pop(PRIMARY_KEY, None)
        if ident is None:
            ident = self._sequences.get(query.source, 0) + 1
        elif ident in table:
            raise BackendError(f"Duplicate primary key {ident!r} for '{query.source}'")
        if isinstance(ident, int):
            self._sequences[query.source] = max(self._sequences.get(query.source, 0), ident)
        record = {PRIMARY_KEY: ident, **values}
        table[ident] = record
        return MemoryRow(query.source, record)

    async def update_rows(self, query: Query, data: Mapping[str, Any]) -> int:
        await self._pause()
        changes = dict(data)
        if not changes:
            return 0
        if PRIMARY_KEY in changes:
            raise BackendError("Updating the primary key is not supported")
        rows = self._select(query)
        for values in rows:
            values.update(changes)
        return len(rows)

    async def delete_rows(self, query: Query) -> int:
        await self._pause()
        table = self._table(query.source)
        rows = self._select(query)
        for values in rows:
            del table[values[PRIMARY_KEY]]
        return len(rows)

    async def _pause(self) -> None:
        if self._latency:
            await asyncio.sleep(self._latency)

    def _table(self, source: str) -> dict[Any, dict[str, Any]]:
        return self._tables.setdefault(source, {})

    def _select(self, query: Query) -> list[dict[str, Any]]:
        node = query.condition
        rows = [values for values in self._table(query.source).values() if matches(values, node)]
        for key in reversed(query.order):
            rows.sort(key=_sort_key(key.lstrip("-")), reverse=key.startswith("-"))
        start = query.offset or 0
        stop = start + query.limit if query.limit is not None else None
        return rows[start:stop]


def connect(config: ConnectionConfig, pool: WorkerPool) -> AsyncSchema:
    """Build the schema collaborator for a connection section."""

    config = config.require_complete()
    scheme = str(config.dsn).split(":", 1)[0].lower()
    if scheme == MEMORY_SCHEME:
        return MemorySchema.connect(config, pool)
    return SqlAlchemySchema.connect(config, pool)


def load_schema(identifier: str) -> Any:
    """Import ``package.module[:Attr]`` and return the declarative base it names."""

    module_name, _, attribute = identifier.partition(":")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigurationError(f"Unable to import schema '{identifier}': {exc}") from exc
    target = getattr(module, attribute or "Base", None)
    if target is None:
        raise ConfigurationError(f"Schema '{identifier}' does not define '{attribute or 'Base'}'")
    mapper_registry = getattr(target, "registry", None)
    if mapper_registry is None or not hasattr(mapper_registry, "mappers"):
        raise ConfigurationError(f"Schema '{identifier}' is not a SQLAlchemy declarative base")
    return target


def _index_models(base: Any) -> dict[str, type]:
    models: dict[str, type] = {}
    for mapper in base.registry.mappers:
        model = mapper.class_
        models.setdefault(model.__name__, model)
        table_name = getattr(mapper.local_table, "name", None)
        if table_name:
            models.setdefault(table_name, model)
    return models


def _sort_key(column: str) -> Callable[[Mapping[str, Any]], tuple[bool, Any]]:
    def _key(values: Mapping[str, Any]) -> tuple[bool, Any]:
        value = values.get(column)
        return (value is not None, value)

    return _key


__all__ = [
    "AsyncSchema",
    "BaseSchema",
    "MEMORY_SCHEME",
    "MemoryRow",
    "MemorySchema",
    "Query",
    "ResultSet",
    "SqlAlchemySchema",
    "connect",
    "load_schema",
]
