"""End-to-end tests for the dispatcher against the in-memory backend."""

from __future__ import annotations

import time
from typing import Iterator

import pytest

from asyncdb import (
    AmbiguousArgumentError,
    BackendError,
    ConfigurationError,
    ConnectionRegistry,
    FacadeConfig,
    QueryDispatcher,
    UnknownSourceError,
    aresult,
    gather,
    wait_all,
)
from asyncdb.schema import MemorySchema


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def _config(latency: float = 0.0, **extra: object) -> FacadeConfig:
    return FacadeConfig.from_mapping(
        {
            **extra,
            "connections": {
                "default": {
                    "schema_identifier": "demo",
                    "dsn": "memory://",
                    "backend_options": {"latency": latency},
                },
                "archive": {
                    "schema_identifier": "demo",
                    "dsn": "memory://",
                    "backend_options": {"sources": ["User"]},
                },
            },
        }
    )


@pytest.fixture
def dispatcher() -> Iterator[QueryDispatcher]:
    with ConnectionRegistry(_config()) as registry:
        dispatcher = QueryDispatcher(registry)
        gather(*(dispatcher.create("User", {"name": name, "active": True}) for name in ("Alice", "Bob", "Charlie")))
        yield dispatcher


def test_update_and_delete_scenario() -> None:
    with ConnectionRegistry(_config()) as registry:
        dispatcher = QueryDispatcher(registry)
        for ident, name in ((1, "Alice"), (2, "Bob"), (3, "Charlie")):
            dispatcher.create("User", {"id": ident, "name": name}).result(timeout=1)

        assert dispatcher.count("User").result(timeout=1) == 3
        assert dispatcher.find("User", 1).result(timeout=1) == {"id": 1, "name": "Alice"}
        assert dispatcher.update("User", 1, {"name": "Alice2"}).result(timeout=1) == 1
        assert dispatcher.find("User", 1).result(timeout=1) == {"id": 1, "name": "Alice2"}
        assert dispatcher.delete("User", 2).result(timeout=1) == 1
        assert dispatcher.count("User").result(timeout=1) == 2


def test_count_resolves_to_row_total(dispatcher: QueryDispatcher) -> None:
    assert dispatcher.count("User").result(timeout=1) == 3
    assert dispatcher.count("Post").result(timeout=1) == 0


def test_find_returns_detached_record(dispatcher: QueryDispatcher) -> None:
    alice = dispatcher.search("User", {"name": "Alice"}).result(timeout=1)[0]

    record = dispatcher.find("User", alice["id"]).result(timeout=1)

    assert record == {"id": alice["id"], "name": "Alice", "active": True}
    record["name"] = "Mallory"
    assert dispatcher.find("User", alice["id"]).result(timeout=1)["name"] == "Alice"


def test_find_missing_resolves_to_none(dispatcher: QueryDispatcher) -> None:
    assert dispatcher.find("User", 999).result(timeout=1) is None


def test_search_returns_plain_dicts(dispatcher: QueryDispatcher) -> None:
    users = dispatcher.search("User", {"name": {"-like": "%li%"}}).result(timeout=1)

    assert sorted(user["name"] for user in users) == ["Alice", "Charlie"]
    assert all(type(user) is dict for user in users)
    assert dispatcher.search("User", {"name": "Nobody"}).result(timeout=1) == []


def test_search_without_condition_returns_everything(dispatcher: QueryDispatcher) -> None:
    assert len(dispatcher.search("User").result(timeout=1)) == 3


def test_search_accepts_swapped_arguments(dispatcher: QueryDispatcher) -> None:
    users = dispatcher.search("User", "default", {"name": "Bob"}).result(timeout=1)

    assert [user["name"] for user in users] == ["Bob"]


def test_update_by_id_and_by_condition(dispatcher: QueryDispatcher) -> None:
    bob = dispatcher.search("User", {"name": "Bob"}).result(timeout=1)[0]

    by_id = dispatcher.update("User", bob["id"], {"active": False}).result(timeout=1)
    by_condition = dispatcher.update("User", {"active": True}, {"name": "Active"}).result(timeout=1)

    assert by_id == 1
    assert by_condition == 2
    assert dispatcher.find("User", bob["id"]).result(timeout=1)["name"] == "Bob"


def test_update_without_matches_resolves_to_zero(dispatcher: QueryDispatcher) -> None:
    assert dispatcher.update("User", 999, {"active": False}).result(timeout=1) == 0


def test_delete_by_id_and_by_condition(dispatcher: QueryDispatcher) -> None:
    alice = dispatcher.search("User", {"name": "Alice"}).result(timeout=1)[0]

    assert dispatcher.delete("User", alice["id"]).result(timeout=1) == 1
    assert dispatcher.delete("User", {"name": ["Bob", "Charlie"]}).result(timeout=1) == 2
    assert dispatcher.count("User").result(timeout=1) == 0


def test_create_then_find_round_trip(dispatcher: QueryDispatcher) -> None:
    created = dispatcher.create("Post", {"uid": 1, "title": "Hello"}).result(timeout=1)

    assert created["title"] == "Hello"
    assert dispatcher.find("Post", created["id"]).result(timeout=1) == created


def test_named_connections_are_independent(dispatcher: QueryDispatcher) -> None:
    dispatcher.create("User", {"name": "Archived"}, "archive").result(timeout=1)

    assert dispatcher.count("User", "archive").result(timeout=1) == 1
    assert dispatcher.count("User").result(timeout=1) == 3


def test_unknown_connection_raises_before_returning_future(dispatcher: QueryDispatcher) -> None:
    with pytest.raises(ConfigurationError, match="missing"):
        dispatcher.count("User", "missing")


def test_unknown_source_raises_before_returning_future(dispatcher: QueryDispatcher) -> None:
    with pytest.raises(UnknownSourceError, match="Post"):
        dispatcher.search("Post", {"id": 1}, "archive")


def test_backend_failures_arrive_through_the_future(dispatcher: QueryDispatcher) -> None:
    duplicate = dispatcher.create("User", {"id": 1, "name": "Again"})
    bad_condition = dispatcher.search("User", {"name": {"-regexp": "A.*"}})

    futures = wait_all(duplicate, bad_condition, timeout=1)

    assert all(isinstance(future.exception(), BackendError) for future in futures)
    with pytest.raises(BackendError, match="Duplicate"):
        duplicate.result()


def test_unexpected_exceptions_are_wrapped(monkeypatch: pytest.MonkeyPatch, dispatcher: QueryDispatcher) -> None:
    async def _explode(self: MemorySchema, query: object) -> int:
        raise ZeroDivisionError("division by zero")

    monkeypatch.setattr(MemorySchema, "fetch_count", _explode)

    future = dispatcher.count("User")

    with pytest.raises(BackendError, match="count on 'User' failed") as excinfo:
        future.result(timeout=1)
    assert isinstance(excinfo.value.__cause__, ZeroDivisionError)


def test_db_returns_schema_handle(dispatcher: QueryDispatcher) -> None:
    schema = dispatcher.db()

    assert isinstance(schema, MemorySchema)
    assert dispatcher.db("default") is schema
    assert dispatcher.db("archive").sources() == ("User",)


def test_resultset_chains_and_returns_raw_rows(dispatcher: QueryDispatcher) -> None:
    resultset = dispatcher.resultset("User").search({"active": True}).order_by("-name").limit(2)

    rows = resultset.all().result(timeout=1)

    assert [row.get_column("name") for row in rows] == ["Charlie", "Bob"]
    assert resultset.count().result(timeout=1) == 2
    assert dispatcher.resultset("User").page(2, rows=2).all().result(timeout=1)[0].get_column("name")


def test_fan_out_overlaps_slow_queries() -> None:
    with ConnectionRegistry(_config(latency=0.3)) as registry:
        dispatcher = QueryDispatcher(registry)
        dispatcher.create("User", {"name": "Alice"}).result(timeout=2)

        started = time.perf_counter()
        users, total, missing = gather(
            dispatcher.search("User", {"name": "Alice"}),
            dispatcher.count("User"),
            dispatcher.find("User", 42),
            timeout=3,
        )
        elapsed = time.perf_counter() - started

    assert [user["name"] for user in users] == ["Alice"]
    assert total == 1
    assert missing is None
    assert elapsed < 0.8


def test_strict_dispatcher_rejects_ambiguous_calls() -> None:
    with ConnectionRegistry(_config(strict_arguments=True)) as registry:
        dispatcher = QueryDispatcher(registry)

        assert dispatcher.arguments.strict
        with pytest.raises(AmbiguousArgumentError):
            dispatcher.search("User", "default", {"name": "Bob"})


@pytest.mark.anyio
async def test_futures_can_be_awaited_from_async_code(dispatcher: QueryDispatcher) -> None:
    assert await aresult(dispatcher.count("User")) == 3


def test_empty_update_resolves_to_zero(dispatcher: QueryDispatcher) -> None:
    alice = dispatcher.search("User", {"name": "Alice"}).result(timeout=1)[0]

    assert dispatcher.update("User", alice["id"], {}).result(timeout=1) == 0
    assert dispatcher.update("User", {"active": True}, {}).result(timeout=1) == 0


def test_conversion_failures_arrive_as_backend_errors(
    monkeypatch: pytest.MonkeyPatch, dispatcher: QueryDispatcher
) -> None:
    async def _opaque(self: MemorySchema, query: object, ident: object) -> object:
        return object()

    monkeypatch.setattr(MemorySchema, "fetch_one", _opaque)

    future = dispatcher.find("User", 1)

    with pytest.raises(BackendError, match="find on 'User' returned an unusable result") as excinfo:
        future.result(timeout=1)
    assert isinstance(excinfo.value.__cause__, TypeError)
