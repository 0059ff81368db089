"""Tests for condition parsing and evaluation."""

from __future__ import annotations

import pytest
from sqlalchemy import Column, Integer, MetaData, String, Table

from asyncdb.conditions import (
    MATCH_ALL,
    Comparison,
    ConditionError,
    Junction,
    combine,
    matches,
    parse,
    to_clause,
)
from asyncdb.errors import BackendError

USERS = Table(
    "users",
    MetaData(),
    Column("id", Integer, primary_key=True),
    Column("name", String),
    Column("age", Integer),
)

ALICE = {"id": 1, "name": "Alice", "age": 31, "role": "admin"}
BOB = {"id": 2, "name": "Bob", "age": None, "role": "user"}


def test_parse_mapping_is_conjunction() -> None:
    node = parse({"name": "Alice", "id": [1, 2]})

    assert node == Junction(
        "and",
        (Comparison("name", "=", "Alice"), Comparison("id", "-in", (1, 2))),
    )


def test_parse_none_matches_everything() -> None:
    assert parse(None) is MATCH_ALL
    assert matches(BOB, MATCH_ALL)


def test_list_condition_is_disjunction() -> None:
    node = parse([{"name": "Alice"}, {"name": "Bob"}])

    assert node.kind == "or"
    assert matches(ALICE, node)
    assert matches(BOB, node)
    assert not matches({"name": "Charlie"}, node)


def test_operator_mappings() -> None:
    assert matches(ALICE, parse({"age": {">": 30, "<=": 31}}))
    assert not matches(BOB, parse({"age": {">": 30}}))
    assert matches(ALICE, parse({"name": {"-like": "A%"}}))
    assert matches(ALICE, parse({"name": {"-ilike": "a_ice"}}))
    assert matches(BOB, parse({"name": {"-not_in": ["Alice"]}}))
    assert matches(ALICE, parse({"age": {"-between": [30, 40]}}))
    assert matches(BOB, parse({"age": None}))
    assert matches(ALICE, parse({"age": {"!=": None}}))


def test_explicit_or_and_junctions() -> None:
    node = parse({"-or": [{"role": "admin"}, {"age": {">": 50}}], "id": {"<": 5}})

    assert matches(ALICE, node)
    assert not matches(BOB, node)


def test_combine_ands_chained_conditions() -> None:
    node = combine(({"role": "admin"}, {"name": "Bob"}))

    assert not matches(ALICE, node)
    assert combine(({"id": 1},)) == parse({"id": 1})


def test_unsupported_operator_is_a_backend_error() -> None:
    with pytest.raises(ConditionError, match="-regexp"):
        parse({"name": {"-regexp": ".*"}})
    assert issubclass(ConditionError, BackendError)


def test_set_operator_requires_a_list() -> None:
    with pytest.raises(ConditionError):
        parse({"id": {"-in": 3}})


def test_to_clause_renders_sql() -> None:
    clause = to_clause(USERS.c, parse({"name": {"-like": "A%"}, "id": [1, 2], "age": None}))
    sql = str(clause.compile(compile_kwargs={"literal_binds": True}))

    assert "users.name LIKE 'A%'" in sql
    assert "users.id IN (1, 2)" in sql
    assert "users.age IS NULL" in sql


def test_to_clause_rejects_unknown_columns() -> None:
    with pytest.raises(ConditionError, match="email"):
        to_clause(USERS.c, parse({"email": "x"}))
