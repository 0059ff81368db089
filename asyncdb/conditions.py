"""Condition mappings and their SQL / in-memory renderings.

Conditions use the familiar hash syntax::

    {"active": True, "name": {"-like": "A%"}}      # AND across keys
    {"id": [1, 2, 3]}                               # IN
    {"deleted_at": None}                            # IS NULL
    {"-or": [{"role": "admin"}, {"owner": True}]}   # OR of sub-conditions
    [{"a": 1}, {"b": 2}]                            # a list is an OR too
"""

from __future__ import annotations

import operator
import re
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Union

from sqlalchemy import and_, false, or_, true
from sqlalchemy.sql.elements import ColumnElement

from .errors import BackendError


class ConditionError(BackendError):
    """Raised when a condition cannot be interpreted."""


@dataclass(frozen=True, slots=True)
class Comparison:
    column: str
    op: str
    value: Any


@dataclass(frozen=True, slots=True)
class Junction:
    kind: str
    parts: tuple[Node, ...]


Node = Union[Comparison, Junction]

MATCH_ALL = Junction("and", ())

_ALIASES = {"==": "=", "<>": "!=", "-nin": "-not_in"}

_SET_OPERATORS = {"-in", "-not_in"}


def parse(condition: object) -> Node:
    """Parse a condition into a tree of comparisons."""

    if condition is None:
        return MATCH_ALL
    if isinstance(condition, Junction | Comparison):
        return condition
    if isinstance(condition, Mapping):
        parts: list[Node] = []
        for key, value in condition.items():
            key = str(key)
            if key in ("-or", "-and"):
                parts.append(_junction(key[1:], value))
            elif isinstance(value, Mapping):
                for op, operand in value.items():
                    parts.append(_comparison(key, str(op), operand))
            elif isinstance(value, (list, tuple, set, frozenset)):
                parts.append(Comparison(key, "-in", tuple(value)))
            else:
                parts.append(Comparison(key, "=", value))
        return Junction("and", tuple(parts))
    if isinstance(condition, (list, tuple)):
        return Junction("or", tuple(parse(item) for item in condition))
    raise ConditionError(f"Unsupported condition {condition!r}")


def combine(conditions: tuple[object, ...]) -> Node:
    """AND together conditions accumulated by chained searches."""

    nodes = tuple(parse(condition) for condition in conditions)
    if len(nodes) == 1:
        return nodes[0]
    return Junction("and", nodes)


def to_clause(columns: Mapping[str, ColumnElement[Any]], node: Node) -> ColumnElement[bool]:
    """Render a parsed condition against a mapper's column collection."""

    if isinstance(node, Comparison):
        try:
            column = columns[node.column]
        except KeyError:
            raise ConditionError(f"Unknown column '{node.column}'") from None
        return _CLAUSES[node.op](column, node.value)
    clauses = [to_clause(columns, part) for part in node.parts]
    if node.kind == "or":
        return or_(*clauses) if clauses else false()
    return and_(*clauses) if clauses else true()


def matches(record: Mapping[str, Any], node: Node) -> bool:
    """Evaluate a parsed condition against a plain record."""

    if isinstance(node, Comparison):
        return _PREDICATES[node.op](record.get(node.column), node.value)
    results = (matches(record, part) for part in node.parts)
    if node.kind == "or":
        return any(results)
    return all(results)


def _junction(kind: str, value: object) -> Junction:
    if isinstance(value, Mapping):
        items = [{key: item} for key, item in value.items()]
    elif isinstance(value, (list, tuple)):
        items = list(value)
    else:
        raise ConditionError(f"'-{kind}' expects a list or mapping of conditions")
    return Junction(kind, tuple(parse(item) for item in items))


def _comparison(column: str, op: str, operand: object) -> Comparison:
    name = op.lower()
    name = _ALIASES.get(name, name)
    if name not in _CLAUSES:
        raise ConditionError(f"Unsupported operator '{op}' on column '{column}'")
    if name in _SET_OPERATORS:
        if not isinstance(operand, (list, tuple, set, frozenset)):
            raise ConditionError(f"'{op}' on column '{column}' expects a list of values")
        operand = tuple(operand)
    if name == "-between":
        if not isinstance(operand, (list, tuple)) or len(operand) != 2:
            raise ConditionError(f"'-between' on column '{column}' expects two bounds")
        operand = tuple(operand)
    return Comparison(column, name, operand)


def _like_pattern(pattern: str, *, ignore_case: bool) -> re.Pattern[str]:
    parts: list[str] = []
    for char in pattern:
        if char == "%":
            parts.append(".*")
        elif char == "_":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    flags = re.DOTALL | (re.IGNORECASE if ignore_case else 0)
    return re.compile("".join(parts), flags)


def _like(value: Any, pattern: Any, *, ignore_case: bool = False) -> bool:
    if value is None or pattern is None:
        return False
    return _like_pattern(str(pattern), ignore_case=ignore_case).fullmatch(str(value)) is not None


def _ordered(compare: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    def _check(value: Any, operand: Any) -> bool:
        if value is None or operand is None:
            return False
        return compare(value, operand)

    return _check


_CLAUSES: dict[str, Callable[[Any, Any], ColumnElement[bool]]] = {
    "=": lambda column, value: column.is_(None) if value is None else column == value,
    "!=": lambda column, value: column.is_not(None) if value is None else column != value,
    "<": lambda column, value: column < value,
    "<=": lambda column, value: column <= value,
    ">": lambda column, value: column > value,
    ">=": lambda column, value: column >= value,
    "-like": lambda column, value: column.like(value),
    "-not_like": lambda column, value: column.not_like(value),
    "-ilike": lambda column, value: column.ilike(value),
    "-in": lambda column, value: column.in_(list(value)),
    "-not_in": lambda column, value: column.not_in(list(value)),
    "-between": lambda column, value: column.between(value[0], value[1]),
}

_PREDICATES: dict[str, Callable[[Any, Any], bool]] = {
    "=": lambda value, operand: value is None if operand is None else value == operand,
    "!=": lambda value, operand: value is not None if operand is None else value != operand,
    "<": _ordered(operator.lt),
    "<=": _ordered(operator.le),
    ">": _ordered(operator.gt),
    ">=": _ordered(operator.ge),
    "-like": _like,
    "-not_like": lambda value, operand: value is not None and not _like(value, operand),
    "-ilike": lambda value, operand: _like(value, operand, ignore_case=True),
    "-in": lambda value, operand: value in operand,
    "-not_in": lambda value, operand: value is not None and value not in operand,
    "-between": lambda value, operand: value is not None and operand[0] <= value <= operand[1],
}


__all__ = [
    "Comparison",
    "ConditionError",
    "Junction",
    "MATCH_ALL",
    "Node",
    "combine",
    "matches",
    "parse",
    "to_clause",
]
