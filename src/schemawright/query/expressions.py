"""Typed query expressions and immutable query plans.

Expressions are built with operators on field references:

    from schemawright.query import F, Query

    plan = (
        Query("Post")
        .where((F("published") == True) & (F("blog.name") != "drafts"))
        .where(F("tags.label").in_(["python", "sql"]))
        .order_by("-id")
        .paginate(limit=10)
    )

A dotted path walks relationships: ``blog.name`` follows the single
reference ``blog`` of ``Post`` to the ``name`` field of ``Blog``.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace
from enum import StrEnum
from typing import Any


class Operator(StrEnum):
    """Comparison operators."""

    EQ = "="
    NE = "!="
    LT = "<"
    LE = "<="
    GT = ">"
    GE = ">="


@dataclass(frozen=True, eq=False)
class Expression:
    """Base of all expression nodes. ``&``, ``|`` and ``~`` combine predicates."""

    def __and__(self, other: Expression) -> And:
        return And((self, other))

    def __or__(self, other: Expression) -> Or:
        return Or((self, other))

    def __invert__(self) -> Not:
        return Not(self)


def _operand(value: Any) -> Expression:
    return value if isinstance(value, Expression) else Value(value)


@dataclass(frozen=True, eq=False)
class Field(Expression):
    """Reference to a field, possibly through relationships (``"blog.name"``)."""

    path: str

    @property
    def parts(self) -> tuple[str, ...]:
        return tuple(self.path.split("."))

    def __hash__(self) -> int:
        return hash(("field", self.path))

    def __eq__(self, other: Any) -> Compare:  # type: ignore[override]
        return Compare(self, Operator.EQ, _operand(other))

    def __ne__(self, other: Any) -> Compare:  # type: ignore[override]
        return Compare(self, Operator.NE, _operand(other))

    def __lt__(self, other: Any) -> Compare:
        return Compare(self, Operator.LT, _operand(other))

    def __le__(self, other: Any) -> Compare:
        return Compare(self, Operator.LE, _operand(other))

    def __gt__(self, other: Any) -> Compare:
        return Compare(self, Operator.GT, _operand(other))

    def __ge__(self, other: Any) -> Compare:
        return Compare(self, Operator.GE, _operand(other))

    def in_(self, values: Iterable[Any]) -> InSet:
        """Membership test against a finite set of values."""
        return InSet(self, tuple(values))

    def is_null(self) -> Compare:
        return Compare(self, Operator.EQ, Value(None))

    def is_not_null(self) -> Compare:
        return Compare(self, Operator.NE, Value(None))

    def asc(self) -> OrderKey:
        return OrderKey(self)

    def desc(self) -> OrderKey:
        return OrderKey(self, descending=True)


def F(path: str) -> Field:
    """Shorthand for ``Field(path)``."""
    return Field(path)


@dataclass(frozen=True, eq=False)
class Value(Expression):
    """A literal, always sent as a bound parameter."""

    value: Any


@dataclass(frozen=True, eq=False)
class Compare(Expression):
    """Binary comparison. Comparing with ``None`` means IS [NOT] NULL."""

    left: Expression
    op: Operator
    right: Expression


@dataclass(frozen=True, eq=False)
class And(Expression):
    operands: tuple[Expression, ...]

    def __and__(self, other: Expression) -> And:
        return And((*self.operands, other))


@dataclass(frozen=True, eq=False)
class Or(Expression):
    operands: tuple[Expression, ...]

    def __or__(self, other: Expression) -> Or:
        return Or((*self.operands, other))


@dataclass(frozen=True, eq=False)
class Not(Expression):
    operand: Expression


@dataclass(frozen=True, eq=False)
class InSet(Expression):
    """``field IN (v1, v2, ...)``. An empty set matches nothing."""

    field: Field
    values: tuple[Any, ...]


@dataclass(frozen=True)
class OrderKey:
    field: Field
    descending: bool = False

    @classmethod
    def parse(cls, key: OrderKey | Field | str) -> OrderKey:
        """Accept an OrderKey, a Field, or a path with an optional ``-`` prefix for descending."""
        if isinstance(key, OrderKey):
            return key
        if isinstance(key, Field):
            return cls(key)
        if key.startswith("-"):
            return cls(Field(key[1:]), descending=True)
        return cls(Field(key))


@dataclass(frozen=True)
class QueryPlan:
    """Backend-neutral description of one query. Builder methods return new plans."""

    entity: str
    predicate: Expression | None = None
    projections: tuple[str, ...] = ()  # field paths; empty means the root entity's columns
    joins: tuple[str, ...] = ()  # extra single-reference paths to join
    ordering: tuple[OrderKey, ...] = ()
    limit: int | None = None
    offset: int | None = None

    def where(self, *predicates: Expression) -> QueryPlan:
        """Add predicates, combined with AND."""
        combined = self.predicate
        for predicate in predicates:
            combined = predicate if combined is None else combined & predicate
        return replace(self, predicate=combined)

    def select(self, *paths: str) -> QueryPlan:
        """Project specific field paths instead of the root entity's columns."""
        return replace(self, projections=tuple(paths))

    def join(self, *paths: str) -> QueryPlan:
        """Join single-reference paths even when no predicate uses them."""
        return replace(self, joins=(*self.joins, *paths))

    def order_by(self, *keys: OrderKey | Field | str) -> QueryPlan:
        return replace(self, ordering=(*self.ordering, *(OrderKey.parse(k) for k in keys)))

    def paginate(self, limit: int | None = None, offset: int | None = None) -> QueryPlan:
        return replace(self, limit=limit, offset=offset)


def Query(entity: str) -> QueryPlan:
    """Start a plan over ``entity``."""
    return QueryPlan(entity)
