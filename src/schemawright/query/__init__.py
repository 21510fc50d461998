"""Typed query expressions and their compilation to SQL."""

from schemawright.query.compiler import CompiledStatement, QueryCompiler, RowDecoder
from schemawright.query.expressions import (
    And,
    Compare,
    Expression,
    F,
    Field,
    InSet,
    Not,
    Operator,
    Or,
    OrderKey,
    Query,
    QueryPlan,
    Value,
)

__all__ = [
    "And",
    "Compare",
    "CompiledStatement",
    "Expression",
    "F",
    "Field",
    "InSet",
    "Not",
    "Operator",
    "Or",
    "OrderKey",
    "Query",
    "QueryCompiler",
    "QueryPlan",
    "RowDecoder",
    "Value",
]
