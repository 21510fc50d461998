"""Query compiler.

Compiles a ``QueryPlan`` against a ``SchemaSnapshot`` into a parameterized
SQLAlchemy ``Select`` for one backend, plus the positional decoder that turns
result rows back into field values.

Single-reference traversal becomes a join (LEFT OUTER when the reference is
nullable). Many-to-many traversal becomes a correlated EXISTS through the
join entity, so matching rows are never duplicated. Joins are emitted by
traversal depth, then path, so the same plan always yields the same SQL.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, false, literal, not_, or_, select
from sqlalchemy.sql import ColumnElement, FromClause, Select

from schemawright.backends.tables import SchemaTables
from schemawright.core.types import EntitySpec, ManyToMany, SchemaSnapshot, SingleReference
from schemawright.exceptions import CompileError, UnknownFieldError, UnsupportedExpressionError
from schemawright.query.expressions import (
    And,
    Compare,
    Expression,
    Field,
    InSet,
    Not,
    Operator,
    Or,
    QueryPlan,
    Value,
)

if TYPE_CHECKING:
    from sqlalchemy.engine import Row

    from schemawright.backends.base import Backend


@dataclass(frozen=True)
class RowDecoder:
    """Maps result columns, by position, to field paths."""

    labels: tuple[str, ...]

    def decode(self, row: Row[Any] | tuple[Any, ...]) -> dict[str, Any]:
        return dict(zip(self.labels, tuple(row), strict=True))


@dataclass(frozen=True)
class CompiledStatement:
    """A compiled query.

    Attributes:
        sql: Statement text with the backend's placeholders
        params: Bound values; a tuple in placeholder order for positional
            paramstyles, a dict for named ones
        statement: The SQLAlchemy ``Select`` to execute
        decoder: Positional row decoder
    """

    sql: str
    params: tuple[Any, ...] | dict[str, Any]
    statement: Select[Any]
    decoder: RowDecoder


@dataclass
class _Join:
    alias: FromClause
    onclause: ColumnElement[bool]
    outer: bool


class _Compilation:
    """State for compiling one plan."""

    def __init__(self, plan: QueryPlan, schema: SchemaSnapshot, tables: SchemaTables) -> None:
        if plan.entity not in schema.entities:
            raise CompileError(
                f"Unknown entity '{plan.entity}'. Available entities: {', '.join(schema.entities)}",
                {"entity_name": plan.entity, "available_entities": list(schema.entities)},
            )
        self.plan = plan
        self.schema = schema
        self.tables = tables
        self.root = schema.entities[plan.entity]
        self.root_table = tables.table(plan.entity)
        self.joins: dict[tuple[str, ...], _Join] = {}
        self.exists_count = 0

    # === Path resolution ===

    def _available(self, entity: EntitySpec) -> list[str]:
        return entity.column_names + [r.name for r in entity.many]

    def _walk(
        self,
        path: str,
        parts: tuple[str, ...],
        entity: EntitySpec,
        alias: FromClause,
        walked: tuple[str, ...] = (),
        outer: bool = False,
    ) -> tuple[EntitySpec, FromClause, tuple[str, ...], bool]:
        """Follow single references through ``parts``, adding joins."""
        for part in parts:
            rel = entity.get_relationship(part)
            if rel is None:
                raise UnknownFieldError(path, entity.name, self._available(entity))
            if isinstance(rel, ManyToMany):
                raise UnsupportedExpressionError(
                    f"Path '{path}' traverses many-to-many '{entity.name}.{part}' here; "
                    "only one many-to-many step is supported, in predicates.",
                    {"path": path},
                )
            walked = (*walked, part)
            outer = outer or rel.nullable
            alias = self._join(walked, alias, rel, outer)
            entity = self.schema.entities[rel.target]
        return entity, alias, walked, outer

    def _join(
        self, walked: tuple[str, ...], parent: FromClause, rel: SingleReference, outer: bool
    ) -> FromClause:
        if walked not in self.joins:
            target = self.schema.entities[rel.target]
            alias = self.tables.table(rel.target).alias("j_" + "__".join(walked))
            onclause = parent.c[rel.name] == alias.c[target.pk.name]
            self.joins[walked] = _Join(alias, onclause, outer)
        return self.joins[walked].alias

    def _column(self, entity: EntitySpec, alias: FromClause, path: str, name: str) -> Any:
        if name not in entity.column_names:
            raise UnknownFieldError(path, entity.name, self._available(entity))
        return alias.c[name]

    def resolve(self, field: Field) -> Any:
        """Column for a path that crosses only single references."""
        parts = field.parts
        entity, alias, _, _ = self._walk(field.path, parts[:-1], self.root, self.root_table)
        return self._column(entity, alias, field.path, parts[-1])

    def _many_split(self, field: Field) -> tuple[int, ManyToMany] | None:
        """Position and spec of the first many-to-many segment in a path, if any."""
        entity = self.root
        parts = field.parts
        for i, part in enumerate(parts):
            rel = entity.get_relationship(part)
            if isinstance(rel, ManyToMany):
                return i, rel
            if i == len(parts) - 1:
                return None
            if rel is None:
                raise UnknownFieldError(field.path, entity.name, self._available(entity))
            entity = self.schema.entities[rel.target]
        return None

    # === Predicates ===

    def predicate(self, node: Expression) -> ColumnElement[bool]:
        if isinstance(node, And):
            return and_(*(self.predicate(o) for o in node.operands))
        if isinstance(node, Or):
            return or_(*(self.predicate(o) for o in node.operands))
        if isinstance(node, Not):
            return not_(self.predicate(node.operand))
        if isinstance(node, Compare):
            return self._leaf(node, self._compare_field(node))
        if isinstance(node, InSet):
            return self._leaf(node, node.field)
        raise UnsupportedExpressionError(
            f"Cannot use {type(node).__name__} as a predicate.", {"node": repr(node)}
        )

    def _compare_field(self, node: Compare) -> Field:
        fields = [o for o in (node.left, node.right) if isinstance(o, Field)]
        if not fields:
            raise UnsupportedExpressionError(
                "A comparison needs at least one field reference.", {"node": repr(node)}
            )
        for other in fields[1:]:
            if self._many_split(other) is not None:
                raise UnsupportedExpressionError(
                    f"Field '{other.path}' crosses a many-to-many relationship and may only "
                    "appear on the left of a comparison.",
                    {"path": other.path},
                )
        return fields[0]

    def _leaf(self, node: Compare | InSet, field: Field) -> ColumnElement[bool]:
        split = self._many_split(field)
        if split is None:
            return self._condition(node, {field.path: self.resolve(field)})
        return self._exists(node, field, *split)

    def _exists(
        self, node: Compare | InSet, field: Field, index: int, rel: ManyToMany
    ) -> ColumnElement[bool]:
        parts = field.parts
        owner, owner_alias, walked, _ = self._walk(
            field.path, parts[:index], self.root, self.root_table
        )
        suffix = parts[index + 1 :]
        target = self.schema.entities[rel.target]
        nested = bool(suffix) and isinstance(target.get_relationship(suffix[0]), ManyToMany)
        if len(suffix) > 1 or nested:
            raise UnsupportedExpressionError(
                f"Path '{field.path}' continues past many-to-many '{owner.name}.{rel.name}'; "
                "only a field of its target can follow.",
                {"path": field.path},
            )

        self.exists_count += 1
        name = "__".join((*walked, rel.name))
        link = self.tables.join_table(owner.name, rel.name).alias(f"m_{name}_{self.exists_count}")
        source: FromClause = link
        if suffix:
            target_alias = self.tables.table(rel.target).alias(f"t_{name}_{self.exists_count}")
            column = self._column(target, target_alias, field.path, suffix[0])
            source = link.join(target_alias, link.c.has == target_alias.c[target.pk.name])
        else:
            column = link.c.has

        condition = self._condition(node, {field.path: column})
        subquery = (
            select(link.c.owner)
            .select_from(source)
            .where(link.c.owner == owner_alias.c[owner.pk.name], condition)
        )
        return subquery.exists()

    def _condition(
        self, node: Compare | InSet, columns: dict[str, Any]
    ) -> ColumnElement[bool]:
        def column_for(field: Field) -> Any:
            return columns[field.path] if field.path in columns else self.resolve(field)

        if isinstance(node, InSet):
            column = column_for(node.field)
            if not node.values:
                return false()
            return column.in_([literal(v, column.type) for v in node.values])

        if isinstance(node.left, Field):
            column, other, op = column_for(node.left), node.right, node.op
        else:
            assert isinstance(node.right, Field)
            column, other, op = column_for(node.right), node.left, _MIRRORED[node.op]

        if isinstance(other, Field):
            return _apply(op, column, column_for(other))
        if not isinstance(other, Value):
            raise UnsupportedExpressionError(
                f"Cannot compare with {type(other).__name__}.", {"node": repr(other)}
            )
        if other.value is None:
            if op == Operator.EQ:
                return column.is_(None)
            if op == Operator.NE:
                return column.is_not(None)
            raise UnsupportedExpressionError(
                f"Operator {op} cannot compare with None.", {"op": str(op)}
            )
        return _apply(op, column, literal(other.value, column.type))

    # === Statement ===

    def statement(self) -> tuple[Select[Any], RowDecoder]:
        plan = self.plan
        labels: list[str] = []
        columns: list[Any] = []

        if plan.projections:
            for path in plan.projections:
                column = self.resolve(Field(path))
                columns.append(column if "." not in path else column.label(path.replace(".", "__")))
                labels.append(path)
        else:
            for name in self.root.column_names:
                columns.append(self.root_table.c[name])
                labels.append(name)

        for path in plan.joins:
            self._walk(path, tuple(path.split(".")), self.root, self.root_table)

        where = self.predicate(plan.predicate) if plan.predicate is not None else None

        order = []
        for key in plan.ordering:
            if self._many_split(key.field) is not None:
                raise UnsupportedExpressionError(
                    f"Cannot order by '{key.field.path}': it crosses a many-to-many relationship.",
                    {"path": key.field.path},
                )
            column = self.resolve(key.field)
            order.append(column.desc() if key.descending else column.asc())

        source: FromClause = self.root_table
        for walked in sorted(self.joins, key=lambda w: (len(w), w)):
            join = self.joins[walked]
            source = source.join(join.alias, join.onclause, isouter=join.outer)

        stmt = select(*columns).select_from(source)
        if where is not None:
            stmt = stmt.where(where)
        if order:
            stmt = stmt.order_by(*order)
        if plan.limit is not None:
            stmt = stmt.limit(plan.limit)
        if plan.offset is not None:
            stmt = stmt.offset(plan.offset)
        return stmt, RowDecoder(tuple(labels))


_MIRRORED = {
    Operator.EQ: Operator.EQ,
    Operator.NE: Operator.NE,
    Operator.LT: Operator.GT,
    Operator.LE: Operator.GE,
    Operator.GT: Operator.LT,
    Operator.GE: Operator.LE,
}


def _apply(op: Operator, left: Any, right: Any) -> ColumnElement[bool]:
    if op == Operator.EQ:
        return left == right
    if op == Operator.NE:
        return left != right
    if op == Operator.LT:
        return left < right
    if op == Operator.LE:
        return left <= right
    if op == Operator.GT:
        return left > right
    return left >= right


class QueryCompiler:
    """Compiles query plans for one backend."""

    def __init__(self, backend: Backend) -> None:
        self.backend = backend

    def compile(self, plan: QueryPlan, schema: SchemaSnapshot) -> CompiledStatement:
        """Compile ``plan`` against ``schema``.

        Raises:
            UnknownFieldError: If a field path does not resolve
            UnsupportedExpressionError: If the plan uses an unsupported construct
            CompileError: If the root entity is unknown
        """
        compilation = _Compilation(plan, schema, SchemaTables(schema, self.backend))
        statement, decoder = compilation.statement()
        return self._finish(statement, decoder)

    def compile_related(
        self, schema: SchemaSnapshot, entity_name: str, relationship_name: str, owner_pk: Any
    ) -> CompiledStatement:
        """Compile the join query listing the targets of one owner's many-to-many.

        Targets come back with the target entity's columns, ordered by primary key.

        Raises:
            UnknownFieldError: If the entity has no such many-to-many relationship
        """
        entity = schema.entity(entity_name)
        rel = entity.get_relationship(relationship_name)
        if not isinstance(rel, ManyToMany):
            raise UnknownFieldError(
                relationship_name, entity_name, [r.name for r in entity.many]
            )
        tables = SchemaTables(schema, self.backend)
        target = schema.entities[rel.target]
        target_table = tables.table(rel.target)
        link = tables.join_table(entity_name, rel.name)
        pk = target_table.c[target.pk.name]

        statement = (
            select(*(target_table.c[name] for name in target.column_names))
            .select_from(target_table.join(link, link.c.has == pk))
            .where(link.c.owner == literal(owner_pk, link.c.owner.type))
            .order_by(pk)
        )
        return self._finish(statement, RowDecoder(tuple(target.column_names)))

    def _finish(self, statement: Select[Any], decoder: RowDecoder) -> CompiledStatement:
        compiled = statement.compile(dialect=self.backend.dialect)
        params: tuple[Any, ...] | dict[str, Any]
        if compiled.positional and compiled.positiontup is not None:
            params = tuple(compiled.params[name] for name in compiled.positiontup)
        else:
            params = dict(compiled.params)
        return CompiledStatement(str(compiled), params, statement, decoder)
