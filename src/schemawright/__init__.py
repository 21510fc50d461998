"""Schemawright - declarative schemas, automatic migrations and typed queries.

Describe entities once, let Schemawright diff the description against what the
database already holds, apply the difference as a recorded migration, then
load, save and query records through a typed expression language. SQLite and
PostgreSQL are supported, each in blocking and async modes.

Example:
    from schemawright import (
        Database, EntitySpec, FieldSpec, Migrator, ObjectStore, Query, F, SchemaSnapshot,
    )

    schema = SchemaSnapshot.build([
        EntitySpec(
            name="Post",
            fields=(
                FieldSpec(name="id", type="bigint", primary_key=True, auto=True),
                FieldSpec(name="title"),
                FieldSpec(name="published", type="bool", default=False),
            ),
        ),
    ])

    db = Database("sqlite:///app.db")
    Migrator(desired=schema).apply_pending(db)

    store = ObjectStore(db, schema)
    post = store.new("Post", title="hello")
    store.save(post)
    drafts = store.find(Query("Post").where(F("published") == False))
"""

from schemawright.backends import Backend, PostgresBackend, SqliteBackend, get_backend
from schemawright.core.config import BackendConfig, BackendKind
from schemawright.core.database import (
    AsyncDatabase,
    AsyncTransaction,
    Database,
    RowStream,
    Transaction,
)
from schemawright.core.types import (
    EntitySpec,
    FieldSpec,
    FieldType,
    ManyToMany,
    RelationshipKind,
    RelationshipSpec,
    SchemaSnapshot,
    SingleReference,
)
from schemawright.data import AsyncObjectStore, HandleState, ObjectHandle, ObjectStore
from schemawright.exceptions import (
    AcquireTimeoutError,
    BackendError,
    CompileError,
    ConfigError,
    ConnectionError,
    ConstraintViolationError,
    CyclicDependencyError,
    DiffError,
    DuplicateNameError,
    EntityNotFoundError,
    FieldNotFoundError,
    ForeignKeyViolationError,
    InvalidPrimaryKeyError,
    MigrationApplyError,
    MigrationError,
    MigrationHistoryError,
    ObjectStateError,
    PoolError,
    RecordNotFoundError,
    SchemaError,
    SchemawrightError,
    TypeChangeUnsupportedError,
    UnknownFieldError,
    UnresolvedReferenceError,
    UnsupportedExpressionError,
)
from schemawright.query import (
    And,
    Compare,
    CompiledStatement,
    F,
    Field,
    InSet,
    Not,
    Or,
    Query,
    QueryCompiler,
    QueryPlan,
    Value,
)
from schemawright.schema import (
    AddField,
    AddRelationship,
    AlterField,
    AlterRelationship,
    CreateEntity,
    DropEntity,
    MigrationStep,
    RemoveField,
    RemoveRelationship,
    diff,
)
from schemawright.schema.migrations import (
    MigrationBatch,
    MigrationRecord,
    MigrationState,
    MigrationStatus,
    Migrator,
    load_batches,
    load_schema,
    save_batches,
)

__version__ = "0.1.0"

__all__ = [
    # Database access
    "Database",
    "AsyncDatabase",
    "Transaction",
    "AsyncTransaction",
    "RowStream",
    "BackendConfig",
    "BackendKind",
    "Backend",
    "SqliteBackend",
    "PostgresBackend",
    "get_backend",
    # Schema model
    "FieldType",
    "FieldSpec",
    "EntitySpec",
    "RelationshipKind",
    "RelationshipSpec",
    "SingleReference",
    "ManyToMany",
    "SchemaSnapshot",
    # Migrations
    "diff",
    "MigrationStep",
    "CreateEntity",
    "DropEntity",
    "AddField",
    "RemoveField",
    "AlterField",
    "AddRelationship",
    "RemoveRelationship",
    "AlterRelationship",
    "MigrationBatch",
    "MigrationRecord",
    "MigrationState",
    "MigrationStatus",
    "Migrator",
    "load_batches",
    "load_schema",
    "save_batches",
    # Queries
    "F",
    "Field",
    "Value",
    "Compare",
    "And",
    "Or",
    "Not",
    "InSet",
    "Query",
    "QueryPlan",
    "QueryCompiler",
    "CompiledStatement",
    # Records
    "ObjectStore",
    "AsyncObjectStore",
    "ObjectHandle",
    "HandleState",
    # Exceptions
    "SchemawrightError",
    "ConfigError",
    "SchemaError",
    "EntityNotFoundError",
    "FieldNotFoundError",
    "DuplicateNameError",
    "InvalidPrimaryKeyError",
    "UnresolvedReferenceError",
    "DiffError",
    "CyclicDependencyError",
    "TypeChangeUnsupportedError",
    "MigrationError",
    "MigrationApplyError",
    "MigrationHistoryError",
    "CompileError",
    "UnknownFieldError",
    "UnsupportedExpressionError",
    "BackendError",
    "ConnectionError",
    "ConstraintViolationError",
    "ForeignKeyViolationError",
    "PoolError",
    "AcquireTimeoutError",
    "ObjectStateError",
    "RecordNotFoundError",
]
