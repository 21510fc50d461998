"""Custom exceptions for Schemawright.

Every error carries a human-readable message plus a ``context`` dict so callers
(and the CLI's ``--json`` mode) can inspect what went wrong without parsing text.
"""

from __future__ import annotations

from typing import Any


class SchemawrightError(Exception):
    """Base exception for all Schemawright errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        """Return error as JSON-serializable dict."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
        }


class ConfigError(SchemawrightError):
    """Backend configuration is invalid."""

    pass


# === Schema errors: invalid model description, raised before any database contact ===


class SchemaError(SchemawrightError):
    """The model description is invalid."""

    pass


class EntityNotFoundError(SchemaError):
    """Entity does not exist in the schema snapshot."""

    def __init__(self, entity_name: str, available_entities: list[str] | None = None) -> None:
        available = available_entities or []
        if available:
            message = (
                f"Entity '{entity_name}' not found. Available entities: {', '.join(available)}"
            )
        else:
            message = f"Entity '{entity_name}' not found. The schema has no entities."

        super().__init__(message, {"entity_name": entity_name, "available_entities": available})
        self.entity_name = entity_name
        self.available_entities = available


class FieldNotFoundError(SchemaError):
    """Field does not exist on entity."""

    def __init__(
        self, field_name: str, entity_name: str, available_fields: list[str] | None = None
    ) -> None:
        available = available_fields or []
        if available:
            message = (
                f"Field '{field_name}' not found on '{entity_name}'. "
                f"Available fields: {', '.join(available)}"
            )
        else:
            message = f"Field '{field_name}' not found on '{entity_name}'. No fields defined."

        super().__init__(
            message,
            {
                "field_name": field_name,
                "entity_name": entity_name,
                "available_fields": available,
            },
        )
        self.field_name = field_name
        self.entity_name = entity_name
        self.available_fields = available


class DuplicateNameError(SchemaError):
    """A name is declared twice where it must be unique."""

    def __init__(self, name: str, scope: str) -> None:
        message = f"Name '{name}' is declared more than once in {scope}."
        super().__init__(message, {"name": name, "scope": scope})
        self.name = name
        self.scope = scope


class InvalidPrimaryKeyError(SchemaError):
    """Entity does not declare exactly one valid primary key."""

    def __init__(self, entity_name: str, reason: str) -> None:
        message = f"Invalid primary key on '{entity_name}': {reason}"
        super().__init__(message, {"entity_name": entity_name, "reason": reason})
        self.entity_name = entity_name
        self.reason = reason


class UnresolvedReferenceError(SchemaError):
    """A relationship targets an entity that is not part of the snapshot."""

    def __init__(self, entity_name: str, relationship_name: str, target: str) -> None:
        message = (
            f"Relationship '{entity_name}.{relationship_name}' targets unknown entity '{target}'. "
            "Declare the target entity in the same schema."
        )
        super().__init__(
            message,
            {"entity_name": entity_name, "relationship_name": relationship_name, "target": target},
        )
        self.entity_name = entity_name
        self.relationship_name = relationship_name
        self.target = target


# === Diff errors: the migration attempt is abandoned, database untouched ===


class DiffError(SchemawrightError):
    """Two snapshots cannot be turned into a migration."""

    pass


class CyclicDependencyError(DiffError):
    """Foreign-key references among entities form a cycle."""

    def __init__(self, entity_path: list[str]) -> None:
        path_str = " -> ".join(entity_path)
        message = (
            f"Cyclic foreign-key dependency: {path_str}. "
            "Make one of the references nullable and add it in a later migration."
        )
        super().__init__(message, {"entity_path": entity_path})
        self.entity_path = entity_path


class TypeChangeUnsupportedError(DiffError):
    """A field changed in a way no backend can migrate."""

    def __init__(self, entity_name: str, field_name: str, old: str, new: str) -> None:
        message = (
            f"Cannot migrate '{entity_name}.{field_name}' from {old} to {new}. "
            "Add a new field instead and copy the data."
        )
        super().__init__(
            message,
            {"entity_name": entity_name, "field_name": field_name, "old": old, "new": new},
        )
        self.entity_name = entity_name
        self.field_name = field_name
        self.old = old
        self.new = new


# === Migration errors ===


class MigrationError(SchemawrightError):
    """Migration application failed."""

    pass


class MigrationApplyError(MigrationError):
    """A step of a migration batch failed; the batch was rolled back."""

    def __init__(self, version: int, step_index: int, cause: BaseException) -> None:
        message = (
            f"Migration {version} failed at step {step_index}: {cause}. "
            "The batch was rolled back and remaining migrations were not applied."
        )
        super().__init__(
            message,
            {"version": version, "step_index": step_index, "cause": str(cause)},
        )
        self.version = version
        self.step_index = step_index
        self.cause = cause


class MigrationHistoryError(MigrationError):
    """Recorded migration history does not match the supplied migrations."""

    pass


# === Compile errors: no database contact made ===


class CompileError(SchemawrightError):
    """A query plan cannot be compiled."""

    pass


class UnknownFieldError(CompileError):
    """A field reference does not resolve against the schema."""

    def __init__(self, path: str, entity_name: str, available: list[str]) -> None:
        message = (
            f"Unknown field '{path}' on '{entity_name}'. Available: {', '.join(available)}"
            if available
            else f"Unknown field '{path}' on '{entity_name}'."
        )
        super().__init__(
            message, {"path": path, "entity_name": entity_name, "available": available}
        )
        self.path = path
        self.entity_name = entity_name
        self.available = available


class UnsupportedExpressionError(CompileError):
    """Expression node or combination the compiler does not handle."""

    pass


# === Backend errors: surfaced verbatim with backend identity, never retried ===


class BackendError(SchemawrightError):
    """The database rejected an operation."""

    def __init__(self, message: str, backend: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message, {"backend": backend, **(context or {})})
        self.backend = backend


class ConnectionError(BackendError):
    """Failed to connect to the database."""

    pass


class ConstraintViolationError(BackendError):
    """A NOT NULL, UNIQUE or CHECK constraint rejected a write."""

    pass


class ForeignKeyViolationError(ConstraintViolationError):
    """A write or delete would break a foreign-key reference."""

    pass


class PoolError(SchemawrightError):
    """Connection pool problem."""

    pass


class AcquireTimeoutError(PoolError):
    """No pooled connection became available in time. Safe to retry."""

    def __init__(self, timeout: float) -> None:
        message = (
            f"Timed out after {timeout}s waiting for a pooled connection. "
            "Retry later or raise pool_max_size."
        )
        super().__init__(message, {"timeout": timeout})
        self.timeout = timeout


# === Object persistence errors ===


class ObjectStateError(SchemawrightError):
    """Operation not allowed in the handle's current lifecycle state."""

    pass


class RecordNotFoundError(SchemawrightError):
    """Record with given primary key does not exist."""

    def __init__(self, record_id: Any, entity_name: str) -> None:
        message = f"Record '{record_id}' not found in '{entity_name}'."
        super().__init__(message, {"record_id": str(record_id), "entity_name": entity_name})
        self.record_id = record_id
        self.entity_name = entity_name
