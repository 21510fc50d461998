"""In-memory handles for individual records."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from schemawright.core.types import EntitySpec
from schemawright.exceptions import FieldNotFoundError, ObjectStateError


class HandleState(StrEnum):
    """Lifecycle of a handle: new -> persisted -> deleted."""

    NEW = "new"
    PERSISTED = "persisted"
    DELETED = "deleted"


class ObjectHandle:
    """One record of an entity, owned by the calling code.

    Values are read and written by column name, either as items
    (``post["title"]``) or attributes (``post.title``). Single-reference
    columns hold the target's primary key. Related objects are loaded through
    the store and cached on the handle until the reference changes.
    Column names never shadow the handle's own attributes; ``EntitySpec``
    rejects the names in ``RESERVED_NAMES``.

    Example:
        post = store.new("Post", title="hello", published=False)
        store.save(post)        # inserts and back-fills post.id
        post.title = "updated"  # marks the field dirty
        store.save(post)        # updates every field
        store.delete(post)      # post can no longer be written
    """

    __slots__ = ("_entity", "_values", "_dirty", "_state", "_related")

    def __init__(
        self,
        entity: EntitySpec,
        values: dict[str, Any] | None = None,
        state: HandleState = HandleState.NEW,
    ) -> None:
        object.__setattr__(self, "_entity", entity)
        object.__setattr__(self, "_values", dict.fromkeys(entity.column_names))
        object.__setattr__(self, "_dirty", set())
        object.__setattr__(self, "_state", state)
        object.__setattr__(self, "_related", {})
        for name, value in (values or {}).items():
            self._check_name(name)
            self._values[name] = value
            if state == HandleState.NEW:
                self._dirty.add(name)

    def _check_name(self, name: str) -> None:
        if name not in self._values:
            raise FieldNotFoundError(name, self._entity.name, self._entity.column_names)

    @property
    def entity(self) -> EntitySpec:
        return self._entity

    @property
    def entity_name(self) -> str:
        return self._entity.name

    @property
    def state(self) -> HandleState:
        return self._state

    @property
    def pk(self) -> Any:
        """Primary-key value, or None while an autogenerated key is pending."""
        return self._values[self._entity.pk.name]

    @property
    def pk_pending(self) -> bool:
        return self.pk is None and self._entity.pk.auto

    @property
    def dirty(self) -> frozenset[str]:
        """Fields assigned since the last save or load."""
        return frozenset(self._dirty)

    def values(self) -> dict[str, Any]:
        """Copy of all column values, in column order."""
        return dict(self._values)

    def ensure_writable(self) -> None:
        """Raise ObjectStateError if the handle was deleted."""
        if self._state == HandleState.DELETED:
            raise ObjectStateError(
                f"{self._entity.name} record {self.pk!r} was deleted and cannot be written.",
                {"entity_name": self._entity.name, "record_id": str(self.pk)},
            )

    def __getitem__(self, name: str) -> Any:
        self._check_name(name)
        return self._values[name]

    def __setitem__(self, name: str, value: Any) -> None:
        self.ensure_writable()
        self._check_name(name)
        if name == self._entity.pk.name and self._state == HandleState.PERSISTED:
            raise ObjectStateError(
                f"Cannot change the primary key of a saved {self._entity.name} record.",
                {"entity_name": self._entity.name, "field_name": name},
            )
        self._values[name] = value
        self._dirty.add(name)
        self._related.pop(name, None)

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        values = object.__getattribute__(self, "_values")
        if name not in values:
            raise AttributeError(
                f"'{self._entity.name}' has no field '{name}'. "
                f"Available fields: {', '.join(values)}"
            )
        return values[name]

    def __setattr__(self, name: str, value: Any) -> None:
        self[name] = value

    # === Store bookkeeping ===

    def _mark_persisted(self, values: dict[str, Any] | None = None) -> None:
        if values is not None:
            self._values.update(values)
        object.__setattr__(self, "_state", HandleState.PERSISTED)
        self._dirty.clear()

    def _mark_deleted(self) -> None:
        object.__setattr__(self, "_state", HandleState.DELETED)
        self._dirty.clear()
        self._related.clear()

    def _cached(self, name: str) -> tuple[bool, Any]:
        if name in self._related:
            return True, self._related[name]
        return False, None

    def _cache(self, name: str, value: Any) -> None:
        self._related[name] = value

    def _forget(self, name: str) -> None:
        self._related.pop(name, None)

    def __repr__(self) -> str:
        return f"<{self._entity.name} {self._state} pk={self.pk!r}>"
