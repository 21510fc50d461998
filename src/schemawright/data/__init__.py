"""Record persistence for Schemawright."""

from schemawright.data.handle import HandleState, ObjectHandle
from schemawright.data.store import AsyncObjectStore, ObjectStore

__all__ = ["AsyncObjectStore", "HandleState", "ObjectHandle", "ObjectStore"]
