"""Schema evolution for Schemawright: migration steps, diffing and history."""

from schemawright.schema.differ import diff
from schemawright.schema.models import HISTORY_TABLE, MigrationHistory
from schemawright.schema.steps import (
    AddField,
    AddRelationship,
    AlterField,
    AlterRelationship,
    CreateEntity,
    DropEntity,
    MigrationStep,
    RemoveField,
    RemoveRelationship,
    apply_step,
    apply_steps,
    invert_steps,
)

__all__ = [
    "diff",
    "HISTORY_TABLE",
    "MigrationHistory",
    "MigrationStep",
    "CreateEntity",
    "DropEntity",
    "AddField",
    "RemoveField",
    "AlterField",
    "AddRelationship",
    "RemoveRelationship",
    "AlterRelationship",
    "apply_step",
    "apply_steps",
    "invert_steps",
]
