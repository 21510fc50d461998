"""Tests for schema model types."""

import pytest
from pydantic import ValidationError

from schemawright.core.types import (
    EntitySpec,
    FieldSpec,
    FieldType,
    ManyToMany,
    RelationshipKind,
    SchemaSnapshot,
    SingleReference,
    join_entity_name,
)
from schemawright.exceptions import (
    DuplicateNameError,
    EntityNotFoundError,
    FieldNotFoundError,
    InvalidPrimaryKeyError,
    SchemaError,
    UnresolvedReferenceError,
)


def _pk(name: str = "id", type: str = "bigint", auto: bool = True) -> FieldSpec:
    return FieldSpec(name=name, type=type, primary_key=True, auto=auto)


class TestFieldType:
    """Tests for FieldType enum."""

    def test_all_types_exist(self):
        """All logical field types should exist."""
        expected = [
            "bool",
            "int",
            "bigint",
            "real",
            "text",
            "date",
            "timestamp",
            "blob",
            "uuid",
            "json",
        ]
        assert FieldType.values() == expected

    def test_from_string(self):
        """Can create FieldType from string."""
        assert FieldType("bigint") == FieldType.BIGINT
        assert FieldType("json") == FieldType.JSON

    def test_relationship_kinds(self):
        """Relationship kinds match the discriminator values."""
        assert RelationshipKind.values() == ["single_reference", "many_to_many"]


class TestFieldSpec:
    """Tests for FieldSpec model."""

    def test_minimal_spec(self):
        """Can create spec with just name."""
        spec = FieldSpec(name="title")
        assert spec.type == FieldType.TEXT
        assert spec.nullable is False
        assert spec.default is None
        assert spec.primary_key is False
        assert spec.auto is False
        assert spec.unique is False

    def test_from_dict(self):
        """Can create spec from dict."""
        spec = FieldSpec(**{"name": "likes", "type": "int", "default": 0})
        assert spec.type == FieldType.INT
        assert spec.default == 0

    def test_frozen(self):
        """Specs are immutable values."""
        spec = FieldSpec(name="title")
        with pytest.raises(ValidationError):
            spec.name = "other"  # type: ignore[misc]

    def test_default_must_match_type(self):
        """A text default on an int field is rejected."""
        with pytest.raises(SchemaError, match="does not match"):
            FieldSpec(name="likes", type="int", default="zero")

    def test_bool_is_not_an_int_default(self):
        """True is not accepted as an int default."""
        with pytest.raises(SchemaError):
            FieldSpec(name="likes", type="int", default=True)

    def test_blob_cannot_have_default(self):
        """Defaults are limited to simple types."""
        with pytest.raises(SchemaError, match="cannot declare a default"):
            FieldSpec(name="data", type="blob", default="x")

    def test_json_default_any_document(self):
        """JSON defaults can be any document."""
        spec = FieldSpec(name="meta", type="json", default={"a": [1, 2]})
        assert spec.default == {"a": [1, 2]}


class TestEntitySpec:
    """Tests for EntitySpec model."""

    def test_requires_one_primary_key(self):
        """An entity without a primary key is rejected."""
        with pytest.raises(InvalidPrimaryKeyError, match="found 0"):
            EntitySpec(name="Post", fields=(FieldSpec(name="title"),))

    def test_rejects_two_primary_keys(self):
        """Only one primary key is allowed."""
        with pytest.raises(InvalidPrimaryKeyError, match="found 2"):
            EntitySpec(name="Post", fields=(_pk("a"), _pk("b")))

    def test_rejects_nullable_primary_key(self):
        """Primary keys cannot be nullable."""
        pk = FieldSpec(name="id", type="int", primary_key=True, nullable=True)
        with pytest.raises(InvalidPrimaryKeyError, match="nullable"):
            EntitySpec(name="Post", fields=(pk,))

    def test_rejects_json_primary_key(self):
        """JSON cannot be a primary key."""
        with pytest.raises(InvalidPrimaryKeyError):
            EntitySpec(name="Post", fields=(FieldSpec(name="id", type="json", primary_key=True),))

    def test_auto_only_on_primary_key(self):
        """Autogenerated values are only for the primary key."""
        with pytest.raises(SchemaError, match="not the primary key"):
            EntitySpec(name="Post", fields=(_pk(), FieldSpec(name="n", type="int", auto=True)))

    def test_auto_requires_generatable_type(self):
        """Text keys cannot be autogenerated."""
        with pytest.raises(SchemaError, match="int, bigint or uuid"):
            EntitySpec(name="Post", fields=(_pk(type="text"),))

    def test_unique_not_on_json(self):
        """JSON documents cannot carry a unique constraint."""
        with pytest.raises(SchemaError, match="cannot be unique"):
            EntitySpec(name="Doc", fields=(_pk(), FieldSpec(name="body", type="json", unique=True)))

    @pytest.mark.parametrize("name", ["state", "pk", "values", "_hidden"])
    def test_reserved_column_names(self, name):
        """Names the record handle uses for itself are rejected."""
        with pytest.raises(SchemaError, match="reserved"):
            EntitySpec(name="Post", fields=(_pk(), FieldSpec(name=name)))
        with pytest.raises(SchemaError, match="reserved"):
            EntitySpec(
                name="Post",
                fields=(_pk(),),
                relationships=(SingleReference(name=name, target="Blog"),),
            )

    def test_duplicate_names(self):
        """Field and relationship names share one namespace."""
        with pytest.raises(DuplicateNameError):
            EntitySpec(
                name="Post",
                fields=(_pk(), FieldSpec(name="blog")),
                relationships=(SingleReference(name="blog", target="Blog"),),
            )

    def test_column_names(self):
        """Columns are fields then single references; many-to-many has no column."""
        entity = EntitySpec(
            name="Post",
            fields=(_pk(), FieldSpec(name="title")),
            relationships=(
                ManyToMany(name="tags", target="Tag"),
                SingleReference(name="blog", target="Blog"),
            ),
        )
        assert entity.column_names == ["id", "title", "blog"]
        assert [r.name for r in entity.many] == ["tags"]
        assert entity.pk.name == "id"

    def test_field_lookup(self):
        """Unknown fields raise FieldNotFoundError."""
        entity = EntitySpec(name="Post", fields=(_pk(),))
        assert entity.get_field("missing") is None
        with pytest.raises(FieldNotFoundError):
            entity.field("missing")

    def test_relationships_from_dicts(self):
        """Relationships are discriminated by kind."""
        entity = EntitySpec.model_validate(
            {
                "name": "Post",
                "fields": [{"name": "id", "type": "int", "primary_key": True}],
                "relationships": [{"kind": "many_to_many", "name": "tags", "target": "Tag"}],
            }
        )
        assert isinstance(entity.relationships[0], ManyToMany)


class TestSchemaSnapshot:
    """Tests for SchemaSnapshot."""

    def test_build_resolves_forward_references(self):
        """Entities may reference entities declared later."""
        post = EntitySpec(
            name="Post",
            fields=(_pk(),),
            relationships=(SingleReference(name="blog", target="Blog"),),
        )
        blog = EntitySpec(name="Blog", fields=(_pk(),))
        snapshot = SchemaSnapshot.build([post, blog])
        assert list(snapshot.entities) == ["Post", "Blog"]

    def test_unresolved_reference(self):
        """References to unknown entities are rejected."""
        post = EntitySpec(
            name="Post",
            fields=(_pk(),),
            relationships=(SingleReference(name="blog", target="Blog"),),
        )
        with pytest.raises(UnresolvedReferenceError, match="Blog"):
            SchemaSnapshot.build([post])

    def test_duplicate_entity(self):
        """Entity names are unique."""
        blog = EntitySpec(name="Blog", fields=(_pk(),))
        with pytest.raises(DuplicateNameError):
            SchemaSnapshot.build([blog, blog])

    def test_join_entity_name_collision(self):
        """An entity cannot take the name of an implicit join entity."""
        post = EntitySpec(
            name="Post",
            fields=(_pk(),),
            relationships=(ManyToMany(name="tags", target="Tag"),),
        )
        tag = EntitySpec(name="Tag", fields=(_pk(),))
        clash = EntitySpec(name=join_entity_name("Post", "tags"), fields=(_pk(),))
        with pytest.raises(DuplicateNameError):
            SchemaSnapshot.build([post, tag, clash])

    def test_build_wraps_validation_errors(self):
        """Malformed descriptions surface as SchemaError."""
        with pytest.raises(SchemaError, match="Invalid model description"):
            SchemaSnapshot.build([{"name": "Post", "fields": [{"name": "id", "type": "nope"}]}])

    def test_entity_lookup(self, post_schema):
        """Unknown entities raise EntityNotFoundError listing what exists."""
        with pytest.raises(EntityNotFoundError) as exc_info:
            post_schema.entity("Comment")
        assert exc_info.value.available_entities == ["Post"]

    def test_equivalent_ignores_order_and_version(self):
        """Equivalence compares shape only."""
        a = EntitySpec(name="A", fields=(_pk(),))
        b = EntitySpec(name="B", fields=(_pk(),))
        first = SchemaSnapshot.build([a, b], version=1)
        second = SchemaSnapshot.build([b, a], version=7)
        assert first.equivalent(second)
        assert not first.equivalent(SchemaSnapshot.empty())
