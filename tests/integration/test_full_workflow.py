"""Integration tests for the full Schemawright workflow."""

from collections.abc import Generator
from pathlib import Path

import pytest

from schemawright import (
    Database,
    EntitySpec,
    F,
    FieldSpec,
    ManyToMany,
    Migrator,
    ObjectStore,
    Query,
    SchemaSnapshot,
    SingleReference,
    load_batches,
    save_batches,
)
from schemawright.schema.migrations import make_batch, schema_at


@pytest.fixture(params=["sqlite", "postgresql"])
def database(request: pytest.FixtureRequest, tmp_path: Path) -> Generator[Database, None, None]:
    """The same workflow on a SQLite file and on PostgreSQL."""
    if request.param == "postgresql":
        yield request.getfixturevalue("pg_db")
        return
    db = Database(f"sqlite:///{tmp_path / 'app.db'}")
    yield db
    db.close()


def _pk() -> FieldSpec:
    return FieldSpec(name="id", type="bigint", primary_key=True, auto=True)


def _models(*post_fields: FieldSpec, tags: bool = True) -> SchemaSnapshot:
    relationships: list = [SingleReference(name="blog", target="Blog", nullable=True)]
    if tags:
        relationships.append(ManyToMany(name="tags", target="Tag"))
    return SchemaSnapshot.build(
        [
            EntitySpec(
                name="Post",
                fields=(
                    _pk(),
                    FieldSpec(name="title"),
                    FieldSpec(name="published", type="bool", default=False),
                    *post_fields,
                ),
                relationships=tuple(relationships),
            ),
            EntitySpec(name="Blog", fields=(_pk(), FieldSpec(name="name"))),
            EntitySpec(name="Tag", fields=(_pk(), FieldSpec(name="label"))),
        ]
    )


class TestFullWorkflow:
    """End-to-end tests for Schemawright."""

    def test_model_migrate_persist_evolve(self, database: Database, tmp_path: Path):
        """Write migrations, apply them, store records, then evolve the model."""
        migrations = tmp_path / "migrations.json"

        # 1. Generate the first migration from the model
        v1 = _models()
        batch = make_batch(schema_at(load_batches(migrations)), v1, "init")
        save_batches(migrations, [batch])

        # 2. Apply it
        migrator = Migrator(batches=load_batches(migrations))
        assert len(migrator.apply_pending(database)) == 1
        assert migrator.apply_pending(database) == []

        # 3. Store records
        store = ObjectStore(database, v1)
        blog = store.new("Blog", name="news")
        store.save(blog)
        python, sql = store.new("Tag", label="python"), store.new("Tag", label="sql")
        store.save(python)
        store.save(sql)

        post = store.new("Post", title="Hello", blog=blog.pk)
        store.save(post)
        assert post["published"] is False
        store.link(post, "tags", python)
        store.link(post, "tags", sql)
        draft = store.new("Post", title="Draft")
        store.save(draft)

        # 4. Query through both kinds of relationship
        found = store.find(Query("Post").where(F("tags.label").in_(["python", "sql"])))
        assert [p.pk for p in found] == [post.pk]
        found = store.find(Query("Post").where(F("blog.name") == "news"))
        assert [p.title for p in found] == ["Hello"]
        assert store.related(draft, "blog") is None

        # 5. Evolve: add a defaulted field
        v2 = _models(FieldSpec(name="likes", type="int", default=0))
        batches = load_batches(migrations)
        save_batches(migrations, [*batches, make_batch(schema_at(batches), v2, "likes")])
        assert len(Migrator(batches=load_batches(migrations)).apply_pending(database)) == 1

        store = ObjectStore(database, v2)
        loaded = store.load("Post", post.pk)
        assert loaded["likes"] == 0
        assert loaded["title"] == "Hello"

        # 6. Evolve: widen the field and drop the many-to-many
        v3 = _models(FieldSpec(name="likes", type="bigint", default=0), tags=False)
        assert len(Migrator(desired=v3).apply_pending(database)) == 1

        store = ObjectStore(database, v3)
        assert store.load("Post", post.pk)["blog"] == blog.pk
        assert len(store.find(Query("Tag"))) == 2
        assert Migrator(desired=v3).current_schema(database).equivalent(v3)
        assert [r.version for r in Migrator(desired=v3).history(database)] == [1, 2, 3]
