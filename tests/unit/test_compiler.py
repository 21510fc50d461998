"""Tests for the query compiler."""

import pytest

from schemawright.backends import PostgresBackend, SqliteBackend
from schemawright.core.types import EntitySpec, FieldSpec, SchemaSnapshot, SingleReference
from schemawright.exceptions import CompileError, UnknownFieldError, UnsupportedExpressionError
from schemawright.query import Compare, F, Operator, Query, QueryCompiler, Value


@pytest.fixture
def compiler() -> QueryCompiler:
    return QueryCompiler(SqliteBackend())


@pytest.fixture
def comment_schema(blog_schema: SchemaSnapshot) -> SchemaSnapshot:
    """blog_schema plus Comment with a required reference to Post."""
    comment = EntitySpec(
        name="Comment",
        fields=(
            FieldSpec(name="id", type="bigint", primary_key=True, auto=True),
            FieldSpec(name="body"),
        ),
        relationships=(SingleReference(name="post", target="Post"),),
    )
    return SchemaSnapshot.build([*blog_schema.entities.values(), comment])


class TestBasics:
    """Plain selects."""

    def test_root_columns(self, compiler, post_schema):
        """Without projections every column of the root entity is selected."""
        compiled = compiler.compile(Query("Post"), post_schema)
        assert compiled.sql.startswith('SELECT "Post".id, "Post".title, "Post".published')
        assert compiled.decoder.labels == ("id", "title", "published")
        assert compiled.params == ()

    def test_values_are_bound(self, compiler, post_schema):
        """Literals never appear in the SQL text."""
        plan = Query("Post").where(F("title") == "x'; DROP TABLE Post; --")
        compiled = compiler.compile(plan, post_schema)
        assert "DROP TABLE" not in compiled.sql
        assert compiled.params == ("x'; DROP TABLE Post; --",)

    def test_deterministic(self, blog_schema):
        """The same plan compiles to the same SQL and parameters."""
        plan = (
            Query("Post")
            .where((F("published") == True) | (F("blog.name") != "drafts"))  # noqa: E712
            .where(F("tags.label").in_(["python", "sql"]))
            .order_by("-id")
            .paginate(limit=10, offset=20)
        )
        first = QueryCompiler(SqliteBackend()).compile(plan, blog_schema)
        second = QueryCompiler(SqliteBackend()).compile(plan, blog_schema)
        assert first.sql == second.sql
        assert first.params == second.params

    def test_order_and_paginate(self, compiler, post_schema):
        """Ordering and pagination are rendered."""
        plan = Query("Post").order_by("-id", F("title").asc()).paginate(limit=5, offset=10)
        compiled = compiler.compile(plan, post_schema)
        assert 'ORDER BY "Post".id DESC, "Post".title ASC' in compiled.sql
        assert "LIMIT" in compiled.sql
        assert "OFFSET" in compiled.sql

    def test_null_comparison(self, compiler, blog_schema):
        """Comparing with None becomes IS NULL."""
        plan = Query("Post").where(F("blog") == None)  # noqa: E711
        compiled = compiler.compile(plan, blog_schema)
        assert '"Post".blog IS NULL' in compiled.sql
        assert compiled.params == ()

    def test_not_null_comparison(self, compiler, blog_schema):
        """is_not_null() becomes IS NOT NULL."""
        compiled = compiler.compile(Query("Post").where(F("blog").is_not_null()), blog_schema)
        assert '"Post".blog IS NOT NULL' in compiled.sql

    def test_empty_in_matches_nothing(self, compiler, post_schema):
        """An empty IN is a constant false rather than invalid SQL."""
        compiled = compiler.compile(Query("Post").where(F("id").in_([])), post_schema)
        assert " IN " not in compiled.sql
        assert compiled.params == ()

    def test_negation(self, compiler, post_schema):
        """~ negates a predicate."""
        compiled = compiler.compile(Query("Post").where(~(F("id") > 3)), post_schema)
        assert compiled.params == (3,)
        assert '"Post".id <= ?' in compiled.sql or "NOT" in compiled.sql

    def test_postgresql_named_params(self, post_schema):
        """Named paramstyles return a dict of parameters."""
        compiled = QueryCompiler(PostgresBackend()).compile(
            Query("Post").where(F("id") == 7), post_schema
        )
        assert isinstance(compiled.params, dict)
        assert list(compiled.params.values()) == [7]


class TestRelationships:
    """Traversal of references."""

    def test_nullable_reference_outer_join(self, compiler, blog_schema):
        """A nullable reference is joined with LEFT OUTER JOIN."""
        compiled = compiler.compile(Query("Post").where(F("blog.name") == "main"), blog_schema)
        assert 'LEFT OUTER JOIN "Blog" AS j_blog ON "Post".blog = j_blog.id' in compiled.sql
        assert "j_blog.name = ?" in compiled.sql

    def test_outer_join_propagates(self, compiler, comment_schema):
        """Once a path goes through a nullable reference, later joins are outer too."""
        plan = Query("Comment").where(F("post.blog.name") == "main")
        compiled = compiler.compile(plan, comment_schema)
        assert 'JOIN "Post" AS j_post ON' in compiled.sql
        assert 'LEFT OUTER JOIN "Post"' not in compiled.sql
        assert 'LEFT OUTER JOIN "Blog" AS j_post__blog' in compiled.sql

    def test_joins_shared(self, compiler, blog_schema):
        """Each reference path is joined once."""
        plan = Query("Post").where(F("blog.name") == "a", F("blog.id") > 1).join("blog")
        compiled = compiler.compile(plan, blog_schema)
        assert compiled.sql.count("JOIN") == 1

    def test_many_to_many_exists(self, compiler, blog_schema):
        """Many-to-many predicates compile to EXISTS so rows are not duplicated."""
        plan = Query("Post").where(F("tags.label").in_(["python", "sql"]))
        compiled = compiler.compile(plan, blog_schema)
        assert "EXISTS (SELECT" in compiled.sql
        assert '"Post_tags_Many"' in compiled.sql
        assert compiled.params == ("python", "sql")

    def test_many_to_many_target_key(self, compiler, blog_schema):
        """A bare many-to-many path compares against the target's key."""
        compiled = compiler.compile(Query("Post").where(F("tags") == 3), blog_schema)
        assert "EXISTS" in compiled.sql
        assert '"Tag"' not in compiled.sql

    def test_projection_through_reference(self, compiler, blog_schema):
        """Projected paths become decoder labels."""
        plan = Query("Post").select("title", "blog.name")
        compiled = compiler.compile(plan, blog_schema)
        assert compiled.decoder.labels == ("title", "blog.name")
        row = compiled.decoder.decode(("Hello", "main"))
        assert row == {"title": "Hello", "blog.name": "main"}

    def test_compile_related(self, compiler, blog_schema):
        """Related targets are selected through the join table."""
        compiled = compiler.compile_related(blog_schema, "Post", "tags", 7)
        assert compiled.decoder.labels == ("id", "label")
        assert compiled.params == (7,)
        assert 'ORDER BY "Tag".id' in compiled.sql


class TestErrors:
    """Plans that cannot compile."""

    def test_unknown_entity(self, compiler, post_schema):
        """The root entity must exist."""
        with pytest.raises(CompileError, match="Unknown entity 'Comment'"):
            compiler.compile(Query("Comment"), post_schema)

    def test_unknown_field(self, compiler, blog_schema):
        """Unknown fields list what is available."""
        with pytest.raises(UnknownFieldError) as exc_info:
            compiler.compile(Query("Post").where(F("nope") == 1), blog_schema)
        assert exc_info.value.entity_name == "Post"
        assert exc_info.value.available == ["id", "title", "published", "blog", "tags"]

    def test_unknown_field_through_reference(self, compiler, blog_schema):
        """Errors name the entity where resolution stopped."""
        with pytest.raises(UnknownFieldError) as exc_info:
            compiler.compile(Query("Post").where(F("blog.nope") == 1), blog_schema)
        assert exc_info.value.entity_name == "Blog"
        assert exc_info.value.path == "blog.nope"

    def test_path_past_many_to_many(self, compiler, blog_schema):
        """Only one field may follow a many-to-many segment."""
        with pytest.raises(UnsupportedExpressionError):
            compiler.compile(Query("Post").where(F("tags.label.x") == 1), blog_schema)

    def test_order_through_many_to_many(self, compiler, blog_schema):
        """Ordering by a many-to-many path would duplicate rows."""
        with pytest.raises(UnsupportedExpressionError, match="Cannot order by"):
            compiler.compile(Query("Post").order_by("tags.label"), blog_schema)

    def test_projection_through_many_to_many(self, compiler, blog_schema):
        """Projections cannot cross a many-to-many."""
        with pytest.raises(UnsupportedExpressionError):
            compiler.compile(Query("Post").select("tags.label"), blog_schema)

    def test_comparison_without_field(self, compiler, post_schema):
        """A comparison needs a field on one side."""
        predicate = Compare(Value(1), Operator.EQ, Value(1))
        with pytest.raises(UnsupportedExpressionError, match="at least one field"):
            compiler.compile(Query("Post").where(predicate), post_schema)

    def test_compile_related_requires_many_to_many(self, compiler, blog_schema):
        """compile_related only works for many-to-many relationships."""
        with pytest.raises(UnknownFieldError):
            compiler.compile_related(blog_schema, "Post", "blog", 1)
