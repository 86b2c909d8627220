"""
Schema Compiler Tests

- Normalization of collections and fields
- Version hash stability
- Aggregated SchemaInvalid issues
- Schema file discovery
"""

import pytest

from tina_datalayer.core.errors import SchemaInvalid
from tina_datalayer.schema.compiler import compile_schema, compile_schema_file, find_schema_file
from tina_datalayer.schema.models import FieldType

from conftest import write


def _definition(**overrides):
    definition = {
        "collections": [
            {
                "name": "posts",
                "path": "content/posts",
                "format": "md",
                "fields": [
                    {"name": "title", "type": "string", "required": True},
                    {"name": "body", "type": "rich-text", "isBody": True},
                ],
            }
        ]
    }
    definition.update(overrides)
    return definition


class TestCompileSchema:
    """Tests for compile_schema."""

    def test_bare_directory_becomes_glob(self):
        schema = compile_schema(_definition())
        posts = schema.collection("posts")

        assert posts.globs == ("content/posts/**/*.md",)
        assert posts.matches("content/posts/a.md")
        assert posts.matches("content/posts/2021/b.md")
        assert not posts.matches("content/posts/a.json")

    def test_field_types_are_resolved(self):
        schema = compile_schema(_definition())
        posts = schema.collection("posts")

        assert posts.field("title").type is FieldType.STRING
        assert posts.field("title").indexed is True
        # Rich text bodies are never indexed
        assert posts.body_field.name == "body"
        assert posts.body_field.indexed is False

    def test_type_aliases(self):
        definition = _definition()
        definition["collections"][0]["fields"].append({"name": "count", "type": "int"})
        schema = compile_schema(definition)

        assert schema.collection("posts").field("count").type is FieldType.NUMBER

    def test_version_is_stable(self):
        assert compile_schema(_definition()).version == compile_schema(_definition()).version

    def test_version_changes_with_fields(self):
        changed = _definition()
        changed["collections"][0]["fields"].append({"name": "date", "type": "datetime"})

        assert compile_schema(_definition()).version != compile_schema(changed).version

    def test_output_path_config(self):
        schema = compile_schema(_definition(config={"outputPath": "public/tina"}))
        assert schema.config.output_path == "public/tina"

    def test_nested_object_fields(self):
        definition = _definition()
        definition["collections"][0]["fields"].append(
            {"name": "seo", "type": "object", "fields": [{"name": "slug", "type": "string"}]}
        )
        posts = compile_schema(definition).collection("posts")

        assert posts.field("seo.slug").type is FieldType.STRING
        assert posts.field("seo.missing") is None


class TestSchemaInvalid:
    """Every problem is reported in one error."""

    def test_collects_all_issues(self):
        definition = _definition()
        definition["collections"][0]["fields"] += [
            {"name": "kind", "type": "colour"},
            {"name": "title", "type": "string"},
            {"name": "author", "type": "reference", "references": "people"},
        ]

        with pytest.raises(SchemaInvalid) as exc_info:
            compile_schema(definition)

        issues = exc_info.value.issues
        assert len(issues) == 3
        assert any("unknown type 'colour'" in i for i in issues)
        assert any("duplicate field name" in i for i in issues)
        assert any("unknown collection 'people'" in i for i in issues)

    def test_missing_collections(self):
        with pytest.raises(SchemaInvalid):
            compile_schema({"collections": []})

    def test_collection_without_path(self):
        with pytest.raises(SchemaInvalid) as exc_info:
            compile_schema({"collections": [{"name": "posts", "fields": []}]})
        assert "path" in exc_info.value.issues[0]

    def test_path_escaping_root(self):
        with pytest.raises(SchemaInvalid):
            compile_schema(_definition(collections=[{"name": "posts", "path": "../posts"}]))

    def test_object_without_fields(self):
        definition = _definition()
        definition["collections"][0]["fields"].append({"name": "seo", "type": "object"})
        with pytest.raises(SchemaInvalid):
            compile_schema(definition)


class TestSchemaFiles:

    def test_find_and_compile_yaml(self, content_root):
        assert find_schema_file(content_root).name == "schema.yaml"
        schema = compile_schema_file(content_root)
        assert [c.name for c in schema.collections] == ["posts", "authors"]

    def test_json_schema_file(self, tmp_path):
        write(tmp_path, ".tina/schema.json", '{"collections": [{"name": "pages", "path": "pages"}]}')
        schema = compile_schema_file(tmp_path)
        assert schema.collection("pages").globs == ("pages/**/*.{md,mdx,json,yaml,yml}",)

    def test_no_schema_file(self, tmp_path):
        with pytest.raises(SchemaInvalid):
            find_schema_file(tmp_path)

    def test_malformed_schema_file(self, tmp_path):
        write(tmp_path, ".tina/schema.json", "{not json")
        with pytest.raises(SchemaInvalid):
            compile_schema_file(tmp_path)
