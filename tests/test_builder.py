"""
ConfigBuilder and Factory Tests

Covers:
- Stage progression and artifacts
- SchemaInvalid halts the build before any artifact is written
- Generated folder reset keeps the persistent store directory
- Audit builds leave the content root untouched
- Strict mode
"""

import json

import pytest

from tina_datalayer.bridge.filesystem import AuditFilesystemBridge, FilesystemBridge
from tina_datalayer.builder import BuildOptions, BuildStage, reset_generated_folder
from tina_datalayer.core.errors import BuildFailed, ConfigurationError, SchemaInvalid, WriteDenied
from tina_datalayer.factory import BuildMode, build_setup
from tina_datalayer.store.memory import MemoryStore
from tina_datalayer.store.sql import SqlStore

from conftest import post, snapshot, write


GENERATED = ".tina/__generated__"


@pytest.fixture
def project(content_root):
    write(content_root, "posts/a.md", post("Hello", rating=5))
    write(content_root, "posts/b.md", post(None))
    write(content_root, "authors/jane.json", '{"name": "Jane"}')
    return content_root


class TestConfigBuilder:

    def test_build_writes_artifacts(self, project):
        with build_setup(BuildMode.BUILD, project) as setup:
            ctx = setup.builder.build(BuildOptions())

            assert setup.builder.stage is BuildStage.DONE
            assert ctx.stage is BuildStage.DONE
            assert ctx.report.indexed == 2
            assert len(ctx.report.validation_errors) == 1

        generated = project / GENERATED
        assert sorted(p.name for p in generated.iterdir()) == ["_query_schema.json", "_schema.json", "schema.gql"]

        query_schema = json.loads((generated / "_query_schema.json").read_text())
        posts = query_schema["collections"][0]
        assert posts["typeName"] == "Posts"
        assert posts["documentCount"] == 1
        assert "postsConnection(filter: JSON, sort: String, limit: Int): [Posts!]!" in (
            generated / "schema.gql"
        ).read_text()

    def test_schema_invalid_produces_no_artifacts(self, project):
        write(project, ".tina/schema.yaml", "collections:\n  - name: posts\n    fields: []\n")

        with build_setup(BuildMode.BUILD, project) as setup:
            with pytest.raises(SchemaInvalid):
                setup.builder.build()
            assert setup.builder.stage is BuildStage.FAILED
            assert isinstance(setup.builder.context.error, SchemaInvalid)

        assert list((project / GENERATED).iterdir()) == []

    def test_strict_mode_fails_on_validation_errors(self, project):
        with build_setup(BuildMode.BUILD, project) as setup:
            with pytest.raises(BuildFailed) as exc_info:
                setup.builder.build(BuildOptions(strict=True))

        assert len(exc_info.value.errors) == 1
        assert not (project / GENERATED / "_schema.json").exists()

    def test_output_path_from_schema(self, project):
        schema_file = project / ".tina/schema.yaml"
        schema_file.write_text(schema_file.read_text() + "config:\n  outputPath: public/admin\n")

        with build_setup(BuildMode.BUILD, project) as setup:
            setup.builder.build()

        assert (project / "public/admin/_schema.json").exists()

    def test_server_mode_reuses_persistent_index(self, project):
        with build_setup(BuildMode.SERVER_START, project) as setup:
            assert isinstance(setup.database.store, SqlStore)
            first = setup.builder.build()
            assert first.report.skipped is False

        with build_setup(BuildMode.SERVER_START, project) as setup:
            second = setup.builder.build()
            assert second.report.skipped is True
            assert [r.path for r in setup.database.query("posts")] == ["posts/a.md"]

        assert (project / GENERATED / "db" / "index.sqlite").exists()


class TestAudit:

    def test_audit_does_not_mutate_source(self, project):
        before = snapshot(project)

        with build_setup(BuildMode.AUDIT, project) as setup:
            assert isinstance(setup.database.bridge, AuditFilesystemBridge)
            ctx = setup.builder.build(setup.build_options())

            assert ctx.stage is BuildStage.DONE
            assert set(ctx.artifacts) == {"_schema.json", "_query_schema.json", "schema.gql"}
            assert setup.database.bridge.violations == []

        assert snapshot(project) == before
        assert not (project / GENERATED).exists()

    def test_attempted_write_aborts_audit(self, project, monkeypatch):
        before = snapshot(project)

        with build_setup(BuildMode.AUDIT, project) as setup:
            database = setup.database
            index_content = database.index_content

            def writing_index(*args, **kwargs):
                with pytest.raises(WriteDenied):
                    database.bridge.put("posts/touched.md", "---\ntitle: T\n---\n")
                return index_content(*args, **kwargs)

            monkeypatch.setattr(database, "index_content", writing_index)
            with pytest.raises(WriteDenied) as exc_info:
                setup.builder.build(setup.build_options())

            assert exc_info.value.path == "posts/touched.md"
            assert setup.builder.stage is BuildStage.FAILED

        assert snapshot(project) == before

    def test_audit_clean_uses_plain_bridge(self, project):
        with build_setup(BuildMode.AUDIT, project, clean=True) as setup:
            assert isinstance(setup.database.bridge, FilesystemBridge)
            setup.builder.build(setup.build_options())

        assert (project / GENERATED / "_schema.json").exists()


class TestFactory:

    def test_build_mode_uses_memory_store(self, project):
        with build_setup("build", project) as setup:
            assert isinstance(setup.database.store, MemoryStore)
            assert setup.database.store.is_open
        assert not setup.database.store.is_open

    def test_root_path_required(self, monkeypatch):
        from tina_datalayer.config import settings

        monkeypatch.setattr(settings, "root_path", None)
        with pytest.raises(ConfigurationError):
            build_setup(BuildMode.BUILD)

    def test_reset_generated_folder_keeps_store(self, tmp_path):
        generated = tmp_path / GENERATED
        write(tmp_path, f"{GENERATED}/db/index.sqlite", "data")
        write(tmp_path, f"{GENERATED}/_schema.json", "{}")
        write(tmp_path, f"{GENERATED}/old/types.ts", "")

        reset_generated_folder(generated, "db")

        assert sorted(p.name for p in generated.iterdir()) == ["db"]
        assert (generated / "db" / "index.sqlite").read_text() == "data"
