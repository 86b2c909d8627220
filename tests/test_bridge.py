"""
Filesystem Bridge Tests

Covers:
- Glob matching (braces, `**`, single segment `*`)
- FilesystemBridge reads, writes, deletes and listing
- Output path redirection
- AuditFilesystemBridge write denial
"""

import pytest

from tina_datalayer.bridge.base import matches, normalize_path
from tina_datalayer.bridge.filesystem import AuditFilesystemBridge, FilesystemBridge
from tina_datalayer.core.errors import DatalayerIOError, NotFound, WriteDenied

from conftest import snapshot, write


class TestGlobs:

    @pytest.mark.parametrize(
        "path, pattern, expected",
        [
            ("posts/a.md", "posts/**/*.md", True),
            ("posts/2021/a.md", "posts/**/*.md", True),
            ("posts/a.mdx", "posts/**/*.{md,mdx}", True),
            ("posts/a.json", "posts/**/*.{md,mdx}", False),
            ("posts/2021/a.md", "posts/*.md", False),
            ("posts/a1.md", "posts/a?.md", True),
            ("posts/b.md", "posts/[!a]*.md", True),
            ("pages/a.md", "posts/**/*.md", False),
        ],
    )
    def test_matches(self, path, pattern, expected):
        assert matches(path, pattern) is expected

    def test_normalize_path(self):
        assert normalize_path("./posts//a.md") == "posts/a.md"
        assert normalize_path("posts\\a.md") == "posts/a.md"

    @pytest.mark.parametrize("bad", ["/etc/passwd", "../x.md", "posts/../../x.md", ""])
    def test_normalize_path_rejects(self, bad):
        with pytest.raises(ValueError):
            normalize_path(bad)


class TestFilesystemBridge:

    def test_get_and_list(self, tmp_path):
        write(tmp_path, "posts/b.md", "B")
        write(tmp_path, "posts/a.md", "A")
        write(tmp_path, "node_modules/pkg/readme.md", "ignored")
        write(tmp_path, ".tina/__generated__/_schema.json", "{}")
        bridge = FilesystemBridge(tmp_path)

        assert list(bridge.list("**/*.md")) == ["posts/a.md", "posts/b.md"]
        # Restartable
        assert list(bridge.list("**/*.md")) == ["posts/a.md", "posts/b.md"]
        assert bridge.get("posts/a.md").raw == b"A"
        assert bridge.get("posts").kind == "directory"

    def test_get_missing(self, tmp_path):
        with pytest.raises(NotFound):
            FilesystemBridge(tmp_path).get("posts/none.md")

    def test_escape_is_io_error(self, tmp_path):
        with pytest.raises(DatalayerIOError):
            FilesystemBridge(tmp_path).get("../outside.md")

    def test_put_and_delete(self, tmp_path):
        bridge = FilesystemBridge(tmp_path)
        bridge.put("posts/new.md", "hello")

        assert (tmp_path / "posts/new.md").read_text() == "hello"
        assert not any(p.name.startswith(".tmp-") for p in (tmp_path / "posts").iterdir())

        bridge.delete("posts/new.md")
        assert not (tmp_path / "posts/new.md").exists()
        with pytest.raises(NotFound):
            bridge.delete("posts/new.md")

    def test_output_path(self, tmp_path):
        bridge = FilesystemBridge(tmp_path)
        bridge.put_output("_schema.json", "{}")
        assert (tmp_path / ".tina/__generated__/_schema.json").read_text() == "{}"

        bridge.add_output_path("public/admin")
        bridge.put_output("schema.gql", "type Query")
        assert (tmp_path / "public/admin/schema.gql").exists()
        # The output directory is never listed as content
        assert list(bridge.list()) == []


class TestAuditFilesystemBridge:

    def test_reads_delegate(self, tmp_path):
        write(tmp_path, "posts/a.md", "A")
        audit = AuditFilesystemBridge(tmp_path)

        assert list(audit.list()) == list(FilesystemBridge(tmp_path).list())
        assert audit.get("posts/a.md").raw == b"A"

    def test_writes_denied(self, tmp_path):
        write(tmp_path, "posts/a.md", "A")
        before = snapshot(tmp_path)
        audit = AuditFilesystemBridge(FilesystemBridge(tmp_path))

        with pytest.raises(WriteDenied):
            audit.put("posts/a.md", "changed")
        with pytest.raises(WriteDenied):
            audit.delete("posts/a.md")
        with pytest.raises(WriteDenied):
            audit.put_output("_schema.json", "{}")

        assert len(audit.violations) == 3
        assert snapshot(tmp_path) == before
