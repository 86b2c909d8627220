"""
Filesystem Bridges

- FilesystemBridge: reads and writes content in place under a root directory.
- AuditFilesystemBridge: wraps a FilesystemBridge and rejects every mutation,
  recording each attempt so an audit run can report it.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Iterator, List, Optional

from .base import ContentEntry, is_ignored, matches, normalize_path, to_bytes
from ..config import settings
from ..core.errors import DatalayerIOError, NotFound, WriteDenied

logger = logging.getLogger("datalayer.bridge.fs")


class FilesystemBridge:
    """
    Direct bridge over a local directory tree.

    Writes are atomic per file (temp file + rename), so a concurrent reader
    sees either the old or the new payload.
    """

    def __init__(self, root_path: str | Path, output_path: Optional[str] = None) -> None:
        """
        Parameters
        ----------
        root_path : str | Path
            Directory holding the content source.

        output_path : Optional[str]
            Root-relative directory for generated artifacts.
            Defaults to settings.generated_dir.
        """
        self.root_path = Path(root_path).resolve()
        self._output_path = normalize_path(output_path or settings.generated_dir)

    # ------------------------------------------------------------------
    # Internal Helpers
    # ------------------------------------------------------------------

    def _resolve(self, path: str) -> Path:
        try:
            rel = normalize_path(path)
        except ValueError as exc:
            raise DatalayerIOError(str(exc), path=path) from exc
        return self.root_path / rel

    def _write_atomic(self, target: Path, data: bytes, path: str) -> None:
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".tmp-")
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                os.replace(tmp_name, target)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise DatalayerIOError(
                f"Failed to write {path}: {type(exc).__name__}", path=path
            ) from exc

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def output_path(self) -> str:
        return self._output_path

    def get(self, path: str) -> ContentEntry:
        target = self._resolve(path)
        rel = normalize_path(path)

        if target.is_dir():
            return ContentEntry(path=rel, kind="directory")
        if not target.exists():
            raise NotFound(rel)

        try:
            raw = target.read_bytes()
        except OSError as exc:
            raise DatalayerIOError(
                f"Failed to read {rel}: {type(exc).__name__}", path=rel
            ) from exc
        return ContentEntry(path=rel, raw=raw)

    def put(self, path: str, content: bytes | str) -> None:
        target = self._resolve(path)
        self._write_atomic(target, to_bytes(content), path)
        logger.debug("Wrote %s", path)

    def delete(self, path: str) -> None:
        target = self._resolve(path)
        if not target.is_file():
            raise NotFound(normalize_path(path))
        try:
            target.unlink()
        except OSError as exc:
            raise DatalayerIOError(
                f"Failed to delete {path}: {type(exc).__name__}", path=path
            ) from exc
        logger.debug("Deleted %s", path)

    def list(self, pattern: str = "**/*") -> Iterator[str]:
        """
        Yield content paths matching `pattern`, in sorted order.

        Each call walks the tree again, so the sequence is restartable.
        """
        for dirpath, dirnames, filenames in os.walk(self.root_path):
            dirnames[:] = sorted(
                d for d in dirnames
                if not is_ignored(d)
                and not self._is_output_dir(Path(dirpath) / d)
            )
            rel_dir = Path(dirpath).relative_to(self.root_path).as_posix()
            for name in sorted(filenames):
                rel = name if rel_dir == "." else f"{rel_dir}/{name}"
                if name.startswith(".tmp-"):
                    continue
                if matches(rel, pattern):
                    yield rel

    def _is_output_dir(self, directory: Path) -> bool:
        return directory == self.root_path / self._output_path

    def add_output_path(self, path: str) -> None:
        self._output_path = normalize_path(path)
        logger.info("Generated artifacts will be written to %s", self._output_path)

    def put_output(self, name: str, content: bytes | str) -> None:
        rel = f"{self._output_path}/{normalize_path(name)}"
        self._write_atomic(self.root_path / rel, to_bytes(content), rel)


class AuditFilesystemBridge:
    """
    Read-only bridge used to verify a build produces no source mutation.

    Reads delegate to the wrapped bridge. Every write fails with
    `WriteDenied` and is recorded in `violations`.
    """

    def __init__(self, inner: FilesystemBridge | str | Path) -> None:
        if not isinstance(inner, FilesystemBridge):
            inner = FilesystemBridge(inner)
        self._inner = inner
        self.violations: List[str] = []

    def _deny(self, path: str) -> WriteDenied:
        self.violations.append(path)
        logger.warning("Audit mode rejected a write to %s", path)
        return WriteDenied(path, "audit mode forbids writes")

    @property
    def root_path(self) -> Path:
        return self._inner.root_path

    @property
    def output_path(self) -> str:
        return self._inner.output_path

    def get(self, path: str) -> ContentEntry:
        return self._inner.get(path)

    def list(self, pattern: str = "**/*") -> Iterator[str]:
        return self._inner.list(pattern)

    def put(self, path: str, content: bytes | str) -> None:
        raise self._deny(path)

    def delete(self, path: str) -> None:
        raise self._deny(path)

    def add_output_path(self, path: str) -> None:
        self._inner.add_output_path(path)

    def put_output(self, name: str, content: bytes | str) -> None:
        raise self._deny(f"{self.output_path}/{name}")
