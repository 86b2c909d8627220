"""
Database Factory

Selects the Bridge and Store for a build mode and wires them into a
Database and ConfigBuilder.

| mode          | bridge                                  | store                    |
|---------------|-----------------------------------------|--------------------------|
| build         | FilesystemBridge (GitBridge with git)   | MemoryStore              |
| server-start  | FilesystemBridge (GitBridge with git)   | SqlStore in generated/db |
| audit         | AuditFilesystemBridge (plain if clean)  | SqlStore in a temp dir   |

Audit runs keep their store outside the content root so the source tree is
left exactly as it was found.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

from .bridge.base import Bridge
from .bridge.filesystem import AuditFilesystemBridge, FilesystemBridge
from .bridge.git import GitBridge, make_git_options
from .builder import BuildOptions, ConfigBuilder
from .config import settings
from .core.errors import DatalayerIOError
from .database import Database
from .store.base import Store
from .store.memory import MemoryStore
from .store.sql import SqlStore

logger = logging.getLogger("datalayer.factory")


STORE_FILENAME = "index.sqlite"


class BuildMode(str, Enum):
    BUILD = "build"
    SERVER_START = "server-start"
    AUDIT = "audit"


@dataclass
class DatalayerSetup:
    """A wired Database and ConfigBuilder plus the resources they own."""

    mode: BuildMode
    root_path: Path
    database: Database
    builder: ConfigBuilder
    audit: bool = False
    _cleanups: List[Callable[[], None]] = field(default_factory=list, repr=False)

    def build_options(self, **overrides) -> BuildOptions:
        params = {"audit": self.audit, "strict": settings.strict_validation}
        params.update(overrides)
        return BuildOptions(**params)

    def close(self) -> None:
        store = self.database.store
        if store.is_open:
            store.close()
        while self._cleanups:
            self._cleanups.pop()()

    def __enter__(self) -> "DatalayerSetup":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def ensure_generated_dir(root_path: Path) -> Path:
    generated = root_path / settings.generated_dir
    try:
        generated.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise DatalayerIOError(
            f"Unable to create {generated}: {type(exc).__name__}",
            path=str(generated),
        ) from exc
    return generated


def create_bridge(
    mode: BuildMode,
    root_path: Path,
    *,
    git: bool = False,
    git_ref: Optional[str] = None,
    clean: bool = False,
) -> Bridge:
    if mode is BuildMode.AUDIT:
        if clean:
            return FilesystemBridge(root_path)
        return AuditFilesystemBridge(FilesystemBridge(root_path))

    if git:
        return GitBridge(root_path, make_git_options(root_path, git_ref))
    return FilesystemBridge(root_path)


def create_store(mode: BuildMode, root_path: Path, cleanups: List[Callable[[], None]]) -> Store:
    if mode is BuildMode.BUILD:
        return MemoryStore()

    if mode is BuildMode.AUDIT:
        scratch = Path(tempfile.mkdtemp(prefix="tina-audit-"))
        cleanups.append(lambda: shutil.rmtree(scratch, ignore_errors=True))
        return SqlStore(scratch / STORE_FILENAME)

    return SqlStore(root_path / settings.generated_dir / settings.store_dirname / STORE_FILENAME)


def build_setup(
    mode: BuildMode | str,
    root_path: Optional[str | Path] = None,
    *,
    git: bool = False,
    git_ref: Optional[str] = None,
    clean: bool = False,
) -> DatalayerSetup:
    """
    Create the Database and ConfigBuilder for a build mode.

    The store is opened before returning.

    Raises
    ------
    ConfigurationError
        If no root path is configured, or `git` is requested outside a
        repository or without an author identity.
    """
    mode = BuildMode(mode)
    root = settings.require_root(str(root_path) if root_path else None)
    audit = mode is BuildMode.AUDIT and not clean

    if not audit:
        ensure_generated_dir(root)

    cleanups: List[Callable[[], None]] = []
    bridge = create_bridge(mode, root, git=git, git_ref=git_ref, clean=clean)
    store = create_store(mode, root, cleanups)
    store.open()

    database = Database(bridge, store)
    logger.info(
        "Prepared %s setup for %s (%s, %s)",
        mode.value,
        root,
        type(bridge).__name__,
        type(store).__name__,
    )
    return DatalayerSetup(
        mode=mode,
        root_path=root,
        database=database,
        builder=ConfigBuilder(database, root),
        audit=audit,
        _cleanups=cleanups,
    )
