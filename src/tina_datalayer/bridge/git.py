"""
Git Bridge

Version-control-aware bridge backed by GitPython.

- Reads (`get`, `list`) resolve against a configured ref by reading the
  committed tree, never the working tree.
- Writes are grouped into commits: inside `transaction()` every `put` and
  `delete` joins one pending batch committed on exit; outside a transaction
  each write is committed on its own when `auto_commit` is enabled.
- Generated artifacts go to the working tree under the output path and are
  never committed.
"""

from __future__ import annotations

import configparser
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, Optional

from git import Actor, Repo
from git.exc import BadName, GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from .base import ContentEntry, is_ignored, matches, normalize_path, to_bytes
from ..config import settings
from ..core.errors import ConfigurationError, DatalayerIOError, NotFound, WriteDenied

logger = logging.getLogger("datalayer.bridge.git")


@dataclass(frozen=True)
class GitOptions:
    """Credentials and behavior supplied when the bridge is constructed."""

    author_name: str
    author_email: str
    ref: str = "HEAD"
    auto_commit: bool = True
    commit_message: str = "Update content"


def _open_repo(root_path: Path) -> Repo:
    try:
        return Repo(str(root_path))
    except (InvalidGitRepositoryError, NoSuchPathError) as exc:
        raise ConfigurationError(
            f"{root_path} is not a git repository"
        ) from exc


def make_git_options(root_path: str | Path, ref: Optional[str] = None) -> GitOptions:
    """
    Build GitOptions from the repository's git config.

    Settings (`TINA_GIT_AUTHOR_NAME` / `TINA_GIT_AUTHOR_EMAIL`) are used when
    the repository has no `user.name` / `user.email`.

    Raises
    ------
    ConfigurationError
        If no author identity can be determined.
    """
    repo = _open_repo(Path(root_path))
    reader = repo.config_reader()

    def _read(option: str) -> Optional[str]:
        try:
            return reader.get_value("user", option)
        except (configparser.NoSectionError, configparser.NoOptionError):
            return None

    name = _read("name") or settings.git_author_name
    email = _read("email") or settings.git_author_email
    if not name or not email:
        raise ConfigurationError(
            "Unable to determine git author; set user.name/user.email "
            "or TINA_GIT_AUTHOR_NAME/TINA_GIT_AUTHOR_EMAIL."
        )

    return GitOptions(
        author_name=str(name),
        author_email=str(email),
        ref=ref or settings.git_ref,
    )


class GitBridge:
    """
    Bridge over a local git repository.
    """

    def __init__(
        self,
        root_path: str | Path,
        options: GitOptions,
        output_path: Optional[str] = None,
    ) -> None:
        self.root_path = Path(root_path).resolve()
        self.options = options
        self._repo = _open_repo(self.root_path)
        self._output_path = normalize_path(output_path or settings.generated_dir)

        # path -> payload, or None for a pending deletion
        self._pending: Dict[str, Optional[bytes]] = {}
        self._in_transaction = False

    # ------------------------------------------------------------------
    # Internal Helpers
    # ------------------------------------------------------------------

    def _tree(self):
        """Return the tree at the configured ref, or None for an empty repository."""
        try:
            return self._repo.commit(self.options.ref).tree
        except (BadName, ValueError):
            return None

    def _lookup(self, rel: str):
        tree = self._tree()
        if tree is None:
            return None
        try:
            return tree / rel
        except KeyError:
            return None

    def _check_writable(self, rel: str) -> None:
        ref = self.options.ref
        if ref == "HEAD":
            return
        try:
            active = self._repo.active_branch.name
        except TypeError:
            active = None
        if ref != active:
            raise WriteDenied(rel, f"ref {ref} is not checked out")

    def _queue(self, rel: str, payload: Optional[bytes]) -> None:
        self._check_writable(rel)
        self._pending[rel] = payload
        if not self._in_transaction and self.options.auto_commit:
            self.commit()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def output_path(self) -> str:
        return self._output_path

    @property
    def pending(self) -> Dict[str, Optional[bytes]]:
        return dict(self._pending)

    def get(self, path: str) -> ContentEntry:
        try:
            rel = normalize_path(path)
        except ValueError as exc:
            raise DatalayerIOError(str(exc), path=path) from exc

        obj = self._lookup(rel)
        if obj is None:
            raise NotFound(rel)
        if obj.type == "tree":
            return ContentEntry(path=rel, kind="directory")

        try:
            raw = obj.data_stream.read()
        except (GitCommandError, OSError) as exc:
            raise DatalayerIOError(
                f"Failed to read {rel} at {self.options.ref}: {type(exc).__name__}",
                path=rel,
            ) from exc
        return ContentEntry(path=rel, raw=raw)

    def list(self, pattern: str = "**/*") -> Iterator[str]:
        tree = self._tree()
        if tree is None:
            return

        output_prefix = self._output_path + "/"
        paths = sorted(
            item.path
            for item in tree.traverse()
            if item.type == "blob"
        )
        for rel in paths:
            if is_ignored(rel) or rel.startswith(output_prefix):
                continue
            if matches(rel, pattern):
                yield rel

    def put(self, path: str, content: bytes | str) -> None:
        try:
            rel = normalize_path(path)
        except ValueError as exc:
            raise DatalayerIOError(str(exc), path=path) from exc
        self._queue(rel, to_bytes(content))

    def delete(self, path: str) -> None:
        try:
            rel = normalize_path(path)
        except ValueError as exc:
            raise DatalayerIOError(str(exc), path=path) from exc

        pending_put = self._pending.get(rel) is not None
        if not pending_put and self._lookup(rel) is None:
            raise NotFound(rel)
        self._queue(rel, None)

    def add_output_path(self, path: str) -> None:
        self._output_path = normalize_path(path)
        logger.info("Generated artifacts will be written to %s", self._output_path)

    def put_output(self, name: str, content: bytes | str) -> None:
        target = self.root_path / self._output_path / normalize_path(name)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(to_bytes(content))
        except OSError as exc:
            raise DatalayerIOError(
                f"Failed to write artifact {name}: {type(exc).__name__}",
                path=name,
            ) from exc

    def commit(self, message: Optional[str] = None) -> Optional[str]:
        """
        Commit all pending writes as one commit on the ref.

        Returns
        -------
        Optional[str]
            The new commit sha, or None when nothing was pending.
        """
        if not self._pending:
            return None

        pending, self._pending = self._pending, {}
        added = []
        removed = []

        try:
            for rel, payload in sorted(pending.items()):
                target = self.root_path / rel
                if payload is None:
                    target.unlink(missing_ok=True)
                    removed.append(rel)
                else:
                    target.parent.mkdir(parents=True, exist_ok=True)
                    target.write_bytes(payload)
                    added.append(rel)

            index = self._repo.index
            if added:
                index.add(added)
            tracked = [rel for rel in removed if (rel, 0) in index.entries]
            if tracked:
                index.remove(tracked)

            actor = Actor(self.options.author_name, self.options.author_email)
            commit = index.commit(
                message or self.options.commit_message,
                author=actor,
                committer=actor,
            )
        except (GitCommandError, OSError) as exc:
            raise DatalayerIOError(
                f"Failed to commit {len(pending)} change(s): {type(exc).__name__}"
            ) from exc

        logger.info(
            "Committed %d change(s) as %s", len(pending), commit.hexsha[:8]
        )
        return commit.hexsha

    @contextmanager
    def transaction(self, message: Optional[str] = None) -> Iterator["GitBridge"]:
        """
        Group writes into one commit.

        Pending writes are discarded if the block raises.
        """
        if self._in_transaction:
            yield self
            return

        self._in_transaction = True
        try:
            yield self
        except BaseException:
            self._pending.clear()
            raise
        finally:
            self._in_transaction = False
        self.commit(message)
