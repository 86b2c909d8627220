"""
Bridge Package

Content source abstractions: direct filesystem, audit (read-only) and
git-backed variants sharing one capability set.
"""

from .base import Bridge, ContentEntry, compile_glob, matches, normalize_path
from .filesystem import AuditFilesystemBridge, FilesystemBridge
from .git import GitBridge, GitOptions, make_git_options

__all__ = [
    "Bridge",
    "ContentEntry",
    "compile_glob",
    "matches",
    "normalize_path",
    "FilesystemBridge",
    "AuditFilesystemBridge",
    "GitBridge",
    "GitOptions",
    "make_git_options",
]
