"""
Exception hierarchy for the mirror pipeline.

SetupError aborts a whole command. The other errors describe a single item
(one crate version, one archive, one path) and are caught by the stage that
scheduled the item, which records them and moves on.
"""
from __future__ import annotations

from pathlib import Path


class MirrorError(Exception):
    """Base class for mirror errors."""


class SetupError(MirrorError):
    """The run cannot start: unreadable index, bad config, missing root directory."""


class RetrievalError(MirrorError):
    """Downloading a crate archive failed."""

    def __init__(self, name: str, version: str, message: str):
        super().__init__(f"{name}-{version}: {message}")
        self.name = name
        self.version = version


class StorageError(MirrorError):
    """A local filesystem operation failed."""

    def __init__(self, path: Path, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path


class ArchiveError(MirrorError):
    """A crate archive could not be decompressed or unpacked."""

    def __init__(self, path: Path, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path
