"""
On-disk layout of a mirror working directory.

    <workdir>/crates/{name}-{version}.crate
    <workdir>/sources/{name}-{version}/
    <workdir>/latest/{name}-{version}   -> ../sources/{name}-{version}
    <workdir>/trash/{name}-{version}.crate
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from crate_mirror.domain.crate_utils import artifact_filename, crate_identifier, strip_crate_suffix
from crate_mirror.domain.errors import SetupError

logger = logging.getLogger(__name__)

CRATES_DIR = "crates"
SOURCES_DIR = "sources"
LATEST_DIR = "latest"
TRASH_DIR = "trash"
TMP_SUFFIX = ".tmp"


class MirrorLayout:
    """Resolves every mirror path from the working directory."""

    def __init__(self, workdir: Path):
        self.workdir = Path(workdir)

    @property
    def crates_dir(self) -> Path:
        return self.workdir / CRATES_DIR

    @property
    def sources_dir(self) -> Path:
        return self.workdir / SOURCES_DIR

    @property
    def latest_dir(self) -> Path:
        return self.workdir / LATEST_DIR

    @property
    def trash_dir(self) -> Path:
        return self.workdir / TRASH_DIR

    @property
    def trash_sources_dir(self) -> Path:
        return self.trash_dir / SOURCES_DIR

    def artifact_path(self, name: str, version: str) -> Path:
        return self.crates_dir / artifact_filename(name, version)

    def partial_artifact_path(self, name: str, version: str) -> Path:
        # Hidden so extract and yank never pick up an unfinished download.
        return self.crates_dir / f".{artifact_filename(name, version)}{TMP_SUFFIX}"

    @staticmethod
    def partial_artifact_identifier(filename: str) -> Optional[str]:
        """Identifier of a partial download filename, or None for other files."""
        if not filename.startswith(".") or not filename.endswith(TMP_SUFFIX):
            return None
        return strip_crate_suffix(filename[1 : -len(TMP_SUFFIX)])

    def source_path(self, name: str, version: str) -> Path:
        return self.sources_dir / crate_identifier(name, version)

    def latest_link_path(self, name: str, version: str) -> Path:
        return self.latest_dir / crate_identifier(name, version)

    def ensure_dir(self, path: Path) -> Path:
        """
        Create a required root directory. Failure aborts the run.
        """
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SetupError(f"Cannot create directory {path}: {e}") from e
        if not path.is_dir():
            raise SetupError(f"Not a directory: {path}")
        return path
