"""
Read the crates.io index from a local checkout.

The index is a tree of small text files, one per crate, each holding one JSON
object per published version:

    {"name":"serde","vers":"1.0.0","deps":[...],"cksum":"...","yanked":false}

Only `name` and `vers` are used here.
"""
from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterator, List, Optional, Set

from crate_mirror.domain.crate_utils import version_key
from crate_mirror.domain.errors import SetupError
from crate_mirror.domain.models import IndexSnapshot, PackageReleases, PackageVersion

logger = logging.getLogger(__name__)

CARGO_HOME_ENV_VAR = "CARGO_HOME"
INDEX_CONFIG_FILE = "config.json"


class IndexSnapshotProvider(ABC):
    """
    Abstract source of index snapshots.
    """

    @abstractmethod
    def load(self) -> IndexSnapshot:
        """
        Read a fresh snapshot of every crate and its versions.

        Raises SetupError if the index cannot be read or lists no crates.
        """
        pass


def load_snapshot(provider: IndexSnapshotProvider) -> IndexSnapshot:
    """
    Read a fresh snapshot, refusing an empty one.

    Every stage goes through here: an empty index would otherwise make the
    reconciler discard the whole mirror.
    """
    snapshot = provider.load()
    if not snapshot:
        raise SetupError("Index snapshot is empty")
    return snapshot


def default_index_path() -> Optional[Path]:
    """
    Locate the crates.io index checkout kept by cargo.

    Looks for a directory with a config.json under
    $CARGO_HOME/registry/index (CARGO_HOME defaults to ~/.cargo).
    """
    env_path = os.environ.get(CARGO_HOME_ENV_VAR)
    cargo_home = Path(env_path).expanduser() if env_path else Path.home() / ".cargo"
    registry_index = cargo_home / "registry" / "index"
    if not registry_index.is_dir():
        return None
    for candidate in sorted(registry_index.iterdir()):
        if candidate.is_dir() and (candidate / INDEX_CONFIG_FILE).exists():
            return candidate
    return None


class CratesIndexReader(IndexSnapshotProvider):
    """Reads a crates.io index working tree into an IndexSnapshot."""

    def __init__(self, index_path: Path):
        self.index_path = Path(index_path)

    def _iter_index_files(self) -> Iterator[Path]:
        for root, dirs, files in os.walk(self.index_path, onerror=self._walk_error):
            # Skip .git and other tooling directories.
            dirs[:] = sorted(d for d in dirs if not d.startswith("."))
            root_path = Path(root)
            for filename in sorted(files):
                if filename.startswith("."):
                    continue
                if root_path == self.index_path and filename == INDEX_CONFIG_FILE:
                    continue
                yield root_path / filename

    def _walk_error(self, error: OSError) -> None:
        raise SetupError(f"Failed to read crates index at {self.index_path}: {error}")

    def read_crate_file(self, path: Path) -> Optional[PackageReleases]:
        """
        Parse one index file. Returns None when it lists no usable versions.
        """
        versions: List[PackageVersion] = []
        seen: Set[str] = set()
        name: Optional[str] = None

        with open(path, "rb") as f:
            for lineno, raw_line in enumerate(f, start=1):
                raw_line = raw_line.strip()
                if not raw_line:
                    continue
                try:
                    record = json.loads(raw_line.decode("utf-8"))
                    record_name = str(record["name"])
                    record_version = str(record["vers"])
                except (UnicodeDecodeError, ValueError, KeyError, TypeError) as e:
                    logger.warning(f"Skipping malformed index line {path}:{lineno}: {e}")
                    continue

                if name is None:
                    name = record_name
                if record_version in seen:
                    continue
                seen.add(record_version)
                versions.append(PackageVersion(name=record_name, version=record_version))

        if not versions or name is None:
            return None

        highest = max(versions, key=lambda v: version_key(v.version))
        return PackageReleases(name=name, versions=tuple(versions), highest_version=highest)

    def iter_packages(self) -> Iterator[PackageReleases]:
        for path in self._iter_index_files():
            try:
                package = self.read_crate_file(path)
            except OSError as e:
                raise SetupError(f"Failed to read index file {path}: {e}") from e
            if package is not None:
                yield package

    def load(self) -> IndexSnapshot:
        if not self.index_path.is_dir():
            raise SetupError(f"Crates index not found: {self.index_path}")

        logger.debug(f"Reading crates index from {self.index_path}")
        snapshot = IndexSnapshot(packages=list(self.iter_packages()))
        if not snapshot:
            raise SetupError(f"Crates index at {self.index_path} lists no crates")

        logger.info(f"Loaded {len(snapshot)} crates from index {self.index_path}")
        return snapshot
