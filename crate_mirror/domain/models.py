"""
Data models for the crate mirror.

This module defines the data models used throughout the application:
- Index records (package versions and per-package release lists)
- Mirror configuration and orphan handling policy
- Per-stage run reports

Index records are plain frozen dataclasses because a full crates.io snapshot
holds well over a million of them. Configuration and reports use Pydantic for
validation and serialization.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Literal, Optional, Set, Tuple

from pydantic import BaseModel, ConfigDict, Field

from crate_mirror.domain.crate_utils import (
    artifact_filename,
    crate_identifier,
    crate_url,
)


# ---------------------------------------------------------------------------
# Index Models
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PackageVersion:
    """One published release of a crate."""

    name: str
    version: str

    @property
    def identifier(self) -> str:
        return crate_identifier(self.name, self.version)

    @property
    def artifact_filename(self) -> str:
        return artifact_filename(self.name, self.version)

    @property
    def download_url(self) -> str:
        return crate_url(self.name, self.version)


@dataclass(frozen=True, slots=True)
class PackageReleases:
    """
    A crate as listed in the index.

    `versions` keeps the order the index file lists them in; `highest_version`
    is chosen by the index reader.
    """

    name: str
    versions: Tuple[PackageVersion, ...]
    highest_version: PackageVersion

    def select(self, only_most_recent: bool) -> List[PackageVersion]:
        """Versions to mirror for this crate."""
        if only_most_recent:
            return [self.highest_version]
        return list(self.versions)


@dataclass
class IndexSnapshot:
    """Point-in-time view of every crate in the index."""

    packages: List[PackageReleases] = field(default_factory=list)

    def __iter__(self) -> Iterator[PackageReleases]:
        return iter(self.packages)

    def __len__(self) -> int:
        return len(self.packages)

    def identifiers(self) -> Set[str]:
        """Every valid `{name}-{version}` identifier in the snapshot."""
        return {
            version.identifier
            for package in self.packages
            for version in package.versions
        }


# ---------------------------------------------------------------------------
# Configuration Models
# ---------------------------------------------------------------------------


OrphanAction = Literal["trash", "delete"]


class OrphanPolicy(BaseModel):
    """
    What the reconciler does with local state that the index no longer lists.

    Artifacts are quarantined by default so they can be recovered; extracted
    sources are deleted by default since they can be regenerated from the
    artifacts.
    """

    model_config = ConfigDict(extra="forbid")

    artifacts: OrphanAction = Field(
        default="trash",
        description="Action for orphaned .crate files: 'trash' moves them to trash/, 'delete' removes them.",
    )
    sources: OrphanAction = Field(
        default="delete",
        description="Action for orphaned source trees: 'trash' moves them to trash/sources/, 'delete' removes them.",
    )


class MirrorConfig(BaseModel):
    """Settings for a mirror run, loaded from mirror.yaml and CLI overrides."""

    model_config = ConfigDict(extra="forbid")

    max_parallel: int = Field(
        default=10,
        ge=1,
        description="Maximum number of concurrently running fetch or extract tasks.",
    )
    index_path: Optional[Path] = Field(
        default=None,
        description="Local checkout of the crates.io index. Defaults to the cargo registry index.",
    )
    request_timeout: float = Field(
        default=60.0,
        gt=0,
        description="HTTP timeout in seconds for a single download.",
    )
    download_attempts: int = Field(
        default=3,
        ge=1,
        description="Number of attempts for a download failing with a transport error or 5xx.",
    )
    retry_delay: float = Field(
        default=1.0,
        ge=0,
        description="Base delay in seconds between attempts; attempt N waits N * retry_delay.",
    )
    orphan_policy: OrphanPolicy = Field(default_factory=OrphanPolicy)


# ---------------------------------------------------------------------------
# Run Reports
# ---------------------------------------------------------------------------


class ItemFailure(BaseModel):
    """A single item that failed during a stage."""

    item: str
    error: str


class StageReport(BaseModel):
    """Outcome counters for one pipeline stage."""

    stage: str
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    failures: List[ItemFailure] = Field(default_factory=list)
    counters: Dict[str, int] = Field(
        default_factory=dict,
        description="Stage specific counters (e.g. dangling links).",
    )

    def record_success(self) -> None:
        self.succeeded += 1

    def record_skip(self) -> None:
        self.skipped += 1

    def record_failure(self, item: str, error: BaseException | str) -> None:
        self.failed += 1
        self.failures.append(ItemFailure(item=item, error=str(error)))

    def bump(self, counter: str, amount: int = 1) -> None:
        self.counters[counter] = self.counters.get(counter, 0) + amount

    def summary(self) -> str:
        parts = [
            f"{self.succeeded} succeeded",
            f"{self.skipped} skipped",
            f"{self.failed} failed",
        ]
        parts.extend(f"{value} {key}" for key, value in sorted(self.counters.items()))
        return f"{self.stage}: " + ", ".join(parts)
