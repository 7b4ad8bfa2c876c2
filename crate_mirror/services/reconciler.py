"""
Remove local artifacts and source trees for crate versions the index no
longer lists ("yank").
"""
from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Set

from crate_mirror.data.crates_index import IndexSnapshotProvider, load_snapshot
from crate_mirror.domain.crate_utils import strip_crate_suffix
from crate_mirror.domain.errors import SetupError
from crate_mirror.domain.models import MirrorConfig, OrphanAction, StageReport
from crate_mirror.storage.layout import MirrorLayout

logger = logging.getLogger(__name__)


def _unique_destination(path: Path) -> Path:
    """Avoid clobbering an earlier trash entry with the same name."""
    if not path.exists() and not path.is_symlink():
        return path
    counter = 1
    while True:
        candidate = path.with_name(f"{path.name}.{counter}")
        if not candidate.exists():
            return candidate
        counter += 1


def _dispose(path: Path, action: OrphanAction, trash_dir: Path) -> Path | None:
    """Apply an orphan action to one path. Returns the trash location if moved."""
    if action == "trash":
        trash_dir.mkdir(parents=True, exist_ok=True)
        destination = _unique_destination(trash_dir / path.name)
        shutil.move(str(path), str(destination))
        return destination

    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()
    return None


def _discard_orphaned_partial(layout: MirrorLayout, path: Path, valid: Set[str], report: StageReport) -> None:
    # Partial downloads of listed versions are replaced by the next spider run.
    identifier = layout.partial_artifact_identifier(path.name)
    if identifier is None or identifier in valid or not path.is_file():
        return
    try:
        path.unlink()
    except OSError as e:
        logger.warning(f"Could not remove orphaned partial download {path}: {e}")
        return
    logger.info(f"Removed orphaned partial download {path.name}")
    report.bump("partials_removed")


def reconcile_artifacts(
    layout: MirrorLayout,
    valid: Set[str],
    action: OrphanAction,
    report: StageReport,
) -> None:
    """Dispose of every crates/*.crate whose identifier is not in `valid`."""
    if not layout.crates_dir.is_dir():
        logger.debug(f"No artifact directory at {layout.crates_dir}")
        return

    for path in sorted(layout.crates_dir.iterdir()):
        if path.name.startswith("."):
            _discard_orphaned_partial(layout, path, valid, report)
            continue
        identifier = strip_crate_suffix(path.name)
        if identifier is None:
            continue
        if identifier in valid:
            report.record_skip()
            continue

        try:
            moved_to = _dispose(path, action, layout.trash_dir)
        except OSError as e:
            logger.error(f"Failed to {action} orphaned artifact {path}: {e}")
            report.record_failure(path.name, e)
            continue

        if moved_to is not None:
            logger.info(f"Moved orphaned artifact {path.name} to {moved_to}")
        else:
            logger.info(f"Deleted orphaned artifact {path.name}")
        report.record_success()
        report.bump("artifacts_removed")


def reconcile_sources(
    layout: MirrorLayout,
    valid: Set[str],
    action: OrphanAction,
    report: StageReport,
) -> None:
    """Dispose of every sources/ entry whose name is not in `valid`."""
    if not layout.sources_dir.is_dir():
        logger.debug(f"No source directory at {layout.sources_dir}")
        return

    for path in sorted(layout.sources_dir.iterdir()):
        # Staging directories of running extractions.
        if path.name.startswith("."):
            continue
        if path.name in valid:
            report.record_skip()
            continue

        try:
            moved_to = _dispose(path, action, layout.trash_sources_dir)
        except OSError as e:
            logger.error(f"Failed to {action} orphaned source tree {path}: {e}")
            report.record_failure(path.name, e)
            continue

        if moved_to is not None:
            logger.info(f"Moved orphaned source tree {path.name} to {moved_to}")
        else:
            logger.info(f"Deleted orphaned source tree {path.name}")
        report.record_success()
        report.bump("sources_removed")


def _reconcile(layout: MirrorLayout, provider: IndexSnapshotProvider, config: MirrorConfig) -> StageReport:
    report = StageReport(stage="yank")
    valid = load_snapshot(provider).identifiers()
    logger.info(f"Index lists {len(valid)} crate versions")

    policy = config.orphan_policy
    if policy.artifacts == "trash" or policy.sources == "trash":
        layout.ensure_dir(layout.trash_dir)

    try:
        reconcile_artifacts(layout, valid, policy.artifacts, report)
        reconcile_sources(layout, valid, policy.sources, report)
    except OSError as e:
        raise SetupError(f"Cannot scan {layout.workdir}: {e}") from e
    return report


async def reconcile(
    layout: MirrorLayout,
    provider: IndexSnapshotProvider,
    config: MirrorConfig,
) -> StageReport:
    """
    Bring crates/ and sources/ in line with a fresh index snapshot.

    Both scans are independent: an interrupted run is finished by the next
    one. Failures on single paths are logged and counted, not raised.
    """
    report = await asyncio.to_thread(_reconcile, layout, provider, config)
    logger.info(report.summary())
    return report
