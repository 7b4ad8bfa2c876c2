"""
Unpack downloaded crate archives into per-version source trees.

A .crate file is a gzip compressed tarball whose members all live under a
single `{name}-{version}/` directory, so unpacking crates/X.crate into
sources/ produces sources/X/.
"""
from __future__ import annotations

import asyncio
import gzip
import logging
import shutil
import tarfile
import tempfile
import zlib
from pathlib import Path
from typing import List, Optional

from crate_mirror.domain.crate_utils import strip_crate_suffix
from crate_mirror.domain.errors import ArchiveError, MirrorError, SetupError, StorageError
from crate_mirror.domain.models import MirrorConfig, StageReport
from crate_mirror.services.pool import BoundedTaskPool
from crate_mirror.storage.layout import MirrorLayout

logger = logging.getLogger(__name__)

STAGING_PREFIX = ".extract-"


def _remove_path(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


def unpack_crate(artifact_path: Path, destination_root: Path, update_only: bool = True) -> bool:
    """
    Extract one archive into destination_root.

    The archive is first unpacked into a hidden staging directory next to
    the destination and then renamed into place, so an interrupted run never
    leaves a half-extracted tree behind. Only the `{name}-{version}/` entry
    is moved; anything else at the top level of the archive is dropped.
    Returns False if the target already existed in update-only mode.

    Blocking; run it in a worker thread.
    """
    stem = strip_crate_suffix(artifact_path.name)
    if stem is None:
        raise ArchiveError(artifact_path, "not a .crate archive")

    target = destination_root / stem
    if update_only and target.exists():
        logger.debug(f"Already extracted, skipping {stem}")
        return False

    try:
        staging = Path(tempfile.mkdtemp(prefix=f"{STAGING_PREFIX}{stem}-", dir=destination_root))
    except OSError as e:
        raise StorageError(destination_root, f"cannot create staging directory: {e}") from e

    try:
        try:
            with tarfile.open(artifact_path, "r:gz") as archive:
                archive.extractall(staging, filter="data")
        except (tarfile.TarError, EOFError, zlib.error, gzip.BadGzipFile) as e:
            raise ArchiveError(artifact_path, f"cannot unpack: {e}") from e
        except OSError as e:
            raise StorageError(artifact_path, f"extraction failed: {e}") from e

        extracted = staging / stem
        for entry in sorted(staging.iterdir()):
            if entry.name != stem:
                logger.warning(f"Dropping {entry.name} from {artifact_path.name}: outside its {stem}/ directory")
        if not extracted.is_dir() or extracted.is_symlink():
            raise ArchiveError(artifact_path, f"no top-level {stem}/ directory")

        try:
            if target.exists() or target.is_symlink():
                _remove_path(target)
            extracted.replace(target)
        except OSError as e:
            raise StorageError(target, f"cannot move extracted tree into place: {e}") from e
    finally:
        shutil.rmtree(staging, ignore_errors=True)

    return True


def remove_stale_staging(destination_root: Path) -> int:
    """
    Delete staging directories left behind by an interrupted extract run.

    Must not be called while another extraction into destination_root is
    in progress.
    """
    removed = 0
    for path in destination_root.iterdir():
        if not path.name.startswith(STAGING_PREFIX) or not path.is_dir() or path.is_symlink():
            continue
        logger.info(f"Removing stale staging directory {path.name}")
        shutil.rmtree(path, ignore_errors=True)
        removed += 1
    return removed


def list_artifacts(crates_dir: Path) -> List[Path]:
    """Crate archives in crates/, ignoring partial downloads and other files."""
    return sorted(
        path
        for path in crates_dir.iterdir()
        if not path.name.startswith(".")
        and strip_crate_suffix(path.name) is not None
        and path.is_file()
    )


async def _extract_one(
    artifact_path: Path,
    destination_root: Path,
    update_only: bool,
    report: StageReport,
) -> None:
    try:
        extracted = await asyncio.to_thread(unpack_crate, artifact_path, destination_root, update_only)
    except MirrorError as e:
        logger.error(f"Failed to extract {artifact_path.name}: {e}")
        report.record_failure(artifact_path.name, e)
        return

    if extracted:
        logger.info(f"Extracted {artifact_path.name}")
        report.record_success()
    else:
        report.record_skip()


async def extract_crates(
    layout: MirrorLayout,
    config: MirrorConfig,
    update_only: bool = True,
    limit: Optional[int] = None,
) -> StageReport:
    """
    Extract every archive under crates/ into sources/.

    `limit` caps how many archives are scheduled for extraction in this run.
    Archives skipped because their tree already exists do not count against
    it; the count is taken before a task is spawned, so the cap is exact.
    """
    report = StageReport(stage="extract")
    if limit is not None and limit < 0:
        raise SetupError(f"limit must be >= 0, got {limit}")

    layout.ensure_dir(layout.sources_dir)
    try:
        stale = remove_stale_staging(layout.sources_dir)
        artifacts = list_artifacts(layout.crates_dir)
    except OSError as e:
        raise SetupError(f"Cannot list {layout.crates_dir}: {e}") from e
    if stale:
        report.bump("stale_staging_removed", stale)

    scheduled = 0
    async with BoundedTaskPool(config.max_parallel, name="extract") as pool:
        for artifact_path in artifacts:
            if limit is not None and scheduled >= limit:
                logger.info(f"Extraction limit of {limit} reached")
                break

            stem = strip_crate_suffix(artifact_path.name)
            if update_only and (layout.sources_dir / stem).exists():
                logger.debug(f"Already extracted, skipping {stem}")
                report.record_skip()
                continue

            logger.debug(f"Name: {artifact_path}")
            scheduled += 1
            await pool.submit(_extract_one, artifact_path, layout.sources_dir, update_only, report)

    if pool.crashed:
        report.bump("crashed", pool.crashed)
    logger.info(report.summary())
    return report
