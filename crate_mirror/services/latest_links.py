"""
Rebuild latest/, one symlink per crate pointing at its highest version.
"""
from __future__ import annotations

import asyncio
import logging
import os
import shutil

from crate_mirror.data.crates_index import IndexSnapshotProvider, load_snapshot
from crate_mirror.domain.errors import SetupError
from crate_mirror.domain.models import StageReport
from crate_mirror.storage.layout import MirrorLayout

logger = logging.getLogger(__name__)


def _reset_latest_dir(layout: MirrorLayout) -> None:
    latest_dir = layout.latest_dir
    try:
        if latest_dir.is_symlink() or latest_dir.is_file():
            latest_dir.unlink()
        elif latest_dir.exists():
            shutil.rmtree(latest_dir)
    except OSError as e:
        raise SetupError(f"Cannot remove {latest_dir}: {e}") from e
    layout.ensure_dir(latest_dir)


def _build_latest(layout: MirrorLayout, provider: IndexSnapshotProvider) -> StageReport:
    report = StageReport(stage="build-latest-links")
    snapshot = load_snapshot(provider)
    _reset_latest_dir(layout)

    for package in snapshot:
        highest = package.highest_version
        link_path = layout.latest_link_path(highest.name, highest.version)
        source_path = layout.source_path(highest.name, highest.version)
        target = os.path.relpath(source_path, link_path.parent)

        try:
            os.symlink(target, link_path, target_is_directory=True)
        except OSError as e:
            logger.error(f"Failed to link {link_path.name}: {e}")
            report.record_failure(link_path.name, e)
            continue

        # Extraction may not have caught up with the index yet.
        if not source_path.exists():
            logger.debug(f"{link_path.name} points at missing {source_path}")
            report.bump("dangling")
        report.record_success()

    return report


async def build_latest_links(layout: MirrorLayout, provider: IndexSnapshotProvider) -> StageReport:
    """
    Destroy and recreate latest/ from a fresh index snapshot.

    Links are relative (../sources/{name}-{version}) so the working
    directory can be moved. Targets are not required to exist.
    """
    report = await asyncio.to_thread(_build_latest, layout, provider)
    logger.info(report.summary())
    return report
