"""
Download crate archives from crates.io into the mirror.
"""
from __future__ import annotations

import asyncio
import logging
import os
from typing import List, Optional

import aiofiles
import httpx

from crate_mirror.data.crates_index import IndexSnapshotProvider, load_snapshot
from crate_mirror.domain.crate_utils import crate_url
from crate_mirror.domain.errors import MirrorError, RetrievalError, StorageError
from crate_mirror.domain.models import MirrorConfig, PackageVersion, StageReport
from crate_mirror.services.pool import BoundedTaskPool
from crate_mirror.storage.layout import MirrorLayout

logger = logging.getLogger(__name__)


def build_http_client(config: MirrorConfig) -> httpx.AsyncClient:
    """Shared client for one spider run, sized to the task pool."""
    return httpx.AsyncClient(
        follow_redirects=True,
        timeout=config.request_timeout,
        limits=httpx.Limits(
            max_connections=config.max_parallel,
            max_keepalive_connections=config.max_parallel,
        ),
    )


def _is_retryable(error: httpx.HTTPError) -> bool:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code >= 500
    return isinstance(error, httpx.TransportError)


class CrateDownloader:
    """Downloads single crate archives into crates/."""

    def __init__(
        self,
        layout: MirrorLayout,
        client: httpx.AsyncClient,
        attempts: int = 3,
        retry_delay: float = 1.0,
    ):
        self.layout = layout
        self.client = client
        self.attempts = attempts
        self.retry_delay = retry_delay

    async def fetch(self, name: str, version: str, update_only: bool = True) -> bool:
        """
        Make sure crates/{name}-{version}.crate is on disk.

        In update-only mode an existing file is kept; otherwise it is removed
        and downloaded again. Returns True if a download happened.
        """
        target_path = self.layout.artifact_path(name, version)

        if target_path.exists():
            if update_only:
                logger.debug(f"Already present, skipping {target_path.name}")
                return False
            try:
                target_path.unlink()
            except OSError as e:
                raise StorageError(target_path, f"cannot remove for refresh: {e}") from e

        url = crate_url(name, version)
        tmp_path = self.layout.partial_artifact_path(name, version)
        # Leftover from an interrupted run.
        try:
            tmp_path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(tmp_path, f"cannot remove stale partial download: {e}") from e

        await self._download(name, version, url, tmp_path)

        try:
            tmp_path.replace(target_path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise StorageError(target_path, f"cannot move download into place: {e}") from e

        logger.info(target_path.name)
        return True

    async def _download(self, name: str, version: str, url: str, tmp_path: os.PathLike) -> None:
        for attempt in range(1, self.attempts + 1):
            logger.debug(f"Fetching {url} (attempt {attempt}/{self.attempts})")
            try:
                async with self.client.stream("GET", url) as response:
                    response.raise_for_status()
                    async with aiofiles.open(tmp_path, "wb") as f:
                        async for chunk in response.aiter_bytes():
                            await f.write(chunk)
                return
            except httpx.HTTPError as e:
                await self._discard(tmp_path)
                if attempt < self.attempts and _is_retryable(e):
                    logger.warning(
                        f"Download of {url} failed (attempt {attempt}/{self.attempts}): {e}. Retrying..."
                    )
                    await asyncio.sleep(self.retry_delay * attempt)
                    continue
                raise RetrievalError(name, version, f"GET {url} failed: {e}") from e
            except OSError as e:
                await self._discard(tmp_path)
                raise StorageError(tmp_path, f"cannot write download: {e}") from e

    async def _discard(self, tmp_path: os.PathLike) -> None:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove partial download {tmp_path}: {e}")


async def _fetch_package(
    downloader: CrateDownloader,
    versions: List[PackageVersion],
    update_only: bool,
    report: StageReport,
) -> None:
    # One permit covers every version of the crate; they download in index order.
    for version in versions:
        try:
            downloaded = await downloader.fetch(version.name, version.version, update_only)
        except MirrorError as e:
            logger.error(f"Failed to fetch {version.name} {version.version}: {e}")
            report.record_failure(version.identifier, e)
            continue
        except Exception as e:
            logger.exception(f"Unexpected error fetching {version.name} {version.version}")
            report.record_failure(version.identifier, e)
            continue
        if downloaded:
            report.record_success()
        else:
            report.record_skip()


async def spider_crates(
    layout: MirrorLayout,
    provider: IndexSnapshotProvider,
    config: MirrorConfig,
    only_most_recent: bool = False,
    update_only: bool = True,
    client: Optional[httpx.AsyncClient] = None,
) -> StageReport:
    """
    Download every crate version listed in the index.

    Setup problems (crates/ cannot be created, index unreadable or empty)
    raise SetupError. Failures of single downloads are recorded in the
    returned report.
    """
    report = StageReport(stage="spider")
    layout.ensure_dir(layout.crates_dir)
    snapshot = await asyncio.to_thread(load_snapshot, provider)

    owns_client = client is None
    if client is None:
        client = build_http_client(config)

    downloader = CrateDownloader(
        layout,
        client,
        attempts=config.download_attempts,
        retry_delay=config.retry_delay,
    )

    try:
        async with BoundedTaskPool(config.max_parallel, name="spider") as pool:
            for package in snapshot:
                versions = package.select(only_most_recent)
                logger.debug(f"Scheduling {package.name}: {[v.version for v in versions]}")
                await pool.submit(_fetch_package, downloader, versions, update_only, report)
        if pool.crashed:
            report.bump("crashed", pool.crashed)
    finally:
        if owns_client:
            await client.aclose()

    logger.info(report.summary())
    return report
