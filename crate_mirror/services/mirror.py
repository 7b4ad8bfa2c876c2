"""
Full mirror run: fetch, extract, reconcile and relink in one go.
"""
from __future__ import annotations

import logging
from typing import List, Optional

import httpx

from crate_mirror.data.crates_index import IndexSnapshotProvider
from crate_mirror.domain.models import MirrorConfig, StageReport
from crate_mirror.services.extractor import extract_crates
from crate_mirror.services.fetcher import spider_crates
from crate_mirror.services.latest_links import build_latest_links
from crate_mirror.services.reconciler import reconcile
from crate_mirror.storage.layout import MirrorLayout

logger = logging.getLogger(__name__)


async def sync_mirror(
    layout: MirrorLayout,
    provider: IndexSnapshotProvider,
    config: MirrorConfig,
    only_most_recent: bool = False,
    limit: Optional[int] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> List[StageReport]:
    """
    Run every stage in order with update-only semantics.

    Each stage reads its own fresh snapshot. A SetupError in one stage stops
    the run before the next one starts.
    """
    reports: List[StageReport] = []

    logger.info("Fetching crates")
    reports.append(
        await spider_crates(
            layout,
            provider,
            config,
            only_most_recent=only_most_recent,
            update_only=True,
            client=client,
        )
    )

    logger.info("Extracting crates")
    reports.append(await extract_crates(layout, config, update_only=True, limit=limit))

    logger.info("Removing crates no longer in the index")
    reports.append(await reconcile(layout, provider, config))

    logger.info("Rebuilding latest links")
    reports.append(await build_latest_links(layout, provider))

    return reports
