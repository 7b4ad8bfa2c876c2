"""
Command-line entry point for the crates.io mirror.

    crate-mirror --workdir /srv/crates spider --only-most-recent
    crate-mirror --workdir /srv/crates extract --limit 1000
    crate-mirror --workdir /srv/crates yank
    crate-mirror --workdir /srv/crates build-latest-links
    crate-mirror --workdir /srv/crates sync
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from crate_mirror import __version__
from crate_mirror.core.dependencies import get_index_provider, load_config
from crate_mirror.domain.errors import SetupError
from crate_mirror.domain.models import StageReport
from crate_mirror.services.extractor import extract_crates
from crate_mirror.services.fetcher import spider_crates
from crate_mirror.services.latest_links import build_latest_links
from crate_mirror.services.mirror import sync_mirror
from crate_mirror.services.reconciler import reconcile
from crate_mirror.storage.layout import MirrorLayout

LOG_LEVEL_ENV_VAR = "CRATE_MIRROR_LOG"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    level_name = os.environ.get(LOG_LEVEL_ENV_VAR, "INFO").strip().upper()
    level = getattr(logging, level_name, None)
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(level=level, format=LOG_FORMAT)
    # httpx logs every request at INFO.
    if level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)


def _non_negative_int(value: str) -> int:
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"expected a non-negative integer, got {value}")
    return number


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="crate-mirror",
        description="Mirror crates.io archives and sources to local disk.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-w", "--workdir", type=Path, required=True,
                        help="Root of the mirror (crates/, sources/, latest/, trash/)")
    parser.add_argument("-c", "--config", type=Path, default=None,
                        help="YAML config file (default: <workdir>/mirror.yaml if present)")
    parser.add_argument("--index-path", type=Path, default=None,
                        help="Local checkout of the crates.io index")
    parser.add_argument("--max-parallel", type=_positive_int, default=None,
                        help="Maximum concurrent fetch/extract tasks (default: 10)")

    subparsers = parser.add_subparsers(dest="command", required=True)

    spider = subparsers.add_parser("spider", help="Download crate archives listed in the index")
    spider.add_argument("-o", "--only-most-recent", action="store_true",
                        help="Only fetch the highest version of each crate")
    spider.add_argument("-u", "--update-only", action=argparse.BooleanOptionalAction, default=True,
                        help="Skip archives already on disk (default: on)")

    extract = subparsers.add_parser("extract", help="Unpack downloaded archives into sources/")
    extract.add_argument("-l", "--limit", type=_non_negative_int, default=None,
                         help="Maximum number of archives to extract in this run")
    extract.add_argument("-u", "--update-only", action=argparse.BooleanOptionalAction, default=True,
                         help="Skip archives already extracted (default: on)")

    subparsers.add_parser("build-latest-links", help="Rebuild latest/ symlinks")
    subparsers.add_parser("yank", help="Trash or delete crates no longer in the index")

    sync = subparsers.add_parser("sync", help="Run spider, extract, yank and build-latest-links")
    sync.add_argument("-o", "--only-most-recent", action="store_true",
                      help="Only fetch the highest version of each crate")
    sync.add_argument("-l", "--limit", type=_non_negative_int, default=None,
                      help="Maximum number of archives to extract in this run")

    return parser


async def run_command(args: argparse.Namespace) -> List[StageReport]:
    layout = MirrorLayout(args.workdir)
    layout.ensure_dir(layout.workdir)
    config = load_config(
        layout.workdir,
        args.config,
        overrides={"index_path": args.index_path, "max_parallel": args.max_parallel},
    )

    if args.command == "extract":
        return [await extract_crates(layout, config, update_only=args.update_only, limit=args.limit)]

    provider = get_index_provider(config)
    if args.command == "spider":
        return [
            await spider_crates(
                layout,
                provider,
                config,
                only_most_recent=args.only_most_recent,
                update_only=args.update_only,
            )
        ]
    if args.command == "yank":
        return [await reconcile(layout, provider, config)]
    if args.command == "build-latest-links":
        return [await build_latest_links(layout, provider)]
    if args.command == "sync":
        return await sync_mirror(
            layout,
            provider,
            config,
            only_most_recent=args.only_most_recent,
            limit=args.limit,
        )
    raise SetupError(f"Unknown command: {args.command}")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging()

    try:
        reports = asyncio.run(run_command(args))
    except SetupError as e:
        logger.error(f"{args.command} aborted: {e}")
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return 130

    for report in reports:
        if report.failed:
            logger.warning(f"{report.stage}: {report.failed} item(s) failed")
    return 0


if __name__ == "__main__":
    sys.exit(main())
