"""Tests for rebuilding latest/ symlinks."""

import asyncio
import os

from crate_mirror.services.latest_links import build_latest_links

from conftest import StaticIndex


def run_build(layout, provider):
    return asyncio.run(build_latest_links(layout, provider))


def test_one_link_per_crate_at_highest_version(layout):
    (layout.sources_dir / "pkg-a-2.0.0").mkdir(parents=True)
    (layout.sources_dir / "b-0.10.0").mkdir(parents=True)

    report = run_build(layout, StaticIndex({"pkg-a": ["1.0.0", "2.0.0"], "b": ["0.10.0", "0.9.0"]}))

    assert sorted(p.name for p in layout.latest_dir.iterdir()) == ["b-0.10.0", "pkg-a-2.0.0"]
    link = layout.latest_dir / "pkg-a-2.0.0"
    assert link.is_symlink()
    assert os.readlink(link) == os.path.join("..", "sources", "pkg-a-2.0.0")
    assert link.resolve() == (layout.sources_dir / "pkg-a-2.0.0").resolve()
    assert report.succeeded == 2
    assert "dangling" not in report.counters


def test_stale_entries_removed(layout):
    layout.latest_dir.mkdir(parents=True)
    os.symlink("../sources/pkg-a-1.0.0", layout.latest_dir / "pkg-a-1.0.0")
    (layout.latest_dir / "leftover.txt").write_text("x")

    run_build(layout, StaticIndex({"pkg-a": ["1.0.0", "2.0.0"]}))

    assert [p.name for p in layout.latest_dir.iterdir()] == ["pkg-a-2.0.0"]


def test_dangling_links_allowed_and_counted(layout):
    report = run_build(layout, StaticIndex({"never-extracted": ["0.1.0"]}))

    link = layout.latest_dir / "never-extracted-0.1.0"
    assert link.is_symlink()
    assert not link.exists()
    assert report.counters["dangling"] == 1


def test_rebuild_is_idempotent(layout):
    provider = StaticIndex({"a": ["1.0.0"], "b": ["2.0.0"]})
    run_build(layout, provider)
    run_build(layout, provider)

    assert sorted(p.name for p in layout.latest_dir.iterdir()) == ["a-1.0.0", "b-2.0.0"]
    assert provider.loads == 2
