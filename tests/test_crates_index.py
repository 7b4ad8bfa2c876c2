"""Tests for reading a local crates.io index checkout."""

import json
import logging

import pytest

from crate_mirror.data.crates_index import CratesIndexReader, default_index_path
from crate_mirror.domain.errors import SetupError

from conftest import write_index


def test_load_reads_every_crate(tmp_path):
    root = write_index(tmp_path / "index", {"pkg-a": ["1.0.0", "2.0.0"], "ab": ["0.1.0"], "xyz": ["3.0.0"]})

    snapshot = CratesIndexReader(root).load()

    by_name = {p.name: p for p in snapshot}
    assert set(by_name) == {"pkg-a", "ab", "xyz"}
    assert [v.version for v in by_name["pkg-a"].versions] == ["1.0.0", "2.0.0"]
    assert by_name["pkg-a"].highest_version.version == "2.0.0"
    assert snapshot.identifiers() == {"pkg-a-1.0.0", "pkg-a-2.0.0", "ab-0.1.0", "xyz-3.0.0"}


def test_highest_version_uses_semver_not_file_order(tmp_path):
    root = write_index(tmp_path / "index", {"tokio": ["1.10.0", "1.9.0", "2.0.0-alpha.1"]})

    (package,) = CratesIndexReader(root).load().packages

    assert package.highest_version.version == "2.0.0-alpha.1"
    assert [v.version for v in package.versions] == ["1.10.0", "1.9.0", "2.0.0-alpha.1"]


def test_ignores_git_dir_config_and_duplicates(tmp_path):
    root = write_index(tmp_path / "index", {"serde": ["1.0.0", "1.0.0", "1.0.1"]})
    (root / ".git").mkdir()
    (root / ".git" / "HEAD").write_text('{"name": "bogus", "vers": "9.9.9"}\n')

    snapshot = CratesIndexReader(root).load()

    assert [p.name for p in snapshot] == ["serde"]
    assert [v.version for v in snapshot.packages[0].versions] == ["1.0.0", "1.0.1"]


def test_malformed_lines_are_skipped(tmp_path, caplog):
    root = write_index(tmp_path / "index", {"rand": ["0.8.5"]})
    crate_file = root / "ra" / "nd" / "rand"
    crate_file.write_text(crate_file.read_text() + "not json\n" + json.dumps({"name": "rand"}) + "\n")

    with caplog.at_level(logging.WARNING, logger="crate_mirror.data.crates_index"):
        snapshot = CratesIndexReader(root).load()

    assert snapshot.identifiers() == {"rand-0.8.5"}
    assert sum("Skipping malformed index line" in r.message for r in caplog.records) == 2


def test_undecodable_line_is_skipped(tmp_path, caplog):
    root = write_index(tmp_path / "index", {"rand": ["0.8.5"], "serde": ["1.0.0"]})
    crate_file = root / "ra" / "nd" / "rand"
    crate_file.write_bytes(crate_file.read_bytes() + b'{"name":"rand","vers":"\xff"}\n')

    with caplog.at_level(logging.WARNING, logger="crate_mirror.data.crates_index"):
        snapshot = CratesIndexReader(root).load()

    assert snapshot.identifiers() == {"rand-0.8.5", "serde-1.0.0"}
    assert sum("Skipping malformed index line" in r.message for r in caplog.records) == 1


def test_empty_index_is_fatal(tmp_path):
    root = write_index(tmp_path / "index", {})
    with pytest.raises(SetupError, match="lists no crates"):
        CratesIndexReader(root).load()


def test_missing_index_is_fatal(tmp_path):
    with pytest.raises(SetupError, match="not found"):
        CratesIndexReader(tmp_path / "nope").load()


def test_default_index_path_uses_cargo_home(tmp_path, monkeypatch):
    index_dir = tmp_path / "cargo" / "registry" / "index" / "github.com-1ecc6299db9ec823"
    write_index(index_dir, {"a": ["1.0.0"]})
    monkeypatch.setenv("CARGO_HOME", str(tmp_path / "cargo"))

    assert default_index_path() == index_dir


def test_default_index_path_missing(tmp_path, monkeypatch):
    monkeypatch.setenv("CARGO_HOME", str(tmp_path / "empty"))
    assert default_index_path() is None
