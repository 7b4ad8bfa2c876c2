"""Shared fixtures: fake index providers, crate archives and HTTP clients."""

import io
import json
import tarfile
from pathlib import Path
from typing import Callable, Dict, List

import httpx
import pytest

from crate_mirror.data.crates_index import IndexSnapshotProvider
from crate_mirror.domain.crate_utils import index_file_path, version_key
from crate_mirror.domain.models import (
    IndexSnapshot,
    MirrorConfig,
    PackageReleases,
    PackageVersion,
)
from crate_mirror.storage.layout import MirrorLayout


class StaticIndex(IndexSnapshotProvider):
    """In-memory index: {name: [versions in index order]}."""

    def __init__(self, crates: Dict[str, List[str]]):
        self.crates = crates
        self.loads = 0

    def load(self) -> IndexSnapshot:
        self.loads += 1
        packages = []
        for name, versions in self.crates.items():
            records = tuple(PackageVersion(name, v) for v in versions)
            highest = max(records, key=lambda r: version_key(r.version))
            packages.append(PackageReleases(name=name, versions=records, highest_version=highest))
        return IndexSnapshot(packages=packages)


def write_index(root: Path, crates: Dict[str, List[str]]) -> Path:
    """Write a crates.io style index tree."""
    root.mkdir(parents=True, exist_ok=True)
    (root / "config.json").write_text(
        json.dumps({"dl": "https://static.crates.io/crates", "api": "https://crates.io"}),
        encoding="utf-8",
    )
    for name, versions in crates.items():
        path = root / index_file_path(name)
        path.parent.mkdir(parents=True, exist_ok=True)
        lines = [
            json.dumps({"name": name, "vers": v, "deps": [], "cksum": "0" * 64, "features": {}, "yanked": False})
            for v in versions
        ]
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return root


def crate_bytes(name: str, version: str, files: Dict[str, str] | None = None) -> bytes:
    """Gzipped tarball laid out like a published .crate."""
    files = files or {
        "Cargo.toml": f'[package]\nname = "{name}"\nversion = "{version}"\n',
        "src/lib.rs": "pub fn it_works() {}\n",
    }
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as archive:
        for rel_path, content in files.items():
            data = content.encode("utf-8")
            info = tarfile.TarInfo(name=f"{name}-{version}/{rel_path}")
            info.size = len(data)
            archive.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def write_crate(crates_dir: Path, name: str, version: str) -> Path:
    crates_dir.mkdir(parents=True, exist_ok=True)
    path = crates_dir / f"{name}-{version}.crate"
    path.write_bytes(crate_bytes(name, version))
    return path


def crate_server(requests: List[str], status_for: Callable[[str], int] | None = None):
    """Handler serving a tiny crate for any /crates/{name}/{file} URL."""

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        requests.append(url)
        status = status_for(url) if status_for else 200
        if status != 200:
            return httpx.Response(status, text="error")
        filename = request.url.path.rsplit("/", 1)[-1]
        return httpx.Response(200, content=b"crate:" + filename.encode())

    return handler


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def layout(tmp_path):
    return MirrorLayout(tmp_path / "mirror")


@pytest.fixture
def config():
    return MirrorConfig(max_parallel=3, retry_delay=0.0)
