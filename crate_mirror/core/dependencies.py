from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from crate_mirror.data.crates_index import (
    CratesIndexReader,
    IndexSnapshotProvider,
    default_index_path,
)
from crate_mirror.domain.errors import SetupError
from crate_mirror.domain.models import MirrorConfig

CONFIG_FILENAME = "mirror.yaml"


def _read_config_file(path: Path) -> Dict[str, Any]:
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise SetupError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise SetupError(f"Invalid YAML in config file {path}: {e}") from e

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise SetupError(f"Config file {path} must contain a mapping")
    return raw


def load_config(
    workdir: Path,
    config_path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> MirrorConfig:
    """
    Build the run configuration.

    Priority:
    1. Non-None values in `overrides` (command-line flags)
    2. The file at `config_path`, or <workdir>/mirror.yaml if it exists
    3. MirrorConfig defaults
    """
    data: Dict[str, Any] = {}
    if config_path is not None:
        data = _read_config_file(Path(config_path).expanduser())
    else:
        default_path = Path(workdir) / CONFIG_FILENAME
        if default_path.exists():
            data = _read_config_file(default_path)

    for key, value in (overrides or {}).items():
        if value is not None:
            data[key] = value

    try:
        return MirrorConfig(**data)
    except ValidationError as e:
        raise SetupError(f"Invalid configuration: {e}") from e


def get_index_provider(config: MirrorConfig) -> IndexSnapshotProvider:
    index_path = config.index_path
    if index_path is None:
        index_path = default_index_path()
    if index_path is None:
        raise SetupError(
            "No crates index found; set index_path in mirror.yaml or pass --index-path"
        )
    return CratesIndexReader(Path(index_path).expanduser())
