import re
from typing import Optional, Tuple

CRATES_BASE_URL = "https://static.crates.io/crates"
CRATE_SUFFIX = ".crate"

_SEMVER_RE = re.compile(
    r"^(?P<major>0|[1-9]\d*)\.(?P<minor>0|[1-9]\d*)\.(?P<patch>0|[1-9]\d*)"
    r"(?:-(?P<pre>[0-9A-Za-z.-]+))?"
    r"(?:\+[0-9A-Za-z.-]+)?$"
)


def crate_identifier(name: str, version: str) -> str:
    return f"{name}-{version}"


def artifact_filename(name: str, version: str) -> str:
    return f"{crate_identifier(name, version)}{CRATE_SUFFIX}"


def crate_url(name: str, version: str) -> str:
    """
    Download location of a crate archive on the crates.io CDN.
    """
    return f"{CRATES_BASE_URL}/{name}/{artifact_filename(name, version)}"


def strip_crate_suffix(filename: str) -> Optional[str]:
    """
    Map an artifact filename back to its identifier.

    Returns None for files that are not crate archives.
    """
    if not filename.endswith(CRATE_SUFFIX) or len(filename) == len(CRATE_SUFFIX):
        return None
    return filename[: -len(CRATE_SUFFIX)]


def index_file_path(name: str) -> str:
    """
    Relative path of a crate's file inside the crates.io index.
    """
    lowered = name.lower()
    if len(lowered) == 1:
        return f"1/{lowered}"
    if len(lowered) == 2:
        return f"2/{lowered}"
    if len(lowered) == 3:
        return f"3/{lowered[0]}/{lowered}"
    return f"{lowered[0:2]}/{lowered[2:4]}/{lowered}"


def _fallback_key(v: str) -> tuple:
    parts = []
    for part in v.replace("-", ".").split("."):
        try:
            parts.append((0, int(part)))
        except ValueError:
            parts.append((1, part))
    return tuple(parts)


def version_key(v: str) -> Tuple:
    """
    Convert a version string into a sortable key following semver precedence.

    Pre-releases sort below the matching release and build metadata is
    ignored. Strings that are not semver sort below every semver version,
    ordered by a dotted numeric/text key.
    """
    v_str = str(v) if v is not None else ""
    match = _SEMVER_RE.match(v_str)
    if not match:
        return (0, _fallback_key(v_str))

    core = (int(match["major"]), int(match["minor"]), int(match["patch"]))
    pre = match["pre"]
    if pre is None:
        # A release outranks any of its pre-releases.
        return (1, core, (1,))

    identifiers = []
    for ident in pre.split("."):
        if ident.isdigit():
            identifiers.append((0, int(ident), ""))
        else:
            identifiers.append((1, 0, ident))
    return (1, core, (0, tuple(identifiers)))
