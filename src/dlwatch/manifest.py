"""Line-oriented download manifest files."""

import logging
from pathlib import Path
from typing import Iterable, List, Optional, Union

from .exceptions import ManifestError
from .models import DownloadManifest, ManifestEntry

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

COMMENT_PREFIX = "#"


def parse_manifest(text: str) -> List[str]:
    """
    Extract entry names from manifest text.

    Blank lines and ``#`` comments are skipped; surrounding whitespace is
    stripped.
    """
    names = []
    for line in text.splitlines():
        name = line.strip()
        if not name or name.startswith(COMMENT_PREFIX):
            continue
        names.append(name)
    return names


def write_manifest(
    names: Iterable[str],
    manifest_path: PathLike,
    directory: Optional[PathLike] = None,
) -> DownloadManifest:
    """
    Persist a manifest with every entry pending.

    Args:
        names: Expected filenames or patterns, in order
        manifest_path: File to write (parent directories are created)
        directory: Directory the entries resolve against (default: the
            manifest's own directory)

    Returns:
        The in-memory manifest

    Raises:
        ManifestError: If the file cannot be written
        ValueError: If an entry is empty or spans several lines
    """
    path = Path(manifest_path)
    entries = []
    for name in names:
        name = name.strip()
        if not name or "\n" in name or "\r" in name:
            raise ValueError(f"Invalid manifest entry: {name!r}")
        entries.append(ManifestEntry(name=name))

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("".join(f"{e.name}\n" for e in entries), encoding="utf-8")
    except OSError as e:
        raise ManifestError(f"Cannot write manifest {path}: {e}")

    logger.debug(f"Wrote manifest {path} with {len(entries)} entries")
    return DownloadManifest(
        manifest_path=path,
        entries=entries,
        directory=Path(directory) if directory is not None else path.parent,
    )


def read_manifest(
    manifest_path: PathLike,
    directory: Optional[PathLike] = None,
) -> DownloadManifest:
    """
    Load a manifest; every entry starts out pending.

    Raises:
        ManifestError: If the file is missing or unreadable
    """
    path = Path(manifest_path)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ManifestError(f"Manifest not found: {path}")
    except (OSError, UnicodeDecodeError) as e:
        raise ManifestError(f"Cannot read manifest {path}: {e}")

    return DownloadManifest(
        manifest_path=path,
        entries=[ManifestEntry(name=name) for name in parse_manifest(text)],
        directory=Path(directory) if directory is not None else path.parent,
    )
