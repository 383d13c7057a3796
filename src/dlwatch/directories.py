"""Download directory resolution and filesystem helpers."""

import logging
import os
import re
import shutil
import sys
from pathlib import Path
from typing import List, Optional, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

FALLBACK_DIR_NAME = "downloads"

# Localized names of the downloads folder, most common first
LOCALIZED_DOWNLOAD_DIRS = (
    "Downloads",
    "downloads",
    "Download",
    "下载",
    "Téléchargements",
    "Descargas",
)

_XDG_DOWNLOAD_RE = re.compile(r'^\s*XDG_DOWNLOAD_DIR\s*=\s*"?([^"\n]+)"?', re.MULTILINE)


def get_home_directory() -> Path:
    """Current user's home directory (``HOME``, ``USERPROFILE``, then pwd lookup)."""
    home = os.environ.get("HOME") or os.environ.get("USERPROFILE")
    return Path(home) if home else Path.home()


def read_xdg_download_dir(home: Optional[Path] = None) -> Optional[Path]:
    """
    Look up the XDG downloads folder.

    Checks ``XDG_DOWNLOAD_DIR`` first, then ``user-dirs.dirs`` in the XDG
    config directory.

    Args:
        home: Home directory used to expand ``$HOME``

    Returns:
        The configured folder, or None if nothing is configured
    """
    home = home or get_home_directory()
    configured = os.environ.get("XDG_DOWNLOAD_DIR")
    if configured:
        return Path(configured.replace("$HOME", str(home))).expanduser()

    config_home = os.environ.get("XDG_CONFIG_HOME") or str(home / ".config")
    user_dirs = Path(config_home) / "user-dirs.dirs"
    if not user_dirs.is_file():
        return None
    try:
        raw = user_dirs.read_text(encoding="utf-8", errors="ignore")
    except OSError as e:
        logger.debug(f"Could not read {user_dirs}: {e}")
        return None
    match = _XDG_DOWNLOAD_RE.search(raw)
    if not match:
        return None
    value = match.group(1).strip().replace("$HOME", str(home))
    return Path(value).expanduser()


def _windows_downloads_dir() -> Optional[Path]:
    """Ask the shell for FOLDERID_Downloads."""
    try:
        import ctypes
        import uuid
        from ctypes import wintypes

        class GUID(ctypes.Structure):
            _fields_ = [
                ("Data1", wintypes.DWORD),
                ("Data2", wintypes.WORD),
                ("Data3", wintypes.WORD),
                ("Data4", wintypes.BYTE * 8),
            ]

        get_known_folder = ctypes.windll.shell32.SHGetKnownFolderPath
        get_known_folder.argtypes = [
            ctypes.POINTER(GUID),
            wintypes.DWORD,
            wintypes.HANDLE,
            ctypes.POINTER(ctypes.c_wchar_p),
        ]

        folder_id = uuid.UUID("{374DE290-123F-4565-9164-39C4925E467B}")
        guid = GUID()
        guid.Data1 = folder_id.time_low
        guid.Data2 = folder_id.time_mid
        guid.Data3 = folder_id.time_hi_version
        for i in range(8):
            guid.Data4[i] = folder_id.bytes[8 + i]

        path_ptr = ctypes.c_wchar_p()
        if get_known_folder(ctypes.byref(guid), 0, None, ctypes.byref(path_ptr)) != 0:
            return None
        path = path_ptr.value
        ctypes.windll.ole32.CoTaskMemFree(path_ptr)
        return Path(path) if path else None
    except (AttributeError, OSError, ValueError) as e:
        logger.debug(f"Known-folder lookup for Downloads failed: {e}")
        return None


def get_platform_download_directory() -> Optional[Path]:
    """
    The platform's conventional downloads folder, if it exists.

    Returns:
        Existing directory, or None when no convention applies here
    """
    home = get_home_directory()

    if os.name == "nt":
        candidate = _windows_downloads_dir()
        if candidate is not None and candidate.is_dir():
            return candidate
        profile = os.environ.get("USERPROFILE")
        candidate = Path(profile) / "Downloads" if profile else home / "Downloads"
        return candidate if candidate.is_dir() else None

    if sys.platform == "darwin":
        candidate = home / "Downloads"
        return candidate if candidate.is_dir() else None

    candidate = read_xdg_download_dir(home)
    if candidate is not None and candidate.is_dir():
        return candidate
    for name in LOCALIZED_DOWNLOAD_DIRS:
        candidate = home / name
        if candidate.is_dir():
            return candidate
    return None


def get_default_download_directory(
    env_var: Optional[str] = "DLWATCH_DOWNLOAD_DIR",
    cwd: Optional[Path] = None,
) -> Path:
    """
    Work out where downloads land when the caller does not say.

    Order: the ``env_var`` override, the platform downloads folder, and
    finally ``<cwd>/downloads``, which is created if absent.

    Args:
        env_var: Environment variable naming an override directory
        cwd: Base for the last-resort directory (default: current directory)

    Returns:
        Absolute path of the directory to watch
    """
    if env_var:
        override = os.environ.get(env_var)
        if override and Path(override).is_dir():
            return Path(override).absolute()

    platform_dir = get_platform_download_directory()
    if platform_dir is not None:
        return platform_dir.absolute()

    fallback = (cwd or Path.cwd()) / FALLBACK_DIR_NAME
    if ensure_directory(fallback):
        logger.debug(f"Using fallback download directory {fallback}")
    return fallback.absolute()


def resolve_download_directory(
    explicit: Optional[PathLike] = None,
    env_var: Optional[str] = "DLWATCH_DOWNLOAD_DIR",
) -> Path:
    """An explicit directory if given, otherwise the default download directory."""
    if explicit is not None and os.fspath(explicit):
        return Path(explicit).expanduser().absolute()
    return get_default_download_directory(env_var)


def get_potential_download_directories() -> List[Path]:
    """
    Every existing directory that could plausibly hold browser downloads.

    Returns:
        Unique existing directories, most likely first
    """
    home = get_home_directory()
    candidates: List[Path] = []
    platform_dir = get_platform_download_directory()
    if platform_dir is not None:
        candidates.append(platform_dir)
    candidates.extend(home / name for name in LOCALIZED_DOWNLOAD_DIRS)
    candidates.extend([home / "Desktop", Path.cwd() / FALLBACK_DIR_NAME])

    seen = set()
    result: List[Path] = []
    for candidate in candidates:
        if not candidate.is_dir():
            continue
        # Case-insensitive filesystems report Downloads and downloads as one folder
        key = os.path.normcase(str(candidate.resolve()))
        if key in seen:
            continue
        seen.add(key)
        result.append(candidate.absolute())
    return result


def ensure_directory(directory: PathLike) -> bool:
    """
    Create a directory (and parents) if it does not exist.

    Returns:
        True if the directory exists afterwards
    """
    path = Path(directory)
    if path.is_dir():
        return True
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.warning(f"Could not create directory {path}: {e}")
        return False
    return path.is_dir()


def has_insufficient_disk_space(directory: PathLike, required_bytes: int) -> bool:
    """
    Check whether a directory's filesystem lacks room for a download.

    Args:
        directory: Directory the file will be written to
        required_bytes: Space needed

    Returns:
        True if free space is known and smaller than ``required_bytes``
    """
    try:
        usage = shutil.disk_usage(os.fspath(directory))
    except OSError as e:
        logger.debug(f"Could not determine free space in {directory}: {e}")
        return False
    return usage.free < required_bytes
