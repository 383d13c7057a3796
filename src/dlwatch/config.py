"""Configuration for the download watch package."""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import List, Optional

from .patterns import DEFAULT_TEMP_PREFIXES, DEFAULT_TEMP_SUFFIXES

DEFAULT_TIMEOUT_MS = 30000
DEFAULT_STABILITY_MS = 2000
DEFAULT_POLL_INTERVAL_MS = 500
DOWNLOAD_DIR_ENV = "DLWATCH_DOWNLOAD_DIR"

_TRUE_VALUES = ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in _TRUE_VALUES


@dataclass
class DownloadConfig:
    """
    Configuration options for download detection.

    Attributes:
        timeout_ms: Default deadline for a download wait
        stability_ms: Quiet window a file size must hold before it counts as complete
        poll_interval_ms: Scan interval of the polling fallback watcher
        stability_probe_interval_ms: Interval between size samples while checking stability
        in_progress_probe_ms: Probe window used by ``is_download_in_progress``
            and manifest checks
        verify_integrity: Whether completed downloads are integrity-checked
        force_polling: Skip native change notifications and always poll
        dedup_window_ms: Identical events for a path inside this window are dropped
        download_dir: Default download directory (None to auto-detect)
        download_dir_env: Environment variable that overrides the download directory
        temp_suffixes: Browser temp-file suffixes
        temp_prefixes: Temp-file name prefixes
    """
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    stability_ms: int = DEFAULT_STABILITY_MS
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS
    stability_probe_interval_ms: int = 100
    in_progress_probe_ms: int = 500
    verify_integrity: bool = True
    force_polling: bool = False
    dedup_window_ms: int = 50
    download_dir: Optional[Path] = None
    download_dir_env: str = DOWNLOAD_DIR_ENV
    temp_suffixes: List[str] = field(default_factory=lambda: list(DEFAULT_TEMP_SUFFIXES))
    temp_prefixes: List[str] = field(default_factory=lambda: list(DEFAULT_TEMP_PREFIXES))

    def __post_init__(self):
        if isinstance(self.download_dir, str):
            self.download_dir = Path(self.download_dir)
        if self.timeout_ms < 0:
            raise ValueError(f"timeout_ms must be >= 0, got {self.timeout_ms}")
        if self.stability_ms < 0:
            raise ValueError(f"stability_ms must be >= 0, got {self.stability_ms}")
        for name in ("poll_interval_ms", "stability_probe_interval_ms", "in_progress_probe_ms"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0, got {getattr(self, name)}")
        if self.dedup_window_ms < 0:
            raise ValueError(f"dedup_window_ms must be >= 0, got {self.dedup_window_ms}")

    @classmethod
    def from_env(cls, prefix: str = "DLWATCH_") -> "DownloadConfig":
        """
        Build a configuration from environment variables.

        Reads ``<prefix>TIMEOUT_MS``, ``<prefix>STABILITY_MS``,
        ``<prefix>POLL_INTERVAL_MS``, ``<prefix>VERIFY_INTEGRITY``,
        ``<prefix>FORCE_POLLING`` and ``<prefix>DOWNLOAD_DIR``.

        Args:
            prefix: Variable name prefix

        Returns:
            Configuration with defaults for anything unset
        """
        download_dir = os.environ.get(f"{prefix}DOWNLOAD_DIR")
        return cls(
            timeout_ms=_env_int(f"{prefix}TIMEOUT_MS", DEFAULT_TIMEOUT_MS),
            stability_ms=_env_int(f"{prefix}STABILITY_MS", DEFAULT_STABILITY_MS),
            poll_interval_ms=_env_int(f"{prefix}POLL_INTERVAL_MS", DEFAULT_POLL_INTERVAL_MS),
            verify_integrity=_env_bool(f"{prefix}VERIFY_INTEGRITY", True),
            force_polling=_env_bool(f"{prefix}FORCE_POLLING", False),
            download_dir=Path(download_dir) if download_dir else None,
            download_dir_env=f"{prefix}DOWNLOAD_DIR",
        )

    def copy(self) -> "DownloadConfig":
        """Independent copy, used to pin configuration for an in-flight request."""
        return replace(
            self,
            temp_suffixes=list(self.temp_suffixes),
            temp_prefixes=list(self.temp_prefixes),
        )
