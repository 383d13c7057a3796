"""
Download Watch Package

Detects files that appear on disk as a side effect of something else
(typically a browser download) and reports when they are completely
written.

Features:
- Native change notifications via watchdog, with a polling fallback
- Glob, regex and exact filename patterns
- Browser temp-file recognition (.crdownload, .part, ...)
- Size-stability completion heuristic with integrity checks
- Single-fulfilment waits raced against timeouts
- Multi-file waits and download manifests
"""

from .models import (
    FileEventKind,
    FileEvent,
    DownloadResult,
    DownloadRequest,
    DownloadOutcome,
    MultiDownloadOutcome,
    ManifestStatus,
    ManifestEntry,
    DownloadManifest,
    DownloadStats,
    format_file_size,
)

from .config import DownloadConfig

from .exceptions import (
    DownloadWatchError,
    DirectoryNotFoundError,
    WatcherError,
    WatcherInitError,
    WatcherPermissionError,
    WatcherNotRunningError,
    ManifestError,
)

from .patterns import PatternMatcher, is_glob, is_regex, glob_to_regex
from .stability import StabilityTracker, get_file_size, compute_progress
from .fs_watcher import (
    DirectoryWatcher,
    DownloadEventHandler,
    NativeEventSource,
    PollingEventSource,
    WatcherMode,
    WatcherState,
)
from .coordinator import PendingWait, WaitCoordinator, WaitOutcome, WaitStatus
from .directories import (
    get_default_download_directory,
    get_potential_download_directories,
    resolve_download_directory,
)
from .manifest import read_manifest, write_manifest
from .orchestrator import AtomicCounter, DownloadOrchestrator, DownloadStatistics


__all__ = [
    # Models
    "FileEventKind",
    "FileEvent",
    "DownloadResult",
    "DownloadRequest",
    "DownloadOutcome",
    "MultiDownloadOutcome",
    "ManifestStatus",
    "ManifestEntry",
    "DownloadManifest",
    "DownloadStats",
    "format_file_size",
    # Config
    "DownloadConfig",
    # Exceptions
    "DownloadWatchError",
    "DirectoryNotFoundError",
    "WatcherError",
    "WatcherInitError",
    "WatcherPermissionError",
    "WatcherNotRunningError",
    "ManifestError",
    # Components
    "PatternMatcher",
    "is_glob",
    "is_regex",
    "glob_to_regex",
    "StabilityTracker",
    "get_file_size",
    "compute_progress",
    "DirectoryWatcher",
    "DownloadEventHandler",
    "NativeEventSource",
    "PollingEventSource",
    "WatcherMode",
    "WatcherState",
    "PendingWait",
    "WaitCoordinator",
    "WaitOutcome",
    "WaitStatus",
    "get_default_download_directory",
    "get_potential_download_directories",
    "resolve_download_directory",
    "read_manifest",
    "write_manifest",
    # Main orchestrator
    "AtomicCounter",
    "DownloadOrchestrator",
    "DownloadStatistics",
]

__version__ = "0.1.0"
