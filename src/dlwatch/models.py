"""Data models for the download watch package."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional
import time


class FileEventKind(Enum):
    """Kinds of change observed in a watched directory."""
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
    MOVED_FROM = "moved_from"
    MOVED_TO = "moved_to"
    ATTRIBUTES_CHANGED = "attributes_changed"


@dataclass(frozen=True)
class FileEvent:
    """
    A single normalized change in a watched directory.

    Attributes:
        path: Full absolute path to the affected file
        kind: What happened to the file
        observed_at: Unix timestamp when the watcher saw the change
        size_at_event: File size when the event was observed (0 if unknown)
    """
    path: Path
    kind: FileEventKind
    observed_at: float = field(default_factory=time.time)
    size_at_event: int = 0

    def __post_init__(self):
        if not self.path.is_absolute():
            raise ValueError(f"path must be absolute: {self.path}")

    @property
    def name(self) -> str:
        return self.path.name

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "path": str(self.path),
            "kind": self.kind.value,
            "observed_at": self.observed_at,
            "size_at_event": self.size_at_event,
        }


class DownloadResult(Enum):
    """Terminal outcome of a download wait."""
    SUCCESS = "success"
    TIMEOUT = "timeout"
    FILE_NOT_FOUND = "file_not_found"
    DIRECTORY_NOT_FOUND = "directory_not_found"
    INTEGRITY_CHECK_FAILED = "integrity_check_failed"
    PERMISSION_DENIED = "permission_denied"
    PATTERN_MATCH_FAILED = "pattern_match_failed"
    CANCELLED = "cancelled"

    def describe(self, pattern: str = "", directory: Optional[Path] = None) -> str:
        """
        Build a human-readable message for this result.

        Args:
            pattern: Filename pattern the wait was for
            directory: Directory that was watched

        Returns:
            Message naming the pattern, the directory and the failure kind
        """
        where = f" in {directory}" if directory is not None else ""
        if self is DownloadResult.SUCCESS:
            return f"Download completed successfully: '{pattern}'{where}"
        if self is DownloadResult.TIMEOUT:
            return f"Download timeout waiting for '{pattern}'{where}"
        if self is DownloadResult.FILE_NOT_FOUND:
            return f"No file matching pattern '{pattern}' found{where}"
        if self is DownloadResult.DIRECTORY_NOT_FOUND:
            return f"Download directory not found: {directory}"
        if self is DownloadResult.INTEGRITY_CHECK_FAILED:
            return f"Download integrity check failed for '{pattern}'{where}"
        if self is DownloadResult.PERMISSION_DENIED:
            return f"Permission denied watching download directory {directory}"
        if self is DownloadResult.PATTERN_MATCH_FAILED:
            return f"Pattern matching failed for '{pattern}'{where}"
        return f"Download wait for '{pattern}' cancelled{where}"


@dataclass(frozen=True)
class DownloadRequest:
    """
    What a caller wants to wait for.

    Fields left as None take the orchestrator configuration captured
    when the request is submitted.

    Attributes:
        pattern: Exact filename, glob (``report*.pdf``) or ``/regex/``
        directory: Directory to watch (None for the default download folder)
        timeout_ms: Deadline for discovery and completion together
        stability_ms: Quiet window the file size must hold still for
        expected_size: Exact size the finished file must have
        verify_integrity: Whether to run integrity checks after stability
    """
    pattern: str
    directory: Optional[Path] = None
    timeout_ms: Optional[int] = None
    stability_ms: Optional[int] = None
    expected_size: Optional[int] = None
    verify_integrity: Optional[bool] = None

    def __post_init__(self):
        if isinstance(self.directory, str):
            object.__setattr__(self, "directory", Path(self.directory))


@dataclass(frozen=True)
class DownloadOutcome:
    """Result of one download wait."""
    result: DownloadResult
    pattern: str
    directory: Optional[Path] = None
    path: Optional[Path] = None
    message: str = ""
    elapsed_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.result is DownloadResult.SUCCESS

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "result": self.result.value,
            "pattern": self.pattern,
            "directory": str(self.directory) if self.directory else None,
            "path": str(self.path) if self.path else None,
            "message": self.message,
            "elapsed_ms": self.elapsed_ms,
        }


@dataclass(frozen=True)
class MultiDownloadOutcome:
    """Result of waiting for several patterns against one deadline."""
    result: DownloadResult
    outcomes: List[DownloadOutcome] = field(default_factory=list)
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.result is DownloadResult.SUCCESS

    @property
    def paths(self) -> List[Path]:
        return [o.path for o in self.outcomes if o.ok and o.path is not None]

    def __len__(self) -> int:
        return len(self.outcomes)

    def __iter__(self):
        return iter(self.outcomes)


class ManifestStatus(Enum):
    """Per-entry state of a download manifest."""
    PENDING = "pending"
    FOUND = "found"
    VERIFIED = "verified"


@dataclass
class ManifestEntry:
    """One expected file in a manifest."""
    name: str
    status: ManifestStatus = ManifestStatus.PENDING
    path: Optional[Path] = None


@dataclass
class DownloadManifest:
    """
    Ordered checklist of files expected from a batch of downloads.

    Attributes:
        manifest_path: Where the checklist lives on disk
        entries: Expected names in file order
        directory: Directory the entries are resolved against
    """
    manifest_path: Path
    entries: List[ManifestEntry] = field(default_factory=list)
    directory: Optional[Path] = None

    @property
    def names(self) -> List[str]:
        return [e.name for e in self.entries]

    @property
    def is_complete(self) -> bool:
        return all(e.status is ManifestStatus.VERIFIED for e in self.entries)

    def pending(self) -> List[ManifestEntry]:
        """Entries that are not verified yet."""
        return [e for e in self.entries if e.status is not ManifestStatus.VERIFIED]

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)


@dataclass(frozen=True)
class DownloadStats:
    """Point-in-time copy of an orchestrator's counters."""
    active: int = 0
    completed: int = 0
    failed: int = 0
    average_completion_ms: int = 0


def format_file_size(size: int) -> str:
    """
    Format a byte count for log messages.

    Args:
        size: Size in bytes

    Returns:
        Size with a unit, e.g. ``512 B`` or ``1.5 MB``
    """
    units = ["B", "KB", "MB", "GB", "TB"]
    value = float(size)
    order = 0
    while value >= 1024 and order < len(units) - 1:
        value /= 1024
        order += 1
    if order == 0:
        return f"{int(value)} {units[0]}"
    return f"{value:.1f} {units[order]}"
