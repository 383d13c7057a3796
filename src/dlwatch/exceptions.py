"""Custom exceptions for the download watch package."""


class DownloadWatchError(Exception):
    """Base exception for all download watch errors."""
    pass


class DirectoryNotFoundError(DownloadWatchError):
    """Download directory does not exist."""
    pass


class WatcherError(DownloadWatchError):
    """Error related to directory observation."""
    pass


class WatcherInitError(WatcherError):
    """Native change notifications could not be set up for a directory."""
    pass


class WatcherPermissionError(WatcherError):
    """Directory exists but cannot be opened for watching or listing."""
    pass


class WatcherNotRunningError(WatcherError):
    """Operation requires an active watcher."""
    pass


class ManifestError(DownloadWatchError):
    """Manifest file is missing or cannot be read."""
    pass
