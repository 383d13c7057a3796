"""Directory watcher backed by watchdog, with a polling fallback."""

import logging
import os
import stat
import threading
import time
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from watchdog.observers import Observer
from watchdog.events import (
    FileSystemEventHandler,
    DirCreatedEvent,
    DirDeletedEvent,
    DirModifiedEvent,
    DirMovedEvent,
)

from .exceptions import (
    DirectoryNotFoundError,
    WatcherInitError,
    WatcherNotRunningError,
    WatcherPermissionError,
)
from .models import FileEvent, FileEventKind

logger = logging.getLogger(__name__)

EventCallback = Callable[[FileEvent], None]
Emit = Callable[[FileEvent], None]

# name -> (size, mtime, mode)
Snapshot = Dict[str, Tuple[int, float, int]]

ERROR_BACKOFF_SEC = 0.1
JOIN_TIMEOUT_SEC = 5.0


class WatcherState(Enum):
    """Lifecycle of a DirectoryWatcher."""
    IDLE = "idle"
    INITIALIZING = "initializing"
    ACTIVE = "active"
    STOPPING = "stopping"


class WatcherMode(Enum):
    """Which event source is feeding a DirectoryWatcher."""
    NATIVE = "native"
    POLLING = "polling"


def _file_size(path: str) -> int:
    try:
        return os.stat(path).st_size
    except OSError:
        return 0


class DownloadEventHandler(FileSystemEventHandler):
    """Handler that converts watchdog events to FileEvents."""

    def __init__(self, emit: Emit):
        super().__init__()
        self.emit = emit

    def _emit(self, kind: FileEventKind, path) -> None:
        path = os.fsdecode(path)
        size = 0 if kind in (FileEventKind.DELETED, FileEventKind.MOVED_FROM) else _file_size(path)
        self.emit(FileEvent(path=Path(path).absolute(), kind=kind, size_at_event=size))

    def on_created(self, event):
        if isinstance(event, DirCreatedEvent):
            return
        self._emit(FileEventKind.CREATED, event.src_path)

    def on_deleted(self, event):
        if isinstance(event, DirDeletedEvent):
            return
        self._emit(FileEventKind.DELETED, event.src_path)

    def on_modified(self, event):
        # Directory-level notifications carry no entry; watchdog re-scans
        # and reports the changed entries separately.
        if isinstance(event, DirModifiedEvent):
            return
        self._emit(FileEventKind.MODIFIED, event.src_path)

    def on_moved(self, event):
        if isinstance(event, DirMovedEvent):
            return
        self._emit(FileEventKind.MOVED_FROM, event.src_path)
        self._emit(FileEventKind.MOVED_TO, event.dest_path)

    def on_closed(self, event):
        # Writer closed the file (inotify IN_CLOSE_WRITE)
        self._emit(FileEventKind.MODIFIED, event.src_path)


class EventSource(ABC):
    """One way of producing FileEvents for a directory."""

    mode: WatcherMode

    @abstractmethod
    def start(self, directory: Path, emit: Emit) -> None:
        """Begin observing; raises if the source cannot be set up."""

    @abstractmethod
    def stop(self) -> None:
        """Stop observing and release every resource. Safe to call twice."""


class NativeEventSource(EventSource):
    """
    Platform change notifications through a watchdog observer.

    watchdog picks inotify on Linux, FSEvents on macOS, kqueue on BSD and
    ReadDirectoryChangesW on Windows.
    """

    mode = WatcherMode.NATIVE

    def __init__(self, observer_factory: Optional[Callable[[], object]] = None):
        self.observer_factory = observer_factory or Observer
        self._observer = None

    def start(self, directory: Path, emit: Emit) -> None:
        if self._observer is not None:
            return
        try:
            observer = self.observer_factory()
            observer.schedule(DownloadEventHandler(emit), str(directory), recursive=False)
            observer.start()
        except Exception as e:
            raise WatcherInitError(f"Native watcher unavailable for {directory}: {e}") from e
        self._observer = observer

    def stop(self) -> None:
        observer, self._observer = self._observer, None
        if observer is None:
            return
        observer.stop()
        observer.join(timeout=JOIN_TIMEOUT_SEC)


class PollingEventSource(EventSource):
    """
    Snapshot-diff polling of a directory.

    Every interval the directory listing (name, size, mtime, mode) is
    compared with the previous one and CREATED, MODIFIED,
    ATTRIBUTES_CHANGED and DELETED events are synthesized. Scan errors are
    logged and retried after a short backoff; the loop only ends on stop().
    """

    mode = WatcherMode.POLLING

    def __init__(self, poll_interval_ms: int = 500):
        self.poll_interval_ms = poll_interval_ms
        self._directory: Optional[Path] = None
        self._emit: Optional[Emit] = None
        self._snapshot: Snapshot = {}
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._failing = False

    def start(self, directory: Path, emit: Emit) -> None:
        if self._thread is not None:
            return
        try:
            snapshot = self._scan(directory)
        except PermissionError as e:
            raise WatcherPermissionError(f"Cannot list {directory}: {e}") from e
        except OSError as e:
            raise WatcherInitError(f"Cannot poll {directory}: {e}") from e

        self._directory = directory
        self._emit = emit
        self._snapshot = snapshot
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            name=f"dlwatch-poll:{directory.name}",
            daemon=True,
        )
        self._thread.start()

    def stop(self) -> None:
        thread, self._thread = self._thread, None
        if thread is None:
            return
        self._stop_event.set()
        thread.join(timeout=JOIN_TIMEOUT_SEC)

    def _run(self) -> None:
        interval = self.poll_interval_ms / 1000.0
        logger.debug(f"Polling loop started for {self._directory}, interval={interval}s")
        while not self._stop_event.wait(interval):
            try:
                new_snapshot = self._scan(self._directory)
            except OSError as e:
                if not self._failing:
                    logger.warning(f"Polling scan failed for {self._directory}: {e}")
                else:
                    logger.debug(f"Polling scan still failing for {self._directory}: {e}")
                self._failing = True
                self._stop_event.wait(ERROR_BACKOFF_SEC)
                continue
            self._failing = False
            for event in diff_snapshots(self._directory, self._snapshot, new_snapshot):
                self._emit(event)
            self._snapshot = new_snapshot
        logger.debug(f"Polling loop ended for {self._directory}")

    @staticmethod
    def _scan(directory: Path) -> Snapshot:
        results: Snapshot = {}
        with os.scandir(directory) as entries:
            for entry in entries:
                try:
                    st = entry.stat()
                except FileNotFoundError:
                    continue
                if not stat.S_ISREG(st.st_mode):
                    continue
                results[entry.name] = (st.st_size, st.st_mtime, st.st_mode)
        return results


def diff_snapshots(directory: Path, old: Snapshot, new: Snapshot) -> List[FileEvent]:
    """
    Compare two directory listings.

    Args:
        directory: Directory both snapshots were taken of
        old: Previous snapshot
        new: Current snapshot

    Returns:
        Events describing how ``old`` became ``new``
    """
    events = []
    now = time.time()
    for name, (size, mtime, mode) in new.items():
        path = directory / name
        if name not in old:
            events.append(FileEvent(path, FileEventKind.CREATED, now, size))
            continue
        old_size, old_mtime, old_mode = old[name]
        if old_size != size or old_mtime != mtime:
            events.append(FileEvent(path, FileEventKind.MODIFIED, now, size))
        elif old_mode != mode:
            events.append(FileEvent(path, FileEventKind.ATTRIBUTES_CHANGED, now, size))
    for name in old:
        if name not in new:
            events.append(FileEvent(directory / name, FileEventKind.DELETED, now, 0))
    return events


def create_event_sources(
    force_polling: bool = False,
    poll_interval_ms: int = 500,
    observer_factory: Optional[Callable[[], object]] = None,
) -> List[EventSource]:
    """
    Pick the event sources a watcher should try, in order.

    Args:
        force_polling: Skip native notifications entirely
        poll_interval_ms: Interval of the polling fallback
        observer_factory: Builds the watchdog observer for the native source

    Returns:
        Native source first (unless forced off), polling fallback last
    """
    sources: List[EventSource] = []
    if not force_polling:
        sources.append(NativeEventSource(observer_factory))
    sources.append(PollingEventSource(poll_interval_ms))
    return sources


class DirectoryWatcher:
    """
    Observes one directory and fans FileEvents out to callbacks.

    The first event source that starts wins: native notifications when
    available, otherwise polling. Callers see the same start/stop/on_event
    contract either way. Callbacks run synchronously on the watcher
    thread in registration order, so they must not block.
    """

    def __init__(
        self,
        directory: Path,
        poll_interval_ms: int = 500,
        force_polling: bool = False,
        observer_factory: Optional[Callable[[], object]] = None,
        dedup_window_ms: int = 50,
    ):
        """
        Initialize the watcher.

        Args:
            directory: Directory to observe (not recursive)
            poll_interval_ms: Scan interval when polling
            force_polling: Never try native notifications
            observer_factory: Builds the watchdog observer (default: platform Observer)
            dedup_window_ms: Identical repeats for a path inside this window are dropped
        """
        self.directory = Path(directory).absolute()
        self.poll_interval_ms = poll_interval_ms
        self.dedup_window_ms = dedup_window_ms
        self._sources = create_event_sources(force_polling, poll_interval_ms, observer_factory)
        self._source: Optional[EventSource] = None
        self._state = WatcherState.IDLE
        self._active = threading.Event()
        self._state_lock = threading.Lock()
        self._callbacks: List[EventCallback] = []
        self._callbacks_lock = threading.Lock()
        self._recent: Dict[Path, Tuple[FileEventKind, int, float]] = {}

    @property
    def state(self) -> WatcherState:
        return self._state

    @property
    def mode(self) -> Optional[WatcherMode]:
        """Mode of the running source, None when not running."""
        source = self._source
        return source.mode if source is not None else None

    @property
    def is_active(self) -> bool:
        return self._active.is_set()

    def start(self) -> WatcherMode:
        """
        Start observing. Calling it while active does nothing.

        Returns:
            The mode that ended up running

        Raises:
            DirectoryNotFoundError: If the directory does not exist
            WatcherPermissionError: If the directory cannot be opened at all
            WatcherInitError: If no event source could start
        """
        with self._state_lock:
            if self._state is WatcherState.ACTIVE:
                return self._source.mode
            if not self.directory.is_dir():
                raise DirectoryNotFoundError(f"Directory does not exist: {self.directory}")

            self._state = WatcherState.INITIALIZING
            last_error: Optional[Exception] = None
            for source in self._sources:
                try:
                    source.start(self.directory, self._dispatch)
                except WatcherPermissionError:
                    self._state = WatcherState.IDLE
                    raise
                except WatcherInitError as e:
                    logger.debug(f"{source.mode.value} watcher failed for {self.directory}: {e}")
                    last_error = e
                    continue
                self._source = source
                self._state = WatcherState.ACTIVE
                self._active.set()
                logger.info(f"Started {source.mode.value} watching for {self.directory}")
                return source.mode

            self._state = WatcherState.IDLE
            raise WatcherInitError(f"No event source could watch {self.directory}") from last_error

    def stop(self) -> bool:
        """
        Stop observing and release the event source.

        Returns:
            True if the watcher was running, False if it was already stopped
        """
        with self._state_lock:
            if self._state is not WatcherState.ACTIVE:
                return False
            self._state = WatcherState.STOPPING
            self._active.clear()
            source, self._source = self._source, None
            try:
                source.stop()
            finally:
                self._recent.clear()
                self._state = WatcherState.IDLE
            logger.info(f"Stopped watching {self.directory}")
            return True

    def on_event(self, callback: EventCallback) -> EventCallback:
        """
        Register a callback for every event.

        Returns:
            The callback, for later removal
        """
        with self._callbacks_lock:
            self._callbacks.append(callback)
        return callback

    def remove_callback(self, callback: EventCallback) -> bool:
        """
        Unregister a callback.

        Returns:
            True if it was registered
        """
        with self._callbacks_lock:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                return False
            return True

    def callback_count(self) -> int:
        with self._callbacks_lock:
            return len(self._callbacks)

    def require_active(self) -> None:
        if not self.is_active:
            raise WatcherNotRunningError(f"Watcher for {self.directory} is not running")

    def _is_duplicate(self, event: FileEvent) -> bool:
        window = self.dedup_window_ms / 1000.0
        self._prune_recent(event.observed_at - window)

        key = (event.kind, event.size_at_event, event.observed_at)
        previous = self._recent.get(event.path)
        if event.kind in (FileEventKind.DELETED, FileEventKind.MOVED_FROM):
            self._recent.pop(event.path, None)
        else:
            self._recent[event.path] = key
        if previous is None:
            return False
        kind, size, seen_at = previous
        return (
            kind is event.kind
            and size == event.size_at_event
            and event.observed_at - seen_at < window
        )

    def _prune_recent(self, cutoff: float) -> None:
        stale = [path for path, (_, _, seen_at) in self._recent.items() if seen_at < cutoff]
        for path in stale:
            del self._recent[path]

    def _dispatch(self, event: FileEvent) -> None:
        if not self._active.is_set() and self._state is not WatcherState.INITIALIZING:
            return
        if self._is_duplicate(event):
            return

        logger.debug(f"{event.kind.value}: {event.path} ({event.size_at_event} bytes)")
        with self._callbacks_lock:
            callbacks = list(self._callbacks)
        for callback in callbacks:
            try:
                callback(event)
            except Exception:
                logger.exception(f"File event callback failed for {event.path}")

    def __enter__(self) -> "DirectoryWatcher":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()

    def __repr__(self) -> str:
        return f"DirectoryWatcher({str(self.directory)!r}, state={self._state.value})"
