"""Public download manager tying watchers, waits and stability checks together."""

import logging
import os
import shutil
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Set, Union

from .config import DownloadConfig
from .coordinator import PendingWait, WaitCoordinator, WaitStatus, WaitOutcome
from .directories import (
    ensure_directory,
    get_default_download_directory,
    get_potential_download_directories,
    has_insufficient_disk_space,
    resolve_download_directory,
)
from .exceptions import (
    DirectoryNotFoundError,
    ManifestError,
    WatcherInitError,
    WatcherPermissionError,
)
from .fs_watcher import DirectoryWatcher
from .manifest import read_manifest, write_manifest
from .models import (
    DownloadManifest,
    DownloadOutcome,
    DownloadRequest,
    DownloadResult,
    DownloadStats,
    FileEvent,
    FileEventKind,
    ManifestStatus,
    MultiDownloadOutcome,
    format_file_size,
)
from .patterns import PatternMatcher, is_regex
from .stability import StabilityTracker, compute_progress, get_file_size

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
CompletionHook = Callable[[Path], None]
ProgressCallback = Callable[[Path, int], None]

_GONE_KINDS = (FileEventKind.DELETED, FileEventKind.MOVED_FROM)


class AtomicCounter:
    """Integer counter whose updates are atomic."""

    def __init__(self, value: int = 0):
        self._value = value
        self._lock = threading.Lock()

    def increment(self, amount: int = 1) -> int:
        with self._lock:
            self._value += amount
            return self._value

    def decrement(self, amount: int = 1) -> int:
        return self.increment(-amount)

    @property
    def value(self) -> int:
        with self._lock:
            return self._value


class DownloadStatistics:
    """
    Counters for one orchestrator.

    Every request's terminal transition updates them, so repeated failures
    show up here without turning on verbose logging.
    """

    def __init__(self):
        self.active = AtomicCounter()
        self.completed = AtomicCounter()
        self.failed = AtomicCounter()
        self._completion_ms = AtomicCounter()

    def record_success(self, elapsed_ms: int) -> None:
        self._completion_ms.increment(elapsed_ms)
        self.completed.increment()

    def record_failure(self) -> None:
        self.failed.increment()

    def snapshot(self) -> DownloadStats:
        """Copy of the current counter values."""
        completed = self.completed.value
        total_ms = self._completion_ms.value
        return DownloadStats(
            active=self.active.value,
            completed=completed,
            failed=self.failed.value,
            average_completion_ms=total_ms // completed if completed else 0,
        )


@dataclass
class _WatcherLease:
    watcher: DirectoryWatcher
    refs: int = 0


class _ActiveRequest:
    """Cancellation handle for one in-flight request."""

    def __init__(self):
        self.cancel_event = threading.Event()
        self._wait: Optional[PendingWait] = None
        self._lock = threading.Lock()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def attach(self, wait: PendingWait) -> None:
        with self._lock:
            self._wait = wait
            if not self.cancelled:
                return
        wait.cancel()

    def cancel(self) -> bool:
        with self._lock:
            if self.cancelled:
                return False
            self.cancel_event.set()
            wait = self._wait
        if wait is not None:
            wait.cancel()
        return True


@dataclass(frozen=True)
class _Settings:
    """Configuration and hooks pinned when a request is submitted."""
    config: DownloadConfig
    on_complete: Optional[CompletionHook]
    on_progress: Optional[ProgressCallback]


class DownloadOrchestrator:
    """
    Waits for files produced by someone else to show up complete.

    One DirectoryWatcher is shared by every request on the same
    directory; it is started by the first request and stopped when the
    last one finishes. Callers block on their own wait, never on a lock
    held by the watcher thread.

    Example:
        with DownloadOrchestrator() as downloads:
            outcome = downloads.wait_for_download("report*.pdf", "/tmp/dl")
            if outcome.ok:
                print(outcome.path)
    """

    def __init__(
        self,
        config: Optional[DownloadConfig] = None,
        observer_factory: Optional[Callable[[], object]] = None,
        max_workers: int = 4,
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Download configuration (default: DownloadConfig())
            observer_factory: Builds the watchdog observer for native
                watching (default: watchdog's platform Observer)
            max_workers: Worker threads for asynchronous monitoring
        """
        self.config = (config or DownloadConfig()).copy()
        self._observer_factory = observer_factory
        self._max_workers = max_workers
        self._coordinator = WaitCoordinator()
        self._stats = DownloadStatistics()

        self._completion_hook: Optional[CompletionHook] = None
        self._progress_callback: Optional[ProgressCallback] = None
        self._config_lock = threading.Lock()

        self._watchers: Dict[Path, _WatcherLease] = {}
        self._watchers_lock = threading.Lock()

        self._requests: Set[_ActiveRequest] = set()
        self._requests_lock = threading.Lock()

        self._executor: Optional[ThreadPoolExecutor] = None
        self._closed = False
        self._lifecycle_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def set_default_timeout(self, timeout_ms: int) -> None:
        if timeout_ms < 0:
            raise ValueError(f"timeout_ms must be >= 0, got {timeout_ms}")
        with self._config_lock:
            self.config.timeout_ms = timeout_ms

    def set_stability_window(self, stability_ms: int) -> None:
        if stability_ms < 0:
            raise ValueError(f"stability_ms must be >= 0, got {stability_ms}")
        with self._config_lock:
            self.config.stability_ms = stability_ms

    def set_polling_interval(self, poll_interval_ms: int) -> None:
        """Applies to watchers started after the call."""
        if poll_interval_ms <= 0:
            raise ValueError(f"poll_interval_ms must be > 0, got {poll_interval_ms}")
        with self._config_lock:
            self.config.poll_interval_ms = poll_interval_ms

    def set_integrity_verification(self, enabled: bool) -> None:
        with self._config_lock:
            self.config.verify_integrity = enabled

    def set_completion_hook(self, hook: Optional[CompletionHook]) -> None:
        """Register ``hook(path)``, called after each successful download."""
        with self._config_lock:
            self._completion_hook = hook

    def set_progress_callback(self, callback: Optional[ProgressCallback]) -> None:
        """Register ``callback(path, percent)``; percent is -1 without an expected size."""
        with self._config_lock:
            self._progress_callback = callback

    def _pin_settings(self) -> _Settings:
        with self._config_lock:
            return _Settings(
                config=self.config.copy(),
                on_complete=self._completion_hook,
                on_progress=self._progress_callback,
            )

    def _matcher(self, config: DownloadConfig) -> PatternMatcher:
        return PatternMatcher(config.temp_suffixes, config.temp_prefixes)

    def _tracker(self, config: DownloadConfig) -> StabilityTracker:
        return StabilityTracker(config.stability_probe_interval_ms)

    # ------------------------------------------------------------------
    # Download directories
    # ------------------------------------------------------------------

    def get_download_directory(self) -> Path:
        """Configured download directory, or the detected default."""
        with self._config_lock:
            configured = self.config.download_dir
            env_var = self.config.download_dir_env
        if configured is not None:
            return Path(configured).expanduser().absolute()
        return get_default_download_directory(env_var)

    def set_download_directory(self, directory: PathLike) -> bool:
        """
        Make ``directory`` the default for new requests, creating it if needed.

        Returns:
            False if the directory cannot be created or is not writable
        """
        path = Path(directory).expanduser().absolute()
        if not ensure_directory(path):
            return False
        if not os.access(path, os.W_OK):
            logger.warning(f"Download directory is not writable: {path}")
            return False
        with self._config_lock:
            self.config.download_dir = path
        return True

    def ensure_download_directory_exists(self, directory: PathLike) -> bool:
        return ensure_directory(directory)

    def get_potential_download_directories(self) -> List[Path]:
        return get_potential_download_directories()

    def has_insufficient_disk_space(self, directory: PathLike, required_bytes: int) -> bool:
        return has_insufficient_disk_space(directory, required_bytes)

    def _resolve_directory(self, request: DownloadRequest, config: DownloadConfig) -> Path:
        if request.directory is not None:
            return resolve_download_directory(request.directory, config.download_dir_env)
        if config.download_dir is not None:
            return Path(config.download_dir).expanduser().absolute()
        return get_default_download_directory(config.download_dir_env)

    # ------------------------------------------------------------------
    # Pattern helpers
    # ------------------------------------------------------------------

    def file_matches_pattern(self, path: PathLike, pattern: str) -> bool:
        return self._matcher(self.config).matches(path, pattern)

    def find_matching_files(self, directory: PathLike, pattern: str) -> List[Path]:
        """
        Regular files in ``directory`` whose names match ``pattern``.

        Returns:
            Matching paths sorted by name (empty if the directory is unreadable)
        """
        matches = self._matcher(self.config).compile(pattern)
        return sorted(path for path, _ in self._scan_matches(Path(directory), matches))

    def get_most_recent_matching_file(
        self, directory: PathLike, pattern: str
    ) -> Optional[Path]:
        """Newest non-temp file matching ``pattern``, by modification time."""
        matcher = self._matcher(self.config)
        return self._most_recent_match(Path(directory), matcher.compile(pattern), matcher)

    def get_browser_download_patterns(self, filename: str) -> List[str]:
        return self._matcher(self.config).browser_download_patterns(filename)

    @staticmethod
    def _scan_matches(directory: Path, matches: Callable[[str], bool]):
        try:
            with os.scandir(directory) as it:
                entries = list(it)
        except OSError as e:
            logger.debug(f"Cannot list {directory}: {e}")
            return
        for entry in entries:
            if not matches(entry.name):
                continue
            try:
                if not entry.is_file():
                    continue
                mtime = entry.stat().st_mtime
            except OSError:
                continue
            yield Path(directory) / entry.name, mtime

    def _most_recent_match(
        self, directory: Path, matches: Callable[[str], bool], matcher: PatternMatcher
    ) -> Optional[Path]:
        newest = None
        newest_mtime = None
        for path, mtime in self._scan_matches(directory, matches):
            if matcher.is_browser_temp_file(path.name):
                continue
            if newest_mtime is None or mtime > newest_mtime:
                newest, newest_mtime = path, mtime
        return newest

    @staticmethod
    def _pattern_is_usable(pattern: str) -> bool:
        if not pattern:
            return False
        if is_regex(pattern):
            return True
        return "/" not in pattern and os.sep not in pattern

    # ------------------------------------------------------------------
    # Watchers
    # ------------------------------------------------------------------

    def _acquire_watcher(self, directory: Path, config: DownloadConfig) -> DirectoryWatcher:
        key = directory.resolve()
        with self._watchers_lock:
            lease = self._watchers.get(key)
            if lease is None:
                watcher = DirectoryWatcher(
                    directory,
                    poll_interval_ms=config.poll_interval_ms,
                    force_polling=config.force_polling,
                    observer_factory=self._observer_factory,
                    dedup_window_ms=config.dedup_window_ms,
                )
                watcher.start()
                lease = _WatcherLease(watcher)
                self._watchers[key] = lease
            lease.refs += 1
            return lease.watcher

    def _release_watcher(self, directory: Path) -> None:
        key = directory.resolve()
        with self._watchers_lock:
            lease = self._watchers.get(key)
            if lease is None:
                return
            lease.refs -= 1
            if lease.refs > 0:
                return
            del self._watchers[key]
        lease.watcher.stop()

    @property
    def watcher_count(self) -> int:
        """Number of directories currently being watched."""
        with self._watchers_lock:
            return len(self._watchers)

    # ------------------------------------------------------------------
    # Waiting for downloads
    # ------------------------------------------------------------------

    def wait_for_download(
        self,
        request: Union[DownloadRequest, str],
        directory: Optional[PathLike] = None,
        timeout_ms: Optional[int] = None,
        stability_ms: Optional[int] = None,
        expected_size: Optional[int] = None,
    ) -> DownloadOutcome:
        """
        Block until a file matching the pattern is in the directory and complete.

        A file already present when the call starts is found too. Once a
        match shows up, its size must hold still for the stability window
        and pass integrity checks. One deadline covers all of it.

        Args:
            request: A DownloadRequest, or a filename pattern
            directory: Directory to watch when ``request`` is a pattern
            timeout_ms: Deadline when ``request`` is a pattern
            stability_ms: Quiet window when ``request`` is a pattern
            expected_size: Required final size when ``request`` is a pattern

        Returns:
            Outcome with the final path on success; failures are reported
            through ``result`` and ``message``, never raised
        """
        if not isinstance(request, DownloadRequest):
            request = DownloadRequest(
                pattern=request,
                directory=directory,
                timeout_ms=timeout_ms,
                stability_ms=stability_ms,
                expected_size=expected_size,
            )
        settings = self._pin_settings()
        return self._run_request(request, settings, self._deadline_for(request, settings))

    def wait_for_multiple_downloads(
        self,
        patterns: Iterable[str],
        directory: Optional[PathLike] = None,
        timeout_ms: Optional[int] = None,
    ) -> MultiDownloadOutcome:
        """
        Wait for several patterns at once against one shared deadline.

        Every pattern gets the full time up to the deadline, even after
        another one fails.

        Returns:
            SUCCESS when every pattern completed; otherwise the result of
            the first failing pattern, with every outcome attached
        """
        patterns = list(patterns)
        if not patterns:
            return MultiDownloadOutcome(DownloadResult.SUCCESS, [], "No downloads requested")

        settings = self._pin_settings()
        timeout = settings.config.timeout_ms if timeout_ms is None else timeout_ms
        deadline = time.monotonic() + timeout / 1000.0
        requests = [DownloadRequest(p, directory=directory, timeout_ms=timeout) for p in patterns]

        with ThreadPoolExecutor(
            max_workers=len(requests), thread_name_prefix="dlwatch-multi"
        ) as pool:
            futures = [pool.submit(self._run_request, r, settings, deadline) for r in requests]
            outcomes = [f.result() for f in futures]

        failures = [o for o in outcomes if not o.ok]
        if not failures:
            return MultiDownloadOutcome(
                DownloadResult.SUCCESS,
                outcomes,
                f"All {len(outcomes)} downloads completed",
            )
        details = "; ".join(o.message for o in failures)
        return MultiDownloadOutcome(
            failures[0].result,
            outcomes,
            f"{len(failures)} of {len(outcomes)} downloads failed: {details}",
        )

    def start_async_download_monitoring(
        self,
        request: Union[DownloadRequest, str],
        callback: Optional[Callable[[DownloadOutcome], None]] = None,
    ) -> "Future[DownloadOutcome]":
        """
        Run ``wait_for_download`` on a worker thread.

        Configuration is captured now, not when the worker starts.

        Args:
            request: A DownloadRequest, or a filename pattern
            callback: Called with the outcome when the wait finishes

        Returns:
            Future resolving with the DownloadOutcome
        """
        if not isinstance(request, DownloadRequest):
            request = DownloadRequest(pattern=request)
        settings = self._pin_settings()
        deadline = self._deadline_for(request, settings)

        executor = self._get_executor()
        if executor is None:
            future: Future = Future()
            self._stats.record_failure()
            future.set_result(self._outcome(DownloadResult.CANCELLED, request.pattern, None))
        else:
            future = executor.submit(self._run_request, request, settings, deadline)

        if callback is not None:
            future.add_done_callback(lambda f: self._deliver(callback, f))
        return future

    def cancel_download_monitoring(self) -> int:
        """
        Cancel every in-flight request.

        Returns:
            Number of requests that were cancelled
        """
        with self._requests_lock:
            requests = list(self._requests)
        cancelled = sum(1 for r in requests if r.cancel())
        if cancelled:
            logger.info(f"Cancelled {cancelled} download wait(s)")
        return cancelled

    @property
    def active_request_count(self) -> int:
        with self._requests_lock:
            return len(self._requests)

    def _get_executor(self) -> Optional[ThreadPoolExecutor]:
        with self._lifecycle_lock:
            if self._closed:
                return None
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers, thread_name_prefix="dlwatch"
                )
            return self._executor

    @staticmethod
    def _deliver(callback: Callable[[DownloadOutcome], None], future: Future) -> None:
        if future.cancelled():
            return
        try:
            callback(future.result())
        except Exception:
            logger.exception("Download monitoring callback failed")

    @staticmethod
    def _deadline_for(request: DownloadRequest, settings: _Settings) -> float:
        timeout = settings.config.timeout_ms if request.timeout_ms is None else request.timeout_ms
        if timeout < 0:
            raise ValueError(f"timeout_ms must be >= 0, got {timeout}")
        return time.monotonic() + timeout / 1000.0

    @staticmethod
    def _outcome(
        result: DownloadResult,
        pattern: str,
        directory: Optional[Path],
        path: Optional[Path] = None,
        started: Optional[float] = None,
    ) -> DownloadOutcome:
        elapsed_ms = int((time.monotonic() - started) * 1000) if started is not None else 0
        return DownloadOutcome(
            result=result,
            pattern=pattern,
            directory=directory,
            path=path,
            message=result.describe(pattern, directory),
            elapsed_ms=elapsed_ms,
        )

    def _run_request(
        self, request: DownloadRequest, settings: _Settings, deadline: float
    ) -> DownloadOutcome:
        started = time.monotonic()
        config = settings.config

        if self._closed:
            self._stats.record_failure()
            return self._outcome(DownloadResult.CANCELLED, request.pattern, request.directory)

        if not self._pattern_is_usable(request.pattern):
            self._stats.record_failure()
            return self._outcome(
                DownloadResult.PATTERN_MATCH_FAILED, request.pattern, request.directory
            )

        directory = self._resolve_directory(request, config)
        if not directory.is_dir():
            logger.debug(f"Download directory does not exist: {directory}")
            self._stats.record_failure()
            return self._outcome(DownloadResult.DIRECTORY_NOT_FOUND, request.pattern, directory)

        active = _ActiveRequest()
        with self._requests_lock:
            self._requests.add(active)
        self._stats.active.increment()
        try:
            result, path = self._detect_and_complete(request, settings, directory, deadline, active)
        finally:
            self._stats.active.decrement()
            with self._requests_lock:
                self._requests.discard(active)

        outcome = self._outcome(result, request.pattern, directory, path, started)
        if outcome.ok:
            self._stats.record_success(outcome.elapsed_ms)
            logger.info(
                f"Download completed: {path} "
                f"({format_file_size(get_file_size(path))}, {outcome.elapsed_ms} ms)"
            )
            self._notify_complete(settings.on_complete, path)
        else:
            self._stats.record_failure()
            logger.debug(outcome.message)
        return outcome

    def _detect_and_complete(
        self,
        request: DownloadRequest,
        settings: _Settings,
        directory: Path,
        deadline: float,
        active: _ActiveRequest,
    ):
        config = settings.config
        try:
            watcher = self._acquire_watcher(directory, config)
        except DirectoryNotFoundError:
            return DownloadResult.DIRECTORY_NOT_FOUND, None
        except (WatcherPermissionError, WatcherInitError) as e:
            logger.warning(f"Cannot watch {directory}: {e}")
            return DownloadResult.PERMISSION_DENIED, None

        try:
            matcher = self._matcher(config)
            matches = matcher.compile(request.pattern)

            def is_candidate(event: FileEvent) -> bool:
                return (
                    event.kind not in _GONE_KINDS
                    and matches(event.name)
                    and not matcher.is_browser_temp_file(event.name)
                )

            remaining_ms = max(0, int((deadline - time.monotonic()) * 1000))
            wait = self._coordinator.create_wait(is_candidate, remaining_ms, watcher)
            active.attach(wait)

            existing = self._most_recent_match(directory, matches, matcher)
            if existing is not None:
                logger.debug(f"Found existing file for '{request.pattern}': {existing}")
                wait.resolve(WaitOutcome(
                    WaitStatus.MATCHED,
                    FileEvent(existing, FileEventKind.CREATED, size_at_event=get_file_size(existing)),
                ))

            outcome = wait.result()
        finally:
            self._release_watcher(directory)

        if outcome.status is WaitStatus.TIMEOUT:
            return DownloadResult.TIMEOUT, None
        if outcome.status is WaitStatus.CANCELLED:
            return DownloadResult.CANCELLED, None

        path = matcher.resolve_final_name(outcome.event.path)
        logger.info(f"Download detected: {path}")

        result = self._await_completion(path, request, settings, matcher, deadline, active)
        if result is not DownloadResult.SUCCESS:
            return result, None

        verify = config.verify_integrity if request.verify_integrity is None else request.verify_integrity
        if verify and not self._check_integrity(path, request.expected_size):
            return DownloadResult.INTEGRITY_CHECK_FAILED, None
        return DownloadResult.SUCCESS, path

    def _await_completion(
        self,
        path: Path,
        request: DownloadRequest,
        settings: _Settings,
        matcher: PatternMatcher,
        deadline: float,
        active: _ActiveRequest,
    ) -> DownloadResult:
        config = settings.config
        stability_ms = config.stability_ms if request.stability_ms is None else request.stability_ms
        tracker = self._tracker(config)
        interval_sec = config.stability_probe_interval_ms / 1000.0
        missing_grace_sec = max(stability_ms, config.in_progress_probe_ms) / 1000.0
        missing_since: Optional[float] = None

        def report(size: int) -> None:
            if settings.on_progress is not None:
                self._notify_progress(
                    settings.on_progress, path, compute_progress(size, request.expected_size)
                )

        while True:
            if active.cancelled:
                return DownloadResult.CANCELLED
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return DownloadResult.TIMEOUT

            if self._has_temp_sibling(path, matcher):
                missing_since = None
                if active.cancel_event.wait(min(interval_sec, remaining)):
                    return DownloadResult.CANCELLED
                continue

            if not path.exists():
                now = time.monotonic()
                if missing_since is None:
                    missing_since = now
                elif now - missing_since >= missing_grace_sec:
                    logger.info(f"Download disappeared before completing: {path}")
                    return DownloadResult.FILE_NOT_FOUND
                if active.cancel_event.wait(min(interval_sec, remaining)):
                    return DownloadResult.CANCELLED
                continue

            missing_since = None
            stable = tracker.is_stable(
                path,
                stability_ms,
                timeout_ms=int(remaining * 1000),
                on_sample=report,
                cancel_event=active.cancel_event,
            )
            if stable and not self._has_temp_sibling(path, matcher):
                return DownloadResult.SUCCESS

    @staticmethod
    def _has_temp_sibling(path: Path, matcher: PatternMatcher) -> bool:
        return any(sibling.exists() for sibling in matcher.temp_siblings(path))

    @staticmethod
    def _notify_complete(hook: Optional[CompletionHook], path: Path) -> None:
        if hook is None:
            return
        try:
            hook(path)
        except Exception:
            logger.exception(f"Completion hook failed for {path}")

    @staticmethod
    def _notify_progress(callback: ProgressCallback, path: Path, percent: int) -> None:
        try:
            callback(path, percent)
        except Exception:
            logger.exception(f"Progress callback failed for {path}")

    # ------------------------------------------------------------------
    # File state
    # ------------------------------------------------------------------

    def is_download_in_progress(self, path: PathLike) -> bool:
        """
        Check whether a file is still being written.

        Returns:
            True for browser temp files, files with a temp sibling, and
            files whose size changes during one short probe; False for
            missing files
        """
        path = Path(path)
        matcher = self._matcher(self.config)
        if matcher.is_browser_temp_file(path):
            return True
        if not path.exists():
            return False
        if self._has_temp_sibling(path, matcher):
            return True
        return not self._tracker(self.config).probe(path, self.config.in_progress_probe_ms)

    def is_file_size_stable(self, path: PathLike, stability_ms: Optional[int] = None) -> bool:
        """Block for up to ``stability_ms`` and report whether the size held still."""
        window = self.config.stability_ms if stability_ms is None else stability_ms
        return self._tracker(self.config).probe(path, window)

    def wait_for_download_completion(
        self, path: PathLike, timeout_ms: Optional[int] = None
    ) -> bool:
        """
        Wait until a known file has finished downloading.

        ``path`` may name the temp file; the wait is then for the final name.

        Returns:
            True if the file exists, has no temp sibling and is stable
            before the timeout
        """
        settings = self._pin_settings()
        timeout = settings.config.timeout_ms if timeout_ms is None else timeout_ms
        deadline = time.monotonic() + timeout / 1000.0
        matcher = self._matcher(settings.config)
        final_path = Path(matcher.resolve_final_name(Path(path)))

        active = _ActiveRequest()
        with self._requests_lock:
            self._requests.add(active)
        try:
            result = self._await_completion(
                final_path, DownloadRequest(final_path.name), settings, matcher, deadline, active
            )
        finally:
            with self._requests_lock:
                self._requests.discard(active)
        return result is DownloadResult.SUCCESS

    def _check_integrity(self, path: Path, expected_size: Optional[int]) -> bool:
        if not path.is_file():
            logger.debug(f"Integrity check: not a regular file: {path}")
            return False
        if not os.access(path, os.R_OK):
            logger.debug(f"Integrity check: not readable: {path}")
            return False
        size = get_file_size(path)
        if size == 0:
            logger.debug(f"Integrity check: empty file: {path}")
            return False
        if expected_size is not None and size != expected_size:
            logger.debug(f"Integrity check: {path} is {size} bytes, expected {expected_size}")
            return False
        try:
            with open(path, "rb") as f:
                f.read(1)
        except OSError as e:
            logger.debug(f"Integrity check: cannot open {path}: {e}")
            return False
        return True

    def verify_download_integrity(
        self, path: PathLike, expected_size: Optional[int] = None
    ) -> bool:
        """
        Size-based integrity check.

        Returns:
            True if verification is disabled, or the file exists, is a
            readable regular file, is non-empty and matches ``expected_size``
        """
        if not self.config.verify_integrity:
            return True
        return self._check_integrity(Path(path), expected_size)

    def get_download_progress(self, path: PathLike, expected_size: Optional[int]) -> int:
        """Percent of ``expected_size`` on disk, or -1 if it is unknown."""
        return compute_progress(get_file_size(path), expected_size)

    def get_download_info(self, path: PathLike) -> dict:
        """Size, modification time and access details of a file."""
        path = Path(path)
        try:
            stat = path.stat()
        except OSError:
            return {
                "path": str(path),
                "exists": False,
                "size": 0,
                "size_formatted": format_file_size(0),
                "modified_at": None,
                "readable": False,
                "in_progress": False,
            }
        return {
            "path": str(path),
            "exists": True,
            "size": stat.st_size,
            "size_formatted": format_file_size(stat.st_size),
            "modified_at": stat.st_mtime,
            "readable": os.access(path, os.R_OK),
            "in_progress": self._matcher(self.config).is_browser_temp_file(path),
        }

    def cleanup_download_artifacts(self, directory: PathLike) -> int:
        """
        Delete leftover browser temp files that are no longer being written.

        Returns:
            Number of files removed
        """
        directory = Path(directory)
        matcher = self._matcher(self.config)
        tracker = self._tracker(self.config)
        candidates = [
            path for path, _ in self._scan_matches(directory, matcher.is_browser_temp_file)
        ]
        removed = 0
        for path in candidates:
            if not tracker.probe(path, self.config.in_progress_probe_ms):
                logger.debug(f"Skipping {path}: still being written")
                continue
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(f"Could not remove {path}: {e}")
                continue
            removed += 1
        if removed:
            logger.info(f"Removed {removed} download artifact(s) from {directory}")
        return removed

    def move_download_to_destination(self, source: PathLike, destination: PathLike) -> Path:
        """
        Move a finished download, creating the destination's parent directories.

        Args:
            source: Downloaded file
            destination: Target file path, or an existing directory

        Returns:
            Final path of the moved file

        Raises:
            FileNotFoundError: If the source does not exist
            OSError: If the move fails
        """
        source = Path(source)
        destination = Path(destination)
        if not source.is_file():
            raise FileNotFoundError(f"Download not found: {source}")
        if destination.is_dir():
            destination = destination / source.name
        destination.parent.mkdir(parents=True, exist_ok=True)
        moved = Path(shutil.move(str(source), str(destination)))
        logger.info(f"Moved download {source} -> {moved}")
        return moved

    # ------------------------------------------------------------------
    # Manifests
    # ------------------------------------------------------------------

    def create_download_manifest(
        self,
        names: Iterable[str],
        manifest_path: PathLike,
        directory: Optional[PathLike] = None,
    ) -> DownloadManifest:
        """
        Write a checklist of expected files, one name or pattern per line.

        Raises:
            ManifestError: If the manifest cannot be written
        """
        return write_manifest(names, manifest_path, directory)

    def check_download_manifest(
        self, manifest_path: PathLike, directory: Optional[PathLike] = None
    ) -> DownloadManifest:
        """
        Re-derive every manifest entry's status from the filesystem.

        Args:
            manifest_path: Manifest file
            directory: Where the entries live (default: the manifest's directory)

        Returns:
            Manifest with PENDING, FOUND or VERIFIED entries

        Raises:
            ManifestError: If the manifest cannot be read
        """
        manifest = read_manifest(manifest_path, directory)
        matcher = self._matcher(self.config)
        for entry in manifest.entries:
            path = self._most_recent_match(manifest.directory, matcher.compile(entry.name), matcher)
            entry.path = path
            if path is None:
                entry.status = ManifestStatus.PENDING
            elif self.is_download_in_progress(path) or not self.verify_download_integrity(path):
                entry.status = ManifestStatus.FOUND
            else:
                entry.status = ManifestStatus.VERIFIED
        return manifest

    def is_download_manifest_complete(
        self, manifest_path: PathLike, directory: Optional[PathLike] = None
    ) -> bool:
        """True iff every manifest entry exists, is stable and passes integrity checks."""
        try:
            return self.check_download_manifest(manifest_path, directory).is_complete
        except ManifestError as e:
            logger.debug(str(e))
            return False

    # ------------------------------------------------------------------
    # Statistics and lifecycle
    # ------------------------------------------------------------------

    def get_download_statistics(self) -> DownloadStats:
        return self._stats.snapshot()

    def shutdown(self, wait: bool = True) -> None:
        """
        Cancel in-flight requests, stop every watcher and the worker pool.

        Safe to call more than once.
        """
        with self._lifecycle_lock:
            if self._closed:
                return
            self._closed = True
            executor = self._executor

        self.cancel_download_monitoring()
        self._coordinator.cancel_all()
        if executor is not None:
            executor.shutdown(wait=wait)

        with self._watchers_lock:
            leases = list(self._watchers.values())
            self._watchers.clear()
        for lease in leases:
            lease.watcher.stop()

    def __enter__(self) -> "DownloadOrchestrator":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown()
