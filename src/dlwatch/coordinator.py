"""Single-fulfilment waits raced against a timeout."""

import logging
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Set

from .fs_watcher import DirectoryWatcher
from .models import FileEvent, FileEventKind
from .patterns import PatternMatcher
from .stability import StabilityTracker, get_file_size

logger = logging.getLogger(__name__)

EventPredicate = Callable[[FileEvent], bool]


class WaitStatus(Enum):
    """How a wait was resolved."""
    MATCHED = "matched"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class WaitOutcome:
    """Value a PendingWait resolves with."""
    status: WaitStatus
    event: Optional[FileEvent] = None

    @property
    def matched(self) -> bool:
        return self.status is WaitStatus.MATCHED


class PendingWait:
    """
    A wait whose result is written exactly once.

    A matching event, the timeout timer and cancellation all race to
    resolve it. Each one first tries a non-blocking acquire on a claim
    lock that is never released; only the caller that gets it writes the
    result, every later attempt is a silent no-op.
    """

    def __init__(self, predicate: EventPredicate, timeout_ms: int):
        """
        Initialize the wait. The timeout timer starts with ``start()``.

        Args:
            predicate: Decides whether an event resolves the wait
            timeout_ms: Milliseconds before the wait resolves with TIMEOUT
        """
        if timeout_ms is None or timeout_ms < 0:
            raise ValueError(f"timeout_ms must be >= 0, got {timeout_ms}")
        self.predicate = predicate
        self.timeout_ms = timeout_ms
        self.deadline = time.monotonic() + timeout_ms / 1000.0
        self.future: Future = Future()
        # Running futures cannot be cancelled behind our back
        self.future.set_running_or_notify_cancel()
        self._claim = threading.Lock()
        self._timer = threading.Timer(timeout_ms / 1000.0, self._on_timeout)
        self._timer.daemon = True
        self._done_callbacks: List[Callable[[], None]] = []
        self._callbacks_lock = threading.Lock()

    @property
    def done(self) -> bool:
        return self._claim.locked()

    def start(self) -> "PendingWait":
        self._timer.start()
        return self

    def resolve(self, outcome: WaitOutcome) -> bool:
        """
        Try to resolve the wait.

        Returns:
            True if this call won and wrote the result
        """
        if not self._claim.acquire(blocking=False):
            return False
        self._timer.cancel()
        self.future.set_result(outcome)
        self._run_done_callbacks()
        return True

    def offer(self, event: FileEvent) -> bool:
        """Watcher callback: resolve with the event if it matches."""
        if self.done:
            return False
        if not self.predicate(event):
            return False
        return self.resolve(WaitOutcome(WaitStatus.MATCHED, event))

    def cancel(self) -> bool:
        return self.resolve(WaitOutcome(WaitStatus.CANCELLED))

    def result(self, timeout: Optional[float] = None) -> WaitOutcome:
        """Block until resolved."""
        return self.future.result(timeout)

    def add_done_callback(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` once the wait resolves (immediately if it already has)."""
        with self._callbacks_lock:
            if not self.done:
                self._done_callbacks.append(callback)
                return
        callback()

    def _run_done_callbacks(self) -> None:
        with self._callbacks_lock:
            callbacks, self._done_callbacks = self._done_callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Wait cleanup callback failed")

    def _on_timeout(self) -> None:
        self.resolve(WaitOutcome(WaitStatus.TIMEOUT))


class WaitCoordinator:
    """
    Creates and tracks PendingWaits.

    Waits registered against a watcher receive every event it dispatches
    until they resolve, at which point their callback is unregistered.
    """

    def __init__(self, matcher: Optional[PatternMatcher] = None):
        self.matcher = matcher or PatternMatcher()
        self._pending: Set[PendingWait] = set()
        self._lock = threading.Lock()

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def create_wait(
        self,
        predicate: EventPredicate,
        timeout_ms: int,
        watcher: Optional[DirectoryWatcher] = None,
    ) -> PendingWait:
        """
        Register a wait and start its timeout.

        Args:
            predicate: Decides whether an event resolves the wait
            timeout_ms: Mandatory timeout in milliseconds
            watcher: Watcher whose events are offered to the wait

        Returns:
            The pending wait; its ``future`` resolves with a WaitOutcome
        """
        wait = PendingWait(predicate, timeout_ms)
        with self._lock:
            self._pending.add(wait)
        wait.add_done_callback(lambda: self._forget(wait))
        if watcher is not None:
            watcher.on_event(wait.offer)
            wait.add_done_callback(lambda: watcher.remove_callback(wait.offer))
        return wait.start()

    def cancel(self, wait: PendingWait) -> bool:
        """
        Abandon a wait.

        Returns:
            True if the wait was still pending and is now CANCELLED
        """
        return wait.cancel()

    def cancel_all(self) -> int:
        """Cancel every pending wait; returns how many were cancelled."""
        with self._lock:
            waits = list(self._pending)
        return sum(1 for wait in waits if wait.cancel())

    def _forget(self, wait: PendingWait) -> None:
        with self._lock:
            self._pending.discard(wait)

    def _name_predicate(self, pattern: str, kinds) -> EventPredicate:
        matches = self.matcher.compile(pattern)
        return lambda event: event.kind in kinds and matches(event.name)

    def _watch_for(
        self, watcher: DirectoryWatcher, pattern: str, kinds, timeout_ms: int
    ) -> PendingWait:
        # Stopped watchers never dispatch.
        watcher.require_active()
        return self.create_wait(self._name_predicate(pattern, kinds), timeout_ms, watcher)

    def wait_for_file_created(
        self, watcher: DirectoryWatcher, pattern: str, timeout_ms: int = 10000
    ) -> PendingWait:
        """Wait for a file matching ``pattern`` to appear (created or renamed in)."""
        kinds = (FileEventKind.CREATED, FileEventKind.MOVED_TO)
        return self._watch_for(watcher, pattern, kinds, timeout_ms)

    def wait_for_file_modified(
        self, watcher: DirectoryWatcher, pattern: str, timeout_ms: int = 10000
    ) -> PendingWait:
        """Wait for a file matching ``pattern`` to change."""
        kinds = (FileEventKind.MODIFIED, FileEventKind.ATTRIBUTES_CHANGED)
        return self._watch_for(watcher, pattern, kinds, timeout_ms)

    def wait_for_file_deleted(
        self, watcher: DirectoryWatcher, pattern: str, timeout_ms: int = 10000
    ) -> PendingWait:
        """Wait for a file matching ``pattern`` to go away (deleted or renamed out)."""
        kinds = (FileEventKind.DELETED, FileEventKind.MOVED_FROM)
        return self._watch_for(watcher, pattern, kinds, timeout_ms)

    def wait_for_file_stable(
        self,
        path: Path,
        stability_ms: int = 1000,
        timeout_ms: int = 30000,
        tracker: Optional[StabilityTracker] = None,
    ) -> PendingWait:
        """
        Wait for a file's size to hold still for ``stability_ms``.

        The size polling runs on its own thread and resolves the wait with
        a MODIFIED event carrying the final size; the usual timer bounds it.
        """
        tracker = tracker or StabilityTracker()
        path = Path(path).absolute()
        wait = self.create_wait(lambda event: False, timeout_ms)
        stop = threading.Event()
        wait.add_done_callback(stop.set)

        def run():
            remaining_ms = max(0, int((wait.deadline - time.monotonic()) * 1000))
            if tracker.is_stable(path, stability_ms, timeout_ms=remaining_ms, cancel_event=stop):
                event = FileEvent(path, FileEventKind.MODIFIED, size_at_event=get_file_size(path))
                wait.resolve(WaitOutcome(WaitStatus.MATCHED, event))

        threading.Thread(target=run, name=f"dlwatch-stable:{path.name}", daemon=True).start()
        return wait
