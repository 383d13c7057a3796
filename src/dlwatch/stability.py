"""File size stability checks used as the "download finished" heuristic."""

import logging
import os
import threading
import time
from pathlib import Path
from typing import Callable, Optional, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

DEFAULT_PROBE_INTERVAL_MS = 100


def get_file_size(path: PathLike) -> int:
    """
    Get the size of a file.

    Args:
        path: File to inspect

    Returns:
        Size in bytes, or 0 if the file does not exist or cannot be read.
        Callers must treat 0 as "unknown" while the file may not exist yet.
    """
    try:
        return os.stat(path).st_size
    except OSError:
        return 0


def compute_progress(current_size: int, expected_size: Optional[int]) -> int:
    """
    Percentage of an expected size reached so far.

    Returns:
        0-100, or -1 when the expected size is unknown
    """
    if not expected_size or expected_size <= 0:
        return -1
    return min(100, int(current_size * 100 / expected_size))


class StabilityTracker:
    """
    Decides whether a file has stopped growing.

    There is no portable signal for "the writer closed its handle", so a
    file counts as finished once its size has held still for a quiet
    window. Sizes are sampled at a fixed short interval.
    """

    def __init__(
        self,
        probe_interval_ms: int = DEFAULT_PROBE_INTERVAL_MS,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the tracker.

        Args:
            probe_interval_ms: Milliseconds between size samples
            clock: Monotonic clock, injectable for tests
        """
        if probe_interval_ms <= 0:
            raise ValueError(f"probe_interval_ms must be > 0, got {probe_interval_ms}")
        self.probe_interval_ms = probe_interval_ms
        self._clock = clock

    get_size = staticmethod(get_file_size)

    def is_stable(
        self,
        path: PathLike,
        quiet_window_ms: int,
        timeout_ms: Optional[int] = None,
        on_sample: Optional[Callable[[int], None]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> bool:
        """
        Block until the file size has been constant for the quiet window.

        Any size change restarts the window.

        Args:
            path: File to watch
            quiet_window_ms: How long the size must hold still
            timeout_ms: Give up after this long (None waits as long as it takes)
            on_sample: Called with every sampled size
            cancel_event: Stops the check early when set

        Returns:
            True once stable; False if the file disappears or becomes
            unreadable, the timeout passes, or the check is cancelled
        """
        try:
            last_size = os.stat(path).st_size
        except OSError:
            return False

        quiet_sec = quiet_window_ms / 1000.0
        interval_sec = self.probe_interval_ms / 1000.0
        started = self._clock()
        deadline = started + timeout_ms / 1000.0 if timeout_ms is not None else None
        changed_at = started

        if on_sample:
            on_sample(last_size)

        while True:
            now = self._clock()
            if now - changed_at >= quiet_sec:
                return True
            if deadline is not None and now >= deadline:
                logger.debug(f"Stability check timed out for {path}")
                return False

            wait_sec = min(interval_sec, quiet_sec - (now - changed_at))
            if deadline is not None:
                wait_sec = min(wait_sec, deadline - now)
            wait_sec = max(wait_sec, 0.0)
            if cancel_event is not None:
                if cancel_event.wait(wait_sec):
                    return False
            else:
                time.sleep(wait_sec)

            try:
                size = os.stat(path).st_size
            except OSError:
                logger.debug(f"File disappeared during stability check: {path}")
                return False
            if not os.access(path, os.R_OK):
                return False

            if size != last_size:
                last_size = size
                changed_at = self._clock()
            if on_sample:
                on_sample(size)

    def probe(self, path: PathLike, window_ms: int) -> bool:
        """
        Single short stability probe.

        Returns:
            True if the size did not change during ``window_ms``
        """
        return self.is_stable(path, window_ms, timeout_ms=window_ms)
