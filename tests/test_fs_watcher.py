"""Tests for filesystem watcher module."""

import pytest
import time
import threading
from pathlib import Path
from unittest.mock import MagicMock

from src.dlwatch.exceptions import (
    DirectoryNotFoundError,
    WatcherInitError,
    WatcherNotRunningError,
    WatcherPermissionError,
)
from src.dlwatch.fs_watcher import (
    DirectoryWatcher,
    DownloadEventHandler,
    NativeEventSource,
    PollingEventSource,
    WatcherMode,
    WatcherState,
    diff_snapshots,
)
from src.dlwatch.models import FileEvent, FileEventKind


def _failing_observer():
    raise OSError("inotify watch limit reached")


class _Recorder:
    """Thread-safe event collector."""

    def __init__(self):
        self.events = []
        self._lock = threading.Lock()

    def __call__(self, event):
        with self._lock:
            self.events.append(event)

    def kinds_for(self, name):
        with self._lock:
            return [e.kind for e in self.events if e.name == name]


class TestDiffSnapshots:
    """Tests for diff_snapshots."""

    def test_created(self, tmp_path):
        events = diff_snapshots(tmp_path, {}, {"a.txt": (3, 1.0, 0o100644)})
        assert [(e.name, e.kind) for e in events] == [("a.txt", FileEventKind.CREATED)]
        assert events[0].size_at_event == 3
        assert events[0].path == tmp_path / "a.txt"

    def test_modified_by_size_or_mtime(self, tmp_path):
        old = {"a.txt": (3, 1.0, 0o100644), "b.txt": (3, 1.0, 0o100644)}
        new = {"a.txt": (5, 1.0, 0o100644), "b.txt": (3, 2.0, 0o100644)}
        kinds = {e.name: e.kind for e in diff_snapshots(tmp_path, old, new)}
        assert kinds == {"a.txt": FileEventKind.MODIFIED, "b.txt": FileEventKind.MODIFIED}

    def test_attributes_changed(self, tmp_path):
        old = {"a.txt": (3, 1.0, 0o100644)}
        new = {"a.txt": (3, 1.0, 0o100600)}
        events = diff_snapshots(tmp_path, old, new)
        assert [e.kind for e in events] == [FileEventKind.ATTRIBUTES_CHANGED]

    def test_deleted(self, tmp_path):
        events = diff_snapshots(tmp_path, {"a.txt": (3, 1.0, 0o100644)}, {})
        assert [(e.name, e.kind) for e in events] == [("a.txt", FileEventKind.DELETED)]

    def test_unchanged(self, tmp_path):
        snapshot = {"a.txt": (3, 1.0, 0o100644)}
        assert diff_snapshots(tmp_path, snapshot, dict(snapshot)) == []


class TestDownloadEventHandler:
    """Tests for DownloadEventHandler class."""

    def test_created_event(self, tmp_path):
        path = tmp_path / "a.txt"
        path.write_text("hello")
        recorder = _Recorder()
        handler = DownloadEventHandler(recorder)

        event = MagicMock(src_path=str(path), is_directory=False)
        handler.on_created(event)

        assert recorder.events[0].kind == FileEventKind.CREATED
        assert recorder.events[0].size_at_event == 5

    def test_moved_emits_both_sides(self, tmp_path):
        recorder = _Recorder()
        handler = DownloadEventHandler(recorder)

        event = MagicMock(
            src_path=str(tmp_path / "a.pdf.crdownload"),
            dest_path=str(tmp_path / "a.pdf"),
            is_directory=False,
        )
        handler.on_moved(event)

        assert [e.kind for e in recorder.events] == [
            FileEventKind.MOVED_FROM,
            FileEventKind.MOVED_TO,
        ]
        assert recorder.events[1].name == "a.pdf"

    def test_directory_events_ignored(self, tmp_path):
        from watchdog.events import DirCreatedEvent, DirModifiedEvent

        recorder = _Recorder()
        handler = DownloadEventHandler(recorder)
        handler.on_created(DirCreatedEvent(str(tmp_path / "sub")))
        handler.on_modified(DirModifiedEvent(str(tmp_path)))

        assert recorder.events == []


class TestNativeEventSource:
    """Tests for NativeEventSource class."""

    def test_failing_factory_raises_init_error(self, tmp_path):
        source = NativeEventSource(_failing_observer)
        with pytest.raises(WatcherInitError):
            source.start(tmp_path, lambda event: None)

    def test_stop_releases_observer_once(self, tmp_path):
        observer = MagicMock()
        source = NativeEventSource(lambda: observer)

        source.start(tmp_path, lambda event: None)
        source.stop()
        source.stop()

        observer.schedule.assert_called_once()
        observer.stop.assert_called_once()
        observer.join.assert_called_once()


class TestPollingEventSource:
    """Tests for PollingEventSource class."""

    def test_missing_directory(self, tmp_path):
        source = PollingEventSource(50)
        with pytest.raises(WatcherInitError):
            source.start(tmp_path / "missing", lambda event: None)

    def test_permission_error(self, tmp_path, monkeypatch):
        def deny(directory):
            raise PermissionError(13, "Permission denied", str(directory))

        monkeypatch.setattr(PollingEventSource, "_scan", staticmethod(deny))
        source = PollingEventSource(50)
        with pytest.raises(WatcherPermissionError):
            source.start(tmp_path, lambda event: None)

    def test_loop_survives_scan_errors(self, tmp_path, monkeypatch):
        recorder = _Recorder()
        source = PollingEventSource(30)
        source.start(tmp_path, recorder)

        real_scan = PollingEventSource._scan
        failures = {"count": 0}

        def flaky(directory):
            if failures["count"] < 3:
                failures["count"] += 1
                raise OSError("transient")
            return real_scan(directory)

        monkeypatch.setattr(PollingEventSource, "_scan", staticmethod(flaky))
        (tmp_path / "late.txt").write_text("x")

        deadline = time.monotonic() + 3.0
        while not recorder.kinds_for("late.txt") and time.monotonic() < deadline:
            time.sleep(0.05)
        source.stop()

        assert failures["count"] == 3
        assert FileEventKind.CREATED in recorder.kinds_for("late.txt")


class TestDirectoryWatcher:
    """Tests for DirectoryWatcher class."""

    def test_initial_state(self, tmp_path):
        watcher = DirectoryWatcher(tmp_path)
        assert watcher.state == WatcherState.IDLE
        assert watcher.mode is None
        assert not watcher.is_active

    def test_start_native(self, tmp_path):
        watcher = DirectoryWatcher(tmp_path)
        mode = watcher.start()
        try:
            assert mode == WatcherMode.NATIVE
            assert watcher.state == WatcherState.ACTIVE
            assert watcher.is_active
        finally:
            watcher.stop()

    def test_start_is_idempotent(self, tmp_path):
        observer = MagicMock()
        watcher = DirectoryWatcher(tmp_path, observer_factory=lambda: observer)

        watcher.start()
        watcher.start()
        watcher.stop()

        observer.start.assert_called_once()

    def test_stop_twice(self, tmp_path):
        watcher = DirectoryWatcher(tmp_path, force_polling=True, poll_interval_ms=50)
        watcher.start()
        assert watcher.stop() is True
        assert watcher.stop() is False
        assert watcher.state == WatcherState.IDLE

    def test_falls_back_to_polling(self, tmp_path):
        watcher = DirectoryWatcher(tmp_path, observer_factory=_failing_observer, poll_interval_ms=50)
        try:
            assert watcher.start() == WatcherMode.POLLING
            assert watcher.mode == WatcherMode.POLLING
        finally:
            watcher.stop()

    def test_force_polling(self, tmp_path):
        with DirectoryWatcher(tmp_path, force_polling=True, poll_interval_ms=50) as watcher:
            assert watcher.mode == WatcherMode.POLLING

    def test_missing_directory(self, tmp_path):
        watcher = DirectoryWatcher(tmp_path / "missing")
        with pytest.raises(DirectoryNotFoundError):
            watcher.start()
        assert watcher.state == WatcherState.IDLE

    def test_require_active(self, tmp_path):
        watcher = DirectoryWatcher(tmp_path)
        with pytest.raises(WatcherNotRunningError):
            watcher.require_active()

    def test_callbacks(self, tmp_path):
        watcher = DirectoryWatcher(tmp_path)
        recorder = _Recorder()

        assert watcher.on_event(recorder) is recorder
        assert watcher.callback_count() == 1
        assert watcher.remove_callback(recorder) is True
        assert watcher.remove_callback(recorder) is False
        assert watcher.callback_count() == 0

    @pytest.mark.parametrize("force_polling", [False, True])
    def test_detects_create_modify_delete(self, tmp_path, force_polling):
        recorder = _Recorder()
        watcher = DirectoryWatcher(tmp_path, force_polling=force_polling, poll_interval_ms=50)
        watcher.on_event(recorder)
        watcher.start()

        time.sleep(0.2)
        path = tmp_path / "file.txt"
        path.write_text("hello")
        time.sleep(0.3)
        with open(path, "a") as f:
            f.write(" world")
        time.sleep(0.3)
        path.unlink()
        time.sleep(0.3)

        watcher.stop()

        kinds = recorder.kinds_for("file.txt")
        assert FileEventKind.CREATED in kinds
        assert FileEventKind.MODIFIED in kinds
        assert FileEventKind.DELETED in kinds
        assert kinds.index(FileEventKind.CREATED) < kinds.index(FileEventKind.DELETED)

    def test_detects_rename_into_place(self, tmp_path):
        temp = tmp_path / "a.pdf.crdownload"
        temp.write_text("data")
        recorder = _Recorder()

        with DirectoryWatcher(tmp_path) as watcher:
            watcher.on_event(recorder)
            time.sleep(0.2)
            temp.rename(tmp_path / "a.pdf")
            time.sleep(0.3)

        kinds = recorder.kinds_for("a.pdf")
        assert FileEventKind.MOVED_TO in kinds or FileEventKind.CREATED in kinds

    def test_ignores_subdirectories(self, tmp_path):
        recorder = _Recorder()
        with DirectoryWatcher(tmp_path, force_polling=True, poll_interval_ms=50) as watcher:
            watcher.on_event(recorder)
            time.sleep(0.1)
            (tmp_path / "sub").mkdir()
            time.sleep(0.2)

        assert recorder.events == []

    def test_callback_exception_does_not_stop_dispatch(self, tmp_path):
        recorder = _Recorder()

        def broken(event):
            raise RuntimeError("boom")

        with DirectoryWatcher(tmp_path, force_polling=True, poll_interval_ms=50) as watcher:
            watcher.on_event(broken)
            watcher.on_event(recorder)
            time.sleep(0.1)
            (tmp_path / "a.txt").write_text("x")
            time.sleep(0.3)

        assert FileEventKind.CREATED in recorder.kinds_for("a.txt")

    def test_callbacks_in_registration_order(self, tmp_path):
        order = []
        with DirectoryWatcher(tmp_path, force_polling=True, poll_interval_ms=50) as watcher:
            watcher.on_event(lambda event: order.append("first"))
            watcher.on_event(lambda event: order.append("second"))
            time.sleep(0.1)
            (tmp_path / "a.txt").write_text("x")
            time.sleep(0.3)

        assert order[:2] == ["first", "second"]

    def test_duplicate_events_dropped(self, tmp_path):
        recorder = _Recorder()
        watcher = DirectoryWatcher(tmp_path, dedup_window_ms=1000)
        watcher.on_event(recorder)
        watcher._state = WatcherState.INITIALIZING

        event = FileEvent(tmp_path / "a.txt", FileEventKind.MODIFIED, size_at_event=3)
        watcher._dispatch(event)
        watcher._dispatch(FileEvent(tmp_path / "a.txt", FileEventKind.MODIFIED, size_at_event=3))
        watcher._dispatch(FileEvent(tmp_path / "a.txt", FileEventKind.MODIFIED, size_at_event=4))

        assert [e.size_at_event for e in recorder.events] == [3, 4]

    def test_recent_events_pruned_after_window(self, tmp_path):
        watcher = DirectoryWatcher(tmp_path, dedup_window_ms=50)
        watcher._state = WatcherState.INITIALIZING

        for i in range(5):
            watcher._dispatch(FileEvent(tmp_path / f"{i}.txt", FileEventKind.CREATED, observed_at=100.0))
        watcher._dispatch(FileEvent(tmp_path / "last.txt", FileEventKind.CREATED, observed_at=101.0))

        assert list(watcher._recent) == [tmp_path / "last.txt"]
