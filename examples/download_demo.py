#!/usr/bin/env python3
"""
Download detection demo.

This example demonstrates:
1. Simulated browser - writes files the way Chrome and Firefox do
2. Single wait - waits for one download to finish
3. Multi wait - waits for a batch against one deadline
4. Manifest - checks a batch checklist

Usage:
    python examples/download_demo.py

The demo will:
- Create a temporary download directory
- Start a fake browser thread writing .crdownload/.part files
- Wait for the downloads and print the outcomes
- Clean up on exit
"""

import logging
import sys
import tempfile
import threading
import time
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dlwatch import DownloadConfig, DownloadOrchestrator, DownloadRequest


def fake_browser(directory: Path, name: str, suffix: str, chunks: int, delay: float):
    """
    Write ``name`` under a temp suffix in chunks, then rename it into place.
    """
    temp = directory / (name + suffix)
    print(f"[BROWSER] Downloading {name} via {temp.name}")
    with open(temp, "wb") as f:
        for _ in range(chunks):
            f.write(b"x" * 4096)
            f.flush()
            time.sleep(delay)
    temp.rename(directory / name)
    print(f"[BROWSER] Finished {name}")


def main():
    logging.basicConfig(level=logging.INFO, format="%(threadName)s %(name)s: %(message)s")

    with tempfile.TemporaryDirectory() as tmp:
        directory = Path(tmp)
        config = DownloadConfig(timeout_ms=10000, stability_ms=500, download_dir=directory)

        with DownloadOrchestrator(config) as downloads:
            downloads.set_progress_callback(
                lambda path, percent: print(f"[PROGRESS] {path.name}: {percent}%")
            )
            downloads.set_completion_hook(lambda path: print(f"[HOOK] Completed {path}"))

            # Single download
            threading.Thread(
                target=fake_browser,
                args=(directory, "report.pdf", ".crdownload", 10, 0.1),
            ).start()
            outcome = downloads.wait_for_download(
                DownloadRequest("report*.pdf", expected_size=10 * 4096)
            )
            print(f"[MAIN] {outcome.result.value}: {outcome.message}")

            # Batch against one deadline
            for name, suffix in (("a.zip", ".part"), ("b.zip", ".crdownload")):
                threading.Thread(
                    target=fake_browser, args=(directory, name, suffix, 5, 0.1)
                ).start()
            multi = downloads.wait_for_multiple_downloads(["a.zip", "b.zip"], timeout_ms=8000)
            print(f"[MAIN] Batch {multi.result.value}: {multi.message}")

            # Manifest
            manifest_path = directory / "batch.txt"
            downloads.create_download_manifest(["a.zip", "b.zip", "c.zip"], manifest_path)
            for entry in downloads.check_download_manifest(manifest_path):
                print(f"[MANIFEST] {entry.name}: {entry.status.value}")

            stats = downloads.get_download_statistics()
            print(
                f"[MAIN] completed={stats.completed} failed={stats.failed} "
                f"avg={stats.average_completion_ms} ms"
            )


if __name__ == "__main__":
    main()
