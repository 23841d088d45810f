"""
File watcher that runs a review session whenever source files change.

A watchdog observer pushes matching paths into a queue. A single consumer
turns the queue into batches (first change plus a short debounce window),
runs one session per batch, waits for a cool-down and then drops everything
that arrived meanwhile, including the events caused by the session's own
commit and restore.
"""

import logging
import os
import queue
import threading
import time
from pathlib import Path
from typing import Callable, Iterable, Iterator, List, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .errors import ReviewWatchError
from .session import ReviewRunner, SessionResult

logger = logging.getLogger(__name__)

WATCHED_EVENT_TYPES = ("created", "modified", "moved", "deleted")


class PathFilter:
    """Decides which paths may trigger a review."""

    def __init__(self, root: Path, extensions: Iterable[str], exclude_dirs: Iterable[str]):
        """
        Args:
            root: Repository root; paths outside it never match
            extensions: Allowed file extensions, with or without a leading dot
            exclude_dirs: Directory names that are never watched, at any depth
        """
        self.root = Path(root).resolve()
        self.extensions = {"." + ext.lower().lstrip(".") for ext in extensions}
        self.exclude_dirs = set(exclude_dirs)

    def matches(self, path: str) -> bool:
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self.root / candidate
        try:
            relative = candidate.resolve().relative_to(self.root)
        except ValueError:
            return False

        if any(part in self.exclude_dirs for part in relative.parts[:-1]):
            return False

        return candidate.suffix.lower() in self.extensions


class ChangeEventHandler(FileSystemEventHandler):
    """Forwards matching file events to a queue."""

    def __init__(self, path_filter: PathFilter, events: "queue.Queue[str]"):
        super().__init__()
        self.path_filter = path_filter
        self.events = events

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type not in WATCHED_EVENT_TYPES:
            return

        paths = [event.src_path]
        dest_path = getattr(event, "dest_path", None)
        if dest_path:
            paths.append(dest_path)

        for path in paths:
            path = os.fsdecode(path)
            if self.path_filter.matches(path):
                self.events.put(path)


class ChangeWatcher:
    """Single-consumer loop turning file changes into review sessions."""

    def __init__(
        self,
        root: Path,
        path_filter: PathFilter,
        runner: ReviewRunner,
        debounce_seconds: float = 0.5,
        cooldown_seconds: float = 2.0,
        on_result: Optional[Callable[[SessionResult], None]] = None,
    ):
        self.root = Path(root)
        self.path_filter = path_filter
        self.runner = runner
        self.debounce_seconds = debounce_seconds
        self.cooldown_seconds = cooldown_seconds
        self.on_result = on_result
        self.events: "queue.Queue[str]" = queue.Queue()
        self._stop_event = threading.Event()
        self._observer = None

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def start(self) -> None:
        """Start observing the repository."""
        handler = ChangeEventHandler(self.path_filter, self.events)
        self._observer = Observer()
        self._observer.schedule(handler, str(self.root), recursive=True)
        self._observer.start()
        logger.debug("Watching %s", self.root)

    def stop(self) -> None:
        """Stop the loop and the observer. Safe to call more than once."""
        self._stop_event.set()
        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
            self._observer = None

    def batches(self, poll_interval: float = 0.2) -> Iterator[List[str]]:
        """Yield batches of changed paths until ``stop()`` is called."""
        while not self._stop_event.is_set():
            try:
                first = self.events.get(timeout=poll_interval)
            except queue.Empty:
                continue

            batch = {first}
            deadline = time.monotonic() + self.debounce_seconds
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                try:
                    batch.add(self.events.get(timeout=remaining))
                except queue.Empty:
                    break

            yield sorted(batch)

    def drain(self) -> int:
        """Drop queued events and return how many were dropped."""
        dropped = 0
        while True:
            try:
                self.events.get_nowait()
            except queue.Empty:
                return dropped
            dropped += 1

    def process_batch(self, batch: List[str]) -> Optional[SessionResult]:
        """Run one session for ``batch``. Session errors do not stop the watcher."""
        names = ", ".join(os.path.relpath(p, self.root) for p in batch[:5])
        if len(batch) > 5:
            names += f" (+{len(batch) - 5} more)"
        logger.info("📝 File changed: %s", names)

        try:
            result = self.runner.run(batch)
        except ReviewWatchError as e:
            logger.error("❌ Review session failed: %s", e)
            return None

        if self.on_result:
            self.on_result(result)
        return result

    def run(self, max_batches: Optional[int] = None) -> int:
        """
        Consume batches until stopped.

        Args:
            max_batches: Stop after this many batches (None = run forever)

        Returns:
            Number of batches processed
        """
        processed = 0
        try:
            for batch in self.batches():
                self.process_batch(batch)
                processed += 1
                self._cool_down()
                if max_batches is not None and processed >= max_batches:
                    break
        finally:
            self.stop()
        return processed

    def _cool_down(self) -> None:
        if self.cooldown_seconds > 0:
            self._stop_event.wait(self.cooldown_seconds)
        dropped = self.drain()
        if dropped:
            logger.debug("Dropped %d file events received during the session", dropped)
        logger.info("👁️  Watching for more changes...")
