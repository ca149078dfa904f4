"""
Watcher - Early wake-up on input changes.

The cycle timer is what guarantees progress; this watcher only lets the
driver start the next cycle sooner when files land in the input tree.
Uses watchdog for cross-platform monitoring with debouncing so a burst
of writes (e.g. a large copy) triggers one wake-up.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .config import get_config, BatchConfig


logger = logging.getLogger(__name__)


class ChangeType(Enum):
    """Type of file system change."""
    ADDED = "added"
    MODIFIED = "modified"
    MOVED = "moved"


@dataclass
class FileChange:
    """A pending file change event."""
    path: Path
    change_type: ChangeType
    timestamp: float
    old_path: Optional[Path] = None  # For MOVED events


class _InputEventHandler(FileSystemEventHandler):
    """Forwards watchdog events (observer thread) onto the event loop."""

    def __init__(self, watcher: "Watcher"):
        self.watcher = watcher

    def _forward(self, path: str, change_type: ChangeType, old_path: Optional[str] = None):
        self.watcher.queue_threadsafe(
            Path(path), change_type, Path(old_path) if old_path else None
        )

    def on_created(self, event: FileSystemEvent):
        if not event.is_directory:
            self._forward(event.src_path, ChangeType.ADDED)

    def on_modified(self, event: FileSystemEvent):
        if not event.is_directory:
            self._forward(event.src_path, ChangeType.MODIFIED)

    def on_moved(self, event: FileSystemEvent):
        if not event.is_directory:
            self._forward(event.dest_path, ChangeType.MOVED, event.src_path)


class Watcher:
    """
    Input directory watcher with debouncing.

    Changes are collected per path (later events override earlier ones)
    and flushed to `on_changes` once no new event arrived for
    `debounce_ms`.
    """

    def __init__(
        self,
        config: BatchConfig | None = None,
        on_changes: Optional[Callable[[List[FileChange]], None]] = None,
    ):
        self.config = config or get_config()
        self.on_changes = on_changes

        self._observer: Optional[Observer] = None
        self._pending_changes: Dict[str, FileChange] = {}
        self._debounce_task: Optional[asyncio.Task] = None
        self._running = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def start(self, root: Path | None = None):
        """Start watching the input directory (must be called from the loop)."""
        root = root or self.config.input_dir
        self._loop = asyncio.get_running_loop()

        if not root.exists():
            logger.warning(f"Watch root not found: {root}")
            return

        self._observer = Observer()
        self._observer.schedule(
            _InputEventHandler(self), str(root), recursive=self.config.recursive
        )
        self._running = True
        self._observer.start()
        logger.info(f"Watching: {root}")

    def stop(self):
        """Stop watching."""
        self._running = False

        if self._observer:
            self._observer.stop()
            self._observer.join(timeout=2)
            self._observer = None

        if self._debounce_task:
            self._debounce_task.cancel()
            self._debounce_task = None

    def queue_threadsafe(
        self,
        path: Path,
        change_type: ChangeType,
        old_path: Optional[Path] = None,
    ):
        if self._loop and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._queue_change, path, change_type, old_path)

    def _queue_change(
        self,
        path: Path,
        change_type: ChangeType,
        old_path: Optional[Path] = None,
    ):
        """Queue a change for debounced processing."""
        if self._should_skip(path):
            return

        self._pending_changes[str(path)] = FileChange(
            path=path,
            change_type=change_type,
            timestamp=time.monotonic(),
            old_path=old_path,
        )
        self._schedule_flush()

    def _schedule_flush(self):
        # Restart the debounce window on every event
        if self._debounce_task and not self._debounce_task.done():
            self._debounce_task.cancel()

        if self._loop:
            self._debounce_task = self._loop.create_task(self._flush_after_delay())

    async def _flush_after_delay(self):
        await asyncio.sleep(self.config.debounce_ms / 1000.0)
        self._flush_changes()

    def _flush_changes(self):
        if not self._pending_changes:
            return

        changes = list(self._pending_changes.values())
        self._pending_changes.clear()
        logger.debug(f"Detected {len(changes)} input changes")

        if self.on_changes:
            try:
                self.on_changes(changes)
            except Exception as e:
                logger.error(f"Change handler error: {e}")

    def _should_skip(self, path: Path) -> bool:
        """Hidden files and anything under a hidden directory never wake the driver."""
        try:
            relative = path.relative_to(self.config.input_dir)
        except ValueError:
            relative = Path(path.name)

        if any(part.startswith(".") for part in relative.parts):
            return True

        return path.suffix.lower() not in self.config.supported_extensions

    def get_pending_count(self) -> int:
        return len(self._pending_changes)


class AsyncWatcher(Watcher):
    """
    Watcher exposing an awaitable "something changed" signal.

    Usage:
        watcher = AsyncWatcher(config)
        watcher.start()
        changes = await watcher.wait_for_changes(timeout=30)
    """

    def __init__(self, config: BatchConfig | None = None):
        super().__init__(config, on_changes=self._record_changes)
        self._changed = asyncio.Event()
        self._latest: List[FileChange] = []

    def _record_changes(self, changes: List[FileChange]):
        self._latest.extend(changes)
        self._changed.set()

    async def wait_for_changes(self, timeout: float) -> List[FileChange]:
        """
        Wait up to `timeout` seconds for a debounced batch of changes.

        Returns:
            The changes seen since the last call (empty on timeout).
        """
        try:
            await asyncio.wait_for(self._changed.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass

        changes, self._latest = self._latest, []
        self._changed.clear()
        return changes
