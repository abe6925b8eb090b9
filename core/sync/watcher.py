"""
Source Tree Watcher.

Monitors the source tree with watchdog and turns bursts of file events into
debounced change batches for the sync engine.
"""

import asyncio
import inspect
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Optional, Union

from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler, FileSystemEvent as WatchdogEvent
from watchdog.events import FileCreatedEvent, FileModifiedEvent, FileDeletedEvent, FileMovedEvent

from ..models.flows import MANAGED_EXTENSIONS
from .events import ChangeBatch, FileChangeEvent

logger = logging.getLogger(__name__)

BatchCallback = Callable[[ChangeBatch], Union[None, Awaitable[None]]]


class FlowSourceWatcher:
    """
    File system watcher with a single quiet-window debounce.

    Every accepted event is added to the pending batch and restarts the
    quiet-window timer. The batch is handed to ``batch_callback`` only once
    no new event arrived for ``debounce_ms``, so an editor's
    save-and-reformat burst turns into one push.
    """

    # Directories to ignore
    IGNORED_DIRECTORIES = {
        'node_modules', '.git', '.svn', '.hg', '.vscode', '.idea', '__pycache__'
    }

    def __init__(
        self,
        source_path: Path,
        batch_callback: BatchCallback,
        debounce_ms: int = 1000,
        watched_extensions: Optional[FrozenSet[str]] = None
    ):
        """
        Initialize the source tree watcher.

        Args:
            source_path: Root directory to monitor
            batch_callback: Receives each debounced ChangeBatch
            debounce_ms: Quiet window in milliseconds
            watched_extensions: File suffixes to report (defaults to the managed set)
        """
        self.source_path = Path(source_path).resolve()
        self.batch_callback = batch_callback
        self.debounce_ms = debounce_ms
        self.watched_extensions = watched_extensions or MANAGED_EXTENSIONS

        # Watchdog components
        self.observer: Optional[Observer] = None
        self.event_handler: Optional['SourceEventHandler'] = None

        # Debouncing state
        self._pending_batch = ChangeBatch()
        self._debounce_task: Optional[asyncio.Task] = None
        self._debounce_lock = asyncio.Lock()

        # Monitoring state
        self._is_monitoring = False
        self._monitor_start_time: Optional[datetime] = None
        self._batches_emitted = 0

        # Error tracking
        self._error_count = 0
        self._last_error: Optional[str] = None
        self._last_error_time: Optional[datetime] = None

        logger.info(f"Initialized FlowSourceWatcher for {self.source_path} (debounce: {self.debounce_ms}ms)")

    async def start_monitoring(self) -> bool:
        """
        Start file system monitoring.

        Returns:
            True if monitoring started successfully, False otherwise
        """
        if self._is_monitoring:
            logger.warning("File system monitoring is already active")
            return True

        try:
            if not self.source_path.is_dir():
                raise NotADirectoryError(f"Source path is not a directory: {self.source_path}")

            self.event_handler = SourceEventHandler(self)
            self.event_handler.set_event_loop(asyncio.get_running_loop())

            self.observer = Observer()
            self.observer.schedule(self.event_handler, str(self.source_path), recursive=True)
            self.observer.start()

            self._is_monitoring = True
            self._monitor_start_time = datetime.now()
            self._error_count = 0

            logger.info(f"Started monitoring {self.source_path}")
            return True

        except Exception as e:
            error_msg = f"Failed to start file system monitoring: {e}"
            logger.error(error_msg)
            self._record_error(error_msg)
            return False

    async def stop_monitoring(self) -> None:
        """Stop monitoring and drop any batch that has not fired yet."""
        if not self._is_monitoring:
            return

        self._is_monitoring = False

        if self.event_handler:
            self.event_handler.set_event_loop(None)

        if self.observer:
            try:
                self.observer.stop()
                self.observer.join(timeout=5.0)
            except Exception as e:
                logger.warning(f"Error stopping observer: {e}")
            finally:
                self.observer = None

        async with self._debounce_lock:
            task = self._debounce_task
            self._debounce_task = None
            dropped = len(self._pending_batch.file_paths)
            self._pending_batch = ChangeBatch()

        if task and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        if dropped:
            logger.warning(f"Dropped {dropped} pending file change(s) on shutdown")

        self.event_handler = None
        logger.info(f"Stopped file system monitoring (duration: {self.monitoring_duration})")

    def should_monitor_file(self, file_path: Path) -> bool:
        """
        Check if a file should be reported based on extension and location.

        Args:
            file_path: Path to check

        Returns:
            True if file should be monitored
        """
        if file_path.suffix.lower() not in self.watched_extensions:
            return False

        try:
            relative = file_path.relative_to(self.source_path)
        except ValueError:
            return False

        return not any(part in self.IGNORED_DIRECTORIES for part in relative.parts[:-1])

    async def handle_watchdog_event(self, event: WatchdogEvent) -> None:
        """
        Handle a watchdog file system event with debouncing.

        Args:
            event: Watchdog file system event
        """
        try:
            change_event = self._convert_watchdog_event(event)
            if not change_event:
                return

            await self.add_event(change_event)

        except Exception as e:
            logger.error(f"Error handling watchdog event {event}: {e}")
            self._record_error(str(e))

    def _convert_watchdog_event(self, event: WatchdogEvent) -> Optional[FileChangeEvent]:
        """
        Convert a watchdog event to a FileChangeEvent.

        Returns:
            FileChangeEvent or None if the event carries no local edit
        """
        if event.is_directory:
            return None

        # Atomic saves land as a move onto the tracked file
        if isinstance(event, FileMovedEvent):
            new_path = Path(event.dest_path).resolve()
            if not self.should_monitor_file(new_path):
                return None
            return FileChangeEvent.create_file_moved(Path(event.src_path).resolve(), new_path)

        file_path = Path(event.src_path).resolve()
        if not self.should_monitor_file(file_path):
            return None

        if isinstance(event, FileCreatedEvent):
            return FileChangeEvent.create_file_created(file_path)
        elif isinstance(event, FileModifiedEvent):
            return FileChangeEvent.create_file_modified(file_path)
        elif isinstance(event, FileDeletedEvent):
            return FileChangeEvent.create_file_deleted(file_path)

        return None

    async def add_event(self, event: FileChangeEvent) -> None:
        """
        Add an event to the pending batch and restart the quiet window.

        Args:
            event: File change event to debounce
        """
        if not event.carries_content:
            # Deleted sources are recreated by the next remote pass
            logger.debug(f"Ignoring deletion of {event.file_path}")
            return

        async with self._debounce_lock:
            self._pending_batch.add_event(event)

            if self._debounce_task and not self._debounce_task.done():
                self._debounce_task.cancel()

            self._debounce_task = asyncio.create_task(
                self._flush_after(self.debounce_ms / 1000.0)
            )

        logger.debug(f"Queued {event}")

    async def _flush_after(self, delay_seconds: float) -> None:
        """Emit the pending batch once the quiet window elapsed"""
        try:
            await asyncio.sleep(delay_seconds)
        except asyncio.CancelledError:
            return

        async with self._debounce_lock:
            batch = self._pending_batch
            self._pending_batch = ChangeBatch()
            self._debounce_task = None

        await self._emit(batch)

    async def flush(self) -> None:
        """Emit the pending batch immediately, skipping the rest of the quiet window"""
        async with self._debounce_lock:
            if self._debounce_task and not self._debounce_task.done():
                self._debounce_task.cancel()
            self._debounce_task = None
            batch = self._pending_batch
            self._pending_batch = ChangeBatch()

        await self._emit(batch)

    async def _emit(self, batch: ChangeBatch) -> None:
        if batch.is_empty:
            return

        logger.info(f"Detected changes in {len(batch.file_paths)} file(s) ({batch.event_count} events)")
        logger.debug(f"Change batch: {batch.to_dict()}")
        self._batches_emitted += 1

        try:
            result = self.batch_callback(batch)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Error in batch callback: {e}")
            self._record_error(str(e))

    def _record_error(self, message: str) -> None:
        self._error_count += 1
        self._last_error = message
        self._last_error_time = datetime.now()

    @property
    def is_monitoring(self) -> bool:
        """Check if file system monitoring is active."""
        return self._is_monitoring

    @property
    def monitoring_duration(self) -> Optional[timedelta]:
        """Get duration of current monitoring session."""
        if not self._monitor_start_time:
            return None
        return datetime.now() - self._monitor_start_time

    @property
    def pending_paths(self) -> int:
        return len(self._pending_batch.file_paths)

    def get_status(self) -> Dict[str, Any]:
        """
        Get status information.

        Returns:
            Dictionary with status information
        """
        return {
            "is_monitoring": self._is_monitoring,
            "source_path": str(self.source_path),
            "debounce_ms": self.debounce_ms,
            "watched_extensions": sorted(self.watched_extensions),
            "monitoring_duration": str(self.monitoring_duration) if self.monitoring_duration else None,
            "pending_paths": self.pending_paths,
            "batches_emitted": self._batches_emitted,
            "error_count": self._error_count,
            "last_error": self._last_error,
            "last_error_time": self._last_error_time.isoformat() if self._last_error_time else None
        }

    async def __aenter__(self):
        """Async context manager entry."""
        await self.start_monitoring()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.stop_monitoring()


class SourceEventHandler(FileSystemEventHandler):
    """
    Watchdog event handler that forwards events to FlowSourceWatcher.

    Watchdog calls back on its observer thread; events are scheduled onto
    the watcher's event loop.
    """

    def __init__(self, watcher: FlowSourceWatcher):
        super().__init__()
        self.watcher = watcher
        self._event_loop: Optional[asyncio.AbstractEventLoop] = None

    def set_event_loop(self, loop: Optional[asyncio.AbstractEventLoop]) -> None:
        """
        Set the event loop to use for scheduling async tasks.

        Args:
            loop: The asyncio event loop to use, or None to clear
        """
        self._event_loop = loop

    def on_any_event(self, event: WatchdogEvent) -> None:
        """
        Handle any file system event.

        Args:
            event: Watchdog file system event
        """
        loop = self._event_loop
        if not loop or loop.is_closed():
            logger.debug(f"No event loop available, dropping event: {event}")
            return

        try:
            asyncio.run_coroutine_threadsafe(self.watcher.handle_watchdog_event(event), loop)
        except RuntimeError as e:
            # Event loop is closing
            logger.debug(f"Failed to schedule event on loop: {e}")
