"""Filesystem watching and rebuild debouncing.

Architecture
------------
- A watchdog ``Observer`` watches the watch root recursively on its own
  thread.
- Each qualifying event (file or directory created, deleted or moved; file
  modified) is handed to the asyncio loop with ``call_soon_threadsafe``.
- The ``Debouncer`` collapses bursts: every trigger resets an
  ``asyncio.TimerHandle``; only when it fires does one rebuild run.
- Paths matched by the ignore rules (``node_modules``, ``.git``, ...) never
  reach the loop.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from syncshared.utils.ignore import IgnoreMatcher

logger = logging.getLogger(__name__)

# Event kinds forwarded to the loop.
CREATED = "created"
MODIFIED = "modified"
DELETED = "deleted"

# (kind, absolute path, is_directory)
FsEventCallback = Callable[[str, str, bool], None]


class Debouncer:
    """Runs an async callback once per burst of triggers.

    Must be used from the event loop thread. Runs never overlap: if a new
    burst settles while the previous callback is still running, the next run
    waits for it.
    """

    def __init__(
        self,
        callback: Callable[[], Awaitable[None]],
        delay: float,
    ):
        """Initialize the debouncer.

        Args:
            callback: Coroutine function invoked after a quiet period.
            delay: Quiet period in seconds.
        """
        self._callback = callback
        self._delay = delay
        self._handle: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()
        self._run_lock: Optional[asyncio.Lock] = None

    @property
    def pending(self) -> bool:
        """True while a timer is armed or a run is in progress."""
        return self._handle is not None or bool(self._tasks)

    def trigger(self) -> None:
        """Record an event; (re)starts the quiet-period timer."""
        loop = asyncio.get_running_loop()
        if self._handle is not None:
            self._handle.cancel()
        self._handle = loop.call_later(self._delay, self._fire)

    def _fire(self) -> None:
        self._handle = None
        task = asyncio.get_running_loop().create_task(self._run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self) -> None:
        if self._run_lock is None:
            self._run_lock = asyncio.Lock()
        async with self._run_lock:
            try:
                await self._callback()
            except Exception:
                logger.exception("Error in debounced rebuild")

    def cancel(self) -> None:
        """Disarm the timer. A run already in progress is left to finish."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    async def wait_idle(self) -> None:
        """Wait until no timer is armed and no run is in progress."""
        while self.pending:
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            else:
                await asyncio.sleep(self._delay / 2 or 0.001)


class _EventHandler(FileSystemEventHandler):
    """Watchdog handler that forwards events into the watcher."""

    def __init__(self, watcher: "FileWatcher"):
        super().__init__()
        self._watcher = watcher

    def on_created(self, event: FileSystemEvent):
        self._watcher._dispatch(CREATED, event.src_path, event.is_directory)

    def on_modified(self, event: FileSystemEvent):
        # Directory mtimes change whenever an entry is added; the entry's own
        # created event already covers that.
        if not event.is_directory:
            self._watcher._dispatch(MODIFIED, event.src_path, False)

    def on_deleted(self, event: FileSystemEvent):
        self._watcher._dispatch(DELETED, event.src_path, event.is_directory)

    def on_moved(self, event: FileSystemEvent):
        self._watcher._dispatch(DELETED, event.src_path, event.is_directory)
        self._watcher._dispatch(CREATED, event.dest_path, event.is_directory)


class FileWatcher:
    """Watches a directory tree and reports changes on the asyncio loop.

    Lifecycle:
        1. ``__init__(watch_dir, on_event)`` - creates the watcher.
        2. ``start()`` - binds to the running loop, starts watchdog.
        3. Events arrive -> filtered -> ``on_event(kind, path, is_dir)``
           on the loop thread.
        4. ``stop()`` - tears down the observer.
    """

    def __init__(
        self,
        watch_dir: str,
        on_event: FsEventCallback,
        ignore: Optional[IgnoreMatcher] = None,
    ):
        self.watch_dir = watch_dir
        self._on_event = on_event
        self._ignore = ignore if ignore is not None else IgnoreMatcher(watch_dir)
        self._observer: Optional[Observer] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def is_running(self) -> bool:
        return self._observer is not None

    def start(self) -> None:
        """Start watching. Must be called from within the event loop."""
        if self._observer is not None:
            return
        self._loop = asyncio.get_running_loop()
        observer = Observer()
        observer.schedule(_EventHandler(self), self.watch_dir, recursive=True)
        observer.daemon = True
        observer.start()
        self._observer = observer
        logger.info("Watching %s", self.watch_dir)

    def stop(self) -> None:
        """Stop watching and release the observer thread."""
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join(timeout=2)
        self._observer = None
        logger.info("Stopped watching %s", self.watch_dir)

    def _dispatch(self, kind: str, path, is_dir: bool) -> None:
        """Called on the observer thread."""
        if isinstance(path, bytes):
            path = path.decode("utf-8", errors="replace")
        if self._ignore.is_ignored(path, is_dir=is_dir):
            return
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self._deliver, kind, path, is_dir)
        except RuntimeError:
            # Loop shut down between the check and the call.
            pass

    def _deliver(self, kind: str, path: str, is_dir: bool) -> None:
        logger.debug("fs event: %s %s%s", kind, path, "/" if is_dir else "")
        try:
            self._on_event(kind, path, is_dir)
        except Exception:
            logger.exception("Error handling filesystem event for %s", path)
