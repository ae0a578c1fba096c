"""Incremental sync engine.

Keeps the active registry (absolute path -> hash/size of what was last
broadcast) and turns filesystem activity into wire messages for every
attached session.

Cycle
-----
1. ``schedule_rebuild()`` arms the debounce timer; bursts collapse into one
   run of ``rebuild_and_broadcast()``.
2. The desired set is resolved (or reused from a short-lived cache when no
   filesystem event or client write happened since).
3. Every desired path is re-read and compared against the registry:
   absent -> add, different hash or size -> change. Registry paths missing
   from the desired set are deletions.
4. Deletions are broadcast first, then additions and changes, except for
   two whole-batch cases:
   - registry and desired set both end up empty after deletions: the
     deletes are followed by an empty initial-sync;
   - the registry was empty and every desired file is a new add: one
     initial-sync replaces the individual adds (rehydration).

Rebuilds and snapshot builds hold the same lock, so they never interleave.
Concurrent ``initial_snapshot()`` callers share one in-flight computation.
"""

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Set, Tuple

from syncshared.discovery.resolver import DependencyDiscovery, DesiredSetResolver
from syncshared.hash_index import HashIndex
from syncshared.path_utils import is_within
from syncshared.utils.ignore import IgnoreMatcher
from syncshared.wire_paths import WirePathCodec, default_codec

from .config import SyncConfig
from .events import ADD, CHANGE, DELETE, Event, FileChangeEvent, InitialSyncEvent
from .watcher import Debouncer, FileWatcher

logger = logging.getLogger(__name__)

# Receives every broadcast; must not block.
Subscriber = Callable[[Event], None]


@dataclass(frozen=True)
class FileMeta:
    """Registry entry for one mirrored file."""
    hash: str
    size: int


@dataclass
class _Snapshot:
    event: InitialSyncEvent
    abs_paths: List[str]


class SyncEngine:
    """Orchestrates resolve -> diff -> broadcast for one watch root.

    Example:
        engine = SyncEngine("/repo/flows")
        engine.start()                     # begins watching
        engine.subscribe("client_1", queue.put_nowait)
        snapshot = await engine.initial_snapshot()
        ...
        await engine.stop()
    """

    def __init__(
        self,
        watch_dir: str,
        project_root: Optional[str] = None,
        config: Optional[SyncConfig] = None,
        resolver: Optional[DesiredSetResolver] = None,
        hash_index: Optional[HashIndex] = None,
        codec: Optional[WirePathCodec] = None,
        discovery: Optional[DependencyDiscovery] = None,
    ):
        """Initialize the engine.

        Args:
            watch_dir: Directory whose sources are mirrored.
            project_root: Root for wire paths; defaults to the parent of
                ``watch_dir``.
            config: Tunables; read from the environment when None.
            resolver: Desired-set resolver; built from ``config`` when None.
            hash_index: File reader; a fresh ``HashIndex`` when None.
            codec: Wire path codec; the process-wide codec when None.
            discovery: Optional dependency-graph collaborator passed to the
                default resolver.
        """
        self.config = config if config is not None else SyncConfig()
        self.watch_dir = os.path.abspath(watch_dir)
        self.project_root = (
            os.path.abspath(project_root) if project_root else os.path.dirname(self.watch_dir)
        )
        self.resolver = resolver if resolver is not None else DesiredSetResolver(
            extensions=self.config.extensions,
            discovery=discovery,
            ignore_patterns=self.config.ignore_patterns,
            max_ancestor_levels=self.config.max_ancestor_levels,
        )
        self.hash_index = hash_index if hash_index is not None else HashIndex()
        self.codec = codec if codec is not None else default_codec()

        self.active: Dict[str, FileMeta] = {}

        self._subscribers: Dict[str, Subscriber] = {}
        self._live: Set[str] = set()

        self._cached_desired: Optional[Set[str]] = None
        self._cached_at = 0.0

        self._pending_initial: Optional["asyncio.Future[_Snapshot]"] = None
        self._state_lock: Optional[asyncio.Lock] = None

        self._debouncer = Debouncer(self.rebuild_and_broadcast, self.config.debounce_seconds)
        self._watcher: Optional[FileWatcher] = None

        self.resolve_count = 0
        self.rebuild_count = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the filesystem watcher. Must be called inside the loop."""
        if self._watcher is not None:
            return
        logger.info("watchDir     = %s", self.watch_dir)
        logger.info("projectRoot  = %s", self.project_root)
        self._watcher = FileWatcher(
            self.watch_dir,
            on_event=self.handle_fs_event,
            ignore=IgnoreMatcher(self.watch_dir, extra_patterns=self.config.ignore_patterns),
        )
        self._watcher.start()

    async def stop(self) -> None:
        """Stop watching and wait for an in-progress rebuild to finish."""
        watcher, self._watcher = self._watcher, None
        if watcher is not None:
            # stop() joins the observer thread.
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, watcher.stop)
        self._debouncer.cancel()
        await self._debouncer.wait_idle()

    def _lock(self) -> asyncio.Lock:
        if self._state_lock is None:
            self._state_lock = asyncio.Lock()
        return self._state_lock

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    def subscribe(self, key: str, deliver: Subscriber) -> None:
        """Attach a broadcast receiver. It starts receiving immediately."""
        self._subscribers[key] = deliver

    def mark_live(self, key: str) -> None:
        """Record that *key* has received its initial snapshot."""
        if key in self._subscribers:
            self._live.add(key)

    def unsubscribe(self, key: str) -> None:
        self._subscribers.pop(key, None)
        self._live.discard(key)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def _broadcast(self, event: Event) -> None:
        for key, deliver in list(self._subscribers.items()):
            try:
                deliver(event)
            except Exception:
                logger.exception("Broadcast to %s failed", key)

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def schedule_rebuild(self, structural: bool = False) -> None:
        """Request a debounced rebuild.

        Args:
            structural: True when the desired set may have changed (any
                filesystem event or client write); drops the cached set.
        """
        if structural:
            self.invalidate_desired_cache()
        self._debouncer.trigger()

    def handle_fs_event(self, kind: str, path: str, is_dir: bool) -> None:
        """Watcher callback, invoked on the loop thread.

        Every event drops the cached desired set: an edit can add an import
        whose declaration file must join the set.
        """
        self.schedule_rebuild(structural=True)

    def invalidate_desired_cache(self) -> None:
        self._cached_desired = None

    async def wait_idle(self) -> None:
        """Wait for any armed or running rebuild to complete."""
        await self._debouncer.wait_idle()

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def wire_path(self, abs_path: str) -> str:
        return self.codec.to_wire(abs_path, self.project_root)

    def resolve_client_path(self, wire_path: str) -> Optional[str]:
        """Absolute target for a client write/delete, or None if refused.

        With ``restrict_writes_to_watch_dir`` set, anything outside the
        watch root (including every virtual ``/.external`` path) is refused.
        """
        abs_path = self.codec.from_wire(wire_path, self.project_root)
        if self.config.restrict_writes_to_watch_dir:
            if abs_path == self.watch_dir or not is_within(abs_path, self.watch_dir):
                return None
        return abs_path

    # ------------------------------------------------------------------
    # Desired set
    # ------------------------------------------------------------------

    async def compute_desired(self) -> Set[str]:
        """Resolve the desired set, reusing a recent result when allowed."""
        now = time.monotonic()
        if (
            self._cached_desired is not None
            and now - self._cached_at < self.config.cache_ttl_seconds
        ):
            return set(self._cached_desired)

        self.resolve_count += 1
        desired = await self.resolver.compute(self.watch_dir, self.project_root)
        self._cached_desired = set(desired)
        self._cached_at = time.monotonic()
        return set(desired)

    # ------------------------------------------------------------------
    # Initial snapshot (single-flight)
    # ------------------------------------------------------------------

    async def initial_snapshot(self) -> InitialSyncEvent:
        """Full snapshot for a newly connected client.

        Callers arriving while a snapshot is being built share that build.
        The caller that started the build also refreshes the wire path
        reverse index from the mirrored paths.

        Raises:
            Exception: Whatever the shared build raised; the in-flight slot
                is cleared either way.
        """
        fresh = False
        if self._pending_initial is None:
            future = asyncio.ensure_future(self._build_initial())
            future.add_done_callback(self._clear_pending_initial)
            self._pending_initial = future
            fresh = True

        snapshot = await asyncio.shield(self._pending_initial)

        if fresh:
            paths = set(self.active) | set(snapshot.abs_paths)
            self.codec.rebuild(sorted(paths), self.project_root)
        logger.debug("Serving %s initial-sync (%d files)", "fresh" if fresh else "shared",
                     len(snapshot.event.files))
        return snapshot.event

    def _clear_pending_initial(self, future: "asyncio.Future[_Snapshot]") -> None:
        if self._pending_initial is future:
            self._pending_initial = None
        if not future.cancelled() and future.exception() is not None:
            logger.error("initial-sync build failed: %s", future.exception())

    async def _build_initial(self) -> _Snapshot:
        async with self._lock():
            desired = await self.compute_desired()
            # Only a never-served registry may be seeded from a snapshot;
            # otherwise live clients would miss the pending diff.
            seed = not self.active and not self._live

            files: List[Dict[str, str]] = []
            abs_paths: List[str] = []
            for abs_path in sorted(desired):
                entry = await self.hash_index.read_entry(abs_path)
                if entry is None:
                    logger.warning("Skipping file due to read failure: %s", abs_path)
                    continue
                files.append({"path": self.wire_path(abs_path), "content": entry.content})
                abs_paths.append(abs_path)
                if seed:
                    self.active[abs_path] = FileMeta(entry.hash, entry.size)

            files.sort(key=lambda f: f["path"])
            logger.info("initial-sync prepared: %d files", len(files))
            return _Snapshot(
                event=InitialSyncEvent(files=files, directory=self.watch_dir),
                abs_paths=abs_paths,
            )

    # ------------------------------------------------------------------
    # Diff + broadcast
    # ------------------------------------------------------------------

    async def compute_changes(self, desired: Set[str]) -> List[FileChangeEvent]:
        """Adds and changes for *desired*, updating the registry as content is read."""
        outgoing: List[FileChangeEvent] = []
        for abs_path in sorted(desired):
            entry = await self.hash_index.read_entry(abs_path)
            if entry is None:
                logger.warning("Could not read (skip this cycle): %s", abs_path)
                continue
            prev = self.active.get(abs_path)
            if prev is not None and prev.hash == entry.hash and prev.size == entry.size:
                continue
            self.active[abs_path] = FileMeta(entry.hash, entry.size)
            outgoing.append(FileChangeEvent(
                event=CHANGE if prev is not None else ADD,
                path=self.wire_path(abs_path),
                content=entry.content,
            ))
        return outgoing

    def compute_deletions(self, desired: Set[str]) -> List[FileChangeEvent]:
        """Deletes for registry paths no longer desired; removes them from the registry."""
        deletions: List[FileChangeEvent] = []
        for abs_path in sorted(self.active):
            if abs_path in desired:
                continue
            del self.active[abs_path]
            deletions.append(FileChangeEvent(event=DELETE, path=self.wire_path(abs_path)))
        return deletions

    async def diff(self, desired: Set[str]) -> Tuple[List[FileChangeEvent], List[FileChangeEvent]]:
        """Run both diff passes; returns (adds/changes, deletions)."""
        outgoing = await self.compute_changes(desired)
        deletions = self.compute_deletions(desired)
        return outgoing, deletions

    async def rebuild_and_broadcast(self) -> None:
        """One full cycle: resolve, diff, broadcast."""
        async with self._lock():
            self.rebuild_count += 1
            desired = await self.compute_desired()
            active_before = len(self.active)
            outgoing, deletions = await self.diff(desired)

            logger.info(
                "diff -> adds/changes=%d deletes=%d (desired=%d active=%d)",
                len(outgoing), len(deletions), len(desired), len(self.active),
            )

            for change in deletions:
                self._broadcast(change)

            if self._is_empty_transition(desired, deletions):
                self._broadcast(InitialSyncEvent(files=[], directory=self.watch_dir))
                return

            if self._is_rehydration(active_before, outgoing, desired):
                files = sorted(
                    ({"path": c.path, "content": c.content} for c in outgoing),
                    key=lambda f: f["path"],
                )
                logger.info("Rehydrating clients with initial-sync of %d files", len(files))
                self._broadcast(InitialSyncEvent(files=files, directory=self.watch_dir))
                return

            for change in outgoing:
                self._broadcast(change)

    def _is_empty_transition(self, desired: Set[str], deletions: List[FileChangeEvent]) -> bool:
        return not self.active and not desired and bool(deletions)

    @staticmethod
    def _is_rehydration(
        active_before: int,
        outgoing: List[FileChangeEvent],
        desired: Set[str],
    ) -> bool:
        return (
            active_before == 0
            and bool(outgoing)
            and all(c.event == ADD for c in outgoing)
            and len(outgoing) == len(desired)
        )

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def active_count(self) -> int:
        return len(self.active)
