"""
Debounced watch loop for incremental graph maintenance.

A watchdog observer pushes changed paths onto a queue; a single loop thread
owns the state machine::

    IDLE -> COLLECTING -> RECONCILING -> SCANNING -> IDLE
                                   (any) -> SHUTTING_DOWN

Bursts of events are collapsed: the debounce window restarts on every new
event, and when it finally elapses the loop fingerprints the watched scope,
reconciles it against the fingerprints persisted in the metrics store, and
rescans exactly what changed.  Events that arrive during a scan stay queued
for the next cycle.
"""

from __future__ import annotations

import enum
import logging
import os
import queue
import threading
from dataclasses import dataclass, field
from typing import Callable, Optional

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from ..errors import ReconcileInputError, SemgraphError
from .extractors import is_supported
from .reconciler import ChangeSet, reconcile
from .scanner import _SKIP_DIRS, ScanSummary, Scanner

logger = logging.getLogger(__name__)


class WatchState(enum.Enum):
    IDLE = "idle"
    COLLECTING = "collecting"
    RECONCILING = "reconciling"
    SCANNING = "scanning"
    SHUTTING_DOWN = "shutting_down"


@dataclass
class CycleResult:
    """What one debounce cycle saw and did."""
    events: list[str] = field(default_factory=list)
    changes: Optional[ChangeSet] = None
    files_deleted: int = 0
    summary: Optional[ScanSummary] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "events": list(self.events),
            "changes": self.changes.to_dict() if self.changes else None,
            "files_deleted": self.files_deleted,
            "summary": self.summary.to_dict() if self.summary else None,
            "error": self.error,
        }


class _EventHandler(FileSystemEventHandler):
    """Forwards watchdog events to the loop's queue."""

    def __init__(self, loop: "WatchLoop") -> None:
        super().__init__()
        self._loop = loop

    def on_modified(self, event) -> None:
        if not event.is_directory:
            self._loop.notify(event.src_path)

    def on_created(self, event) -> None:
        if not event.is_directory:
            self._loop.notify(event.src_path)

    def on_deleted(self, event) -> None:
        self._loop.notify(event.src_path, is_directory=event.is_directory)

    def on_moved(self, event) -> None:
        self._loop.notify(event.src_path, is_directory=event.is_directory)
        self._loop.notify(event.dest_path, is_directory=event.is_directory)


class WatchLoop:
    """
    Watches a project and keeps both stores in sync with it.

    Usage::

        loop = WatchLoop(scanner, debounce_seconds=0.5)
        loop.run()          # blocks until stop() is called
        # or
        loop.start_background()
        ...
        loop.stop()

    Parameters
    ----------
    scanner:
        Configured :class:`~semgraph.index.scanner.Scanner`; its project
        root is the watched directory and its metrics store holds the
        previous fingerprints.
    debounce_seconds:
        Quiet period that must follow the last event before a cycle runs.
    observer_factory:
        Callable returning a watchdog-compatible observer.
    poll_interval:
        How often an idle loop checks for shutdown.
    on_cycle:
        Optional callable invoked with each :class:`CycleResult`.
    """

    def __init__(
        self,
        scanner: Scanner,
        debounce_seconds: float = 0.5,
        observer_factory: Callable[[], object] = Observer,
        poll_interval: float = 0.5,
        on_cycle: Optional[Callable[[CycleResult], None]] = None,
    ) -> None:
        self._scanner = scanner
        self._root = scanner.project_root
        self._debounce = debounce_seconds
        self._observer_factory = observer_factory
        self._poll_interval = poll_interval
        self._on_cycle = on_cycle
        self._events: "queue.Queue[str]" = queue.Queue()
        self._stop_event = threading.Event()
        self._state = WatchState.IDLE
        self._state_lock = threading.Lock()
        self._observer = None
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> WatchState:
        with self._state_lock:
            return self._state

    def _set_state(self, state: WatchState) -> None:
        with self._state_lock:
            if self._state is WatchState.SHUTTING_DOWN:
                return
            logger.debug("[watch] %s -> %s", self._state.value, state.value)
            self._state = state

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    # ------------------------------------------------------------------
    # Event intake
    # ------------------------------------------------------------------

    def _rel_path(self, path: str) -> Optional[str]:
        """Convert *path* to a project-relative path, or None if outside."""
        if not os.path.isabs(path):
            return path.replace(os.sep, "/")
        try:
            rel = os.path.relpath(path, self._root)
        except ValueError:
            return None
        if rel.startswith(".."):
            return None
        return rel.replace(os.sep, "/")

    def _should_ignore(self, rel_path: str, is_directory: bool) -> bool:
        if any(part in _SKIP_DIRS for part in rel_path.split("/")):
            return True
        return not is_directory and not is_supported(rel_path)

    def notify(self, path: str, is_directory: bool = False) -> None:
        """Queue a change to *path* (absolute, or relative to the project root)."""
        rel_path = self._rel_path(path)
        if rel_path is None or self._should_ignore(rel_path, is_directory):
            return
        logger.debug("[watch] Event: %s", rel_path)
        self._events.put(rel_path)

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def _wait_for_event(self, timeout: Optional[float]) -> Optional[str]:
        waited = 0.0
        while not self.stopping:
            wait = self._poll_interval
            if timeout is not None:
                wait = min(wait, timeout - waited)
                if wait <= 0:
                    return None
            try:
                return self._events.get(timeout=wait)
            except queue.Empty:
                waited += wait
        return None

    def _collect(self, first: str) -> list[str]:
        batch = {first}
        while not self.stopping:
            try:
                batch.add(self._events.get(timeout=self._debounce))
            except queue.Empty:
                break
        return sorted(batch)

    def step(self, timeout: Optional[float] = None) -> Optional[CycleResult]:
        """
        Run one full cycle: wait for an event, debounce, reconcile, rescan.

        Parameters
        ----------
        timeout:
            Maximum seconds to wait for the first event; ``None`` waits
            until an event arrives or the loop is stopped.

        Returns
        -------
        CycleResult or None
            None if no event arrived or the loop was stopped first.
        """
        first = self._wait_for_event(timeout)
        if first is None:
            return None

        self._set_state(WatchState.COLLECTING)
        events = self._collect(first)
        if self.stopping:
            return None

        result = CycleResult(events=events)
        self._set_state(WatchState.RECONCILING)
        try:
            previous = self._scanner.metrics.get_all_file_hashes()
            current = self._scanner.current_fingerprints()
            result.changes = reconcile(previous, current)
        except ReconcileInputError as exc:
            logger.error("[watch] Reconcile failed, skipping cycle: %s", exc)
            result.error = str(exc)
            self._set_state(WatchState.IDLE)
            return self._finish(result)

        changes = result.changes
        targets = self._scanner.rescan_targets(changes)
        logger.info(
            "[watch] %d events -> %d added, %d modified, %d deleted, %d to rescan",
            len(events), len(changes.added), len(changes.modified), len(changes.deleted),
            len(targets),
        )
        if changes.deleted or targets:
            self._set_state(WatchState.SCANNING)
            try:
                if changes.deleted:
                    result.files_deleted = self._scanner.delete_files(changes.deleted)
                if targets:
                    result.summary = self._scanner.scan(
                        targets, cancel_event=self._stop_event,
                    )
            except SemgraphError as exc:
                logger.error("[watch] Cycle aborted: %s", exc)
                result.error = str(exc)

        self._set_state(WatchState.IDLE)
        return self._finish(result)

    def _finish(self, result: CycleResult) -> CycleResult:
        if self._on_cycle is not None:
            self._on_cycle(result)
        return result

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_observer(self) -> None:
        """Schedule and start the watchdog observer on the project root."""
        if self._observer is not None:
            return
        observer = self._observer_factory()
        observer.schedule(_EventHandler(self), self._root, recursive=True)
        observer.start()
        self._observer = observer
        logger.info("[watch] Watching %s (debounce %.2fs)", self._root, self._debounce)

    def run(self) -> None:
        """Run cycles until :meth:`stop` is called."""
        self.start_observer()
        try:
            while not self.stopping:
                self.step()
        finally:
            self._shutdown()

    def start_background(self) -> threading.Thread:
        """Run the loop in a daemon thread and return that thread."""
        t = threading.Thread(target=self.run, daemon=True, name="semgraph-watch")
        t.start()
        self._thread = t
        return t

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """
        Stop watching: the observer stops at once, an in-flight scan finishes
        its current file and starts no new ones.
        """
        self._stop_event.set()
        with self._state_lock:
            self._state = WatchState.SHUTTING_DOWN
        self._stop_observer()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
        logger.info("[watch] Stopped")

    def _stop_observer(self) -> None:
        observer, self._observer = self._observer, None
        if observer is None:
            return
        observer.stop()
        observer.join(timeout=5)

    def _shutdown(self) -> None:
        with self._state_lock:
            self._state = WatchState.SHUTTING_DOWN
        self._stop_observer()
