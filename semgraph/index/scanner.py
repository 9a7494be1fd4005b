"""
Scan orchestrator: walks the source tree, extracts files and writes the
results to the graph and metrics stores.

A scan is a batch:

  1. (full scans) drop rows for files that no longer exist
  2. extract each file, optionally fanned out over a thread pool
  3. write graph + metrics per file, serialised in path order
  4. link cross-file edges and flush the graph to disk
  5. record fingerprints for the files whose writes all succeeded

Per-file failures are logged and counted; they never abort the batch.
"""

from __future__ import annotations

import fnmatch
import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import asdict, dataclass, field
from typing import Callable, Iterable, Iterator, Optional

from ..errors import ParseError, StoreWriteError
from .extractors import Extraction, extract, is_supported
from .graph_store import GraphStore
from .hashing import hash_files
from .metrics import compute_file_metrics
from .metrics_store import MetricsStore
from .reconciler import ChangeSet

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Directory / file exclusion rules
# ---------------------------------------------------------------------------

_SKIP_DIRS: frozenset[str] = frozenset({
    "node_modules", "dist", "build", "__pycache__",
    ".git", "vendor", ".semgraph",
    ".venv", "venv", "env", ".env",
    ".tox", ".mypy_cache", ".pytest_cache",
    "coverage", ".nyc_output",
    ".next", ".nuxt", ".turbo",
    "out", ".output",
    "eggs", ".eggs",
    ".cache",
})


def _load_gitignore_patterns(project_root: str) -> list[str]:
    """Read .gitignore from *project_root* and return glob patterns."""
    gi_path = os.path.join(project_root, ".gitignore")
    patterns: list[str] = []
    if not os.path.exists(gi_path):
        return patterns
    with open(gi_path, encoding="utf-8", errors="replace") as fh:
        for line in fh:
            line = line.strip()
            if line and not line.startswith(("#", "!")):
                patterns.append(line.rstrip("/").lstrip("/"))
    return patterns


def _matches(path: str, patterns: Iterable[str]) -> bool:
    """Return True if *path* (or its basename) matches any glob pattern."""
    name = path.rsplit("/", 1)[-1]
    for pattern in patterns:
        if fnmatch.fnmatch(name, pattern) or fnmatch.fnmatch(path, pattern):
            return True
    return False


def walk_source_files(project_root: str, include: Optional[list[str]] = None,
                      exclude: Optional[list[str]] = None) -> list[str]:
    """
    Walk *project_root* and return all extractable source files.

    Paths are relative to *project_root*, use ``/`` separators and are
    sorted.  Excluded directories, hidden directories and .gitignore
    matches are skipped; *include* (when given) must match, *exclude*
    must not.
    """
    ignore = _load_gitignore_patterns(project_root) + list(exclude or [])
    results: list[str] = []

    for dirpath, dirnames, filenames in os.walk(project_root, topdown=True):
        rel_dir = os.path.relpath(dirpath, project_root).replace(os.sep, "/")
        rel_dir = "" if rel_dir == "." else rel_dir + "/"
        # Prune excluded directories in-place (modifies the walk)
        dirnames[:] = sorted(
            d for d in dirnames
            if d not in _SKIP_DIRS
            and not d.startswith(".")
            and not _matches(rel_dir + d, ignore)
        )
        for fname in filenames:
            rel_path = rel_dir + fname
            if not is_supported(fname):
                continue
            if include and not _matches(rel_path, include):
                continue
            if _matches(rel_path, ignore):
                continue
            results.append(rel_path)

    return sorted(results)


# ---------------------------------------------------------------------------
# Scan results
# ---------------------------------------------------------------------------

@dataclass
class ScanSummary:
    """Outcome of one scan batch."""
    full: bool = False
    files_total: int = 0
    files_processed: int = 0
    files_skipped: int = 0
    files_failed: int = 0
    files_deleted: int = 0
    symbols: int = 0
    types: int = 0
    imports: int = 0
    relationships: int = 0
    elapsed_seconds: float = 0.0
    cancelled: bool = False
    skipped_paths: list[str] = field(default_factory=list)
    failed_paths: list[str] = field(default_factory=list)
    top_complexity: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class _Extracted:
    path: str
    extraction: Extraction
    text: str
    last_modified: float


# ---------------------------------------------------------------------------
# Scanner
# ---------------------------------------------------------------------------

class Scanner:
    """
    Orchestrates full and partial scans of a project.

    Parameters
    ----------
    project_root:
        Directory that scanned paths are relative to.
    graph_store, metrics_store:
        Destination stores.
    include, exclude:
        Glob filters applied by :func:`walk_source_files`.
    max_workers:
        Extraction threads; 1 means one file at a time.
    file_timeout:
        Seconds allowed for a single file's extraction.
    revision:
        Optional revision tag recorded on nodes and fingerprints.
    top_n:
        Size of the complexity list in full-scan summaries.
    """

    def __init__(
        self,
        project_root: str,
        graph_store: GraphStore,
        metrics_store: MetricsStore,
        include: Optional[list[str]] = None,
        exclude: Optional[list[str]] = None,
        max_workers: int = 1,
        file_timeout: float = 30.0,
        revision: Optional[str] = None,
        top_n: int = 10,
    ) -> None:
        self.project_root = os.path.abspath(project_root)
        self.graph = graph_store
        self.metrics = metrics_store
        self.include = list(include or [])
        self.exclude = list(exclude or [])
        self.max_workers = max(1, int(max_workers))
        self.file_timeout = file_timeout
        self.revision = revision
        self.top_n = top_n

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def discover(self) -> list[str]:
        return walk_source_files(self.project_root, self.include, self.exclude)

    def current_fingerprints(self) -> dict[str, str]:
        """Fingerprint every file currently in scope."""
        return hash_files(self.project_root, self.discover())

    def rescan_targets(self, changes: ChangeSet) -> list[str]:
        """
        Added and modified files, plus unchanged files missing from the graph.

        A file dropped after a parse failure keeps its old fingerprint, so
        restoring its previous content reconciles as unchanged.
        """
        missing = [p for p in changes.unchanged if not self.graph.has_module(p)]
        return sorted(set(changes.needs_rescan) | set(missing))

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def scan(
        self,
        paths: Optional[Iterable[str]] = None,
        cancel_event: Optional[threading.Event] = None,
        progress_callback: Optional[Callable[[int, int, str], None]] = None,
    ) -> ScanSummary:
        """
        Scan *paths* (relative to the project root), or the whole tree.

        Parameters
        ----------
        paths:
            Files to (re)scan.  ``None`` means a full scan, which also
            removes data for files that no longer exist.
        cancel_event:
            Checked between files; once set, the current file finishes and
            no new file is started.
        progress_callback:
            Optional callable called with (current, total, path) before
            each file is written.

        Returns
        -------
        ScanSummary
        """
        started = time.time()
        full = paths is None
        targets = self.discover() if full else sorted(set(paths))
        summary = ScanSummary(full=full, files_total=len(targets))

        if full:
            known = set(self.metrics.get_all_file_hashes()) | set(self.graph.module_paths())
            stale = sorted(known - set(targets))
            if stale:
                summary.files_deleted = self.delete_files(stale)

        succeeded: dict[str, str] = {}
        dropped = False
        for index, (path, item, error) in enumerate(self._extract_all(targets, cancel_event)):
            if item is None and error is None:
                summary.cancelled = True
                logger.info("[scan] Cancelled after %d of %d files", index, len(targets))
                break
            if progress_callback:
                progress_callback(index + 1, len(targets), path)

            if error is not None:
                logger.warning("[scan] Skipping %s: %s", path, error)
                summary.files_skipped += 1
                summary.skipped_paths.append(path)
                # stale graph data is dropped; the stored fingerprint is left as is
                if self._drop_unparsable(path):
                    dropped = True
                continue

            try:
                self.graph.replace_file(path, item.extraction,
                                        last_modified=item.last_modified,
                                        revision=self.revision)
                self.metrics.upsert_file_metrics(
                    compute_file_metrics(item.extraction, item.text)
                )
            except StoreWriteError as exc:
                logger.warning("[scan] Store write failed for %s: %s", path, exc)
                summary.files_failed += 1
                summary.failed_paths.append(path)
                continue

            succeeded[path] = item.extraction.hash
            counts = item.extraction.counts()
            summary.files_processed += 1
            summary.symbols += counts["symbols"]
            summary.types += counts["types"]
            summary.imports += counts["imports"]
            summary.relationships += counts["relationships"]

        if succeeded or dropped:
            try:
                self.graph.link()
                self.graph.save()
            except StoreWriteError as exc:
                logger.error("[scan] Could not persist graph: %s", exc)
                summary.files_failed += len(succeeded)
                summary.files_processed -= len(succeeded)
                summary.failed_paths.extend(sorted(succeeded))
                succeeded = {}

        if succeeded:
            try:
                self.metrics.upsert_file_hashes(succeeded, revision=self.revision)
            except StoreWriteError as exc:
                logger.error("[scan] Could not record fingerprints: %s", exc)

        if full:
            summary.top_complexity = self.metrics.get_complexity_trends(self.top_n)

        summary.elapsed_seconds = round(time.time() - started, 3)
        logger.info(
            "[scan] %s scan complete: %d processed, %d skipped, %d failed, "
            "%d deleted, %d symbols in %.1fs",
            "Full" if full else "Partial",
            summary.files_processed,
            summary.files_skipped,
            summary.files_failed,
            summary.files_deleted,
            summary.symbols,
            summary.elapsed_seconds,
        )
        return summary

    def _drop_unparsable(self, path: str) -> bool:
        """Remove graph and metrics data for a file that failed to parse."""
        try:
            removed = self.graph.delete_file_data(path)
            self.metrics.delete_file_metrics([path])
        except StoreWriteError as exc:
            logger.warning("[scan] Could not drop stale data for %s: %s", path, exc)
            return False
        if removed:
            logger.debug("[scan] Dropped stale graph data for %s", path)
        return removed > 0

    def delete_files(self, paths: Iterable[str]) -> int:
        """
        Remove every trace of *paths* from both stores.

        Graph data goes first and is flushed before the fingerprint and
        metrics rows are dropped, so an interrupted delete is retried.
        Returns the number of files removed.
        """
        removed: list[str] = []
        for path in sorted(set(paths)):
            try:
                self.graph.delete_file_data(path)
            except StoreWriteError as exc:
                logger.warning("[scan] Could not remove %s from graph: %s", path, exc)
                continue
            removed.append(path)
        if not removed:
            return 0

        try:
            self.graph.link()
            self.graph.save()
            self.metrics.delete_files(removed)
        except StoreWriteError as exc:
            logger.error("[scan] Could not finish removing %d files: %s", len(removed), exc)
            return 0
        logger.info("[scan] Removed %d deleted files", len(removed))
        return len(removed)

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    def _read_and_extract(self, path: str) -> _Extracted:
        abs_path = os.path.join(self.project_root, path)
        try:
            with open(abs_path, "rb") as fh:
                content = fh.read()
            last_modified = os.path.getmtime(abs_path)
        except OSError as exc:
            raise ParseError(path, f"cannot read file: {exc}")
        extraction = extract(content, path)
        return _Extracted(
            path=path,
            extraction=extraction,
            text=content.decode("utf-8"),
            last_modified=last_modified,
        )

    def _extract_all(
        self,
        paths: list[str],
        cancel_event: Optional[threading.Event],
    ) -> Iterator[tuple[str, Optional[_Extracted], Optional[Exception]]]:
        """
        Yield ``(path, extracted, error)`` in path order.

        At most ``max_workers`` files are in flight.  A timed-out worker
        cannot be interrupted, so the pool is abandoned and a fresh one
        takes the remaining files.  ``(path, None, None)`` signals
        cancellation.
        """
        def new_pool() -> ThreadPoolExecutor:
            return ThreadPoolExecutor(max_workers=self.max_workers,
                                      thread_name_prefix="semgraph-extract")

        pool = new_pool()
        futures = {}
        try:
            for index, path in enumerate(paths):
                if cancel_event is not None and cancel_event.is_set():
                    yield path, None, None
                    return
                for ahead in paths[index:index + self.max_workers]:
                    if ahead not in futures:
                        futures[ahead] = pool.submit(self._read_and_extract, ahead)
                future = futures.pop(path)
                try:
                    yield path, future.result(timeout=self.file_timeout), None
                except FutureTimeout:
                    pool.shutdown(wait=False, cancel_futures=True)
                    pool = new_pool()
                    futures.clear()
                    yield path, None, ParseError(
                        path, f"extraction timed out after {self.file_timeout}s"
                    )
                except Exception as exc:
                    yield path, None, exc
        finally:
            pool.shutdown(wait=False, cancel_futures=True)
