"""
Engine: one object that owns both stores for a project.

    engine = Engine("path/to/project")
    engine.scan()                          # full scan
    engine.scan(incremental=True)          # only what changed since last time
    result = engine.query("who calls fetchUser")
    engine.watch(block=False)              # keep the graph in sync
    ...
    engine.close()
"""

from __future__ import annotations

import logging
import os
import subprocess
import threading
import time
from typing import Any, Callable, Iterable, Optional

from .config import Config
from .index.graph_store import GraphStore
from .index.metrics_store import MetricsStore
from .index.reconciler import reconcile
from .index.scanner import ScanSummary, Scanner
from .index.watcher import CycleResult, WatchLoop
from .query.builder import StructuredQuery
from .query.cypher import QueryResult
from .query.nl_parser import NLParser, ParseResult, RawQuery
from .query.templates import build_template

logger = logging.getLogger(__name__)


def detect_revision(project_root: str) -> Optional[str]:
    """Return the ``HEAD`` commit of the git checkout at *project_root*, or None."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            cwd=project_root,
            capture_output=True,
            text=True,
            check=False,
            timeout=10,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        logger.debug("[engine] git unavailable: %s", exc)
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


class Engine:
    """
    Facade over scanning, watching and querying one project.

    Parameters
    ----------
    project_root:
        Directory to index.
    config:
        Settings; loaded from ``.semgraph.yaml`` / ``SEMGRAPH_*`` when omitted.
    revision:
        Revision tag recorded on nodes and fingerprints.  When omitted and
        ``detect_revision`` is enabled, ``git rev-parse HEAD`` is used.

    Raises
    ------
    StoreConnectionError
        If either store cannot be opened.
    """

    def __init__(
        self,
        project_root: str = ".",
        config: Optional[Config] = None,
        revision: Optional[str] = None,
    ) -> None:
        self.project_root = os.path.abspath(project_root)
        self.config = config or Config.load(self.project_root)

        if revision is None and self.config.DETECT_REVISION:
            revision = detect_revision(self.project_root)
        self.revision = revision

        self.graph = GraphStore(self.config.GRAPH_PATH, lock_timeout=self.config.LOCK_TIMEOUT)
        self.metrics = MetricsStore(self.config.METRICS_PATH)
        self.scanner = Scanner(
            self.project_root,
            self.graph,
            self.metrics,
            include=self.config.INCLUDE,
            exclude=self.config.EXCLUDE,
            max_workers=self.config.MAX_WORKERS,
            file_timeout=self.config.FILE_TIMEOUT,
            revision=self.revision,
            top_n=self.config.TOP_N,
        )
        self._parser = NLParser()
        self._watch: Optional[WatchLoop] = None

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    def scan(
        self,
        paths: Optional[Iterable[str]] = None,
        incremental: bool = False,
        progress_callback: Optional[Callable[[int, int, str], None]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ScanSummary:
        """
        Scan the project.

        With *paths*, only those files are rescanned.  With
        ``incremental=True``, the tree is fingerprinted and reconciled
        against the last recorded fingerprints first, so only added and
        modified files are parsed and deleted ones are dropped.
        """
        if paths is not None:
            return self.scanner.scan(paths, cancel_event=cancel_event,
                                     progress_callback=progress_callback)
        if incremental:
            return self._sync(progress_callback, cancel_event)
        return self.scanner.scan(cancel_event=cancel_event,
                                 progress_callback=progress_callback)

    def _sync(self, progress_callback, cancel_event) -> ScanSummary:
        started = time.time()
        changes = reconcile(self.metrics.get_all_file_hashes(),
                            self.scanner.current_fingerprints())
        logger.info("[engine] Incremental: %d added, %d modified, %d deleted, %d unchanged",
                    len(changes.added), len(changes.modified),
                    len(changes.deleted), len(changes.unchanged))
        deleted = self.scanner.delete_files(changes.deleted) if changes.deleted else 0
        summary = self.scanner.scan(self.scanner.rescan_targets(changes),
                                    cancel_event=cancel_event,
                                    progress_callback=progress_callback)
        summary.files_deleted += deleted
        summary.elapsed_seconds = round(time.time() - started, 3)
        return summary

    def watch(
        self,
        debounce_seconds: Optional[float] = None,
        block: bool = True,
        on_cycle: Optional[Callable[[CycleResult], None]] = None,
    ) -> WatchLoop:
        """
        Bring the stores up to date, then keep them in sync with the tree.

        With ``block=True`` this returns only after :meth:`close` (or
        ``loop.stop()``) is called from another thread.
        """
        if self._watch is not None:
            return self._watch
        self._sync(None, None)
        debounce = self.config.DEBOUNCE_SECONDS if debounce_seconds is None else debounce_seconds
        loop = WatchLoop(self.scanner, debounce_seconds=debounce, on_cycle=on_cycle)
        self._watch = loop
        if block:
            loop.run()
        else:
            loop.start_background()
        return loop

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def parse(self, text: str) -> ParseResult:
        return self._parser.parse(text)

    def query(self, query: Any, params: Optional[dict] = None) -> QueryResult:
        """
        Answer a natural-language request, query text, or a built query.

        Plain text goes through the natural-language parser first; text it
        does not recognise is executed as query language verbatim.

        Raises
        ------
        QuerySyntaxError, MissingArgumentError
            Surfaced synchronously; nothing is written.
        """
        if isinstance(query, StructuredQuery):
            return self.graph.query(query, params)
        parsed = self._parser.parse(str(query))
        if isinstance(parsed, RawQuery):
            return self.graph.query(parsed.text, params)
        return self.graph.query(parsed.query, params)

    def run_template(self, name: str, *args: Any) -> QueryResult:
        return self.graph.query(build_template(name, *args))

    # ------------------------------------------------------------------
    # Introspection / lifecycle
    # ------------------------------------------------------------------

    def stats(self) -> dict:
        return {
            "project_root": self.project_root,
            "revision": self.revision,
            "graph": self.graph.stats(),
            "metrics": self.metrics.stats(),
            "top_complexity": self.metrics.get_complexity_trends(self.config.TOP_N),
        }

    def close(self) -> None:
        loop, self._watch = self._watch, None
        if loop is not None:
            loop.stop()

    def __enter__(self) -> "Engine":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
