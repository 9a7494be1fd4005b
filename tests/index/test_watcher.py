"""
Unit tests for semgraph.index.watcher
"""

from __future__ import annotations

import threading
from unittest.mock import MagicMock

from semgraph.errors import StoreConnectionError
from semgraph.index.graph_store import GraphStore
from semgraph.index.metrics_store import MetricsStore
from semgraph.index.scanner import Scanner
from semgraph.index.watcher import WatchLoop, WatchState


def _mock_scanner(root, previous=None, current=None):
    scanner = MagicMock()
    scanner.project_root = str(root)
    scanner.metrics.get_all_file_hashes.return_value = previous or {}
    scanner.current_fingerprints.return_value = current or {}
    scanner.delete_files.side_effect = lambda paths: len(list(paths))
    scanner.rescan_targets.side_effect = lambda changes: changes.needs_rescan
    return scanner


def _loop(scanner, **kwargs):
    kwargs.setdefault("debounce_seconds", 0.1)
    kwargs.setdefault("poll_interval", 0.02)
    kwargs.setdefault("observer_factory", MagicMock)
    return WatchLoop(scanner, **kwargs)


# ---------------------------------------------------------------------------
# Event intake
# ---------------------------------------------------------------------------

class TestNotify:

    def test_ignored_paths_never_trigger_a_cycle(self, tmp_path):
        loop = _loop(_mock_scanner(tmp_path))
        loop.notify("node_modules/lib/index.ts")
        loop.notify("README.md")
        loop.notify(str(tmp_path.parent / "elsewhere.ts"))
        assert loop.step(timeout=0.1) is None

    def test_absolute_paths_are_made_relative(self, tmp_path):
        scanner = _mock_scanner(tmp_path, current={"src/a.ts": "h"})
        loop = _loop(scanner)
        loop.notify(str(tmp_path / "src" / "a.ts"))
        result = loop.step(timeout=1)
        assert result.events == ["src/a.ts"]

    def test_directory_events_are_kept(self, tmp_path):
        loop = _loop(_mock_scanner(tmp_path))
        loop.notify("src/removed", is_directory=True)
        assert loop.step(timeout=1).events == ["src/removed"]


# ---------------------------------------------------------------------------
# Cycles
# ---------------------------------------------------------------------------

class TestCycle:

    def test_burst_collapses_into_one_scan(self, tmp_path):
        scanner = _mock_scanner(tmp_path, previous={"src/a.ts": "h1"},
                                current={"src/a.ts": "h2"})
        loop = _loop(scanner)
        loop.notify("src/a.ts")
        loop.notify("src/a.ts")

        result = loop.step(timeout=1)
        assert result.events == ["src/a.ts"]
        assert result.changes.modified == ["src/a.ts"]
        scanner.scan.assert_called_once()
        assert scanner.scan.call_args.args[0] == ["src/a.ts"]
        assert loop.step(timeout=0.2) is None
        assert loop.state is WatchState.IDLE

    def test_deleted_files_are_removed(self, tmp_path):
        scanner = _mock_scanner(tmp_path, previous={"a.ts": "h", "b.ts": "h"},
                                current={"a.ts": "h"})
        loop = _loop(scanner)
        loop.notify("b.ts")
        result = loop.step(timeout=1)
        scanner.delete_files.assert_called_once_with(["b.ts"])
        scanner.scan.assert_not_called()
        assert result.files_deleted == 1

    def test_event_without_content_change_skips_scan(self, tmp_path):
        scanner = _mock_scanner(tmp_path, previous={"a.ts": "h"}, current={"a.ts": "h"})
        loop = _loop(scanner)
        loop.notify("a.ts")
        result = loop.step(timeout=1)
        assert not result.changes.has_changes
        scanner.scan.assert_not_called()
        scanner.delete_files.assert_not_called()

    def test_bad_fingerprints_skip_the_cycle(self, tmp_path):
        scanner = _mock_scanner(tmp_path, previous={"a.ts": 1}, current={"a.ts": "h"})
        loop = _loop(scanner)
        loop.notify("a.ts")
        result = loop.step(timeout=1)
        assert result.error
        assert result.changes is None
        scanner.scan.assert_not_called()

    def test_store_error_is_reported_not_raised(self, tmp_path):
        scanner = _mock_scanner(tmp_path, current={"a.ts": "h"})
        scanner.scan.side_effect = StoreConnectionError("gone")
        loop = _loop(scanner)
        loop.notify("a.ts")
        result = loop.step(timeout=1)
        assert result.error == "gone"
        assert loop.state is WatchState.IDLE

    def test_on_cycle_callback(self, tmp_path):
        seen = []
        loop = _loop(_mock_scanner(tmp_path), on_cycle=seen.append)
        loop.notify("a.ts")
        result = loop.step(timeout=1)
        assert seen == [result]
        assert result.to_dict()["events"] == ["a.ts"]


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

class TestLifecycle:

    def test_stopped_loop_does_not_cycle(self, tmp_path):
        scanner = _mock_scanner(tmp_path)
        loop = _loop(scanner)
        loop.stop()
        loop.notify("a.ts")
        assert loop.step(timeout=0.2) is None
        assert loop.state is WatchState.SHUTTING_DOWN
        scanner.scan.assert_not_called()

    def test_background_run_and_stop(self, tmp_path):
        observer = MagicMock()
        done = threading.Event()
        loop = _loop(_mock_scanner(tmp_path, current={"a.ts": "h"}),
                     observer_factory=lambda: observer,
                     on_cycle=lambda result: done.set())
        thread = loop.start_background()
        loop.notify("a.ts")
        assert done.wait(5)

        loop.stop()
        assert not thread.is_alive()
        observer.schedule.assert_called_once()
        observer.start.assert_called_once()
        observer.stop.assert_called_once()


# ---------------------------------------------------------------------------
# With a real scanner
# ---------------------------------------------------------------------------

def test_cycle_rescans_changed_file(fake_extract, project, tmp_path):
    graph = GraphStore(str(tmp_path / "state" / "graph.pkl"))
    metrics = MetricsStore(str(tmp_path / "state" / "metrics.db"))
    scanner = Scanner(str(project.root), graph, metrics)
    project.write("src/a.ts", "fn one\n")
    project.write("src/b.ts", "fn two\n")
    scanner.scan()

    loop = _loop(scanner)
    project.write("src/a.ts", "fn one\nfn three\n")
    project.remove("src/b.ts")
    project.write("src/c.ts", "fn four\n")
    for path in ("src/a.ts", "src/b.ts", "src/c.ts", "src/a.ts"):
        loop.notify(str(project.root / path))

    result = loop.step(timeout=1)
    assert result.changes.added == ["src/c.ts"]
    assert result.changes.modified == ["src/a.ts"]
    assert result.changes.deleted == ["src/b.ts"]
    assert result.files_deleted == 1
    assert result.summary.files_processed == 2
    assert graph.module_paths() == ["src/a.ts", "src/c.ts"]
    assert set(metrics.get_all_file_hashes()) == {"src/a.ts", "src/c.ts"}



def test_restored_file_returns_after_parse_failure(fake_extract, project, tmp_path):
    graph = GraphStore(str(tmp_path / "state" / "graph.pkl"))
    metrics = MetricsStore(str(tmp_path / "state" / "metrics.db"))
    scanner = Scanner(str(project.root), graph, metrics)
    project.write("src/a.ts", "fn one\n")
    scanner.scan()
    loop = _loop(scanner)

    project.write("src/a.ts", "!! half-typed\n")
    loop.notify("src/a.ts")
    result = loop.step(timeout=1)
    assert result.summary.files_skipped == 1
    assert graph.module_paths() == []

    # same bytes as the fingerprint kept through the failure
    project.write("src/a.ts", "fn one\n")
    loop.notify("src/a.ts")
    result = loop.step(timeout=1)
    assert result.changes.unchanged == ["src/a.ts"]
    assert result.summary.files_processed == 1
    assert graph.module_paths() == ["src/a.ts"]
