"""
Unit tests for semgraph.index.metrics_store
"""

from __future__ import annotations

import sqlite3

import pytest

from semgraph.errors import StoreConnectionError, StoreWriteError
from semgraph.index.metrics_store import FileMetrics, MetricsStore


@pytest.fixture()
def store(tmp_path):
    return MetricsStore(str(tmp_path / "metrics.db"))


# ---------------------------------------------------------------------------
# Metrics rows
# ---------------------------------------------------------------------------

class TestFileMetrics:

    def test_round_trip(self, store):
        record = FileMetrics(path="src/a.ts", language="typescript", total_lines=10,
                             code_lines=7, complexity_sum=4, complexity_avg=2.0,
                             function_count=2)
        store.upsert_file_metrics(record)
        loaded = store.get_file_metrics("src/a.ts")
        assert loaded.to_dict() == record.to_dict()

    def test_upsert_replaces(self, store):
        store.upsert_file_metrics(FileMetrics(path="a.py", complexity_sum=1))
        store.upsert_file_metrics(FileMetrics(path="a.py", complexity_sum=9))
        assert store.get_file_metrics("a.py").complexity_sum == 9
        assert store.stats()["file_count"] == 1

    def test_missing_returns_none(self, store):
        assert store.get_file_metrics("nope.ts") is None

    def test_complexity_trends(self, store):
        for path, cx in (("a.ts", 3), ("b.ts", 12), ("c.ts", 7), ("d.ts", 12)):
            store.upsert_file_metrics(FileMetrics(path=path, complexity_sum=cx))
        trends = store.get_complexity_trends(limit=3)
        assert [t["path"] for t in trends] == ["b.ts", "d.ts", "c.ts"]
        assert set(trends[0]) == {"path", "complexity_sum", "complexity_avg",
                                  "function_count", "code_lines"}

    def test_delete_metrics(self, store):
        store.upsert_file_metrics(FileMetrics(path="a.ts"))
        assert store.delete_file_metrics(["a.ts"]) == 1
        assert store.get_file_metrics("a.ts") is None

    def test_stats_languages(self, store):
        store.upsert_file_metrics(FileMetrics(path="a.ts", language="typescript",
                                              total_lines=5, code_lines=4))
        store.upsert_file_metrics(FileMetrics(path="b.py", language="python",
                                              total_lines=3, code_lines=2))
        stats = store.stats()
        assert stats["total_lines"] == 8
        assert stats["code_lines"] == 6
        assert stats["languages"] == {"typescript": 1, "python": 1}


# ---------------------------------------------------------------------------
# Fingerprints
# ---------------------------------------------------------------------------

class TestFingerprints:

    def test_upsert_and_read(self, store):
        store.upsert_file_hashes({"a.ts": "h1", "b.ts": "h2"}, revision="abc123")
        assert store.get_all_file_hashes() == {"a.ts": "h1", "b.ts": "h2"}
        assert store.get_file_hash("a.ts") == "h1"
        assert store.get_file_hash("zzz.ts") is None

    def test_upsert_updates_existing(self, store):
        store.upsert_file_hashes({"a.ts": "h1"})
        store.upsert_file_hashes({"a.ts": "h2"})
        assert store.get_all_file_hashes() == {"a.ts": "h2"}

    def test_empty_upsert_is_noop(self, store):
        store.upsert_file_hashes({})
        assert store.get_all_file_hashes() == {}

    def test_delete_files_clears_both_tables(self, store):
        store.upsert_file_hashes({"a.ts": "h1", "b.ts": "h2"})
        store.upsert_file_metrics(FileMetrics(path="a.ts"))
        assert store.delete_files(["a.ts"]) == 1
        assert store.get_all_file_hashes() == {"b.ts": "h2"}
        assert store.get_file_metrics("a.ts") is None

    def test_persisted_across_instances(self, tmp_path):
        path = str(tmp_path / "m.db")
        MetricsStore(path).upsert_file_hashes({"a.ts": "h1"})
        assert MetricsStore(path).get_all_file_hashes() == {"a.ts": "h1"}


# ---------------------------------------------------------------------------
# Maintenance and failures
# ---------------------------------------------------------------------------

class TestMaintenance:

    def test_clear_table(self, store):
        store.upsert_file_hashes({"a.ts": "h1"})
        store.clear_table("file_hashes")
        assert store.get_all_file_hashes() == {}

    def test_clear_unknown_table(self, store):
        with pytest.raises(ValueError):
            store.clear_table("sqlite_master")

    def test_unopenable_path(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        with pytest.raises(StoreConnectionError):
            MetricsStore(str(blocker / "metrics.db"))

    def test_write_failure_raises_store_write_error(self, store):
        conn = sqlite3.connect(store.path)
        conn.execute("DROP TABLE file_hashes")
        conn.commit()
        conn.close()
        with pytest.raises(StoreWriteError):
            store.upsert_file_hashes({"a.ts": "h1"})
