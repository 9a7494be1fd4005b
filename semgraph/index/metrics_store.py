"""
SQLite-backed tabular store for per-file metrics and change fingerprints.

The ``file_hashes`` table is the durable "previous" fingerprint map the
reconciler compares against; ``file_metrics`` holds static metrics for
reporting (complexity trends, line counts).
"""

from __future__ import annotations

import logging
import os
import sqlite3
import time
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from typing import Iterable, Optional

from ..errors import StoreConnectionError, StoreWriteError

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS file_metrics (
    path            TEXT    PRIMARY KEY,
    language        TEXT    NOT NULL DEFAULT '',
    total_lines     INTEGER NOT NULL DEFAULT 0,
    code_lines      INTEGER NOT NULL DEFAULT 0,
    comment_lines   INTEGER NOT NULL DEFAULT 0,
    blank_lines     INTEGER NOT NULL DEFAULT 0,
    complexity_sum  INTEGER NOT NULL DEFAULT 0,
    complexity_avg  REAL    NOT NULL DEFAULT 0.0,
    import_count    INTEGER NOT NULL DEFAULT 0,
    export_count    INTEGER NOT NULL DEFAULT 0,
    class_count     INTEGER NOT NULL DEFAULT 0,
    function_count  INTEGER NOT NULL DEFAULT 0,
    last_analyzed   REAL    NOT NULL DEFAULT 0.0
);

CREATE TABLE IF NOT EXISTS file_hashes (
    path            TEXT    PRIMARY KEY,
    hash            TEXT    NOT NULL,
    last_analyzed   REAL    NOT NULL DEFAULT 0.0,
    revision        TEXT    DEFAULT NULL
);

CREATE INDEX IF NOT EXISTS idx_metrics_complexity ON file_metrics(complexity_sum);
"""

TABLES = ("file_metrics", "file_hashes")


@dataclass
class FileMetrics:
    """Static metrics for a single file."""
    path: str
    language: str = ""
    total_lines: int = 0
    code_lines: int = 0
    comment_lines: int = 0
    blank_lines: int = 0
    complexity_sum: int = 0
    complexity_avg: float = 0.0
    import_count: int = 0
    export_count: int = 0
    class_count: int = 0
    function_count: int = 0
    last_analyzed: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return asdict(self)


_METRIC_COLUMNS = tuple(FileMetrics.__dataclass_fields__)


class MetricsStore:
    """
    SQLite store for :class:`FileMetrics` rows and file fingerprints.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file.  Created if absent.
    timeout:
        Seconds SQLite waits on a locked database before failing a write.

    Raises
    ------
    StoreConnectionError
        If the database cannot be created or opened.
    """

    def __init__(self, db_path: str, timeout: float = 10.0) -> None:
        self._db_path = db_path
        self._timeout = timeout
        try:
            os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
            self._init_db()
        except (OSError, sqlite3.Error) as exc:
            raise StoreConnectionError(f"Cannot open metrics store {db_path}: {exc}")

    @property
    def path(self) -> str:
        return self._db_path

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _connect(self):
        """Yield a connected SQLite connection with WAL mode for concurrency."""
        conn = sqlite3.connect(self._db_path, timeout=self._timeout)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def _writing(self, what: str, path: Optional[str] = None):
        try:
            with self._connect() as conn:
                yield conn
        except sqlite3.Error as exc:
            raise StoreWriteError(f"Metrics store {what} failed: {exc}", path=path) from exc

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.executescript(_SCHEMA)

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def upsert_file_metrics(self, record: FileMetrics) -> None:
        """Insert or replace the metrics row for ``record.path``."""
        columns = ", ".join(_METRIC_COLUMNS)
        placeholders = ", ".join("?" for _ in _METRIC_COLUMNS)
        updates = ", ".join(f"{c} = excluded.{c}" for c in _METRIC_COLUMNS if c != "path")
        values = tuple(getattr(record, c) for c in _METRIC_COLUMNS)
        with self._writing("metrics upsert", record.path) as conn:
            conn.execute(
                f"INSERT INTO file_metrics ({columns}) VALUES ({placeholders}) "
                f"ON CONFLICT(path) DO UPDATE SET {updates}",
                values,
            )

    def get_file_metrics(self, path: str) -> Optional[FileMetrics]:
        """Return the metrics stored for *path*, or None."""
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {', '.join(_METRIC_COLUMNS)} FROM file_metrics WHERE path = ?",
                (path,),
            ).fetchone()
        if row is None:
            return None
        return FileMetrics(**{c: row[c] for c in _METRIC_COLUMNS})

    def delete_file_metrics(self, paths: Iterable[str]) -> int:
        paths = list(paths)
        with self._writing("metrics delete") as conn:
            conn.executemany("DELETE FROM file_metrics WHERE path = ?", [(p,) for p in paths])
        return len(paths)

    def get_complexity_trends(self, limit: int = 10) -> list[dict]:
        """
        Return the *limit* most complex files.

        Returns
        -------
        list[dict]
            Each dict contains: path, complexity_sum, complexity_avg,
            function_count, code_lines.
        """
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT path, complexity_sum, complexity_avg, function_count, code_lines "
                "FROM file_metrics ORDER BY complexity_sum DESC, path ASC LIMIT ?",
                (limit,),
            ).fetchall()
        return [dict(r) for r in rows]

    # ------------------------------------------------------------------
    # Fingerprints
    # ------------------------------------------------------------------

    def upsert_file_hashes(self, hashes: dict[str, str],
                           revision: Optional[str] = None) -> None:
        """Insert or update the fingerprint of every path in *hashes*."""
        if not hashes:
            return
        now = time.time()
        with self._writing("fingerprint upsert") as conn:
            conn.executemany(
                """
                INSERT INTO file_hashes (path, hash, last_analyzed, revision)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(path) DO UPDATE SET
                    hash          = excluded.hash,
                    last_analyzed = excluded.last_analyzed,
                    revision      = excluded.revision
                """,
                [(p, h, now, revision) for p, h in sorted(hashes.items())],
            )

    def get_all_file_hashes(self) -> dict[str, str]:
        """Return the persisted ``path -> hash`` fingerprint map."""
        with self._connect() as conn:
            rows = conn.execute("SELECT path, hash FROM file_hashes").fetchall()
        return {r["path"]: r["hash"] for r in rows}

    def get_file_hash(self, path: str) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT hash FROM file_hashes WHERE path = ?", (path,)
            ).fetchone()
        return row["hash"] if row is not None else None

    def delete_file_hashes(self, paths: Iterable[str]) -> int:
        paths = list(paths)
        with self._writing("fingerprint delete") as conn:
            conn.executemany("DELETE FROM file_hashes WHERE path = ?", [(p,) for p in paths])
        return len(paths)

    def delete_files(self, paths: Iterable[str]) -> int:
        """Drop metrics and fingerprint rows for *paths* in one transaction."""
        rows = [(p,) for p in paths]
        with self._writing("file delete") as conn:
            conn.executemany("DELETE FROM file_metrics WHERE path = ?", rows)
            conn.executemany("DELETE FROM file_hashes WHERE path = ?", rows)
        return len(rows)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def clear_table(self, name: str) -> None:
        """Delete every row of table *name* (``file_metrics`` or ``file_hashes``)."""
        if name not in TABLES:
            raise ValueError(f"Unknown table: {name}")
        with self._writing(f"clear {name}") as conn:
            conn.execute(f"DELETE FROM {name}")

    def stats(self) -> dict:
        """
        Return aggregate statistics about the store.

        Returns
        -------
        dict
            Keys: file_count, fingerprint_count, total_lines, code_lines,
            complexity_sum, languages (dict[str, int]).
        """
        with self._connect() as conn:
            totals = conn.execute(
                "SELECT COUNT(*) AS files, COALESCE(SUM(total_lines), 0) AS total_lines, "
                "COALESCE(SUM(code_lines), 0) AS code_lines, "
                "COALESCE(SUM(complexity_sum), 0) AS complexity_sum FROM file_metrics"
            ).fetchone()
            fingerprints = conn.execute("SELECT COUNT(*) FROM file_hashes").fetchone()[0]
            lang_rows = conn.execute(
                "SELECT language, COUNT(*) AS cnt FROM file_metrics GROUP BY language"
            ).fetchall()
        return {
            "file_count": totals["files"],
            "fingerprint_count": fingerprints,
            "total_lines": totals["total_lines"],
            "code_lines": totals["code_lines"],
            "complexity_sum": totals["complexity_sum"],
            "languages": {r["language"]: r["cnt"] for r in lang_rows},
        }
