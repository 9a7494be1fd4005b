"""
Cypher queries over an embedded Kuzu mirror of the graph.

The networkx graph stays the store of record.  :class:`GraphMirror` copies
a snapshot of it into an in-memory Kuzu database and runs query text there;
the copy is rebuilt only when the store's version has moved on, so repeated
reads between writes share one mirror and never hold the writer lock.

Queries are read-only: text containing an updating clause is rejected
before it reaches Kuzu.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Optional

import kuzu

from ..errors import QuerySyntaxError
from ..index.extractors import EdgeKind, NodeLabel

logger = logging.getLogger(__name__)

_BUFFER_POOL_BYTES = 512 * 1024 * 1024
_MAX_DB_BYTES = 1 << 34


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass
class QueryResult:
    """Tabular query output."""
    columns: list[str] = field(default_factory=list)
    rows: list[dict] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def to_dict(self) -> dict:
        return {"columns": list(self.columns), "rows": list(self.rows),
                "row_count": self.row_count}

    def column(self, name: str) -> list:
        return [row.get(name) for row in self.rows]


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

# Node tables: public property -> Kuzu type.  ``id`` is the primary key.
NODE_TABLES: dict[str, dict[str, str]] = {
    NodeLabel.MODULE: {
        "path": "STRING",
        "name": "STRING",
        "package": "STRING",
        "language": "STRING",
        "last_modified": "DOUBLE",
        "revision": "STRING",
        "hash": "STRING",
        "external": "BOOLEAN",
    },
    NodeLabel.SYMBOL: {
        "name": "STRING",
        "kind": "STRING",
        "file": "STRING",
        "line": "INT64",
        "column": "INT64",
        "exported": "BOOLEAN",
        "is_async": "BOOLEAN",
        "visibility": "STRING",
        "doc": "STRING",
        "parent": "STRING",
        "revision": "STRING",
    },
    NodeLabel.TYPE: {
        "name": "STRING",
        "kind": "STRING",
        "file": "STRING",
        "line": "INT64",
        "definition": "STRING",
        "primitive": "BOOLEAN",
        "generic": "BOOLEAN",
        "nullable": "BOOLEAN",
        "readonly": "BOOLEAN",
        "type_params": "STRING[]",
    },
}

_LOCATED = {"file": "STRING", "line": "INT64"}

# Rel tables: kind -> (source label, target label, properties).
REL_TABLES: dict[str, tuple[str, str, dict[str, str]]] = {
    EdgeKind.DECLARES: (NodeLabel.MODULE, NodeLabel.SYMBOL, {"file": "STRING"}),
    EdgeKind.IMPORTS: (NodeLabel.MODULE, NodeLabel.MODULE, {
        **_LOCATED, "specifiers": "STRING[]", "type_only": "BOOLEAN",
    }),
    EdgeKind.REFERENCES: (NodeLabel.MODULE, NodeLabel.SYMBOL, {
        **_LOCATED, "specifier": "STRING",
    }),
    EdgeKind.CALLS: (NodeLabel.SYMBOL, NodeLabel.SYMBOL, {**_LOCATED, "derived": "BOOLEAN"}),
    EdgeKind.MEMBER_OF: (NodeLabel.SYMBOL, NodeLabel.SYMBOL, dict(_LOCATED)),
    EdgeKind.EXTENDS: (NodeLabel.SYMBOL, NodeLabel.TYPE, dict(_LOCATED)),
    EdgeKind.IMPLEMENTS: (NodeLabel.SYMBOL, NodeLabel.TYPE, dict(_LOCATED)),
    EdgeKind.HAS_TYPE: (NodeLabel.SYMBOL, NodeLabel.TYPE, dict(_LOCATED)),
}


def schema_statements() -> list[str]:
    """DDL for the mirror database."""
    statements = []
    for label, columns in NODE_TABLES.items():
        cols = ", ".join(f"{name} {kind}" for name, kind in columns.items())
        statements.append(f"CREATE NODE TABLE {label}(id STRING, {cols}, PRIMARY KEY (id))")
    for kind, (source, target, columns) in REL_TABLES.items():
        cols = "".join(f", {name} {typ}" for name, typ in columns.items())
        statements.append(f"CREATE REL TABLE {kind}(FROM {source} TO {target}{cols})")
    return statements


def _coerce(value: Any, kind: str) -> Any:
    if kind == "STRING[]":
        return [str(v) for v in value]
    if kind == "BOOLEAN":
        return bool(value)
    if kind == "INT64":
        return int(value)
    if kind == "DOUBLE":
        return float(value)
    return str(value)


def _properties(attrs: dict, columns: dict[str, str]) -> dict[str, Any]:
    """Typed values for the columns *attrs* sets; nulls and empty lists are left out."""
    props = {}
    for name, kind in columns.items():
        value = attrs.get(name)
        if value is None or (kind == "STRING[]" and not value):
            continue
        props[name] = _coerce(value, kind)
    return props


def _assignments(names) -> str:
    body = ", ".join(f"{name}: ${name}" for name in names)
    return f" {{{body}}}" if body else ""


class _Loader:
    """Runs one parameterised statement per row, prepared once per property set."""

    def __init__(self, conn: "kuzu.Connection") -> None:
        self._conn = conn
        self._prepared: dict[str, Any] = {}

    def run(self, statement: str, params: dict) -> None:
        prepared = self._prepared.get(statement)
        if prepared is None:
            prepared = self._prepared[statement] = self._conn.prepare(statement)
        self._conn.execute(prepared, params)


# ---------------------------------------------------------------------------
# Query text checks
# ---------------------------------------------------------------------------

_LITERAL_RE = re.compile(
    r"'(?:[^'\\]|\\.)*'|\"(?:[^\"\\]|\\.)*\"|`[^`]*`|//[^\n]*|/\*.*?\*/", re.S
)
_UPDATING_RE = re.compile(
    r"\b(CREATE|MERGE|DELETE|DETACH|SET|REMOVE|DROP|ALTER|COPY|LOAD|INSTALL|"
    r"ATTACH|IMPORT|EXPORT|CHECKPOINT|BEGIN|COMMIT|ROLLBACK)\b",
    re.IGNORECASE,
)
_PARAM_RE = re.compile(r"\$([A-Za-z_][A-Za-z0-9_]*)")


def _strip_literals(text: str) -> str:
    return _LITERAL_RE.sub(lambda m: " " * len(m.group()), text)


def check_read_only(text: str) -> None:
    """
    Raises
    ------
    QuerySyntaxError
        If *text* is empty or contains an updating clause.
    """
    bare = _strip_literals(text)
    if not bare.strip():
        raise QuerySyntaxError("Empty query")
    m = _UPDATING_RE.search(_PARAM_RE.sub(lambda p: " " * len(p.group()), bare))
    if m:
        raise QuerySyntaxError(
            f"Queries are read-only; '{m.group(1).upper()}' is not allowed", m.start()
        )


def referenced_params(text: str) -> list[str]:
    """``$name`` parameters *text* uses, in order of first appearance."""
    seen: list[str] = []
    for name in _PARAM_RE.findall(_strip_literals(text)):
        if name not in seen:
            seen.append(name)
    return seen


# ---------------------------------------------------------------------------
# Value conversion
# ---------------------------------------------------------------------------

def _public(value: dict) -> dict:
    return {k: _to_python(v) for k, v in value.items() if not k.startswith("_")}


def _to_python(value: Any) -> Any:
    """Turn Kuzu node, rel and path values into plain dicts."""
    if isinstance(value, dict):
        if "_nodes" in value and "_rels" in value:
            return {"nodes": [_to_python(n) for n in value["_nodes"]],
                    "rels": [_to_python(r) for r in value["_rels"]]}
        if "_src" in value and "_label" in value:
            return {"type": value["_label"], **_public(value)}
        if "_id" in value and "_label" in value:
            return {"label": value["_label"], **_public(value)}
        return {k: _to_python(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_python(v) for v in value]
    return value


def _bind(text: str, params: dict) -> dict:
    bound = {}
    for name in referenced_params(text):
        if name not in params:
            raise QuerySyntaxError(f"Missing query parameter ${name}")
        value = params[name]
        bound[name] = list(value) if isinstance(value, tuple) else value
    return bound


# ---------------------------------------------------------------------------
# Mirror
# ---------------------------------------------------------------------------

def build_database(nodes: list[tuple[str, dict]],
                   edges: list[tuple[str, str, str, dict]]) -> "kuzu.Database":
    """Create an in-memory Kuzu database holding *nodes* and *edges*."""
    db = kuzu.Database(":memory:", buffer_pool_size=_BUFFER_POOL_BYTES,
                       max_db_size=_MAX_DB_BYTES)
    conn = kuzu.Connection(db)
    for statement in schema_statements():
        conn.execute(statement)
    loader = _Loader(conn)

    labels: dict[str, str] = {}
    for node_id, attrs in nodes:
        label = attrs.get("label")
        columns = NODE_TABLES.get(label)
        if columns is None:
            continue
        props = {"id": node_id, **_properties(attrs, columns)}
        loader.run(f"CREATE (:{label}{_assignments(props)})", props)
        labels[node_id] = label

    skipped = 0
    for source, target, kind, data in edges:
        spec = REL_TABLES.get(kind)
        if spec is None or (labels.get(source), labels.get(target)) != spec[:2]:
            skipped += 1
            continue
        props = _properties(data, spec[2])
        loader.run(
            f"MATCH (a:{spec[0]} {{id: $src_id}}), (b:{spec[1]} {{id: $dst_id}}) "
            f"CREATE (a)-[:{kind}{_assignments(props)}]->(b)",
            {**props, "src_id": source, "dst_id": target},
        )
    if skipped:
        logger.debug("[query] %d edges have no mirror table", skipped)
    return db


class GraphMirror:
    """
    Kuzu copy of one :class:`~semgraph.index.graph_store.GraphStore`.

    The store is asked for a snapshot only when its version differs from
    the one last mirrored.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._db: Optional["kuzu.Database"] = None
        self._version: Optional[int] = None

    @property
    def version(self) -> Optional[int]:
        return self._version

    def refresh(self, store) -> "kuzu.Database":
        with self._lock:
            if self._db is not None and self._version == store.version:
                return self._db
            started = time.time()
            version, nodes, edges = store.snapshot()
            self._db = build_database(nodes, edges)
            self._version = version
            logger.debug("[query] Mirrored %d nodes, %d edges (version %d) in %.2fs",
                         len(nodes), len(edges), version, time.time() - started)
            return self._db

    def execute(self, store, text: str, params: Optional[dict] = None) -> QueryResult:
        """
        Run read-only Cypher *text* against the current state of *store*.

        Raises
        ------
        QuerySyntaxError
            Updating clauses, missing parameters, or any error Kuzu reports
            while parsing, binding or running the query.
        """
        check_read_only(text)
        bound = _bind(text, params or {})
        db = self.refresh(store)
        conn = kuzu.Connection(db)
        try:
            result = conn.execute(text, bound)
        except RuntimeError as exc:
            raise QuerySyntaxError(str(exc).strip()) from exc
        if isinstance(result, list):
            for r in result:
                r.close()
            raise QuerySyntaxError("Only one statement per query is supported")
        try:
            columns = list(result.get_column_names())
            rows = []
            while result.has_next():
                values = result.get_next()
                rows.append({c: _to_python(v) for c, v in zip(columns, values)})
        except RuntimeError as exc:
            raise QuerySyntaxError(str(exc).strip()) from exc
        finally:
            result.close()
        return QueryResult(columns=columns, rows=rows)
