"""
NetworkX-backed semantic graph store.

Nodes carry a ``label`` (Module, Symbol, Type) plus public properties;
attributes whose names start with an underscore are bookkeeping and never
appear in query results.  Edges are keyed by kind inside a
``networkx.MultiDiGraph``, so ``(source, target, kind)`` is unique and every
insert is an idempotent upsert.  Each edge records the ``file`` that owns it.

Every mutation runs inside :meth:`GraphStore.transaction`, which holds the
single writer lock and keeps an undo log; if anything raises, the graph is
restored to the state it had when the transaction began.
"""

from __future__ import annotations

import logging
import os
import pickle
import posixpath
import tempfile
import threading
import time
from contextlib import contextmanager
from typing import Any, Iterable, Iterator, Optional

import networkx as nx

from ..errors import StoreConnectionError, StoreWriteError
from .extractors import (
    EdgeKind,
    ExtractedImport,
    ExtractedSymbol,
    ExtractedType,
    Extraction,
    NodeLabel,
    Relationship,
    external_module_id,
    module_id,
    module_parts,
)

logger = logging.getLogger(__name__)

_FORMAT_VERSION = 1

# Edges recomputed from scratch on every link() pass.
_DERIVED_KINDS = frozenset({EdgeKind.IMPORTS, EdgeKind.REFERENCES})

_TS_SUFFIXES = (".ts", ".tsx", ".d.ts", ".js", ".jsx", ".mjs", ".cjs", ".mts", ".cts")
_PY_SUFFIXES = (".py", ".pyi")


# ---------------------------------------------------------------------------
# Import resolution
# ---------------------------------------------------------------------------

def _resolve_ts(source_path: str, spec: str, local_paths: set[str]) -> Optional[str]:
    if not spec.startswith("."):
        return None
    base = posixpath.normpath(posixpath.join(posixpath.dirname(source_path), spec))
    candidates = [base]
    stem, ext = posixpath.splitext(base)
    if ext in (".js", ".jsx", ".mjs", ".cjs"):
        # ESM-style specifiers name the emitted .js file
        candidates.extend(stem + s for s in (".ts", ".tsx", ".mts", ".cts"))
    candidates.extend(base + s for s in _TS_SUFFIXES)
    candidates.extend(posixpath.join(base, "index" + s) for s in _TS_SUFFIXES)
    for candidate in candidates:
        if candidate in local_paths:
            return candidate
    return None


def _python_module_index(local_paths: Iterable[str]) -> dict[str, str]:
    """Map every dotted-name suffix of each Python path to that path."""
    index: dict[str, str] = {}
    for path in sorted(local_paths, key=lambda p: (p.count("/"), p)):
        stem, ext = posixpath.splitext(path)
        if ext not in _PY_SUFFIXES:
            continue
        parts = stem.split("/")
        if parts[-1] == "__init__":
            parts = parts[:-1]
        for i in range(len(parts)):
            index.setdefault(".".join(parts[i:]), path)
    return index


def _resolve_python(source_path: str, spec: str, local_paths: set[str],
                    py_index: dict[str, str]) -> Optional[str]:
    if not spec.startswith("."):
        return py_index.get(spec)
    dots = len(spec) - len(spec.lstrip("."))
    rest = spec[dots:]
    package = posixpath.dirname(source_path)
    for _ in range(dots - 1):
        package = posixpath.dirname(package)
    base = posixpath.join(package, *rest.split(".")) if rest else package
    candidates = [base + s for s in _PY_SUFFIXES] if rest else []
    candidates.append(posixpath.join(base, "__init__.py"))
    for candidate in candidates:
        candidate = posixpath.normpath(candidate)
        if candidate in local_paths:
            return candidate
    return None


def _specifier_name(specifier: str) -> Optional[str]:
    """Return the imported (not local) name of a specifier, or None for namespaces."""
    if specifier.startswith("*"):
        return None
    return specifier.split(" as ", 1)[0].strip() or None


def _type_description(owners: list[str], decls: dict[str, dict]) -> dict:
    """
    Public Type attributes from the first owner that declares the type,
    else from the first owner that only references it.
    """
    known = [decls[o] for o in owners if o in decls]
    for decl in known:
        if decl["kind"] != "reference":
            return dict(decl)
    if known:
        return dict(known[0])
    return {"kind": "reference", "file": owners[0] if owners else None, "line": None}


# ---------------------------------------------------------------------------
# GraphStore
# ---------------------------------------------------------------------------

class GraphStore:
    """
    Persistent, transactional semantic graph.

    Parameters
    ----------
    path:
        Pickle file the graph is loaded from and saved to.  ``None`` keeps
        the graph in memory only.
    lock_timeout:
        Seconds to wait for the writer lock before raising
        :class:`StoreWriteError`.
    """

    def __init__(self, path: Optional[str] = None, lock_timeout: float = 30.0) -> None:
        self._path = path
        self._lock_timeout = lock_timeout
        self._lock = threading.RLock()
        self._undo: Optional[list[tuple]] = None
        self._depth = 0
        self._version = 0
        self._mirror = None
        self._g: nx.MultiDiGraph = nx.MultiDiGraph()
        if path is not None:
            self._open(path)

    @property
    def path(self) -> Optional[str]:
        return self._path

    @property
    def graph(self) -> nx.MultiDiGraph:
        return self._g

    @property
    def version(self) -> int:
        """Counter bumped by every committed transaction that changed the graph."""
        return self._version

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _open(self, path: str) -> None:
        try:
            os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
        except OSError as exc:
            raise StoreConnectionError(f"Cannot create graph directory for {path}: {exc}")
        if not os.path.exists(path):
            logger.debug("[graph] No graph at %s; starting empty", path)
            return
        try:
            with open(path, "rb") as fh:
                payload = pickle.load(fh)
        except (OSError, pickle.UnpicklingError, EOFError, AttributeError) as exc:
            raise StoreConnectionError(f"Cannot load graph from {path}: {exc}")
        if not isinstance(payload, dict) or payload.get("version") != _FORMAT_VERSION:
            raise StoreConnectionError(f"Unrecognised graph file format: {path}")
        self._g = payload["graph"]
        logger.debug("[graph] Loaded %d nodes, %d edges from %s",
                     self._g.number_of_nodes(), self._g.number_of_edges(), path)

    @classmethod
    def load(cls, path: str, lock_timeout: float = 30.0) -> "GraphStore":
        """
        Open the graph previously saved at *path*.

        Raises
        ------
        StoreConnectionError
            If *path* does not exist or cannot be read.
        """
        if not os.path.exists(path):
            raise StoreConnectionError(f"Graph file not found: {path}")
        return cls(path, lock_timeout=lock_timeout)

    def save(self) -> None:
        """
        Flush the graph to disk atomically (temp file + rename).

        Raises
        ------
        StoreWriteError
            If the file cannot be written.
        """
        if self._path is None:
            return
        with self._locked():
            payload = {"version": _FORMAT_VERSION, "graph": self._g}
            directory = os.path.dirname(os.path.abspath(self._path))
            try:
                fd, tmp = tempfile.mkstemp(dir=directory, suffix=".tmp")
                try:
                    with os.fdopen(fd, "wb") as fh:
                        pickle.dump(payload, fh, protocol=pickle.HIGHEST_PROTOCOL)
                    os.replace(tmp, self._path)
                except BaseException:
                    if os.path.exists(tmp):
                        os.unlink(tmp)
                    raise
            except OSError as exc:
                raise StoreWriteError(f"Cannot save graph to {self._path}: {exc}")
            logger.debug("[graph] Saved %d nodes, %d edges to %s",
                         self._g.number_of_nodes(), self._g.number_of_edges(), self._path)

    def clear(self) -> None:
        """Remove every node and edge."""
        with self.transaction():
            for node_id in list(self._g.nodes):
                self._remove_node(node_id)

    # ------------------------------------------------------------------
    # Locking and transactions
    # ------------------------------------------------------------------

    @contextmanager
    def _locked(self):
        if not self._lock.acquire(timeout=self._lock_timeout):
            raise StoreWriteError(
                f"Timed out after {self._lock_timeout}s waiting for the graph lock"
            )
        try:
            yield
        finally:
            self._lock.release()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """
        Run the enclosed mutations atomically.

        Nested transactions join the outermost one.  On any exception the
        undo log is replayed in reverse and the exception propagates.
        """
        with self._locked():
            outermost = self._depth == 0
            if outermost:
                self._undo = []
            self._depth += 1
            try:
                yield
            except BaseException:
                if outermost:
                    self._rollback()
                raise
            else:
                if outermost and self._undo:
                    self._version += 1
            finally:
                self._depth -= 1
                if outermost:
                    self._undo = None

    def _rollback(self) -> None:
        undo = self._undo or []
        logger.debug("[graph] Rolling back %d operations", len(undo))
        for op in reversed(undo):
            action = op[0]
            if action == "node_added":
                if self._g.has_node(op[1]):
                    self._g.remove_node(op[1])
            elif action == "node_attrs":
                self._g.nodes[op[1]].clear()
                self._g.nodes[op[1]].update(op[2])
            elif action == "node_removed":
                _, node_id, attrs, edges = op
                self._g.add_node(node_id, **attrs)
                for u, v, key, data in edges:
                    self._g.add_edge(u, v, key=key, **data)
            elif action == "edge_added":
                _, u, v, key = op
                if self._g.has_edge(u, v, key):
                    self._g.remove_edge(u, v, key)
            elif action == "edge_attrs":
                _, u, v, key, data = op
                self._g.edges[u, v, key].clear()
                self._g.edges[u, v, key].update(data)
            elif action == "edge_removed":
                _, u, v, key, data = op
                self._g.add_edge(u, v, key=key, **data)

    def _record(self, op: tuple) -> None:
        if self._undo is None:
            raise RuntimeError("graph mutation outside a transaction")
        self._undo.append(op)

    # ------------------------------------------------------------------
    # Primitive mutations (each records its inverse)
    # ------------------------------------------------------------------

    def _set_node(self, node_id: str, **attrs: Any) -> None:
        if self._g.has_node(node_id):
            self._record(("node_attrs", node_id, dict(self._g.nodes[node_id])))
            self._g.nodes[node_id].update(attrs)
        else:
            self._record(("node_added", node_id))
            self._g.add_node(node_id, **attrs)

    def _remove_node(self, node_id: str) -> None:
        if not self._g.has_node(node_id):
            return
        edges = [
            (u, v, k, dict(d))
            for u, v, k, d in self._g.in_edges(node_id, keys=True, data=True)
        ] + [
            (u, v, k, dict(d))
            for u, v, k, d in self._g.out_edges(node_id, keys=True, data=True)
            if u != v
        ]
        self._record(("node_removed", node_id, dict(self._g.nodes[node_id]), edges))
        self._g.remove_node(node_id)

    def _set_edge(self, u: str, v: str, kind: str, **attrs: Any) -> None:
        if self._g.has_edge(u, v, kind):
            self._record(("edge_attrs", u, v, kind, dict(self._g.edges[u, v, kind])))
            self._g.edges[u, v, kind].update(attrs)
        else:
            self._record(("edge_added", u, v, kind))
            self._g.add_edge(u, v, key=kind, kind=kind, **attrs)

    def _remove_edge(self, u: str, v: str, kind: str) -> None:
        if not self._g.has_edge(u, v, kind):
            return
        self._record(("edge_removed", u, v, kind, dict(self._g.edges[u, v, kind])))
        self._g.remove_edge(u, v, kind)

    # ------------------------------------------------------------------
    # Inserts
    # ------------------------------------------------------------------

    def insert_module(self, path: str, language: str = "", last_modified: float = 0.0,
                      revision: Optional[str] = None, content_hash: str = "") -> str:
        """Upsert the Module node for *path* and return its id."""
        name, package = module_parts(path)
        mid = module_id(path)
        with self.transaction():
            existing = self._g.nodes[mid] if self._g.has_node(mid) else {}
            self._set_node(
                mid,
                label=NodeLabel.MODULE,
                path=path,
                name=name,
                package=package,
                language=language,
                last_modified=last_modified,
                revision=revision,
                hash=content_hash,
                external=False,
                _imports=list(existing.get("_imports", [])),
                _pending=list(existing.get("_pending", [])),
                _types=list(existing.get("_types", [])),
            )
        return mid

    def _ensure_module(self, path: str) -> str:
        mid = module_id(path)
        if not self._g.has_node(mid):
            self.insert_module(path)
        return mid

    def insert_symbols(self, symbols: Iterable[ExtractedSymbol],
                       revision: Optional[str] = None) -> int:
        """Upsert Symbol nodes plus their DECLARES edge from the owning module."""
        count = 0
        with self.transaction():
            for sym in symbols:
                mid = self._ensure_module(sym.file_path)
                self._set_node(
                    sym.id,
                    label=NodeLabel.SYMBOL,
                    id=sym.id,
                    name=sym.name,
                    kind=sym.kind,
                    file=sym.file_path,
                    line=sym.line,
                    column=sym.column,
                    exported=sym.exported,
                    is_async=sym.is_async,
                    visibility=sym.visibility,
                    doc=sym.doc,
                    parent=sym.parent,
                    revision=revision,
                )
                self._set_edge(mid, sym.id, EdgeKind.DECLARES, file=sym.file_path)
                count += 1
        return count

    def insert_types(self, types: Iterable[ExtractedType]) -> int:
        """
        Upsert shared Type nodes, adding each file to the type's owners.

        Every owning file's description is kept so the node can fall back to
        a surviving owner when the declaring file is deleted.
        """
        count = 0
        with self.transaction():
            for t in types:
                mid = self._ensure_module(t.file_path)
                owned = self._g.nodes[mid].get("_types", [])
                if t.id not in owned:
                    self._set_node(mid, _types=owned + [t.id])

                existing = self._g.nodes[t.id] if self._g.has_node(t.id) else {}
                owners = list(existing.get("_owners", []))
                if t.file_path not in owners:
                    owners.append(t.file_path)
                decls = dict(existing.get("_decls", {}))
                previous = decls.get(t.file_path)
                if previous is None or previous["kind"] == "reference" or t.kind != "reference":
                    decls[t.file_path] = {
                        "kind": t.kind,
                        "file": t.file_path,
                        "line": t.line,
                        "definition": t.definition,
                        "primitive": t.primitive,
                        "generic": t.generic,
                        "nullable": t.nullable,
                        "readonly": t.readonly,
                        "type_params": list(t.type_params),
                    }
                self._set_node(t.id, label=NodeLabel.TYPE, id=t.id, name=t.name,
                               _owners=owners, _decls=decls,
                               **_type_description(owners, decls))
                count += 1
        return count

    def insert_imports(self, imports: Iterable[ExtractedImport]) -> int:
        """
        Record import statements on their source modules.

        IMPORTS / REFERENCES edges are derived from these records by
        :meth:`link`, which sees the whole set of local modules.
        """
        count = 0
        with self.transaction():
            for imp in imports:
                mid = self._ensure_module(imp.source_file)
                records = [r for r in self._g.nodes[mid].get("_imports", []) if r["id"] != imp.id]
                records.append({
                    "id": imp.id,
                    "imported_path": imp.imported_path,
                    "specifiers": list(imp.specifiers),
                    "type_only": imp.type_only,
                    "default": imp.default,
                    "namespace": imp.namespace,
                    "line": imp.line,
                })
                self._set_node(mid, _imports=records)
                count += 1
        return count

    def insert_relationships(self, relationships: Iterable[Relationship]) -> int:
        """
        Upsert edges.  Relationships naming a target id are written now;
        name-only ones are kept pending on the owning module until
        :meth:`link` resolves them.
        """
        count = 0
        with self.transaction():
            for rel in relationships:
                if rel.target is not None:
                    if not (self._g.has_node(rel.source) and self._g.has_node(rel.target)):
                        logger.debug("[graph] Dropping dangling %s edge %s -> %s",
                                     rel.kind, rel.source, rel.target)
                        continue
                    self._set_edge(rel.source, rel.target, rel.kind,
                                   file=rel.file_path, line=rel.line)
                else:
                    mid = self._ensure_module(rel.file_path)
                    pending = [
                        p for p in self._g.nodes[mid].get("_pending", [])
                        if (p["source"], p["kind"], p["target_name"])
                        != (rel.source, rel.kind, rel.target_name)
                    ]
                    pending.append({
                        "source": rel.source,
                        "kind": rel.kind,
                        "target_name": rel.target_name,
                        "line": rel.line,
                    })
                    self._set_node(mid, _pending=pending)
                count += 1
        return count

    def replace_file(self, path: str, extraction: Extraction, last_modified: float = 0.0,
                     revision: Optional[str] = None) -> None:
        """
        Atomically replace everything *path* contributes to the graph.

        Raises
        ------
        StoreWriteError
            If the lock cannot be acquired or the write fails; the graph is
            left exactly as it was.
        """
        try:
            with self.transaction():
                self.delete_file_data(path)
                self.insert_module(path, extraction.language, last_modified,
                                   revision, extraction.hash)
                self.insert_symbols(extraction.symbols, revision)
                self.insert_types(extraction.types)
                self.insert_imports(extraction.imports)
                self.insert_relationships(extraction.relationships)
        except StoreWriteError:
            raise
        except Exception as exc:
            raise StoreWriteError(f"Graph write failed for {path}: {exc}", path=path) from exc

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def delete_file_data(self, path: str) -> int:
        """
        Remove the module for *path*, its symbols, its edges, the types only
        it owned and external modules nothing else imports.  Returns the
        number of nodes removed.
        """
        mid = module_id(path)
        removed = 0
        with self.transaction():
            if not self._g.has_node(mid):
                return 0
            attrs = self._g.nodes[mid]
            symbols = [
                v for _, v, k in self._g.out_edges(mid, keys=True)
                if k == EdgeKind.DECLARES
            ]
            imported = {
                v for _, v, k in self._g.out_edges(mid, keys=True)
                if k == EdgeKind.IMPORTS
            }
            for type_node in attrs.get("_types", []):
                if not self._g.has_node(type_node):
                    continue
                type_attrs = self._g.nodes[type_node]
                owners = [o for o in type_attrs.get("_owners", []) if o != path]
                if owners:
                    decls = {f: d for f, d in type_attrs.get("_decls", {}).items() if f != path}
                    self._set_node(type_node, _owners=owners, _decls=decls,
                                   **_type_description(owners, decls))
                else:
                    self._remove_node(type_node)
                    removed += 1

            for sym in symbols:
                self._remove_node(sym)
                removed += 1
            self._remove_node(mid)
            removed += 1

            for target in imported:
                if (self._g.has_node(target)
                        and self._g.nodes[target].get("external")
                        and self._g.in_degree(target) == 0):
                    self._remove_node(target)
                    removed += 1
        logger.debug("[graph] Removed %d nodes for %s", removed, path)
        return removed

    # ------------------------------------------------------------------
    # Linking
    # ------------------------------------------------------------------

    def link(self) -> dict[str, int]:
        """
        Recompute cross-file edges over the whole graph.

        IMPORTS and REFERENCES edges are rebuilt from every module's import
        records; pending name-based relationships (calls) are resolved,
        preferring the caller's own file, then modules it imports, then the
        first match anywhere.
        """
        started = time.time()
        counts = {EdgeKind.IMPORTS: 0, EdgeKind.REFERENCES: 0, "resolved": 0, "unresolved": 0}
        with self.transaction():
            for u, v, k in list(self._g.edges(keys=True)):
                if k in _DERIVED_KINDS or self._g.edges[u, v, k].get("derived"):
                    self._remove_edge(u, v, k)

            modules: dict[str, dict] = {}
            symbols_by_name: dict[str, list[str]] = {}
            for node_id, attrs in self._g.nodes(data=True):
                label = attrs.get("label")
                if label == NodeLabel.MODULE and not attrs.get("external"):
                    modules[attrs["path"]] = attrs
                elif label == NodeLabel.SYMBOL:
                    symbols_by_name.setdefault(attrs["name"], []).append(node_id)
            for ids in symbols_by_name.values():
                ids.sort(key=lambda i: (self._g.nodes[i]["file"], self._g.nodes[i]["line"], i))

            local_paths = set(modules)
            py_index = _python_module_index(local_paths)
            exports: dict[str, dict[str, str]] = {}
            for path in local_paths:
                table: dict[str, str] = {}
                for _, sym, k in self._g.out_edges(module_id(path), keys=True):
                    if k != EdgeKind.DECLARES:
                        continue
                    sattrs = self._g.nodes[sym]
                    if sattrs.get("exported") and sattrs.get("parent") is None:
                        table.setdefault(sattrs["name"], sym)
                exports[path] = table

            for path in sorted(local_paths):
                attrs = modules[path]
                mid = module_id(path)
                imported_paths: list[str] = []
                for record in attrs.get("_imports", []):
                    spec = record["imported_path"]
                    if attrs.get("language") == "python":
                        target_path = _resolve_python(path, spec, local_paths, py_index)
                    else:
                        target_path = _resolve_ts(path, spec, local_paths)

                    if target_path is not None:
                        target = module_id(target_path)
                        imported_paths.append(target_path)
                    else:
                        target = external_module_id(spec)
                        if not self._g.has_node(target):
                            self._set_node(target, label=NodeLabel.MODULE, path=spec,
                                           name=spec, package="", language="",
                                           external=True)
                    specifiers = list(record["specifiers"])
                    if self._g.has_edge(mid, target, EdgeKind.IMPORTS):
                        previous = self._g.edges[mid, target, EdgeKind.IMPORTS]["specifiers"]
                        specifiers = previous + [s for s in specifiers if s not in previous]
                    self._set_edge(mid, target, EdgeKind.IMPORTS, file=path,
                                   specifiers=specifiers,
                                   type_only=record["type_only"],
                                   line=record["line"])
                    counts[EdgeKind.IMPORTS] += 1

                    if target_path is None:
                        continue
                    for spec_text in record["specifiers"]:
                        name = _specifier_name(spec_text)
                        sym = exports[target_path].get(name) if name else None
                        if sym is None and record.get("default") and spec_text == record["specifiers"][0]:
                            sym = exports[target_path].get("default")
                        if sym is not None:
                            self._set_edge(mid, sym, EdgeKind.REFERENCES, file=path,
                                           specifier=spec_text, line=record["line"])
                            counts[EdgeKind.REFERENCES] += 1

                for pending in attrs.get("_pending", []):
                    source = pending["source"]
                    if not self._g.has_node(source):
                        continue
                    target = self._resolve_name(pending["target_name"], path,
                                                imported_paths, symbols_by_name)
                    if target is None:
                        counts["unresolved"] += 1
                        continue
                    self._set_edge(source, target, pending["kind"], file=path,
                                   line=pending["line"], derived=True)
                    counts["resolved"] += 1

            for node_id, attrs in list(self._g.nodes(data=True)):
                if attrs.get("external") and self._g.in_degree(node_id) == 0:
                    self._remove_node(node_id)

        logger.debug("[graph] Linked %d imports, %d references, %d/%d calls in %.2fs",
                     counts[EdgeKind.IMPORTS], counts[EdgeKind.REFERENCES],
                     counts["resolved"], counts["resolved"] + counts["unresolved"],
                     time.time() - started)
        return counts

    def _resolve_name(self, name: str, path: str, imported_paths: list[str],
                      symbols_by_name: dict[str, list[str]]) -> Optional[str]:
        candidates = symbols_by_name.get(name)
        if not candidates:
            return None
        for preferred in [path] + imported_paths:
            for cand in candidates:
                if self._g.nodes[cand]["file"] == preferred:
                    return cand
        return candidates[0]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def snapshot(self) -> tuple[int, list[tuple[str, dict]], list[tuple[str, str, str, dict]]]:
        """
        Copy the graph under the lock.

        Returns
        -------
        tuple
            ``(version, nodes, edges)`` where nodes are ``(id, attrs)`` and
            edges are ``(source, target, kind, attrs)``.
        """
        with self._locked():
            nodes = [(n, dict(attrs)) for n, attrs in self._g.nodes(data=True)]
            edges = [(u, v, k, dict(d)) for u, v, k, d in self._g.edges(keys=True, data=True)]
            return self._version, nodes, edges

    def query(self, query, params: Optional[dict] = None):
        """
        Execute a structured query or raw query text against the graph.

        Reads run on a Kuzu mirror of the latest committed state, so they
        do not block (or wait for) writers once the mirror is current.

        Parameters
        ----------
        query:
            A :class:`~semgraph.query.builder.StructuredQuery` or Cypher text.
        params:
            Extra ``$name`` bindings; merged over the query's own parameters.

        Returns
        -------
        QueryResult
        """
        from ..query.cypher import GraphMirror

        if hasattr(query, "render"):
            text = query.render()
            bound = dict(query.params)
        else:
            text = str(query)
            bound = {}
        bound.update(params or {})
        if self._mirror is None:
            self._mirror = GraphMirror()
        return self._mirror.execute(self, text, bound)

    def has_module(self, path: str) -> bool:
        return self._g.has_node(module_id(path))

    def module_paths(self) -> list[str]:
        """Return the paths of all local modules, sorted."""
        with self._lock:
            return sorted(
                attrs["path"] for _, attrs in self._g.nodes(data=True)
                if attrs.get("label") == NodeLabel.MODULE and not attrs.get("external")
            )

    def file_symbols(self, path: str) -> list[dict]:
        """Return the public properties of every symbol declared in *path*."""
        mid = module_id(path)
        with self._lock:
            if not self._g.has_node(mid):
                return []
            return [
                self.node_properties(v)
                for _, v, k in self._g.out_edges(mid, keys=True)
                if k == EdgeKind.DECLARES
            ]

    def node_properties(self, node_id: str) -> dict:
        attrs = self._g.nodes[node_id]
        return {k: v for k, v in attrs.items() if not k.startswith("_") and k != "label"}

    def stats(self) -> dict:
        """
        Return aggregate statistics about the graph.

        Returns
        -------
        dict
            Keys: node_count, edge_count, by_node_type (dict), by_edge_type (dict).
        """
        with self._lock:
            by_node: dict[str, int] = {}
            for _, attrs in self._g.nodes(data=True):
                label = attrs.get("label", "unknown")
                by_node[label] = by_node.get(label, 0) + 1

            by_edge: dict[str, int] = {}
            for _, _, kind in self._g.edges(keys=True):
                by_edge[kind] = by_edge.get(kind, 0) + 1

            return {
                "node_count": self._g.number_of_nodes(),
                "edge_count": self._g.number_of_edges(),
                "by_node_type": by_node,
                "by_edge_type": by_edge,
            }
