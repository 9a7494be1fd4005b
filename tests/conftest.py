"""
Shared fixtures: a small synthetic TypeScript project built without
tree-sitter, so graph and query tests run against a deterministic graph.

    src/util.ts   export function formatName      (line 1)
                  export interface Loader         (line 5)

    src/api.ts    import { formatName, Loader } from './util'
                  export function fetchUser       (line 3)  -> calls formatName
                  export function unusedHelper    (line 10)
                  export class UserService        (line 15) extends BaseService,
                      load()                      (line 16)    implements Loader
                  class BaseService               (line 20)

    src/app.ts    import { fetchUser } from './api'
                  import * as React from 'react'
                  function main                   (line 3)  -> calls fetchUser, load
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from semgraph.errors import ParseError
from semgraph.index.extractors.base import (
    EdgeKind,
    ExtractedImport,
    ExtractedSymbol,
    ExtractedType,
    Extraction,
    Relationship,
    import_id,
    symbol_id,
    type_id,
)
from semgraph.index.graph_store import GraphStore
from semgraph.index.hashing import hash_bytes


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def make_symbol(path, name, kind, line, exported=False, parent=None, column=1):
    qualified = f"{parent}.{name}" if parent else name
    return ExtractedSymbol(
        id=symbol_id(path, kind, qualified, line, column),
        name=name,
        kind=kind,
        file_path=path,
        line=line,
        column=column,
        exported=exported,
        parent=parent,
    )


def make_type(path, name, kind, line):
    return ExtractedType(id=type_id(name), name=name, kind=kind, file_path=path, line=line)


def make_import(path, spec, specifiers, line, namespace=False):
    return ExtractedImport(
        id=import_id(path, spec, line),
        source_file=path,
        imported_path=spec,
        specifiers=list(specifiers),
        namespace=namespace,
        line=line,
    )


def calls(path, source, target_name, line):
    return Relationship(source=source.id, kind=EdgeKind.CALLS, file_path=path,
                        target_name=target_name, line=line)


def edge(path, source, kind, target, line):
    return Relationship(source=source.id, kind=kind, file_path=path, target=target, line=line)


@dataclass
class Sample:
    store: GraphStore
    extractions: dict = field(default_factory=dict)
    ids: dict = field(default_factory=dict)


def sample_extractions() -> tuple[dict[str, Extraction], dict[str, str]]:
    ids: dict[str, str] = {}

    util = "src/util.ts"
    format_name = make_symbol(util, "formatName", "function", 1, exported=True)
    loader = make_symbol(util, "Loader", "interface", 5, exported=True)
    util_x = Extraction(
        path=util, language="typescript", hash="h-util",
        symbols=[format_name, loader],
        types=[make_type(util, "Loader", "interface", 5)],
        relationships=[edge(util, loader, EdgeKind.HAS_TYPE, type_id("Loader"), 5)],
    )

    api = "src/api.ts"
    fetch_user = make_symbol(api, "fetchUser", "function", 3, exported=True)
    unused = make_symbol(api, "unusedHelper", "function", 10, exported=True)
    service = make_symbol(api, "UserService", "class", 15, exported=True)
    load = make_symbol(api, "load", "method", 16, parent="UserService", column=3)
    base = make_symbol(api, "BaseService", "class", 20)
    api_x = Extraction(
        path=api, language="typescript", hash="h-api",
        symbols=[fetch_user, unused, service, load, base],
        types=[
            make_type(api, "UserService", "class", 15),
            make_type(api, "Loader", "reference", 15),
            make_type(api, "BaseService", "class", 20),
        ],
        imports=[make_import(api, "./util", ["formatName", "Loader"], 1)],
        relationships=[
            calls(api, fetch_user, "formatName", 4),
            edge(api, service, EdgeKind.HAS_TYPE, type_id("UserService"), 15),
            edge(api, service, EdgeKind.EXTENDS, type_id("BaseService"), 15),
            edge(api, service, EdgeKind.IMPLEMENTS, type_id("Loader"), 15),
            edge(api, load, EdgeKind.MEMBER_OF, service.id, 16),
            edge(api, base, EdgeKind.HAS_TYPE, type_id("BaseService"), 20),
        ],
    )

    app = "src/app.ts"
    main = make_symbol(app, "main", "function", 3)
    app_x = Extraction(
        path=app, language="typescript", hash="h-app",
        symbols=[main],
        imports=[
            make_import(app, "./api", ["fetchUser"], 1),
            make_import(app, "react", ["* as React"], 2, namespace=True),
        ],
        relationships=[
            calls(app, main, "fetchUser", 4),
            calls(app, main, "load", 5),
        ],
    )

    for sym in (format_name, loader, fetch_user, unused, service, load, base, main):
        ids[sym.name] = sym.id
    return {util: util_x, api: api_x, app: app_x}, ids


def build_sample_store(path=None) -> Sample:
    store = GraphStore(path)
    extractions, ids = sample_extractions()
    for file_path, extraction in extractions.items():
        store.replace_file(file_path, extraction)
    store.link()
    return Sample(store=store, extractions=extractions, ids=ids)


def line_extract(content: bytes, path: str) -> Extraction:
    """
    Grammar-free stand-in for ``extract``.  One directive per line:

        fn NAME       exported function
        call NAME     call from the last function
        import SPEC   named import
        !!            (first line) simulate a syntax error
    """
    text = content.decode("utf-8")
    if text.startswith("!!"):
        raise ParseError(path, "syntax error near line 1")
    result = Extraction(path=path, language="typescript", hash=hash_bytes(content))
    current = None
    for lineno, raw in enumerate(text.splitlines(), 1):
        parts = raw.split()
        if len(parts) != 2:
            continue
        word, arg = parts
        if word == "fn":
            current = make_symbol(path, arg, "function", lineno, exported=True)
            result.symbols.append(current)
        elif word == "call" and current is not None:
            result.relationships.append(calls(path, current, arg, lineno))
        elif word == "import":
            result.imports.append(make_import(path, arg, [], lineno))
    return result


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    """Keep a developer's ~/.semgraph.yaml and SEMGRAPH_* variables out of tests."""
    for key in list(os.environ):
        if key.startswith("SEMGRAPH_"):
            monkeypatch.delenv(key)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))


@pytest.fixture()
def fake_extract(monkeypatch):
    """Route the scanner through :func:`line_extract`."""
    monkeypatch.setattr("semgraph.index.scanner.extract", line_extract)
    return line_extract


class Project:
    """A scratch project directory."""

    def __init__(self, root: Path) -> None:
        self.root = root
        root.mkdir(parents=True, exist_ok=True)

    def write(self, rel_path: str, text: str) -> Path:
        target = self.root / rel_path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text, encoding="utf-8")
        return target

    def remove(self, rel_path: str) -> None:
        (self.root / rel_path).unlink()


@pytest.fixture()
def project(tmp_path):
    return Project(tmp_path / "project")


@pytest.fixture()
def sample():
    """The synthetic project, linked, in an in-memory store."""
    return build_sample_store()


@pytest.fixture()
def sample_store(sample):
    return sample.store
