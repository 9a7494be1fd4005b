"""
Unit tests for semgraph.query.cypher, run against the synthetic project graph.
"""

from __future__ import annotations

import threading
import time

import pytest

from conftest import calls, make_symbol
from semgraph.errors import QuerySyntaxError
from semgraph.index.extractors.base import Extraction
from semgraph.index.graph_store import GraphStore
from semgraph.query.cypher import (
    GraphMirror,
    check_read_only,
    referenced_params,
    schema_statements,
)
from semgraph.query.templates import build_template


def _q(store, text, **params):
    return store.query(text, params)


def _names(result, column="name"):
    return result.column(column)


# ---------------------------------------------------------------------------
# Query text checks
# ---------------------------------------------------------------------------

class TestReadOnly:

    @pytest.mark.parametrize("text", [
        "CREATE (n:Symbol {id: 'x', name: 'x'}) RETURN n",
        "MATCH (n) DELETE n",
        "MATCH (n) DETACH DELETE n",
        "MATCH (n:Symbol) SET n.name = 'x' RETURN n",
        "MERGE (n:Module {id: 'm'}) RETURN n",
        "MATCH (n:Symbol) REMOVE n.name RETURN n",
        "DROP TABLE Symbol",
        "COPY Symbol FROM 'symbols.csv'",
        "match (n) detach delete n",
    ])
    def test_updating_clauses_are_rejected(self, text):
        with pytest.raises(QuerySyntaxError) as excinfo:
            check_read_only(text)
        assert "read-only" in str(excinfo.value)

    @pytest.mark.parametrize("text", [
        "MATCH (s:Symbol) WHERE s.name = 'CREATE' RETURN s",
        "MATCH (s:Symbol) WHERE s.name = $delete RETURN s",
        "MATCH (s:Symbol) RETURN s.`set` // DELETE everything",
        "MATCH (m:Module)-[:IMPORTS]->(d) WHERE m.external = false RETURN d",
    ])
    def test_keywords_in_literals_and_names_are_allowed(self, text):
        check_read_only(text)

    def test_offset_points_at_the_clause(self):
        with pytest.raises(QuerySyntaxError) as excinfo:
            check_read_only("MATCH (n) WHERE n.name = 'a' DELETE n")
        assert excinfo.value.position == len("MATCH (n) WHERE n.name = 'a' ")

    @pytest.mark.parametrize("text", ["", "   ", "// only a comment"])
    def test_empty_query(self, text):
        with pytest.raises(QuerySyntaxError):
            check_read_only(text)

    def test_referenced_params(self):
        text = "MATCH (s) WHERE s.name = $name OR s.file = $file OR s.doc = '$x' RETURN $name"
        assert referenced_params(text) == ["name", "file"]

    def test_schema_has_a_table_per_label_and_kind(self):
        statements = schema_statements()
        assert statements[0].startswith("CREATE NODE TABLE Module(id STRING")
        assert "CREATE REL TABLE CALLS(FROM Symbol TO Symbol, file STRING, line INT64, " \
               "derived BOOLEAN)" in statements
        assert len(statements) == 3 + 8


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------

class TestMatching:

    def test_count_local_modules(self, sample_store):
        result = _q(sample_store, "MATCH (m:Module) WHERE m.external = false "
                                  "RETURN count(m) AS modules")
        assert result.rows == [{"modules": 3}]

    def test_inline_properties_and_direction(self, sample_store):
        result = _q(sample_store,
                    "MATCH (s:Symbol)<-[:DECLARES]-(m:Module {path: $path}) "
                    "RETURN s.name AS name ORDER BY name DESC",
                    path="src/util.ts")
        assert _names(result) == ["formatName", "Loader"]

    def test_undirected_relationship(self, sample_store):
        result = _q(sample_store,
                    "MATCH (a:Symbol {name: 'fetchUser'})-[:CALLS]-(b:Symbol) "
                    "RETURN b.name AS name ORDER BY name")
        assert _names(result) == ["formatName", "main"]

    def test_relationship_type_alternatives(self, sample_store):
        result = _q(sample_store,
                    "MATCH (s:Symbol {name: 'UserService'})-[r:EXTENDS|IMPLEMENTS]->(t:Type) "
                    "RETURN label(r) AS kind, t.name AS name ORDER BY kind")
        assert result.rows == [
            {"kind": "EXTENDS", "name": "BaseService"},
            {"kind": "IMPLEMENTS", "name": "Loader"},
        ]

    def test_variable_length_path(self, sample_store):
        result = _q(sample_store,
                    "MATCH (a:Symbol {name: 'main'})-[p:CALLS*1..3]->(b:Symbol) "
                    "RETURN b.name AS name, length(p) AS hops ORDER BY hops, name")
        assert result.rows == [
            {"name": "fetchUser", "hops": 1},
            {"name": "load", "hops": 1},
            {"name": "formatName", "hops": 2},
        ]

    def test_multiple_patterns_share_variables(self, sample_store):
        result = _q(sample_store,
                    "MATCH (m:Module)-[:DECLARES]->(s:Symbol), (s)-[:CALLS]->(t:Symbol) "
                    "RETURN m.path AS file, s.name AS caller, t.name AS callee "
                    "ORDER BY file, caller, callee")
        assert [(r["caller"], r["callee"]) for r in result.rows] == [
            ("fetchUser", "formatName"), ("main", "fetchUser"), ("main", "load"),
        ]

    def test_negated_subquery(self, sample_store):
        result = _q(sample_store,
                    "MATCH (s:Symbol) WHERE s.kind = 'function' "
                    "AND NOT EXISTS { MATCH (s)<-[:CALLS]-(:Symbol) } "
                    "RETURN s.name AS name ORDER BY name")
        assert _names(result) == ["main", "unusedHelper"]

    def test_external_module_is_a_module(self, sample_store):
        result = _q(sample_store,
                    "MATCH (:Module {path: 'src/app.ts'})-[i:IMPORTS]->(d:Module) "
                    "WHERE d.external = true RETURN d.path AS path, i.specifiers AS specs")
        assert result.rows == [{"path": "react", "specs": ["* as React"]}]


# ---------------------------------------------------------------------------
# Expressions
# ---------------------------------------------------------------------------

class TestExpressions:

    @pytest.mark.parametrize("condition, expected", [
        ("s.name STARTS WITH 'f'", ["fetchUser", "formatName"]),
        ("s.name ENDS WITH 'Service'", ["BaseService", "UserService"]),
        ("s.name CONTAINS 'User'", ["UserService", "fetchUser"]),
        ("s.name IN ['main', 'load', 'nope']", ["load", "main"]),
        ("s.name =~ '[a-z]+'", ["load", "main"]),
        ("s.parent IS NOT NULL", ["load"]),
        ("s.line >= 15 AND s.line < 20", ["UserService", "load"]),
        ("s.line = 1 OR s.line = 20", ["BaseService", "formatName"]),
    ])
    def test_where_conditions(self, sample_store, condition, expected):
        result = _q(sample_store, f"MATCH (s:Symbol) WHERE {condition} "
                                  "RETURN s.name AS name ORDER BY name")
        assert _names(result) == expected

    def test_unknown_variable(self, sample_store):
        with pytest.raises(QuerySyntaxError):
            _q(sample_store, "MATCH (s:Symbol) RETURN t.name")

    @pytest.mark.parametrize("text", [
        "MATCH (n",
        "MATCH (n:Symbol) RETURN",
        "MATCH (n:Symbol) WHERE RETURN n",
        "MATCH (n:Nothing) RETURN n",
    ])
    def test_malformed_queries(self, sample_store, text):
        with pytest.raises(QuerySyntaxError):
            _q(sample_store, text)

    def test_missing_parameter(self, sample_store):
        with pytest.raises(QuerySyntaxError) as excinfo:
            _q(sample_store, "MATCH (s:Symbol) WHERE s.name = $name RETURN s")
        assert "$name" in str(excinfo.value)

    def test_unused_parameters_are_ignored(self, sample_store):
        result = _q(sample_store, "MATCH (s:Symbol {name: $name}) RETURN s.line AS line",
                    name="main", other="ignored")
        assert result.rows == [{"line": 3}]

    def test_internal_attributes_are_not_mirrored(self, sample_store):
        with pytest.raises(QuerySyntaxError):
            _q(sample_store, "MATCH (m:Module {path: 'src/app.ts'}) RETURN m._imports")


# ---------------------------------------------------------------------------
# Projection
# ---------------------------------------------------------------------------

class TestProjection:

    def test_node_output(self, sample_store):
        result = _q(sample_store, "MATCH (m:Module {path: 'src/util.ts'}) RETURN m")
        module = result.rows[0]["m"]
        assert module["label"] == "Module"
        assert module["path"] == "src/util.ts"
        assert module["id"] == "module:src/util.ts"
        assert not any(k.startswith("_") for k in module)

    def test_relationship_output(self, sample_store):
        result = _q(sample_store,
                    "MATCH (:Symbol {name: 'main'})-[r:CALLS]->(:Symbol {name: 'load'}) "
                    "RETURN r")
        rel = result.rows[0]["r"]
        assert rel["type"] == "CALLS"
        assert rel["derived"] is True
        assert rel["file"] == "src/app.ts"
        assert not any(k.startswith("_") for k in rel)

    def test_grouped_aggregates(self, sample_store):
        result = _q(sample_store,
                    "MATCH (m:Module)-[:DECLARES]->(s:Symbol) "
                    "RETURN m.path AS file, count(*) AS n, collect(s.name) AS names, "
                    "min(s.line) AS first, max(s.line) AS last, sum(s.line) AS total "
                    "ORDER BY n DESC")
        assert [r["file"] for r in result.rows] == ["src/api.ts", "src/util.ts", "src/app.ts"]
        api = result.rows[0]
        assert api["n"] == 5
        assert sorted(api["names"]) == ["BaseService", "UserService", "fetchUser",
                                        "load", "unusedHelper"]
        assert (api["first"], api["last"], api["total"]) == (3, 20, 64)

    def test_distinct_rows(self, sample_store):
        result = _q(sample_store, "MATCH (s:Symbol) RETURN DISTINCT s.file AS file "
                                  "ORDER BY file")
        assert _names(result, "file") == ["src/api.ts", "src/app.ts", "src/util.ts"]

    def test_order_skip_limit(self, sample_store):
        result = _q(sample_store, "MATCH (s:Symbol) RETURN s.name AS name, s.line AS line "
                                  "ORDER BY line DESC, name SKIP 1 LIMIT 3")
        assert _names(result) == ["load", "UserService", "unusedHelper"]

    def test_result_to_dict(self, sample_store):
        d = _q(sample_store, "MATCH (m:Module) RETURN count(m) AS n").to_dict()
        assert d == {"columns": ["n"], "rows": [{"n": 4}], "row_count": 1}


# ---------------------------------------------------------------------------
# Mirror lifecycle
# ---------------------------------------------------------------------------

class TestMirror:

    def test_rejected_write_leaves_graph_unchanged(self, sample_store):
        nodes = set(sample_store.graph.nodes)
        edges = set(sample_store.graph.edges(keys=True))
        with pytest.raises(QuerySyntaxError):
            _q(sample_store, "MATCH (n) DETACH DELETE n RETURN count(n)")
        assert set(sample_store.graph.nodes) == nodes
        assert set(sample_store.graph.edges(keys=True)) == edges

    def test_mirror_is_reused_until_the_graph_changes(self, sample_store):
        mirror = GraphMirror()
        first = mirror.refresh(sample_store)
        assert mirror.refresh(sample_store) is first
        assert mirror.version == sample_store.version

        sample_store.delete_file_data("src/app.ts")
        assert mirror.refresh(sample_store) is not first
        assert mirror.version == sample_store.version

    def test_queries_see_committed_writes(self, sample_store):
        count = "MATCH (s:Symbol) RETURN count(s) AS n"
        assert _q(sample_store, count).rows == [{"n": 8}]
        version = sample_store.version
        sample_store.delete_file_data("src/app.ts")
        assert sample_store.version == version + 1
        assert _q(sample_store, count).rows == [{"n": 7}]

    def test_empty_transaction_keeps_version(self, sample_store):
        version = sample_store.version
        with sample_store.transaction():
            pass
        assert sample_store.version == version

    def test_reads_do_not_wait_for_an_open_transaction(self, sample_store):
        count = "MATCH (m:Module) RETURN count(m) AS n"
        _q(sample_store, count)
        entered, release = threading.Event(), threading.Event()

        def writer():
            with sample_store.transaction():
                entered.set()
                release.wait(10)

        thread = threading.Thread(target=writer)
        thread.start()
        try:
            assert entered.wait(5)
            started = time.monotonic()
            assert _q(sample_store, count).rows == [{"n": 4}]
            assert time.monotonic() - started < 5
        finally:
            release.set()
            thread.join()


# ---------------------------------------------------------------------------
# Deep call graphs
# ---------------------------------------------------------------------------

def _layered_store(width, depth):
    """Every symbol in layer L calls every symbol in layer L + 1."""
    path = "src/layers.ts"
    layers = [
        [make_symbol(path, f"f{layer}_{i}", "function", layer * width + i + 1)
         for i in range(width)]
        for layer in range(depth)
    ]
    relationships = [
        calls(path, caller, callee.name, caller.line)
        for upper, lower in zip(layers, layers[1:])
        for caller in upper
        for callee in lower
    ]
    store = GraphStore()
    store.replace_file(path, Extraction(
        path=path, language="typescript", hash="h-layers",
        symbols=[s for layer in layers for s in layer],
        relationships=relationships,
    ))
    store.link()
    return store


def test_call_graph_depth_is_shortest_distance_on_wide_graphs():
    store = _layered_store(width=6, depth=11)
    started = time.monotonic()
    rows = store.query(build_template("find-call-graph-with-depth", "f0_0", 7)).rows
    assert time.monotonic() - started < 10
    assert len(rows) == 6 * 7
    assert sorted({r["depth"] for r in rows}) == list(range(1, 8))
    assert all(r["depth"] == int(r["callee"][1:].split("_")[0]) for r in rows)
