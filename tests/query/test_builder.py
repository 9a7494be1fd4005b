"""
Unit tests for semgraph.query.builder
"""

from __future__ import annotations

import dataclasses

import pytest

from semgraph.query.builder import query


def test_renders_clauses_in_canonical_order():
    q = (
        query()
        .limit(5)
        .return_("n.name AS name")
        .where("n.kind = $kind")
        .order_by("name")
        .match("(n:Symbol)")
        .param("kind", "class")
    )
    assert q.render() == (
        "MATCH (n:Symbol)\n"
        "WHERE n.kind = $kind\n"
        "RETURN n.name AS name\n"
        "ORDER BY name\n"
        "LIMIT 5"
    )
    assert q.params == {"kind": "class"}


def test_builders_do_not_mutate():
    base = query().match("(n:Module)")
    narrowed = base.where("n.external = false")
    assert base.parts("WHERE") == []
    assert narrowed.parts("WHERE") == ["n.external = false"]
    with pytest.raises(dataclasses.FrozenInstanceError):
        base.distinct = True


def test_conditions_are_anded_and_or_groups_wrapped():
    q = query().match("(m:Module)").where("m.path = $a OR m.path = $b", "m.external = false")
    assert "WHERE (m.path = $a OR m.path = $b) AND m.external = false" in q.render()


def test_multiple_patterns_and_return_items():
    q = query().match("(a)", "(b)").return_("a", "b", distinct=True)
    assert q.render() == "MATCH (a), (b)\nRETURN DISTINCT a, b"


def test_skip_and_limit_keep_last_value():
    q = query().match("(n)").return_("n").skip(1).skip(3).limit(10).limit(2)
    assert q.parts("SKIP") == ["3"]
    assert q.render().endswith("SKIP 3\nLIMIT 2")


def test_param_rebinding_replaces_value():
    q = query().param("name", "a").with_params({"name": "b", "other": 1})
    assert q.params == {"name": "b", "other": 1}


def test_empty_items_are_ignored():
    q = query().match("(n)").where("", "n.x = 1").return_("n")
    assert q.parts("WHERE") == ["n.x = 1"]
    assert str(q) == q.render()
