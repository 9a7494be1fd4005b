"""
Named query templates.

The catalog is ordered; ``build_template(name, *args)`` validates the name
and arguments and returns a parameterised :class:`StructuredQuery`.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Optional

from ..errors import InvalidTemplateError, MissingArgumentError, QuerySyntaxError
from .builder import StructuredQuery, query

DEFAULT_CALL_DEPTH = 2
MAX_CALL_DEPTH = 10


@dataclass(frozen=True)
class Template:
    name: str
    args: tuple[str, ...]
    description: str
    factory: Callable[..., StructuredQuery]
    optional: tuple[str, ...] = ()

    @property
    def usage(self) -> str:
        parts = [self.name] + [f"<{a}>" for a in self.args] + [f"[{a}]" for a in self.optional]
        return " ".join(parts)


def _path_match(var: str, path: str) -> tuple[str, dict[str, Any]]:
    """Match *var*.path exactly, or as a ``/``-bounded suffix."""
    condition = f"{var}.path = $path OR {var}.path ENDS WITH $path_suffix"
    return condition, {"path": path, "path_suffix": "/" + path.lstrip("/")}


# ---------------------------------------------------------------------------
# Template factories
# ---------------------------------------------------------------------------

def find_callers(name: str) -> StructuredQuery:
    return (
        query()
        .match("(caller:Symbol)-[:CALLS]->(target:Symbol)")
        .where("target.name = $name")
        .return_("caller.name AS caller", "caller.kind AS kind",
                 "caller.file AS file", "caller.line AS line", distinct=True)
        .order_by("file", "line")
        .param("name", name)
    )


def find_callees(name: str) -> StructuredQuery:
    return (
        query()
        .match("(caller:Symbol)-[:CALLS]->(callee:Symbol)")
        .where("caller.name = $name")
        .return_("callee.name AS callee", "callee.kind AS kind",
                 "callee.file AS file", "callee.line AS line", distinct=True)
        .order_by("callee", "file")
        .param("name", name)
    )


def find_exports(path: str) -> StructuredQuery:
    condition, params = _path_match("m", path)
    return (
        query()
        .match("(m:Module)-[:DECLARES]->(s:Symbol)")
        .where(condition, "s.exported = true")
        .return_("m.path AS file", "s.name AS name", "s.kind AS kind", "s.line AS line")
        .order_by("file", "line")
        .with_params(params)
    )


def find_imports(path: str) -> StructuredQuery:
    condition, params = _path_match("m", path)
    return (
        query()
        .match("(m:Module)-[i:IMPORTS]->(d:Module)")
        .where(condition)
        .return_("d.path AS module", "i.specifiers AS specifiers",
                 "i.type_only AS type_only", "d.external AS external", "i.line AS line")
        .order_by("line")
        .with_params(params)
    )


def find_dependencies(path: str) -> StructuredQuery:
    condition, params = _path_match("m", path)
    return (
        query()
        .match("(m:Module)-[:IMPORTS]->(d:Module)")
        .where(condition)
        .return_("d.path AS dependency", "d.external AS external", distinct=True)
        .order_by("external", "dependency")
        .with_params(params)
    )


def find_dependents(path: str) -> StructuredQuery:
    condition, params = _path_match("d", path)
    return (
        query()
        .match("(m:Module)-[:IMPORTS]->(d:Module)")
        .where(condition)
        .return_("m.path AS dependent", distinct=True)
        .order_by("dependent")
        .with_params(params)
    )


def find_classes() -> StructuredQuery:
    return (
        query()
        .match("(s:Symbol)")
        .where("s.kind = 'class'")
        .return_("s.name AS name", "s.file AS file", "s.line AS line",
                 "s.exported AS exported")
        .order_by("name", "file")
    )


def find_class_members(name: str) -> StructuredQuery:
    return (
        query()
        .match("(member:Symbol)-[:MEMBER_OF]->(owner:Symbol)")
        .where("owner.name = $name")
        .return_("owner.file AS file", "member.name AS member", "member.kind AS kind",
                 "member.visibility AS visibility", "member.line AS line")
        .order_by("file", "line")
        .param("name", name)
    )


def find_extends(name: str) -> StructuredQuery:
    return (
        query()
        .match("(s:Symbol)-[:EXTENDS]->(t:Type)")
        .where("s.name = $name")
        .return_("s.file AS file", "t.name AS extends", distinct=True)
        .order_by("file", "extends")
        .param("name", name)
    )


def find_implementations(name: str) -> StructuredQuery:
    return (
        query()
        .match("(s:Symbol)-[:IMPLEMENTS]->(t:Type)")
        .where("t.name = $name")
        .return_("s.name AS implementation", "s.file AS file", "s.line AS line",
                 distinct=True)
        .order_by("file", "line")
        .param("name", name)
    )


def find_call_graph_with_depth(name: str, depth: Any = DEFAULT_CALL_DEPTH) -> StructuredQuery:
    try:
        hops = int(depth)
    except (TypeError, ValueError):
        raise QuerySyntaxError(f"Call-graph depth must be an integer, got {depth!r}")
    if not 1 <= hops <= MAX_CALL_DEPTH:
        raise QuerySyntaxError(f"Call-graph depth must be between 1 and {MAX_CALL_DEPTH}")
    return (
        query()
        .match(f"(start:Symbol)-[r:CALLS* SHORTEST 1..{hops}]->(callee:Symbol)")
        .where("start.name = $name")
        .return_("callee.name AS callee", "callee.file AS file",
                 "min(length(r)) AS depth")
        .order_by("depth", "callee")
        .param("name", name)
    )


def find_unused_exports() -> StructuredQuery:
    return (
        query()
        .match("(m:Module)-[:DECLARES]->(s:Symbol)")
        .where("s.exported = true", "NOT EXISTS { MATCH (:Module)-[:REFERENCES]->(s) }")
        .return_("s.name AS name", "s.kind AS kind", "m.path AS file", "s.line AS line")
        .order_by("file", "line")
    )


def find_symbols_in_file(path: str) -> StructuredQuery:
    condition, params = _path_match("m", path)
    return (
        query()
        .match("(m:Module)-[:DECLARES]->(s:Symbol)")
        .where(condition)
        .return_("s.name AS name", "s.kind AS kind", "s.parent AS parent",
                 "s.exported AS exported", "s.line AS line")
        .order_by("line", "name")
        .with_params(params)
    )


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

TEMPLATES: "OrderedDict[str, Template]" = OrderedDict(
    (t.name, t) for t in (
        Template("find-callers", ("symbol",), "Symbols that call <symbol>", find_callers),
        Template("find-callees", ("symbol",), "Symbols called by <symbol>", find_callees),
        Template("find-exports", ("file",), "Exported symbols of <file>", find_exports),
        Template("find-imports", ("file",), "Import statements of <file>", find_imports),
        Template("find-dependencies", ("file",), "Modules <file> imports", find_dependencies),
        Template("find-dependents", ("file",), "Modules that import <file>", find_dependents),
        Template("find-classes", (), "All classes", find_classes),
        Template("find-class-members", ("class",), "Members of <class>", find_class_members),
        Template("find-extends", ("symbol",), "Types <symbol> extends", find_extends),
        Template("find-implementations", ("type",), "Symbols implementing <type>",
                 find_implementations),
        Template("find-call-graph-with-depth", ("symbol",),
                 "Transitive callees of <symbol> up to [depth] hops",
                 find_call_graph_with_depth, optional=("depth",)),
        Template("find-unused-exports", (), "Exported symbols nothing imports",
                 find_unused_exports),
        Template("find-symbols-in-file", ("file",), "Symbols declared in <file>",
                 find_symbols_in_file),
    )
)

ALIASES = {
    "find-members": "find-class-members",
    "find-call-graph": "find-call-graph-with-depth",
    "find-symbols": "find-symbols-in-file",
}


def template_names() -> list[str]:
    return list(TEMPLATES)


def get_template(name: str) -> Template:
    """
    Raises
    ------
    InvalidTemplateError
        If *name* is neither a template nor an alias.
    """
    template = TEMPLATES.get(ALIASES.get(name, name))
    if template is None:
        raise InvalidTemplateError(name, template_names())
    return template


def build_template(name: str, *args: Any) -> StructuredQuery:
    """
    Build the query for template *name* with positional *args*.

    Raises
    ------
    InvalidTemplateError
        Unknown template name.
    MissingArgumentError
        A required argument is missing or blank.
    """
    template = get_template(name)
    for index, arg_name in enumerate(template.args):
        value: Optional[Any] = args[index] if index < len(args) else None
        if value is None or (isinstance(value, str) and not value.strip()):
            raise MissingArgumentError(template.name, arg_name)
    max_args = len(template.args) + len(template.optional)
    return template.factory(*args[:max_args])
