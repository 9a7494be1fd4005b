"""
Python extractor.

Records functions, classes, methods, class attributes and module-level
variables, ``import`` / ``from ... import`` statements, base classes,
annotations and call sites.  A top-level name is exported when it is listed
in ``__all__``, or (when the module has no ``__all__``) when it does not start
with an underscore.
"""

from __future__ import annotations

import re
from typing import Optional

from .base import (
    EdgeKind,
    ExtractedImport,
    ExtractedSymbol,
    Extraction,
    Extractor,
    Relationship,
    _TypeCollector,
    base_type_name,
    import_id,
    node_text,
    symbol_id,
)

_DOCSTRING_RE = re.compile(r'^[rRbBuUfF]*("""|\'\'\'|"|\')(.*)\1$', re.DOTALL)

# Bases that make a class an interface-like contract.
_INTERFACE_BASES = frozenset({"Protocol", "ABC"})

# Blocks whose statements still belong to the enclosing scope.
_TRANSPARENT = frozenset({
    "if_statement", "elif_clause", "else_clause", "try_statement",
    "except_clause", "finally_clause", "with_statement", "block",
})


def _docstring(body) -> str:
    """Return the first paragraph of the docstring at the top of *body*."""
    if body is None or not body.named_children:
        return ""
    first = body.named_children[0]
    if first.type != "expression_statement" or not first.named_children:
        return ""
    string = first.named_children[0]
    if string.type != "string":
        return ""
    m = _DOCSTRING_RE.match(node_text(string).strip())
    if not m:
        return ""
    paragraph = m.group(2).strip().split("\n\n", 1)[0]
    return " ".join(paragraph.split())[:500]


def _visibility(name: str) -> str:
    if name.startswith("__") and not name.endswith("__"):
        return "private"
    if name.startswith("_"):
        return "protected"
    return "public"


def _last_segment(name: str) -> str:
    return name.rsplit(".", 1)[-1]


class _FileContext:
    def __init__(self, result: Extraction) -> None:
        self.result = result
        self.types = _TypeCollector(result, "python")
        self.interfaces: set[str] = set()
        self._edges: set[tuple[str, str, str]] = set()

    @property
    def path(self) -> str:
        return self.result.path

    def add_symbol(self, node, name: str, kind: str, *, parent: Optional[str] = None,
                   is_async: bool = False, doc: str = "") -> ExtractedSymbol:
        line = node.start_point[0] + 1
        column = node.start_point[1] + 1
        qualified = f"{parent}.{name}" if parent else name
        sym = ExtractedSymbol(
            id=symbol_id(self.path, kind, qualified, line, column),
            name=name,
            kind=kind,
            file_path=self.path,
            line=line,
            column=column,
            is_async=is_async,
            visibility=_visibility(name),
            doc=doc,
            parent=parent,
        )
        self.result.symbols.append(sym)
        return sym

    def relate(self, source: str, kind: str, *, target: Optional[str] = None,
               target_name: str = "", line: int = 0) -> None:
        key = (source, kind, target or target_name)
        if not key[2] or key in self._edges:
            return
        self._edges.add(key)
        self.result.relationships.append(Relationship(
            source=source,
            kind=kind,
            file_path=self.path,
            target=target,
            target_name=target_name,
            line=line,
        ))

    def has_type(self, sym: ExtractedSymbol, node) -> None:
        if node is None:
            return
        line = node.start_point[0] + 1
        tid = self.types.reference(node_text(node), line)
        if tid:
            self.relate(sym.id, EdgeKind.HAS_TYPE, target=tid, line=line)


class PythonExtractor(Extractor):
    """Extractor for Python sources and stubs."""

    language = "python"
    extensions = (".py", ".pyi")

    def _extract(self, root, result: Extraction) -> None:
        ctx = _FileContext(result)
        dunder_all = self._dunder_all(root)
        for child in root.named_children:
            self._visit(child, ctx, owner=None)

        for sym in result.symbols:
            if sym.parent is not None:
                continue
            if dunder_all is not None:
                sym.exported = sym.name in dunder_all
            else:
                sym.exported = not sym.name.startswith("_")

    def _dunder_all(self, root) -> Optional[set[str]]:
        for stmt in root.named_children:
            if stmt.type != "expression_statement" or not stmt.named_children:
                continue
            assign = stmt.named_children[0]
            if assign.type != "assignment":
                continue
            if node_text(assign.child_by_field_name("left")) != "__all__":
                continue
            right = assign.child_by_field_name("right")
            if right is None or right.type not in ("list", "tuple"):
                return None
            names = set()
            for item in right.named_children:
                if item.type == "string":
                    m = _DOCSTRING_RE.match(node_text(item))
                    if m:
                        names.add(m.group(2))
            return names
        return None

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def _visit(self, node, ctx: _FileContext, owner: Optional[ExtractedSymbol]) -> None:
        kind = node.type
        if kind == "import_statement":
            self._import(node, ctx)
        elif kind == "import_from_statement":
            self._import_from(node, ctx)
        elif kind == "function_definition":
            self._function(node, ctx, owner)
        elif kind == "class_definition":
            self._class(node, ctx, owner)
        elif kind == "decorated_definition":
            definition = node.child_by_field_name("definition")
            if definition is not None:
                self._visit(definition, ctx, owner)
        elif kind == "expression_statement":
            self._assignment(node, ctx, owner)
        elif kind in _TRANSPARENT:
            for child in node.named_children:
                self._visit(child, ctx, owner)

    def _import(self, node, ctx: _FileContext) -> None:
        line = node.start_point[0] + 1
        for item in node.named_children:
            if item.type == "dotted_name":
                module, specifiers = node_text(item), []
            elif item.type == "aliased_import":
                module = node_text(item.child_by_field_name("name"))
                specifiers = [f"* as {node_text(item.child_by_field_name('alias'))}"]
            else:
                continue
            ctx.result.imports.append(ExtractedImport(
                id=import_id(ctx.path, module, line),
                source_file=ctx.path,
                imported_path=module,
                specifiers=specifiers,
                namespace=True,
                line=line,
            ))

    def _import_from(self, node, ctx: _FileContext) -> None:
        module_node = node.child_by_field_name("module_name")
        module = node_text(module_node)
        if not module:
            return
        specifiers: list[str] = []
        namespace = False
        for item in node.children_by_field_name("name"):
            if item.type == "aliased_import":
                name = node_text(item.child_by_field_name("name"))
                alias = node_text(item.child_by_field_name("alias"))
                specifiers.append(f"{name} as {alias}")
            else:
                specifiers.append(node_text(item))
        if any(c.type == "wildcard_import" for c in node.named_children):
            namespace = True
            specifiers.append("*")
        line = node.start_point[0] + 1
        ctx.result.imports.append(ExtractedImport(
            id=import_id(ctx.path, module, line),
            source_file=ctx.path,
            imported_path=module,
            specifiers=specifiers,
            namespace=namespace,
            line=line,
        ))

    def _function(self, node, ctx: _FileContext, owner: Optional[ExtractedSymbol]) -> None:
        name = node_text(node.child_by_field_name("name"))
        if not name:
            return
        body = node.child_by_field_name("body")
        sym = ctx.add_symbol(
            node, name, "method" if owner is not None else "function",
            parent=owner.name if owner is not None else None,
            is_async=any(c.type == "async" for c in node.children),
            doc=_docstring(body),
        )
        if owner is not None:
            ctx.relate(sym.id, EdgeKind.MEMBER_OF, target=owner.id, line=sym.line)

        ctx.has_type(sym, node.child_by_field_name("return_type"))
        params = node.child_by_field_name("parameters")
        if params is not None:
            for param in params.named_children:
                if param.type in ("typed_parameter", "typed_default_parameter"):
                    ctx.has_type(sym, param.child_by_field_name("type"))
        self._calls(body, sym, ctx)

    def _calls(self, body, sym: ExtractedSymbol, ctx: _FileContext) -> None:
        if body is None:
            return
        stack = [body]
        while stack:
            node = stack.pop()
            if node.type == "call":
                fn = node.child_by_field_name("function")
                if fn is not None and fn.type == "attribute":
                    fn = fn.child_by_field_name("attribute")
                if fn is not None and fn.type == "identifier":
                    ctx.relate(sym.id, EdgeKind.CALLS, target_name=node_text(fn),
                               line=node.start_point[0] + 1)
            stack.extend(reversed(node.named_children))

    def _class(self, node, ctx: _FileContext, owner: Optional[ExtractedSymbol]) -> None:
        name = node_text(node.child_by_field_name("name"))
        if not name:
            return
        body = node.child_by_field_name("body")
        sym = ctx.add_symbol(node, name, "class",
                             parent=owner.name if owner is not None else None,
                             doc=_docstring(body))
        if owner is not None:
            ctx.relate(sym.id, EdgeKind.MEMBER_OF, target=owner.id, line=sym.line)

        bases = []
        supers = node.child_by_field_name("superclasses")
        if supers is not None:
            for arg in supers.named_children:
                if arg.type in ("identifier", "attribute", "subscript"):
                    bases.append((arg, base_type_name(node_text(arg))))

        is_interface = any(
            _last_segment(b) in _INTERFACE_BASES or b in ctx.interfaces
            for _, b in bases
        )
        if is_interface:
            ctx.interfaces.add(name)
        params = []
        for arg, base in bases:
            if _last_segment(base) in ("Generic", "Protocol") and arg.type == "subscript":
                params.extend(node_text(s) for s in arg.children_by_field_name("subscript"))
        tid = ctx.types.declare(name, "interface" if is_interface else "class",
                                sym.line, definition=name, type_params=params)
        ctx.relate(sym.id, EdgeKind.HAS_TYPE, target=tid, line=sym.line)

        for arg, base in bases:
            if not base or _last_segment(base) == "Generic":
                continue
            kind = (
                EdgeKind.IMPLEMENTS
                if _last_segment(base) in _INTERFACE_BASES or base in ctx.interfaces
                else EdgeKind.EXTENDS
            )
            line = arg.start_point[0] + 1
            ctx.relate(sym.id, kind, target=ctx.types.reference(base, line), line=line)

        if body is not None:
            for stmt in body.named_children:
                self._visit(stmt, ctx, owner=sym)

    def _assignment(self, node, ctx: _FileContext, owner: Optional[ExtractedSymbol]) -> None:
        if not node.named_children:
            return
        assign = node.named_children[0]
        if assign.type != "assignment":
            return
        left = assign.child_by_field_name("left")
        if left is None or left.type != "identifier":
            return
        name = node_text(left)
        if name.startswith("__") and name.endswith("__"):
            return
        sym = ctx.add_symbol(
            assign, name, "property" if owner is not None else "variable",
            parent=owner.name if owner is not None else None,
        )
        if owner is not None:
            ctx.relate(sym.id, EdgeKind.MEMBER_OF, target=owner.id, line=sym.line)
        ctx.has_type(sym, assign.child_by_field_name("type"))
