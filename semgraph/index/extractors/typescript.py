"""
TypeScript / JavaScript extractor.

Walks the tree-sitter syntax tree of one file and records top-level
declarations, class and interface members, enums, imports (ES modules and
``require``), heritage clauses, type annotations and call sites.
"""

from __future__ import annotations

import os
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

_JS_EXTENSIONS = (".js", ".jsx", ".mjs", ".cjs")

_FUNCTION_VALUES = frozenset({
    "arrow_function", "function_expression", "function", "generator_function",
})

_CLASS_NODES = frozenset({"class_declaration", "abstract_class_declaration", "class"})

_JSDOC_TAG_RE = re.compile(r"^\s*@")


def _string_value(node) -> str:
    text = node_text(node)
    if len(text) >= 2 and text[0] in "'\"`" and text[-1] == text[0]:
        return text[1:-1]
    return text


def _annotation(node) -> str:
    """Return the type text of a ``type_annotation`` node without the colon."""
    text = node_text(node).strip()
    if text.startswith(":"):
        text = text[1:]
    return " ".join(text.split())


def _jsdoc(node) -> str:
    """Return the description part of the JSDoc block right above *node*."""
    prev = node.prev_named_sibling if node is not None else None
    if prev is None or prev.type != "comment":
        return ""
    text = node_text(prev)
    if not text.startswith("/**"):
        return ""
    lines = []
    for raw in text[3:-2].splitlines():
        line = raw.strip().lstrip("*").strip()
        if _JSDOC_TAG_RE.match(line):
            break
        lines.append(line)
    return " ".join(l for l in lines if l)[:500]


class _FileContext:
    def __init__(self, result: Extraction) -> None:
        self.result = result
        self.types = _TypeCollector(result, "typescript")
        self.export_names: set[str] = set()
        self._edges: set[tuple[str, str, str]] = set()

    @property
    def path(self) -> str:
        return self.result.path

    def add_symbol(self, node, name: str, kind: str, *, exported: bool = False,
                   parent: Optional[str] = None, visibility: str = "public",
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
            exported=exported,
            is_async=is_async,
            visibility=visibility,
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

    def has_type(self, sym: ExtractedSymbol, type_text: str, line: int) -> None:
        tid = self.types.reference(type_text, line) if type_text else None
        if tid:
            self.relate(sym.id, EdgeKind.HAS_TYPE, target=tid, line=line)


class TypeScriptExtractor(Extractor):
    """Extractor for TypeScript and JavaScript sources."""

    language = "typescript"
    extensions = (".ts", ".tsx", ".mts", ".cts") + _JS_EXTENSIONS

    def grammar_for(self, path: str) -> str:
        ext = os.path.splitext(path)[1].lower()
        if ext == ".tsx":
            return "tsx"
        if ext in _JS_EXTENSIONS:
            return "javascript"
        return "typescript"

    def language_for(self, path: str) -> str:
        if os.path.splitext(path)[1].lower() in _JS_EXTENSIONS:
            return "javascript"
        return "typescript"

    # ------------------------------------------------------------------
    # Top level
    # ------------------------------------------------------------------

    def _extract(self, root, result: Extraction) -> None:
        ctx = _FileContext(result)
        for child in root.named_children:
            self._visit(child, ctx, exported=False, doc_node=child)

        for sym in result.symbols:
            if sym.parent is None and sym.name in ctx.export_names:
                sym.exported = True

    def _visit(self, node, ctx: _FileContext, exported: bool, doc_node) -> None:
        kind = node.type
        if kind == "export_statement":
            self._export(node, ctx)
        elif kind == "import_statement":
            self._import(node, ctx)
        elif kind in ("function_declaration", "generator_function_declaration",
                      "function_signature"):
            self._function(node, node, ctx, exported=exported, doc_node=doc_node)
        elif kind in _CLASS_NODES:
            self._class(node, ctx, exported=exported, doc_node=doc_node)
        elif kind == "interface_declaration":
            self._interface(node, ctx, exported=exported, doc_node=doc_node)
        elif kind == "type_alias_declaration":
            self._type_alias(node, ctx, exported=exported, doc_node=doc_node)
        elif kind == "enum_declaration":
            self._enum(node, ctx, exported=exported, doc_node=doc_node)
        elif kind in ("lexical_declaration", "variable_declaration"):
            self._variables(node, ctx, exported=exported, doc_node=doc_node)
        elif kind == "ambient_declaration":
            for child in node.named_children:
                self._visit(child, ctx, exported=exported, doc_node=doc_node)

    def _export(self, node, ctx: _FileContext) -> None:
        is_default = any(c.type == "default" for c in node.children)
        decl = node.child_by_field_name("declaration")
        value = node.child_by_field_name("value")
        source = node.child_by_field_name("source")

        if decl is None and value is not None and (
                value.type in _CLASS_NODES or value.type in _FUNCTION_VALUES):
            decl = value
        if decl is not None:
            if decl.type in _FUNCTION_VALUES:
                self._function(decl, decl, ctx, exported=True, doc_node=node,
                               default_name="default" if is_default else "")
            elif decl.type in _CLASS_NODES:
                self._class(decl, ctx, exported=True, doc_node=node,
                            default_name="default" if is_default else "")
            else:
                self._visit(decl, ctx, exported=True, doc_node=node)
            return

        if value is not None and value.type == "identifier":
            ctx.export_names.add(node_text(value))
            return

        names: list[str] = []
        for child in node.named_children:
            if child.type != "export_clause":
                continue
            for spec in child.named_children:
                if spec.type != "export_specifier":
                    continue
                name = node_text(spec.child_by_field_name("name"))
                alias = node_text(spec.child_by_field_name("alias"))
                names.append(f"{name} as {alias}" if alias else name)
                if source is None:
                    ctx.export_names.add(name)

        if source is not None:
            # export { a } from './b' / export * from './b'
            spec = _string_value(source)
            namespace = any(c.type == "*" for c in node.children)
            line = node.start_point[0] + 1
            ctx.result.imports.append(ExtractedImport(
                id=import_id(ctx.path, spec, line),
                source_file=ctx.path,
                imported_path=spec,
                specifiers=names,
                namespace=namespace,
                line=line,
            ))

    # ------------------------------------------------------------------
    # Imports
    # ------------------------------------------------------------------

    def _import(self, node, ctx: _FileContext) -> None:
        source = node.child_by_field_name("source")
        if source is None:
            return
        spec = _string_value(source)
        if not spec:
            return
        type_only = any(c.type == "type" for c in node.children)
        specifiers: list[str] = []
        default = namespace = False

        for clause in node.named_children:
            if clause.type != "import_clause":
                continue
            for part in clause.named_children:
                if part.type == "identifier":
                    default = True
                    specifiers.append(node_text(part))
                elif part.type == "namespace_import":
                    namespace = True
                    ident = [c for c in part.named_children if c.type == "identifier"]
                    if ident:
                        specifiers.append(f"* as {node_text(ident[0])}")
                elif part.type == "named_imports":
                    for item in part.named_children:
                        if item.type != "import_specifier":
                            continue
                        name = node_text(item.child_by_field_name("name"))
                        alias = node_text(item.child_by_field_name("alias"))
                        specifiers.append(f"{name} as {alias}" if alias else name)

        line = node.start_point[0] + 1
        ctx.result.imports.append(ExtractedImport(
            id=import_id(ctx.path, spec, line),
            source_file=ctx.path,
            imported_path=spec,
            specifiers=specifiers,
            type_only=type_only,
            default=default,
            namespace=namespace,
            line=line,
        ))

    def _require(self, declarator, value, ctx: _FileContext) -> bool:
        """Record ``const x = require('y')`` as an import; return True if it was one."""
        fn = value.child_by_field_name("function")
        if fn is None or fn.type != "identifier" or node_text(fn) != "require":
            return False
        args = value.child_by_field_name("arguments")
        strings = [a for a in (args.named_children if args else []) if a.type == "string"]
        if not strings:
            return False
        spec = _string_value(strings[0])
        name_node = declarator.child_by_field_name("name")
        specifiers: list[str] = []
        namespace = False
        if name_node is not None and name_node.type == "identifier":
            namespace = True
            specifiers.append(f"* as {node_text(name_node)}")
        elif name_node is not None and name_node.type == "object_pattern":
            for prop in name_node.named_children:
                if prop.type == "shorthand_property_identifier_pattern":
                    specifiers.append(node_text(prop))
        line = declarator.start_point[0] + 1
        ctx.result.imports.append(ExtractedImport(
            id=import_id(ctx.path, spec, line),
            source_file=ctx.path,
            imported_path=spec,
            specifiers=specifiers,
            namespace=namespace,
            line=line,
        ))
        return True

    # ------------------------------------------------------------------
    # Declarations
    # ------------------------------------------------------------------

    def _function(self, node, fn_node, ctx: _FileContext, *, exported: bool,
                  doc_node, name: str = "", kind: str = "function",
                  parent: Optional[ExtractedSymbol] = None,
                  visibility: str = "public", default_name: str = "") -> Optional[ExtractedSymbol]:
        """Record a function-like symbol positioned at *node* with body *fn_node*."""
        name = name or node_text(node.child_by_field_name("name")) or default_name
        if not name:
            return None
        sym = ctx.add_symbol(
            node, name, kind,
            exported=exported,
            parent=parent.name if parent else None,
            visibility=visibility,
            is_async=any(c.type == "async" for c in fn_node.children),
            doc=_jsdoc(doc_node),
        )
        if parent is not None:
            ctx.relate(sym.id, EdgeKind.MEMBER_OF, target=parent.id, line=sym.line)
        self._signature_types(fn_node, sym, ctx)
        self._calls(fn_node.child_by_field_name("body"), sym, ctx)
        return sym

    def _signature_types(self, fn_node, sym: ExtractedSymbol, ctx: _FileContext) -> None:
        ret = fn_node.child_by_field_name("return_type")
        if ret is not None:
            ctx.has_type(sym, _annotation(ret), ret.start_point[0] + 1)
        params = fn_node.child_by_field_name("parameters")
        if params is None:
            return
        for param in params.named_children:
            ann = param.child_by_field_name("type")
            if ann is not None:
                ctx.has_type(sym, _annotation(ann), ann.start_point[0] + 1)

    def _calls(self, body, sym: ExtractedSymbol, ctx: _FileContext) -> None:
        if body is None:
            return
        stack = [body]
        while stack:
            node = stack.pop()
            callee = None
            if node.type == "call_expression":
                callee = node.child_by_field_name("function")
            elif node.type == "new_expression":
                callee = node.child_by_field_name("constructor")
            if callee is not None:
                if callee.type == "member_expression":
                    callee = callee.child_by_field_name("property")
                if callee is not None and callee.type in (
                        "identifier", "property_identifier", "private_property_identifier"):
                    ctx.relate(sym.id, EdgeKind.CALLS, target_name=node_text(callee),
                               line=node.start_point[0] + 1)
            stack.extend(reversed(node.named_children))

    def _class(self, node, ctx: _FileContext, *, exported: bool, doc_node,
               default_name: str = "") -> None:
        name = node_text(node.child_by_field_name("name")) or default_name
        if not name:
            return
        sym = ctx.add_symbol(node, name, "class", exported=exported, doc=_jsdoc(doc_node))
        line = sym.line
        tid = ctx.types.declare(name, "class", line, definition=name,
                                type_params=self._type_params(node))
        ctx.relate(sym.id, EdgeKind.HAS_TYPE, target=tid, line=line)

        for heritage in node.named_children:
            if heritage.type != "class_heritage":
                continue
            for clause in heritage.named_children:
                if clause.type == "extends_clause":
                    for value in clause.children_by_field_name("value"):
                        self._heritage_edge(sym, EdgeKind.EXTENDS, value, ctx)
                elif clause.type == "implements_clause":
                    for iface in clause.named_children:
                        self._heritage_edge(sym, EdgeKind.IMPLEMENTS, iface, ctx)
                else:
                    # JavaScript grammar: class_heritage holds the expression directly
                    self._heritage_edge(sym, EdgeKind.EXTENDS, clause, ctx)

        body = node.child_by_field_name("body")
        if body is not None:
            self._members(body, sym, ctx)

    def _heritage_edge(self, sym: ExtractedSymbol, kind: str, node, ctx: _FileContext) -> None:
        name = base_type_name(node_text(node))
        if not name:
            return
        line = node.start_point[0] + 1
        tid = ctx.types.reference(name, line)
        ctx.relate(sym.id, kind, target=tid, line=line)

    def _members(self, body, owner: ExtractedSymbol, ctx: _FileContext) -> None:
        for member in body.named_children:
            mtype = member.type
            name_node = member.child_by_field_name("name")
            if name_node is None:
                name_node = member.child_by_field_name("property")
            name = node_text(name_node)
            if not name:
                continue
            visibility = "public"
            for child in member.children:
                if child.type == "accessibility_modifier":
                    visibility = node_text(child)
            if name.startswith("#"):
                visibility = "private"

            if mtype in ("method_definition", "method_signature", "abstract_method_signature"):
                self._function(member, member, ctx, exported=False, doc_node=member,
                               name=name, kind="method", parent=owner, visibility=visibility)
            elif mtype in ("public_field_definition", "property_signature", "field_definition"):
                value = member.child_by_field_name("value")
                if value is not None and value.type in _FUNCTION_VALUES:
                    self._function(member, value, ctx, exported=False, doc_node=member,
                                   name=name, kind="method", parent=owner,
                                   visibility=visibility)
                    continue
                sym = ctx.add_symbol(member, name, "property", parent=owner.name,
                                     visibility=visibility, doc=_jsdoc(member))
                ctx.relate(sym.id, EdgeKind.MEMBER_OF, target=owner.id, line=sym.line)
                ann = member.child_by_field_name("type")
                if ann is not None:
                    ctx.has_type(sym, _annotation(ann), sym.line)

    def _type_params(self, node) -> list[str]:
        params = node.child_by_field_name("type_parameters")
        if params is None:
            return []
        names = []
        for param in params.named_children:
            name = param.child_by_field_name("name")
            names.append(node_text(name if name is not None else param))
        return names

    def _interface(self, node, ctx: _FileContext, *, exported: bool, doc_node) -> None:
        name = node_text(node.child_by_field_name("name"))
        if not name:
            return
        sym = ctx.add_symbol(node, name, "interface", exported=exported, doc=_jsdoc(doc_node))
        body = node.child_by_field_name("body")
        tid = ctx.types.declare(name, "interface", sym.line,
                                definition=node_text(body),
                                type_params=self._type_params(node))
        ctx.relate(sym.id, EdgeKind.HAS_TYPE, target=tid, line=sym.line)
        for child in node.named_children:
            if child.type == "extends_type_clause":
                for base in child.named_children:
                    self._heritage_edge(sym, EdgeKind.EXTENDS, base, ctx)
        if body is not None:
            self._members(body, sym, ctx)

    def _type_alias(self, node, ctx: _FileContext, *, exported: bool, doc_node) -> None:
        name = node_text(node.child_by_field_name("name"))
        if not name:
            return
        sym = ctx.add_symbol(node, name, "type", exported=exported, doc=_jsdoc(doc_node))
        tid = ctx.types.declare(name, "alias", sym.line,
                                definition=node_text(node.child_by_field_name("value")),
                                type_params=self._type_params(node))
        ctx.relate(sym.id, EdgeKind.HAS_TYPE, target=tid, line=sym.line)

    def _enum(self, node, ctx: _FileContext, *, exported: bool, doc_node) -> None:
        name = node_text(node.child_by_field_name("name"))
        if not name:
            return
        sym = ctx.add_symbol(node, name, "enum", exported=exported, doc=_jsdoc(doc_node))
        tid = ctx.types.declare(name, "enum", sym.line, definition=name)
        ctx.relate(sym.id, EdgeKind.HAS_TYPE, target=tid, line=sym.line)
        body = node.child_by_field_name("body")
        if body is None:
            return
        for member in body.named_children:
            if member.type == "enum_assignment":
                member_name = node_text(member.child_by_field_name("name"))
            elif member.type in ("property_identifier", "string"):
                member_name = _string_value(member)
            else:
                continue
            msym = ctx.add_symbol(member, member_name, "enum_member", parent=name)
            ctx.relate(msym.id, EdgeKind.MEMBER_OF, target=sym.id, line=msym.line)

    def _variables(self, node, ctx: _FileContext, *, exported: bool, doc_node) -> None:
        for declarator in node.named_children:
            if declarator.type != "variable_declarator":
                continue
            name_node = declarator.child_by_field_name("name")
            value = declarator.child_by_field_name("value")
            if value is not None and value.type == "call_expression" and self._require(
                    declarator, value, ctx):
                continue
            if name_node is None or name_node.type != "identifier":
                continue
            name = node_text(name_node)
            if value is not None and value.type in _FUNCTION_VALUES:
                self._function(declarator, value, ctx, exported=exported,
                               doc_node=doc_node, name=name)
                continue
            sym = ctx.add_symbol(declarator, name, "variable", exported=exported,
                                 doc=_jsdoc(doc_node))
            ann = declarator.child_by_field_name("type")
            if ann is not None:
                ctx.has_type(sym, _annotation(ann), sym.line)
