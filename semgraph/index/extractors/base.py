"""
Extraction contract shared by every language extractor.

An extractor turns the raw bytes of one source file into an
:class:`Extraction` (symbols, types, imports and relationships) without
touching any store.  Output must be deterministic: the same bytes always
produce the same ids in the same order, so rescans of unchanged files are
no-ops downstream.
"""

from __future__ import annotations

import hashlib
import logging
import posixpath
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from ...errors import ParseError
from ..hashing import hash_bytes

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Node / edge kind constants
# ---------------------------------------------------------------------------

class NodeLabel:
    MODULE = "Module"
    SYMBOL = "Symbol"
    TYPE = "Type"


class EdgeKind:
    DECLARES = "DECLARES"
    EXTENDS = "EXTENDS"
    IMPLEMENTS = "IMPLEMENTS"
    REFERENCES = "REFERENCES"
    IMPORTS = "IMPORTS"
    HAS_TYPE = "HAS_TYPE"
    CALLS = "CALLS"
    MEMBER_OF = "MEMBER_OF"


ALL_EDGE_KINDS: tuple[str, ...] = (
    EdgeKind.DECLARES, EdgeKind.EXTENDS, EdgeKind.IMPLEMENTS,
    EdgeKind.REFERENCES, EdgeKind.IMPORTS, EdgeKind.HAS_TYPE,
    EdgeKind.CALLS, EdgeKind.MEMBER_OF,
)


# ---------------------------------------------------------------------------
# Id helpers
# ---------------------------------------------------------------------------

def _digest(*parts: object) -> str:
    joined = "\0".join(str(p) for p in parts)
    return hashlib.sha1(joined.encode("utf-8")).hexdigest()[:20]


def module_id(path: str) -> str:
    return f"module:{path}"


def external_module_id(specifier: str) -> str:
    return f"extmodule:{specifier}"


def symbol_id(path: str, kind: str, qualified_name: str, line: int, column: int) -> str:
    return f"sym:{_digest(path, kind, qualified_name, line, column)}"


def type_id(name: str) -> str:
    return f"type:{name}"


def import_id(path: str, imported_path: str, line: int) -> str:
    return f"imp:{_digest(path, imported_path, line)}"


# ---------------------------------------------------------------------------
# Extraction records
# ---------------------------------------------------------------------------

@dataclass
class ExtractedSymbol:
    """A declared function, class, interface, type, enum, member or variable."""
    id: str
    name: str
    kind: str
    file_path: str
    line: int
    column: int
    exported: bool = False
    is_async: bool = False
    visibility: str = "public"
    doc: str = ""
    parent: Optional[str] = None     # enclosing class / enum name


@dataclass
class ExtractedType:
    """A declared or referenced type."""
    id: str
    name: str
    kind: str                        # "interface" | "alias" | "enum" | "reference"
    file_path: str
    line: int
    definition: str = ""
    primitive: bool = False
    generic: bool = False
    nullable: bool = False
    readonly: bool = False
    type_params: list[str] = field(default_factory=list)


@dataclass
class ExtractedImport:
    """One import statement."""
    id: str
    source_file: str
    imported_path: str
    specifiers: list[str] = field(default_factory=list)
    type_only: bool = False
    default: bool = False
    namespace: bool = False
    line: int = 0


@dataclass
class Relationship:
    """
    A directed edge produced by extraction.

    ``target`` is set when the extractor can name the target node id
    itself (members, declared types).  Otherwise ``target_name`` holds the
    bare name and the graph store resolves it when linking.
    """
    source: str
    kind: str
    file_path: str
    target: Optional[str] = None
    target_name: str = ""
    line: int = 0


@dataclass
class Extraction:
    """Everything extracted from a single source file."""
    path: str
    language: str
    hash: str
    symbols: list[ExtractedSymbol] = field(default_factory=list)
    types: list[ExtractedType] = field(default_factory=list)
    imports: list[ExtractedImport] = field(default_factory=list)
    relationships: list[Relationship] = field(default_factory=list)

    def counts(self) -> dict[str, int]:
        return {
            "symbols": len(self.symbols),
            "types": len(self.types),
            "imports": len(self.imports),
            "relationships": len(self.relationships),
        }


# ---------------------------------------------------------------------------
# Type classification
# ---------------------------------------------------------------------------

_PRIMITIVES: dict[str, frozenset[str]] = {
    "typescript": frozenset({
        "string", "number", "boolean", "bigint", "symbol", "undefined",
        "null", "void", "any", "unknown", "never", "object",
    }),
    "python": frozenset({
        "int", "str", "float", "bool", "bytes", "complex", "None",
        "object", "bytearray",
    }),
}


def classify_type(text: str, language: str) -> dict[str, bool]:
    """Derive primitive/generic/nullable/readonly flags from a type's text."""
    compact = " ".join(text.split())
    if language == "python":
        generic = "[" in compact
        nullable = (
            compact.startswith("Optional[")
            or "| None" in compact
            or "None |" in compact
        )
        readonly = compact.startswith(("Final", "typing.Final", "ClassVar"))
    else:
        generic = "<" in compact
        nullable = any(
            tok in compact for tok in ("| null", "| undefined", "null |", "undefined |")
        )
        readonly = compact.startswith(("readonly ", "Readonly<", "ReadonlyArray<"))
    return {
        "primitive": compact in _PRIMITIVES.get(language, frozenset()),
        "generic": generic,
        "nullable": nullable,
        "readonly": readonly,
    }


def base_type_name(text: str) -> str:
    """Strip type arguments: ``Repository<User>`` -> ``Repository``."""
    for sep in ("<", "["):
        if sep in text:
            text = text.split(sep, 1)[0]
    return text.strip()


def module_parts(path: str) -> tuple[str, str]:
    """Return ``(name, package)`` for a repository-relative path."""
    stem = posixpath.splitext(posixpath.basename(path))[0]
    package = posixpath.dirname(path) or "."
    return stem, package


# ---------------------------------------------------------------------------
# tree-sitter grammar loading
# ---------------------------------------------------------------------------

_LANG_CACHE: dict[str, Any] = {}
_LANG_LOCK = threading.Lock()
_PARSERS = threading.local()


def _grammar_loader(grammar: str) -> Optional[Callable[[], Any]]:
    """Return the tree-sitter language() function for *grammar*, or None."""
    try:
        if grammar == "python":
            import tree_sitter_python as m  # type: ignore
            return m.language
        elif grammar == "javascript":
            import tree_sitter_javascript as m  # type: ignore
            return m.language
        elif grammar == "typescript":
            import tree_sitter_typescript as m  # type: ignore
            return m.language_typescript
        elif grammar == "tsx":
            import tree_sitter_typescript as m  # type: ignore
            return m.language_tsx
    except ImportError as exc:
        logger.debug("tree-sitter grammar %s not installed: %s", grammar, exc)
    return None


def get_language(grammar: str):
    """Return the cached ``tree_sitter.Language`` for *grammar*, or None."""
    with _LANG_LOCK:
        if grammar in _LANG_CACHE:
            return _LANG_CACHE[grammar]
        lang_obj = None
        loader = _grammar_loader(grammar)
        if loader is not None:
            try:
                import tree_sitter as ts  # type: ignore
                lang_obj = ts.Language(loader())
            except Exception as exc:
                logger.debug("Cannot load tree-sitter language %s: %s", grammar, exc)
        _LANG_CACHE[grammar] = lang_obj
        return lang_obj


def get_parser(grammar: str):
    """
    Return a tree-sitter Parser for *grammar*, or None.

    Parsers are not thread-safe, so each worker thread keeps its own.
    """
    cache = getattr(_PARSERS, "cache", None)
    if cache is None:
        cache = _PARSERS.cache = {}
    if grammar not in cache:
        import tree_sitter as ts  # type: ignore
        lang_obj = get_language(grammar)
        cache[grammar] = ts.Parser(lang_obj) if lang_obj is not None else None
    return cache[grammar]


# ---------------------------------------------------------------------------
# Node text helpers
# ---------------------------------------------------------------------------

def node_text(node) -> str:
    """Decode a tree-sitter Node's text as UTF-8."""
    if node is None or not node.text:
        return ""
    return node.text.decode("utf-8", errors="replace")


def first_error_line(node) -> int:
    """Return the 1-based line of the first ERROR/MISSING node below *node*."""
    stack = [node]
    while stack:
        current = stack.pop()
        if current.type == "ERROR" or current.is_missing:
            return current.start_point[0] + 1
        if current.has_error:
            stack.extend(reversed(current.children))
    return node.start_point[0] + 1


# ---------------------------------------------------------------------------
# Extractor interface
# ---------------------------------------------------------------------------

class Extractor(ABC):
    """
    Capability interface: parse one file into an :class:`Extraction`.

    Subclasses declare the extensions they handle and implement
    :meth:`_extract` against the parsed tree-sitter root.
    """

    language: str = ""
    extensions: tuple[str, ...] = ()

    def grammar_for(self, path: str) -> str:
        return self.language

    def language_for(self, path: str) -> str:
        return self.language

    def extract(self, content: bytes, path: str) -> Extraction:
        """
        Parse *content* (the bytes of *path*) and return its extraction.

        Raises
        ------
        ParseError
            If the bytes are not UTF-8, the grammar is unavailable, or the
            parser reports syntax errors.
        """
        try:
            content.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ParseError(path, f"not valid UTF-8 ({exc.reason} at byte {exc.start})")

        grammar = self.grammar_for(path)
        parser = get_parser(grammar)
        if parser is None:
            raise ParseError(path, f"tree-sitter grammar '{grammar}' is not available")

        try:
            tree = parser.parse(content)
        except Exception as exc:
            raise ParseError(path, f"parser failure: {exc}") from exc

        root = tree.root_node
        if root.has_error:
            raise ParseError(path, f"syntax error near line {first_error_line(root)}")

        result = Extraction(
            path=path, language=self.language_for(path), hash=hash_bytes(content),
        )
        self._extract(root, result)
        return result

    @abstractmethod
    def _extract(self, root, result: Extraction) -> None:
        """Populate *result* from the syntax tree rooted at *root*."""


class _TypeCollector:
    """Dedupes types per file, keeping the first (declaring) occurrence."""

    def __init__(self, result: Extraction, language: str) -> None:
        self._result = result
        self._language = language
        self._by_id: dict[str, ExtractedType] = {}

    def declare(self, name: str, kind: str, line: int, definition: str = "",
                type_params: Optional[list[str]] = None) -> str:
        tid = type_id(name)
        existing = self._by_id.get(tid)
        if existing is not None and existing.kind != "reference":
            return tid
        params = list(type_params or [])
        flags = classify_type(definition or name, self._language)
        flags["generic"] = flags["generic"] or bool(params)
        record = ExtractedType(
            id=tid,
            name=name,
            kind=kind,
            file_path=self._result.path,
            line=line,
            definition=definition[:500],
            type_params=params,
            **flags,
        )
        if existing is None:
            self._result.types.append(record)
        else:
            self._result.types[self._result.types.index(existing)] = record
        self._by_id[tid] = record
        return tid

    def reference(self, text: str, line: int) -> Optional[str]:
        """Record a referenced type annotation and return its id."""
        compact = " ".join(text.split())
        if not compact:
            return None
        tid = type_id(compact)
        if tid in self._by_id:
            return tid
        record = ExtractedType(
            id=tid,
            name=compact,
            kind="reference",
            file_path=self._result.path,
            line=line,
            definition=compact[:500],
            **classify_type(compact, self._language),
        )
        self._result.types.append(record)
        self._by_id[tid] = record
        return tid
