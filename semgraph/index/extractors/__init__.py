"""
Per-language extractors, selected by file extension.
"""

from __future__ import annotations

import os
from typing import Optional

from ...errors import ParseError
from .base import (
    ALL_EDGE_KINDS,
    EdgeKind,
    ExtractedImport,
    ExtractedSymbol,
    ExtractedType,
    Extraction,
    Extractor,
    NodeLabel,
    Relationship,
    classify_type,
    external_module_id,
    module_id,
    module_parts,
    type_id,
)
from .python import PythonExtractor
from .typescript import TypeScriptExtractor

_REGISTRY: dict[str, Extractor] = {}


def register_extractor(extractor: Extractor) -> None:
    """Route every extension *extractor* declares to it."""
    for ext in extractor.extensions:
        _REGISTRY[ext.lower()] = extractor


def supported_extensions() -> frozenset[str]:
    return frozenset(_REGISTRY)


def is_supported(path: str) -> bool:
    return os.path.splitext(path)[1].lower() in _REGISTRY


def get_extractor(path: str) -> Optional[Extractor]:
    """Return the extractor registered for *path*'s extension, or None."""
    return _REGISTRY.get(os.path.splitext(path)[1].lower())


def extract(content: bytes, path: str) -> Extraction:
    """
    Extract *content* with the extractor registered for *path*.

    Raises
    ------
    ParseError
        If no extractor handles the extension, or extraction fails.
    """
    extractor = get_extractor(path)
    if extractor is None:
        raise ParseError(path, "unsupported file extension")
    return extractor.extract(content, path)


register_extractor(TypeScriptExtractor())
register_extractor(PythonExtractor())

__all__ = [
    "ALL_EDGE_KINDS",
    "EdgeKind",
    "ExtractedImport",
    "ExtractedSymbol",
    "ExtractedType",
    "Extraction",
    "Extractor",
    "NodeLabel",
    "PythonExtractor",
    "Relationship",
    "TypeScriptExtractor",
    "classify_type",
    "external_module_id",
    "extract",
    "get_extractor",
    "is_supported",
    "module_id",
    "module_parts",
    "register_extractor",
    "supported_extensions",
    "type_id",
]
