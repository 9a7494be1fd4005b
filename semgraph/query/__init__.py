"""
Query layer: builder, template catalog, natural-language front end and the
read-only Cypher mirror.
"""

from .builder import StructuredQuery, query
from .cypher import GraphMirror, QueryResult
from .nl_parser import NLParser, RawQuery, TemplateMatch, parse
from .templates import TEMPLATES, build_template, get_template, template_names

__all__ = [
    "StructuredQuery",
    "query",
    "QueryResult",
    "GraphMirror",
    "NLParser",
    "RawQuery",
    "TemplateMatch",
    "parse",
    "TEMPLATES",
    "build_template",
    "get_template",
    "template_names",
]
