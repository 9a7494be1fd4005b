"""
semgraph: semantic graph maintenance engine.

Keeps a queryable graph of a project's modules, symbols and types in sync
with its source tree.

Public API for library usage::

    from semgraph import Engine

    with Engine("path/to/project") as engine:
        engine.scan(incremental=True)
        result = engine.query("who calls fetchUser")
"""

__version__ = "0.1.0"

from .engine import Engine
from .errors import SemgraphError

__all__ = ["Engine", "SemgraphError", "__version__"]
