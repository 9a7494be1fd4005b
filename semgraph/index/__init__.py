"""
Index layer: extraction, the graph and metrics stores, scanning and watching.

Graph: deterministic structure parsed with tree-sitter, held in NetworkX.
Metrics: per-file metrics and fingerprints in SQLite.
"""
