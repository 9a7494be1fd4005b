"""
Exception taxonomy for the semantic graph engine.

File-scoped errors (:class:`ParseError`, :class:`StoreWriteError`) are
logged and skipped by the scanner; :class:`StoreConnectionError` aborts the
current top-level operation; query errors are raised straight to the caller.
"""

from __future__ import annotations

from typing import Optional


class SemgraphError(Exception):
    """Base class for every error raised by semgraph."""


class ParseError(SemgraphError):
    """Raised when a source file cannot be parsed into an extraction."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class StoreConnectionError(SemgraphError):
    """Raised when a store cannot be opened at startup."""


class StoreWriteError(SemgraphError):
    """Raised when a write for a single file fails."""

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.path = path


class ReconcileInputError(SemgraphError):
    """Raised when a fingerprint map is not a ``str -> str`` mapping."""


class QueryError(SemgraphError):
    """Base class for query-translation failures."""


class InvalidTemplateError(QueryError):
    """Raised when a query template is requested by an unknown name."""

    def __init__(self, template: str, available: Optional[list[str]] = None) -> None:
        message = f"Unknown query template: {template}"
        if available:
            message += f" (available: {', '.join(available)})"
        super().__init__(message)
        self.template = template


class MissingArgumentError(QueryError):
    """Raised when a template is called without a required argument."""

    def __init__(self, template: str, argument: str) -> None:
        super().__init__(
            f"Template '{template}' requires argument <{argument}>"
        )
        self.template = template
        self.argument = argument


class QuerySyntaxError(QueryError):
    """Raised when query text cannot be parsed or is not read-only."""

    def __init__(self, message: str, position: Optional[int] = None) -> None:
        if position is not None:
            message = f"{message} (at offset {position})"
        super().__init__(message)
        self.position = position
