"""
Immutable, parameterised query builder.

Each method returns a new :class:`StructuredQuery`; nothing is mutated in
place, so partially built queries can be shared and extended safely.
Values always travel as ``$name`` parameters, never spliced into the text.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Iterable, Mapping

_CLAUSE_ORDER = ("MATCH", "WHERE", "RETURN", "ORDER BY", "SKIP", "LIMIT")


@dataclass(frozen=True)
class Clause:
    """One typed fragment of a query."""
    kind: str
    text: str


@dataclass(frozen=True)
class StructuredQuery:
    """An ordered list of typed clauses plus bound parameters."""
    clauses: tuple[Clause, ...] = ()
    bindings: tuple[tuple[str, Any], ...] = ()
    distinct: bool = False

    # ------------------------------------------------------------------
    # Builders
    # ------------------------------------------------------------------

    def _with(self, kind: str, items: Iterable[str]) -> "StructuredQuery":
        added = tuple(Clause(kind, item) for item in items if item)
        return replace(self, clauses=self.clauses + added)

    def match(self, *patterns: str) -> "StructuredQuery":
        return self._with("MATCH", patterns)

    def where(self, *conditions: str) -> "StructuredQuery":
        return self._with("WHERE", conditions)

    def return_(self, *items: str, distinct: bool = False) -> "StructuredQuery":
        q = self._with("RETURN", items)
        return replace(q, distinct=q.distinct or distinct)

    def order_by(self, *items: str) -> "StructuredQuery":
        return self._with("ORDER BY", items)

    def skip(self, count: int) -> "StructuredQuery":
        kept = tuple(c for c in self.clauses if c.kind != "SKIP")
        return replace(self, clauses=kept + (Clause("SKIP", str(int(count))),))

    def limit(self, count: int) -> "StructuredQuery":
        kept = tuple(c for c in self.clauses if c.kind != "LIMIT")
        return replace(self, clauses=kept + (Clause("LIMIT", str(int(count))),))

    def param(self, name: str, value: Any) -> "StructuredQuery":
        kept = tuple((k, v) for k, v in self.bindings if k != name)
        return replace(self, bindings=kept + ((name, value),))

    def with_params(self, params: Mapping[str, Any]) -> "StructuredQuery":
        q = self
        for name, value in params.items():
            q = q.param(name, value)
        return q

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    @property
    def params(self) -> dict[str, Any]:
        return dict(self.bindings)

    def parts(self, kind: str) -> list[str]:
        return [c.text for c in self.clauses if c.kind == kind]

    def render(self) -> str:
        """Produce the query text, clauses in canonical order."""
        lines = []
        for kind in _CLAUSE_ORDER:
            parts = self.parts(kind)
            if not parts:
                continue
            if kind == "WHERE":
                body = " AND ".join(f"({p})" if " OR " in p.upper() else p for p in parts)
            elif kind in ("SKIP", "LIMIT"):
                body = parts[-1]
            else:
                body = ", ".join(parts)
            if kind == "RETURN" and self.distinct:
                body = "DISTINCT " + body
            lines.append(f"{kind} {body}")
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.render()


def query() -> StructuredQuery:
    """Start an empty query."""
    return StructuredQuery()
