"""
Natural-language front end for the template catalog.

Input is normalised (lower-cased, whitespace collapsed) and searched for the
trigger phrases of an ordered rule list; the first rule with a trigger
present wins and its argument is the token right after (or, for "what does
X call" style phrasings, inside) the trigger.  Arguments are cut
from the original-case text at the same offsets, so ``who calls fetchUser``
yields ``fetchUser``, not ``fetchuser``.  Anything no rule recognises is
passed through unchanged as raw query text.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Optional, Union

from .builder import StructuredQuery
from .templates import DEFAULT_CALL_DEPTH, build_template

logger = logging.getLogger(__name__)

_QUOTED_RE = re.compile(r"""["'`]([^"'`]+)["'`]""")
_DEPTH_RE = re.compile(r"\b(?:depth|max depth|up to)\s*(?:of\s*)?(\d+)|\b(\d+)\s*(?:levels?|hops?)\b")
_TRAILING = " \t?.!,;:"

# A single code identifier or path-like token.
_ARG = r"(?P<arg>[\"'`][^\"'`]+[\"'`]|[^\s?\"'`]+)"


@dataclass(frozen=True)
class TemplateMatch:
    """A request recognised as one of the named templates."""
    template: str
    args: tuple
    confidence: float
    query: StructuredQuery

    def to_dict(self) -> dict:
        return {
            "template": self.template,
            "args": list(self.args),
            "confidence": self.confidence,
            "query": self.query.render(),
            "params": self.query.params,
        }


@dataclass(frozen=True)
class RawQuery:
    """Input no rule recognised; executed verbatim."""
    text: str

    def to_dict(self) -> dict:
        return {"template": None, "raw": self.text}


ParseResult = Union[TemplateMatch, RawQuery]


@dataclass(frozen=True)
class Rule:
    """``predicate`` returns a match (or None); the template builds the query."""
    template: str
    predicate: Callable[[str], Optional[re.Match]]
    confidence: float
    takes_arg: bool = True
    takes_depth: bool = False


def _phrases(*patterns: str) -> Callable[[str], Optional[re.Match]]:
    """Predicate searching the normalised text for any of the trigger *patterns*."""
    compiled = [re.compile(r"(?<![\w./-])" + p) for p in patterns]

    def predicate(text: str) -> Optional[re.Match]:
        for rx in compiled:
            m = rx.search(text)
            if m:
                return m
        return None

    return predicate


_OF = r"(?:(?:of|in|from|for)\s+)?"
_NOT_UNUSED = r"(?<!unused\s)(?<!dead\s)(?<!unreferenced\s)"

# Text that already reads as a query is never rewritten.
_RAW_START_RE = re.compile(r"^(?:optional\s+match|match|unwind|return|with)\b")

# Catalog order; the first rule whose trigger appears in the text wins.
RULES: tuple[Rule, ...] = (
    Rule("find-callers", _phrases(
        rf"(?:who|what)\s+calls\s+{_ARG}",
        rf"(?:find\s+)?callers\s+{_OF}{_ARG}",
        rf"where\s+is\s+{_ARG}\s+called\b",
    ), 0.9),
    Rule("find-callees", _phrases(
        rf"what\s+(?:does|do)\s+{_ARG}\s+call\b",
        rf"callees\s+{_OF}{_ARG}",
        rf"(?:functions|methods)\s+called\s+by\s+{_ARG}",
        rf"{_ARG}\s+calls\s+what\b",
    ), 0.9),
    Rule("find-exports", _phrases(
        rf"{_NOT_UNUSED}exports\s+(?:of|in|from|for)\s+{_ARG}",
        rf"(?:show|list)\s+exports\s+{_OF}{_ARG}",
        rf"what\s+does\s+{_ARG}\s+export\b",
    ), 0.85),
    Rule("find-imports", _phrases(
        rf"imports\s+(?:of|in|from|for)\s+{_ARG}",
        rf"(?:show|list)\s+imports\s+{_OF}{_ARG}",
        rf"what\s+does\s+{_ARG}\s+import\b",
    ), 0.85),
    Rule("find-dependencies", _phrases(
        rf"(?:dependencies|deps)\s+(?:of|for)\s+{_ARG}",
        rf"what\s+does\s+{_ARG}\s+depend\s+on\b",
    ), 0.9),
    Rule("find-dependents", _phrases(
        rf"dependents\s+(?:of|for)\s+{_ARG}",
        rf"(?:who|what)\s+(?:depends\s+on|imports|uses)\s+{_ARG}",
        rf"used\s+by\s+{_ARG}",
    ), 0.9),
    Rule("find-classes", _phrases(
        r"(?:show|list|find|all)\s+(?:all\s+)?(?:the\s+)?classes\b(?!\s+implementing)",
    ), 1.0, takes_arg=False),
    Rule("find-class-members", _phrases(
        rf"(?:members|methods|properties|fields)\s+(?:of|in)\s+(?:class\s+)?{_ARG}",
    ), 0.85),
    Rule("find-extends", _phrases(
        rf"what\s+does\s+{_ARG}\s+extend\b",
        rf"(?:parents?|superclass(?:es)?|base\s+class(?:es)?|inheritance)\s+of\s+{_ARG}",
    ), 0.9),
    Rule("find-implementations", _phrases(
        rf"implementations\s+of\s+{_ARG}",
        rf"(?:who|what)\s+implements\s+{_ARG}",
        rf"classes\s+implementing\s+{_ARG}",
    ), 0.9),
    Rule("find-call-graph-with-depth", _phrases(
        rf"call\s+graph\s+{_OF}{_ARG}",
        rf"call\s+(?:chain|tree)\s+(?:of|for|from)\s+{_ARG}",
        rf"calls\s+from\s+{_ARG}",
    ), 0.85, takes_depth=True),
    Rule("find-unused-exports", _phrases(
        r"(?:unused|dead|unreferenced)\s+exports\b",
        r"exports\s+(?:that\s+are\s+)?(?:never|not)\s+(?:used|imported)\b",
    ), 1.0, takes_arg=False),
    Rule("find-symbols-in-file", _phrases(
        rf"(?:symbols|declarations|definitions|functions|code)\s+(?:in|of)\s+{_ARG}",
        rf"what\s+is\s+(?:declared|defined)\s+in\s+{_ARG}",
        rf"show\s+file\s+{_ARG}",
    ), 0.85),
)


def normalize(text: str) -> str:
    return " ".join(text.split()).lower()


def _clean_arg(raw: str) -> str:
    quoted = _QUOTED_RE.fullmatch(raw.strip())
    if quoted:
        return quoted.group(1).strip()
    return raw.strip().strip(_TRAILING).strip("\"'`")


def _extract_depth(text: str) -> int:
    m = _DEPTH_RE.search(text)
    if not m:
        return DEFAULT_CALL_DEPTH
    return int(m.group(1) or m.group(2))


class NLParser:
    """
    Ordered rule matcher.

    Parameters
    ----------
    rules:
        Rules to try in order; defaults to :data:`RULES`.
    """

    def __init__(self, rules: tuple[Rule, ...] = RULES) -> None:
        self._rules = rules

    @property
    def rules(self) -> tuple[Rule, ...]:
        return self._rules

    def parse(self, text: str) -> ParseResult:
        """Return the first matching template, or the text as a :class:`RawQuery`."""
        collapsed = " ".join(text.split())
        normalized = collapsed.lower()
        # Offsets only line up when lower-casing keeps the length.
        source = collapsed if len(collapsed) == len(normalized) else normalized

        if _RAW_START_RE.match(normalized):
            logger.debug("[query] %r -> raw passthrough", text)
            return RawQuery(text)

        for rule in self._rules:
            m = rule.predicate(normalized)
            if m is None:
                continue
            args: list = []
            if rule.takes_arg:
                start, end = m.span("arg")
                arg = _clean_arg(source[start:end])
                if not arg:
                    continue
                args.append(arg)
            if rule.takes_depth:
                args.append(_extract_depth(normalized))
            built = build_template(rule.template, *args)
            logger.debug("[query] %r -> %s%r (%.2f)", text, rule.template, tuple(args),
                         rule.confidence)
            return TemplateMatch(
                template=rule.template,
                args=tuple(args),
                confidence=rule.confidence,
                query=built,
            )

        logger.debug("[query] %r -> raw passthrough", text)
        return RawQuery(text)


_DEFAULT_PARSER = NLParser()


def parse(text: str) -> ParseResult:
    """Parse *text* with the default rule list."""
    return _DEFAULT_PARSER.parse(text)
