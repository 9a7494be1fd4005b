"""
Static per-file metrics: line classification and a cyclomatic-style
complexity estimate.
"""

from __future__ import annotations

import re
import time

from .extractors import Extraction
from .metrics_store import FileMetrics

_STRING_RE = re.compile(r"""("(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*'|`(?:[^`\\]|\\.)*`)""")

_DECISIONS = {
    "python": re.compile(r"\b(?:if|elif|for|while|except|and|or|case)\b"),
    "typescript": re.compile(r"\b(?:if|for|while|case|catch)\b|&&|\|\||\?\?|\?(?![.?:])"),
}

_FUNCTION_KINDS = frozenset({"function", "method"})


def _classify_lines(text: str, language: str) -> tuple[int, int, int, list[str]]:
    """Return ``(total, blank, comment, code_lines)`` for *text*."""
    lines = text.splitlines()
    blank = comment = 0
    code: list[str] = []
    in_block = False
    block_end = '"""'

    for raw in lines:
        line = raw.strip()
        if in_block:
            comment += 1
            if block_end in line:
                in_block = False
            continue
        if not line:
            blank += 1
            continue

        if language == "python":
            if line.startswith("#"):
                comment += 1
                continue
            for delim in ('"""', "'''"):
                if line.startswith(delim):
                    comment += 1
                    if line.count(delim) == 1:
                        in_block, block_end = True, delim
                    break
            else:
                code.append(line.split(" #", 1)[0])
            continue

        if line.startswith("//"):
            comment += 1
        elif line.startswith("/*"):
            comment += 1
            if "*/" not in line[2:]:
                in_block, block_end = True, "*/"
        else:
            code.append(line.split(" //", 1)[0])

    return len(lines), blank, comment, code


def compute_file_metrics(extraction: Extraction, text: str) -> FileMetrics:
    """
    Compute :class:`FileMetrics` for one extracted file.

    Parameters
    ----------
    extraction:
        The file's extraction (symbol, import and export counts come from it).
    text:
        The decoded file contents.
    """
    family = "python" if extraction.language == "python" else "typescript"
    total, blank, comment, code = _classify_lines(text, family)

    pattern = _DECISIONS[family]
    decisions = sum(len(pattern.findall(_STRING_RE.sub('""', line))) for line in code)

    functions = sum(1 for s in extraction.symbols if s.kind in _FUNCTION_KINDS)
    classes = sum(1 for s in extraction.symbols if s.kind == "class")
    exports = sum(1 for s in extraction.symbols if s.exported and s.parent is None)

    complexity = max(functions, 1) + decisions
    return FileMetrics(
        path=extraction.path,
        language=extraction.language,
        total_lines=total,
        code_lines=len(code),
        comment_lines=comment,
        blank_lines=blank,
        complexity_sum=complexity,
        complexity_avg=round(complexity / max(functions, 1), 2),
        import_count=len(extraction.imports),
        export_count=exports,
        class_count=classes,
        function_count=functions,
        last_analyzed=time.time(),
    )
