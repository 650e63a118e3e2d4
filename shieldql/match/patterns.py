"""Field-pattern matching.

A *field path* is a dotted name such as ``user.profile.email`` or, for data
inside sequences, ``orders.3.total``.  A *pattern* selects field paths in one
of four forms, classified in this order:

1. **Exact** – literal equality always wins, whatever markers the pattern
   contains.
2. **Regex** – ``/…/``; the body is searched in the full path.
3. **Wildcard** – contains ``*``.  A single ``*`` matches within one segment
   and never crosses a ``.``; ``**`` matches anything, dots included::

       financial.*    matches financial.bonus, not financial.tax.rate
       financial.**   matches both

4. **Array index** – contains ``[`` and ``]``.  ``[]`` matches one numeric
   index segment and ``[*]`` any single segment::

       items[].price    matches items.0.price
       items[*].price   matches items.0.price and items.first.price

Bracket tokens are honoured inside wildcard patterns too, so ``*[*].id``
behaves as expected.

Patterns are compiled once (:func:`compile_pattern` is memoized) and the
compiled form is reused for every match.
"""
from __future__ import annotations

import functools
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any


class PatternKind(str, Enum):
    """The four syntactic forms a field pattern can take."""

    EXACT = "exact"
    REGEX = "regex"
    WILDCARD = "wildcard"
    ARRAY_INDEX = "array_index"


# Longest tokens first so that ``**`` is never read as two ``*``.
_TOKEN_RE = re.compile(r"\*\*|\*|\[\*\]|\[\]")

_TOKEN_REGEX: dict[str, str] = {
    "**": ".*",
    "*": "[^.]*",
    "[]": r"\.[0-9]+",
    "[*]": r"\.[^.]+",
}

# Same tokens when they open the pattern (no preceding segment to separate).
_LEADING_TOKEN_REGEX: dict[str, str] = {
    "[]": "[0-9]+",
    "[*]": "[^.]+",
}

_BRACKET_CONTENT_RE = re.compile(r"\[([^\[\]]*)\]")


def classify_pattern(pattern: str) -> PatternKind:
    """Return the :class:`PatternKind` of ``pattern``."""
    if len(pattern) >= 2 and pattern.startswith("/") and pattern.endswith("/"):
        return PatternKind.REGEX
    if "*" in pattern:
        return PatternKind.WILDCARD
    if "[" in pattern and "]" in pattern:
        return PatternKind.ARRAY_INDEX
    return PatternKind.EXACT


def _translate(pattern: str) -> str:
    parts: list[str] = []
    pos = 0
    for match in _TOKEN_RE.finditer(pattern):
        token = match.group()
        parts.append(re.escape(pattern[pos : match.start()]))
        if match.start() == 0 and token in _LEADING_TOKEN_REGEX:
            parts.append(_LEADING_TOKEN_REGEX[token])
        else:
            parts.append(_TOKEN_REGEX[token])
        pos = match.end()
    parts.append(re.escape(pattern[pos:]))
    return "".join(parts)


@dataclass(frozen=True)
class CompiledPattern:
    """A pattern with its matcher built once.

    Attributes:
        pattern: The original pattern string.
        kind: Its syntactic form.
        regex: Compiled expression; ``None`` for exact patterns.
    """

    pattern: str
    kind: PatternKind
    regex: re.Pattern[str] | None = None

    def matches(self, field_path: str) -> bool:
        """Return ``True`` if ``field_path`` is selected by this pattern."""
        if field_path == self.pattern:
            return True
        if self.regex is None:
            return False
        if self.kind is PatternKind.REGEX:
            return self.regex.search(field_path) is not None
        return self.regex.fullmatch(field_path) is not None


@functools.lru_cache(maxsize=2048)
def compile_pattern(pattern: str) -> CompiledPattern:
    """Compile ``pattern`` into a reusable :class:`CompiledPattern`.

    Raises:
        re.error: If a ``/…/`` pattern is not a valid regular expression.
            Run :func:`validate_pattern_syntax` first to get a report instead.
    """
    kind = classify_pattern(pattern)
    if kind is PatternKind.EXACT:
        return CompiledPattern(pattern=pattern, kind=kind)
    if kind is PatternKind.REGEX:
        return CompiledPattern(pattern=pattern, kind=kind, regex=re.compile(pattern[1:-1]))
    return CompiledPattern(pattern=pattern, kind=kind, regex=re.compile(_translate(pattern)))


def matches(field_path: str, pattern: str) -> bool:
    """Return ``True`` if ``field_path`` matches ``pattern``."""
    if field_path == pattern:
        return True
    return compile_pattern(pattern).matches(field_path)


# ---------------------------------------------------------------------------
# Syntax validation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PatternValidation:
    """Outcome of :func:`validate_pattern_syntax`.

    Attributes:
        pattern: The pattern that was checked.
        kind: Its syntactic form.
        valid: ``True`` when ``errors`` is empty.
        errors: Every problem found, in discovery order.
    """

    pattern: str
    kind: PatternKind
    valid: bool
    errors: tuple[str, ...] = ()


def validate_pattern_syntax(pattern: str) -> PatternValidation:
    """Check ``pattern`` and report every syntax problem.

    Never raises: configuration tooling collects the results of many patterns
    and reports them together.
    """
    kind = classify_pattern(pattern)
    errors: list[str] = []

    if not pattern.strip():
        errors.append("Pattern cannot be empty")
    elif kind is PatternKind.REGEX:
        body = pattern[1:-1]
        if not body:
            errors.append("Regular expression pattern cannot be empty")
        else:
            try:
                re.compile(body)
            except re.error as exc:
                errors.append(f"Invalid regex pattern: {exc}")
    else:
        if "***" in pattern:
            errors.append("Triple asterisk (***) is not supported")
        errors.extend(_bracket_errors(pattern))

    return PatternValidation(pattern=pattern, kind=kind, valid=not errors, errors=tuple(errors))


def _bracket_errors(pattern: str) -> list[str]:
    errors: list[str] = []
    depth = 0
    for ch in pattern:
        if ch == "[":
            if depth:
                errors.append("Nested brackets are not supported")
            depth += 1
        elif ch == "]":
            if depth == 0:
                errors.append("Unmatched ']' in array pattern")
            else:
                depth -= 1
    if depth:
        errors.append("Unmatched '[' in array pattern")
    for content in _BRACKET_CONTENT_RE.findall(pattern):
        if content not in ("", "*"):
            errors.append(f"Unsupported array selector '[{content}]' (use '[]' or '[*]')")
    return errors


# ---------------------------------------------------------------------------
# Data traversal
# ---------------------------------------------------------------------------


def is_sequence(value: Any) -> bool:
    """Return ``True`` for list-like values (strings and bytes excluded)."""
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray))


def enumerate_field_paths(data: Any) -> list[str]:
    """Return the dotted path of every leaf in ``data``.

    Sequence elements contribute their index as a path segment.  Empty
    mappings and sequences are leaves.  Intended for analysis and debugging;
    the filtering hot path does not use it.
    """
    paths: list[str] = []
    _collect_paths(data, "", paths)
    return paths


def _collect_paths(node: Any, prefix: str, out: list[str]) -> None:
    if isinstance(node, Mapping):
        children = [(str(k), v) for k, v in node.items()]
    elif is_sequence(node):
        children = [(str(i), v) for i, v in enumerate(node)]
    else:
        if prefix:
            out.append(prefix)
        return

    if not children and prefix:
        out.append(prefix)
    for key, value in children:
        _collect_paths(value, f"{prefix}.{key}" if prefix else key, out)


def extract_fields(data: Any, pattern: str) -> list[str]:
    """Return the leaf paths of ``data`` that match ``pattern``."""
    compiled = compile_pattern(pattern)
    return [p for p in enumerate_field_paths(data) if compiled.matches(p)]


def match_first(field_path: str, patterns: Iterable[str]) -> str | None:
    """Return the first of ``patterns`` that matches ``field_path``."""
    for pattern in patterns:
        if matches(field_path, pattern):
            return pattern
    return None


def normalize_pattern(pattern: str) -> str:
    """Trim, lowercase and strip whitespace from ``pattern``."""
    return re.sub(r"\s+", "", pattern.strip().lower())


def pattern_complexity(pattern: str) -> int:
    """Rough matching cost of ``pattern`` on a 1–10 scale."""
    score = 1
    kind = classify_pattern(pattern)
    if kind is PatternKind.REGEX:
        score += 5
    score += pattern.count("*")
    if "[" in pattern and "]" in pattern:
        score += 2
    score += pattern.count(".") // 2
    return min(score, 10)


class PatternMatcher:
    """An ordered set of precompiled patterns.

    Declared order is preserved: :meth:`first_match` returns the earliest
    pattern that selects a field, which is how pattern precedence is defined.

    Args:
        patterns: Pattern strings in declared order.
    """

    def __init__(self, patterns: Iterable[str]) -> None:
        self._compiled: list[CompiledPattern] = [compile_pattern(p) for p in patterns]

    @property
    def patterns(self) -> list[str]:
        return [c.pattern for c in self._compiled]

    def __len__(self) -> int:
        return len(self._compiled)

    def first_match(self, field_path: str) -> str | None:
        """Return the first declared pattern matching ``field_path``."""
        for compiled in self._compiled:
            if compiled.matches(field_path):
                return compiled.pattern
        return None

    def all_matches(self, field_path: str) -> list[str]:
        """Return every declared pattern matching ``field_path``, in order."""
        return [c.pattern for c in self._compiled if c.matches(field_path)]
