"""Glob filters over namespace names and payload keys.

Patterns use shell-style wildcards: '*' matches any run of characters,
'?' a single character, '[...]' a character class (ranges, '^' negation)
and '\\' escapes the next character. There is no special handling of path
separators. Unlike fnmatch, malformed patterns are rejected instead of
being matched literally.
"""

import re
from collections.abc import Iterable
from functools import lru_cache

from replikator.exceptions import FilterPatternError

# Matches nothing; used for character classes with no satisfiable member
_NEVER = "(?!)"


def split_patterns(raw: str | None) -> tuple[str, ...]:
    """Split a comma-separated annotation value into patterns.

    Only a missing or empty value yields no patterns. Empty elements
    (e.g. from 'a,,b') are kept as literal empty patterns.

    Args:
        raw: The raw annotation value.

    Returns:
        The patterns in annotation order.

    """
    if not raw:
        return ()
    return tuple(raw.split(","))


def _class_char(pattern: str, i: int) -> tuple[str, int]:
    """Read one (possibly escaped) character of a character class."""
    if i >= len(pattern):
        raise FilterPatternError(pattern, "unterminated character class")
    char = pattern[i]
    if char in "-]":
        raise FilterPatternError(pattern, f"unexpected '{char}' in character class")
    if char == "\\":
        i += 1
        if i >= len(pattern):
            raise FilterPatternError(pattern, "trailing backslash")
        char = pattern[i]
    return char, i + 1


def _translate_class(pattern: str, i: int) -> tuple[str, int]:
    """Translate the character class starting after '[' at index i."""
    negated = i < len(pattern) and pattern[i] == "^"
    if negated:
        i += 1

    members: list[str] = []
    first = True
    while True:
        if i >= len(pattern):
            raise FilterPatternError(pattern, "unterminated character class")
        if pattern[i] == "]" and not first:
            i += 1
            break
        first = False
        lo, i = _class_char(pattern, i)
        if i < len(pattern) and pattern[i] == "-":
            hi, i = _class_char(pattern, i + 1)
            # A reversed range is valid but matches nothing.
            if lo <= hi:
                members.append(f"{re.escape(lo)}-{re.escape(hi)}")
        else:
            members.append(re.escape(lo))

    if not members:
        return ("." if negated else _NEVER), i
    return f"[{'^' if negated else ''}{''.join(members)}]", i


@lru_cache(maxsize=512)
def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Compile a glob pattern into an anchored regular expression.

    Args:
        pattern: The glob pattern.

    Returns:
        A compiled expression to be used with fullmatch().

    Raises:
        FilterPatternError: If the pattern is malformed.

    """
    parts: list[str] = []
    i = 0
    while i < len(pattern):
        char = pattern[i]
        if char == "*":
            parts.append(".*")
            i += 1
        elif char == "?":
            parts.append(".")
            i += 1
        elif char == "\\":
            if i + 1 >= len(pattern):
                raise FilterPatternError(pattern, "trailing backslash")
            parts.append(re.escape(pattern[i + 1]))
            i += 2
        elif char == "[":
            translated, i = _translate_class(pattern, i + 1)
            parts.append(translated)
        else:
            parts.append(re.escape(char))
            i += 1

    return re.compile("".join(parts), re.DOTALL)


class GlobFilter:
    """A list of glob patterns, any of which may match.

    All patterns are compiled on construction, so a malformed pattern
    fails before the filter is applied to anything.

    Attributes:
        patterns: The source patterns.

    """

    def __init__(self, patterns: Iterable[str] = ()) -> None:
        self.patterns: tuple[str, ...] = tuple(patterns)
        self._compiled = [compile_pattern(pattern) for pattern in self.patterns]

    def matches(self, candidate: str) -> bool:
        """Return True if the filter is empty or any pattern matches."""
        if not self._compiled:
            return True
        return any(expr.fullmatch(candidate) for expr in self._compiled)

    def __repr__(self) -> str:
        return f"GlobFilter(patterns={self.patterns!r})"


def matches(patterns: Iterable[str], candidate: str) -> bool:
    """Match a candidate against a pattern list.

    Args:
        patterns: Glob patterns; empty matches everything.
        candidate: Namespace name or payload key.

    Returns:
        True if the candidate is selected.

    Raises:
        FilterPatternError: If any pattern is malformed.

    """
    return GlobFilter(patterns).matches(candidate)
