"""
Wildcard pattern matching for addresses and subjects.

Patterns are shell-style globs, matched case-sensitively against the whole
value:

    *       any run of characters (including none)
    ?       exactly one character
    [abc]   one character from the set ([!abc] negates)
    {a,b}   either alternative

Patterns are validated and compiled once, when the filter is built, so a
malformed pattern is reported at configuration load time and never while
messages are being processed.

Usage:
    from core.patterns import AddressFilter

    only_org = AddressFilter(["*@example.org"])
    only_org.matches(["alice@example.org"])  # True
"""

import fnmatch
import re
from typing import Iterable, List, Sequence, Tuple

from core.errors import ConfigError

# Start of the Unicode private use area
PLACEHOLDER_BASE = 0xE000


def _check_brackets(pattern: str) -> None:
    """Raise ConfigError for an unclosed character class."""
    i = 0
    n = len(pattern)
    while i < n:
        c = pattern[i]
        if c == "\\":
            i += 2
            continue
        if c == "[":
            j = i + 1
            if j < n and pattern[j] in "!^":
                j += 1
            # A leading ] is part of the class
            if j < n and pattern[j] == "]":
                j += 1
            while j < n and pattern[j] != "]":
                j += 1
            if j >= n:
                raise ConfigError(f"Invalid glob pattern {pattern!r}: unclosed character class")
            i = j
        i += 1


def _expand_braces(pattern: str) -> List[str]:
    """Expand the first {a,b} group, recursively."""
    depth = 0
    start = -1
    i = 0
    while i < len(pattern):
        c = pattern[i]
        if c == "\\":
            i += 2
            continue
        if c == "[":
            # Braces inside a character class are literal
            end = pattern.find("]", i + 2)
            i = end + 1 if end != -1 else len(pattern)
            continue
        if c == "{":
            if depth:
                raise ConfigError(f"Invalid glob pattern {pattern!r}: nested alternates")
            depth = 1
            start = i
        elif c == "}":
            if not depth:
                raise ConfigError(f"Invalid glob pattern {pattern!r}: unopened alternate group")
            head, body, tail = pattern[:start], pattern[start + 1:i], pattern[i + 1:]
            expanded = []
            for alternative in body.split(","):
                expanded.extend(_expand_braces(head + alternative + tail))
            return expanded
        i += 1
    if depth:
        raise ConfigError(f"Invalid glob pattern {pattern!r}: unclosed alternate group")
    return [pattern]


def _translate(pattern: str) -> str:
    # fnmatch has no escape syntax. Escaped characters are swapped for
    # private-use placeholders, which fnmatch passes through untouched, and
    # restored as escaped literals in the resulting regex.
    literals: List[str] = []

    def placeholder(match: "re.Match[str]") -> str:
        literals.append(match.group(1))
        return chr(PLACEHOLDER_BASE + len(literals) - 1)

    regex = fnmatch.translate(re.sub(r"\\(.)", placeholder, pattern, flags=re.DOTALL))
    for i, literal in enumerate(literals):
        regex = regex.replace(chr(PLACEHOLDER_BASE + i), re.escape(literal))
    return regex


def compile_pattern(pattern: str) -> "re.Pattern[str]":
    """
    Compile one wildcard pattern into a regular expression.

    Raises:
        ConfigError: If the pattern is not a string or is malformed
    """
    if not isinstance(pattern, str):
        raise ConfigError(f"Glob pattern must be a string, got {type(pattern).__name__}: {pattern!r}")
    alternatives = _expand_braces(pattern)
    for alternative in alternatives:
        _check_brackets(alternative)
    regex = "|".join(f"(?:{_translate(alt)})" for alt in alternatives)
    try:
        return re.compile(regex)
    except re.error as e:
        raise ConfigError(f"Invalid glob pattern {pattern!r}: {e}") from e


class PatternSet:
    """An immutable set of compiled wildcard patterns."""

    def __init__(self, patterns: Iterable[str] = ()):
        self.patterns: Tuple[str, ...] = tuple(patterns)
        self._compiled = [compile_pattern(p) for p in self.patterns]

    def __bool__(self) -> bool:
        return bool(self.patterns)

    def __len__(self) -> int:
        return len(self.patterns)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PatternSet):
            return NotImplemented
        return type(self) is type(other) and set(self.patterns) == set(other.patterns)

    def __hash__(self) -> int:
        return hash((type(self).__name__, frozenset(self.patterns)))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({list(self.patterns)!r})"

    def match_any(self, value: str) -> bool:
        """True if any pattern matches the whole value."""
        return any(regex.match(value) for regex in self._compiled)


class AddressFilter(PatternSet):
    """
    Wildcard matcher over a list of addresses.

    An empty pattern set never matches. The "list must be empty" meaning of
    an empty set is applied by MessageFilter, not here.
    """

    def matches(self, addresses: Sequence[str]) -> bool:
        if not self.patterns:
            return False
        return any(self.match_any(address) for address in addresses)


class SubjectFilter(PatternSet):
    """Wildcard matcher over a subject line. Empty means match-all."""

    def matches(self, subject: str) -> bool:
        if not self.patterns:
            return True
        return self.match_any(subject)
