# dualsub/nlp/dictionary.py
from __future__ import annotations

import re
from typing import Dict, List, Mapping, Optional

PATTERN_PREFIX = "re:"


class SubstitutionTable:
    """
    Deterministic single-pass replacement table.

    Literal keys match as-is (longest first, so "New York City" wins over
    "New York"); keys prefixed with "re:" are regular expressions. Every key is
    compiled into one alternation and the text is scanned once, so a
    replacement is never itself matched again. Replacement values are literal.
    """

    def __init__(self, entries: Optional[Mapping[str, str]] = None, *, ignore_case: bool = False) -> None:
        self.ignore_case = ignore_case
        self._replacements: Dict[str, str] = {}
        self._literals: Dict[str, str] = {}
        self._regex: Optional[re.Pattern[str]] = None

        alternatives: List[str] = []
        patterns: List[tuple[str, str]] = []
        literals: List[tuple[str, str]] = []
        for key, value in (entries or {}).items():
            key = str(key)
            if not key.strip():
                continue
            if key.startswith(PATTERN_PREFIX):
                patterns.append((key[len(PATTERN_PREFIX):], str(value)))
            else:
                literals.append((key, str(value)))

        flags = re.IGNORECASE if ignore_case else 0
        for i, (pattern, value) in enumerate(patterns):
            try:
                re.compile(pattern, flags)
            except re.error as e:
                raise ValueError(f"invalid substitution pattern {pattern!r}: {e}") from e
            group = f"p{i}"
            # named groups identify which entry matched
            alternatives.append(f"(?P<{group}>{pattern})")
            self._replacements[group] = value

        if literals:
            literals.sort(key=lambda kv: len(kv[0]), reverse=True)
            for key, value in literals:
                self._literals[self._fold(key)] = value
            alternatives.append("(?P<lit>" + "|".join(re.escape(k) for k, _ in literals) + ")")

        if alternatives:
            self._regex = re.compile("|".join(alternatives), flags)

    def _fold(self, text: str) -> str:
        return text.casefold() if self.ignore_case else text

    def __bool__(self) -> bool:
        return self._regex is not None

    def __len__(self) -> int:
        return len(self._replacements) + len(self._literals)

    def _replace(self, m: re.Match[str]) -> str:
        groups = m.groupdict()
        if groups.get("lit") is not None:
            return self._literals.get(self._fold(m.group(0)), m.group(0))
        for group, value in self._replacements.items():
            if groups.get(group) is not None:
                return value
        return m.group(0)

    def apply(self, text: str) -> str:
        if self._regex is None or not text:
            return text
        return self._regex.sub(self._replace, text)
