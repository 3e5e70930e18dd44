"""Replaceable-Match Applier: one position-exact rewrite pass per file.

Candidates from every producer (back-population and image cleanup) meet
here.  Per line they are sorted by start column and spliced in; the text
outside the spans is copied through untouched.  Conflicts are never
resolved here: intersecting spans or a span that no longer holds its
recorded ``original`` text reject the whole file.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from vaultknife.matches import ReplaceableMatch


@dataclass(frozen=True)
class RejectedOverlap:
    """Two applied candidates on the same line intersect."""

    file: str
    line: int
    first: ReplaceableMatch
    second: ReplaceableMatch

    @property
    def reason(self) -> str:
        return (
            f"overlapping edits on line {self.line + 1}: "
            f"{self.first.kind.value} {self.first.span} vs {self.second.kind.value} {self.second.span}"
        )

    def to_dict(self) -> dict[str, Any]:
        return {"file": self.file, "line": self.line + 1, "reason": self.reason}


@dataclass(frozen=True)
class RejectedSpan:
    """A candidate's span is out of range or does not hold its ``original`` text."""

    file: str
    line: int
    candidate: ReplaceableMatch

    @property
    def reason(self) -> str:
        return f"stale edit on line {self.line + 1} at {self.candidate.span}: expected {self.candidate.original!r}"

    def to_dict(self) -> dict[str, Any]:
        return {"file": self.file, "line": self.line + 1, "reason": self.reason}


Rejection = RejectedOverlap | RejectedSpan


def _by_line(candidates: Iterable[ReplaceableMatch]) -> dict[int, list[ReplaceableMatch]]:
    grouped: dict[int, list[ReplaceableMatch]] = {}
    for candidate in candidates:
        if candidate.applied:
            grouped.setdefault(candidate.line, []).append(candidate)
    for line_candidates in grouped.values():
        # identical candidates collapse into one
        unique = list(dict.fromkeys(line_candidates))
        unique.sort(key=lambda c: (c.start, c.end))
        line_candidates[:] = unique
    return grouped


def apply(original_lines: Sequence[str], candidates: Iterable[ReplaceableMatch]) -> list[str] | Rejection:
    """Return new lines with every applied candidate spliced in, or a rejection.

    *original_lines* is never mutated.
    """
    grouped = _by_line(candidates)
    new_lines = list(original_lines)

    for line_idx in sorted(grouped):
        line_candidates = grouped[line_idx]
        if not 0 <= line_idx < len(original_lines):
            return RejectedSpan(line_candidates[0].file, line_idx, line_candidates[0])
        line = original_lines[line_idx]

        for prev, nxt in zip(line_candidates, line_candidates[1:]):
            if prev.overlaps(nxt) or (prev.start == nxt.start and prev.end == nxt.end):
                return RejectedOverlap(prev.file, line_idx, prev, nxt)
        for candidate in line_candidates:
            if not 0 <= candidate.start <= candidate.end <= len(line) or line[candidate.start : candidate.end] != candidate.original:
                return RejectedSpan(candidate.file, line_idx, candidate)

        parts: list[str] = []
        cursor = 0
        for candidate in line_candidates:
            parts.append(line[cursor : candidate.start])
            parts.append(candidate.replacement)
            cursor = candidate.end
        parts.append(line[cursor:])
        new_lines[line_idx] = "".join(parts)

    return new_lines


def apply_to_text(text: str, candidates: Iterable[ReplaceableMatch]) -> str | Rejection:
    """:func:`apply` over ``"\\n"``-separated content."""
    result = apply(text.split("\n"), candidates)
    if isinstance(result, list):
        return "\n".join(result)
    return result
