"""Candidate edits and match report records.

Everything the rewriting engine produces flows through the types in this
module:

- :class:`Occurrence` : a raw hit of an indexed string inside a line's plain
  text.  Produced by :mod:`vaultknife.matcher`, consumed by
  :mod:`vaultknife.resolver` within the same per-file step.
- :class:`ReplaceableMatch` : a position-exact candidate edit.  Both the
  resolver (wikilink back-population) and the image classifier emit them; the
  applier consumes them.
- :class:`AmbiguousMatch` / :class:`SuppressedMatch` : report-only records
  that never reach the applier.

Columns are character offsets into the line (``str`` indices), never byte
offsets, so multi-byte text stays aligned.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from vaultknife.targets import LinkTarget


# ---------------------------------------------------------------------------
# Kinds
# ---------------------------------------------------------------------------


class MatchKind(str, Enum):
    """Closed set of candidate kinds sharing the ReplaceableMatch shape."""

    BACK_POPULATE = "wikilink-backpopulate"
    IMAGE_REMOVE = "image-remove"
    IMAGE_DUPLICATE_REDIRECT = "image-duplicate-redirect"
    IMAGE_NONRENDERING_REMOVE = "image-nonrendering-remove"

    @property
    def is_image(self) -> bool:
        return self is not MatchKind.BACK_POPULATE

    @property
    def persist_reason(self) -> str:
        """Why a file touched by this kind of edit needs to be written."""
        if self.is_image:
            return "image references updated"
        return "back populated"


class SuppressReason(str, Enum):
    EXCLUDED = "excluded"
    IGNORED_TEXT = "ignored-text"
    SELF = "self"
    OVERLAP = "overlap"


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Occurrence:
    file: str
    line: int  # 0-based index into the file's lines
    start: int
    end: int
    text: str  # matched text in its original casing
    target: "LinkTarget" = field(compare=False, repr=False)

    @property
    def length(self) -> int:
        return self.end - self.start


@dataclass(frozen=True)
class ReplaceableMatch:
    """A position-exact candidate edit on one line of one file."""

    file: str
    line: int
    start: int
    end: int
    original: str
    replacement: str
    kind: MatchKind
    #: ``False`` marks a report-only candidate the applier must ignore.
    applied: bool = True

    @property
    def span(self) -> tuple[int, int]:
        return (self.start, self.end)

    def overlaps(self, other: "ReplaceableMatch") -> bool:
        if self.file != other.file or self.line != other.line:
            return False
        return self.start < other.end and other.start < self.end

    def to_dict(self) -> dict[str, Any]:
        return {
            "file": self.file,
            "line": self.line + 1,
            "start": self.start,
            "end": self.end,
            "original": self.original,
            "replacement": self.replacement,
            "kind": self.kind.value,
            "applied": self.applied,
        }


@dataclass(frozen=True)
class AmbiguousMatch:
    """An occurrence whose text names more than one note; never auto-resolved."""

    file: str
    line: int
    start: int
    end: int
    text: str
    line_text: str
    candidates: tuple[str, ...]  # paths of every note the text could mean

    def to_dict(self) -> dict[str, Any]:
        return {
            "file": self.file,
            "line": self.line + 1,
            "start": self.start,
            "text": self.text,
            "line_text": self.line_text,
            "candidates": list(self.candidates),
        }


@dataclass(frozen=True)
class SuppressedMatch:
    file: str
    line: int
    start: int
    end: int
    text: str
    reason: SuppressReason

    def to_dict(self) -> dict[str, Any]:
        return {
            "file": self.file,
            "line": self.line + 1,
            "start": self.start,
            "text": self.text,
            "reason": self.reason.value,
        }
