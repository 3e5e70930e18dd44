"""Plain-text scan domain: the parts of each line that may be back-populated.

Excluded from the domain
------------------------
- the YAML front-matter block
- fenced code blocks (a line whose stripped text starts with three backticks
  opens or closes a fence; fence lines themselves are excluded)
- blank lines
- inline code spans between paired backticks
- existing wikilinks ``[[...]]`` and embeds ``![[...]]``, brackets included
- markdown links and images ``[text](url)`` / ``![alt](url)``
- raw ``http(s)://`` URLs, e-mail addresses and ``#tags``

What remains on each line is returned as a list of ``(start, end)`` character
spans; the matcher only ever looks inside those spans.
"""

from __future__ import annotations

import re
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field

_FENCE = "```"

_INLINE_CODE_RE = re.compile(r"(`+)(?:(?!\1).)+?\1")
_WIKILINK_RE = re.compile(r"!?\[\[.*?\]\]")
_MARKDOWN_LINK_RE = re.compile(r"!?\[[^\]]*\]\([^)]*\)")
_RAW_URL_RE = re.compile(r"https?://\S+")
_EMAIL_RE = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
_TAG_RE = re.compile(r"(?<![\w/#])#[\w/-]+")

_EXCLUDED_PATTERNS = (
    _INLINE_CODE_RE,
    _WIKILINK_RE,
    _MARKDOWN_LINK_RE,
    _RAW_URL_RE,
    _EMAIL_RE,
    _TAG_RE,
)


@dataclass(frozen=True)
class ScanLine:
    """One line of a file together with its plain-text spans."""

    index: int  # 0-based line index within the whole file
    text: str
    spans: tuple[tuple[int, int], ...] = field(default_factory=tuple)


# ---------------------------------------------------------------------------
# Line-level helpers
# ---------------------------------------------------------------------------


def excluded_ranges(line: str) -> list[tuple[int, int]]:
    """Return the merged, sorted ranges of *line* that are not plain text."""
    ranges = sorted(
        (m.start(), m.end())
        for pattern in _EXCLUDED_PATTERNS
        for m in pattern.finditer(line)
        if m.end() > m.start()
    )
    merged: list[tuple[int, int]] = []
    for start, end in ranges:
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


def plain_spans(line: str) -> tuple[tuple[int, int], ...]:
    """Complement of :func:`excluded_ranges` within ``[0, len(line))``."""
    spans: list[tuple[int, int]] = []
    cursor = 0
    for start, end in excluded_ranges(line):
        if start > cursor:
            spans.append((cursor, start))
        cursor = max(cursor, end)
    if cursor < len(line):
        spans.append((cursor, len(line)))
    return tuple(spans)


def iter_prose_lines(lines: Sequence[str], frontmatter_line_count: int = 0) -> Iterator[tuple[int, str]]:
    """Yield ``(index, line)`` for every line outside front-matter and code fences."""
    in_fence = False
    for idx, line in enumerate(lines):
        if idx < frontmatter_line_count:
            continue
        if line.strip().startswith(_FENCE):
            in_fence = not in_fence
            continue
        if in_fence:
            continue
        yield idx, line


# ---------------------------------------------------------------------------
# File-level scan domain
# ---------------------------------------------------------------------------


def scan_domain(lines: Sequence[str], frontmatter_line_count: int = 0) -> list[ScanLine]:
    """Build the scan domain for a whole file.

    Lines without any plain text (blank lines, lines made only of links or
    code) are omitted.
    """
    domain: list[ScanLine] = []
    for idx, line in iter_prose_lines(lines, frontmatter_line_count):
        if not line.strip():
            continue
        spans = plain_spans(line)
        if spans:
            domain.append(ScanLine(index=idx, text=line, spans=spans))
    return domain
