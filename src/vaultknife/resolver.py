"""Match Resolver: raw occurrences → edits, ambiguity reports and suppressions.

Every occurrence is judged in a fixed order:

1. exclusion zones (do-not-back-populate phrases, ignore-rendered-text strings)
2. self reference
3. ambiguity (the text names more than one note)
4. overlap among the survivors on a line: longest, then leftmost, then the
   target's registration order

Only occurrences that survive all four become ``wikilink-backpopulate``
candidates.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from vaultknife.exclusions import scan_domain
from vaultknife.matcher import find_occurrences
from vaultknife.matches import (
    AmbiguousMatch,
    MatchKind,
    Occurrence,
    ReplaceableMatch,
    SuppressedMatch,
    SuppressReason,
)
from vaultknife.note import Note
from vaultknife.targets import TargetIndex, fold

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exclusion rules
# ---------------------------------------------------------------------------


def _dedupe_phrases(phrases: Iterable[str]) -> tuple[str, ...]:
    seen: dict[str, str] = {}
    for phrase in phrases:
        phrase = phrase.strip()
        if phrase:
            seen.setdefault(fold(phrase), phrase)
    return tuple(seen.values())


class ExclusionRules:
    """Phrases that must never be back-populated, and text to leave alone.

    ``do_not_back_populate`` phrases match case-insensitively as whole words,
    where "whole" only means not touching another word character, so a phrase
    ending in punctuation (``Ed:``) still matches.  ``ignore_rendered_text``
    strings match exactly, case included.
    """

    def __init__(
        self,
        do_not_back_populate: Iterable[str] = (),
        ignore_rendered_text: Iterable[str] = (),
    ) -> None:
        self.do_not_back_populate = _dedupe_phrases(do_not_back_populate)
        self.ignore_rendered_text = tuple(t for t in dict.fromkeys(ignore_rendered_text) if t)
        self._phrase_patterns = [
            re.compile(rf"(?<!\w){re.escape(phrase)}(?!\w)", re.IGNORECASE)
            for phrase in self.do_not_back_populate
        ]

    def with_overrides(self, phrases: Sequence[str]) -> ExclusionRules:
        """Rules for one note: the global list plus the note's own overrides."""
        if not phrases:
            return self
        return ExclusionRules(
            (*self.do_not_back_populate, *phrases),
            self.ignore_rendered_text,
        )

    def excluded_zones(self, line: str) -> list[tuple[int, int]]:
        return [(m.start(), m.end()) for pattern in self._phrase_patterns for m in pattern.finditer(line)]

    def ignored_zones(self, line: str) -> list[tuple[int, int]]:
        zones: list[tuple[int, int]] = []
        for text in self.ignore_rendered_text:
            pos = line.find(text)
            while pos != -1:
                zones.append((pos, pos + len(text)))
                pos = line.find(text, pos + 1)
        return zones

    def __repr__(self) -> str:
        return (
            f"ExclusionRules(do_not_back_populate={list(self.do_not_back_populate)!r}, "
            f"ignore_rendered_text={list(self.ignore_rendered_text)!r})"
        )


def _hits_zone(occurrence: Occurrence, zones: Sequence[tuple[int, int]]) -> bool:
    return any(occurrence.start < end and start < occurrence.end for start, end in zones)


# ---------------------------------------------------------------------------
# Replacement text
# ---------------------------------------------------------------------------


def is_table_row(line: str) -> bool:
    stripped = line.strip()
    return stripped.startswith("|") and stripped.endswith("|") and stripped.count("|") > 2


def link_text(title: str, matched: str, *, in_table: bool = False) -> str:
    """``[[Title]]`` when *matched* is the title verbatim, else ``[[Title|matched]]``."""
    if matched == title:
        return f"[[{title}]]"
    pipe = "\\|" if in_table else "|"
    return f"[[{title}{pipe}{matched}]]"


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


@dataclass
class Resolution:
    applied: list[ReplaceableMatch] = field(default_factory=list)
    ambiguous: list[AmbiguousMatch] = field(default_factory=list)
    suppressed: list[SuppressedMatch] = field(default_factory=list)

    def sort(self) -> Resolution:
        self.applied.sort(key=lambda m: (m.line, m.start))
        self.ambiguous.sort(key=lambda m: (m.line, m.start, m.end))
        self.suppressed.sort(key=lambda m: (m.line, m.start, m.end))
        return self

    def __bool__(self) -> bool:
        return bool(self.applied or self.ambiguous or self.suppressed)


def _suppress(occurrence: Occurrence, reason: SuppressReason) -> SuppressedMatch:
    logger.debug(
        "suppressed %r at %s:%d:%d (%s)",
        occurrence.text,
        occurrence.file,
        occurrence.line + 1,
        occurrence.start,
        reason.value,
    )
    return SuppressedMatch(
        file=occurrence.file,
        line=occurrence.line,
        start=occurrence.start,
        end=occurrence.end,
        text=occurrence.text,
        reason=reason,
    )


def resolve(occurrences: Iterable[Occurrence], note: Note, rules: ExclusionRules) -> Resolution:
    """Resolve every occurrence found in *note* into edits and report records."""
    result = Resolution()
    rules = rules.with_overrides(note.do_not_back_populate)
    survivors: dict[int, list[Occurrence]] = {}
    zones: dict[int, tuple[list[tuple[int, int]], list[tuple[int, int]]]] = {}

    for occ in occurrences:
        line_text = note.lines[occ.line]
        if occ.line not in zones:
            zones[occ.line] = (rules.excluded_zones(line_text), rules.ignored_zones(line_text))
        excluded, ignored = zones[occ.line]

        if _hits_zone(occ, excluded):
            result.suppressed.append(_suppress(occ, SuppressReason.EXCLUDED))
        elif _hits_zone(occ, ignored):
            result.suppressed.append(_suppress(occ, SuppressReason.IGNORED_TEXT))
        elif occ.target.owns(note):
            result.suppressed.append(_suppress(occ, SuppressReason.SELF))
        elif occ.target.is_ambiguous:
            result.ambiguous.append(
                AmbiguousMatch(
                    file=occ.file,
                    line=occ.line,
                    start=occ.start,
                    end=occ.end,
                    text=occ.text,
                    line_text=line_text,
                    candidates=occ.target.paths,
                )
            )
        else:
            survivors.setdefault(occ.line, []).append(occ)

    for line_idx, candidates in survivors.items():
        line_text = note.lines[line_idx]
        in_table = is_table_row(line_text)
        kept: list[Occurrence] = []
        for occ in sorted(candidates, key=lambda o: (-o.length, o.start, o.target.order)):
            if any(occ.start < k.end and k.start < occ.end for k in kept):
                result.suppressed.append(_suppress(occ, SuppressReason.OVERLAP))
                continue
            kept.append(occ)
            title = occ.target.notes[0].title
            result.applied.append(
                ReplaceableMatch(
                    file=occ.file,
                    line=occ.line,
                    start=occ.start,
                    end=occ.end,
                    original=occ.text,
                    replacement=link_text(title, occ.text, in_table=in_table),
                    kind=MatchKind.BACK_POPULATE,
                )
            )
    return result.sort()


def back_populate(note: Note, index: TargetIndex, rules: ExclusionRules) -> Resolution:
    """Scan *note*'s plain text and resolve every indexed mention in it."""
    domain = scan_domain(note.lines, note.frontmatter_line_count)
    return resolve(find_occurrences(domain, index, file=note.path), note, rules)
