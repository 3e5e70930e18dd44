"""Multi-pattern matcher over the plain-text scan domain.

All index keys are compiled into a single Aho-Corasick automaton, so scanning
a line costs time linear in its length plus the number of hits, regardless of
how many titles and aliases the vault holds.  Every hit is reported,
including overlapping hits of different lengths ("Ed" inside "Ed Smith");
choosing between them is the resolver's job.
"""

from __future__ import annotations

import threading
import weakref
from collections import deque
from collections.abc import Iterable, Iterator, Sequence

from vaultknife.exclusions import ScanLine
from vaultknife.matches import Occurrence
from vaultknife.targets import LinkTarget, TargetIndex, fold

_APOSTROPHES = ("'", "’")


# ---------------------------------------------------------------------------
# Aho-Corasick automaton
# ---------------------------------------------------------------------------


class PatternAutomaton:
    """Aho-Corasick automaton over a fixed list of patterns.

    Patterns are matched exactly as given; callers fold case on both the
    patterns and the text.  Empty patterns are ignored.
    """

    def __init__(self, patterns: Sequence[str]) -> None:
        self._lengths = [len(p) for p in patterns]
        self._goto: list[dict[str, int]] = [{}]
        self._fail: list[int] = [0]
        self._out: list[list[int]] = [[]]
        for pattern_id, pattern in enumerate(patterns):
            if pattern:
                self._insert(pattern, pattern_id)
        self._link()

    def _insert(self, pattern: str, pattern_id: int) -> None:
        state = 0
        for ch in pattern:
            nxt = self._goto[state].get(ch)
            if nxt is None:
                nxt = len(self._goto)
                self._goto.append({})
                self._fail.append(0)
                self._out.append([])
                self._goto[state][ch] = nxt
            state = nxt
        self._out[state].append(pattern_id)

    def _link(self) -> None:
        queue: deque[int] = deque(self._goto[0].values())
        while queue:
            state = queue.popleft()
            for ch, nxt in self._goto[state].items():
                queue.append(nxt)
                fallback = self._fail[state]
                while fallback and ch not in self._goto[fallback]:
                    fallback = self._fail[fallback]
                target = self._goto[fallback].get(ch, 0)
                self._fail[nxt] = target if target != nxt else 0
                # BFS order guarantees the fail state's outputs are already merged
                self._out[nxt].extend(self._out[self._fail[nxt]])

    @property
    def state_count(self) -> int:
        return len(self._goto)

    def iter_matches(self, text: str, start: int = 0, end: int | None = None) -> Iterator[tuple[int, int, int]]:
        """Yield ``(start, end, pattern_id)`` for every hit inside ``text[start:end]``."""
        stop = len(text) if end is None else end
        goto, fail, out, lengths = self._goto, self._fail, self._out, self._lengths
        state = 0
        for pos in range(start, stop):
            ch = text[pos]
            while state and ch not in goto[state]:
                state = fail[state]
            state = goto[state].get(ch, 0)
            for pattern_id in out[state]:
                yield pos + 1 - lengths[pattern_id], pos + 1, pattern_id


# ---------------------------------------------------------------------------
# Word boundaries
# ---------------------------------------------------------------------------


def _is_word_char(ch: str) -> bool:
    return ch.isalnum() or ch == "_"


def is_word_boundary(line: str, start: int, end: int) -> bool:
    """True when ``line[start:end]`` stands as a whole word.

    A hit followed by a ``'t`` contraction is not a whole word: "Ed't" never
    matches "Ed".  Possessives ("Ed's") still do.
    """
    if start > 0 and _is_word_char(line[start - 1]):
        return False
    if end < len(line):
        if _is_word_char(line[end]):
            return False
        if line[end] in _APOSTROPHES and line[end + 1 : end + 2] in ("t", "T"):
            return False
    return True


# ---------------------------------------------------------------------------
# Matcher
# ---------------------------------------------------------------------------


class Matcher:
    """Finds every indexed title/alias inside a file's scan domain."""

    def __init__(self, index: TargetIndex) -> None:
        self._targets: list[LinkTarget] = index.targets()
        self._automaton = PatternAutomaton([t.key for t in self._targets])

    def find_in_line(self, scan_line: ScanLine, *, file: str = "") -> list[Occurrence]:
        line = scan_line.text
        folded = fold(line)
        hits: list[Occurrence] = []
        for span_start, span_end in scan_line.spans:
            for start, end, pattern_id in self._automaton.iter_matches(folded, span_start, span_end):
                if start < span_start or not is_word_boundary(line, start, end):
                    continue
                hits.append(
                    Occurrence(
                        file=file,
                        line=scan_line.index,
                        start=start,
                        end=end,
                        text=line[start:end],
                        target=self._targets[pattern_id],
                    )
                )
        hits.sort(key=lambda o: (o.start, -o.length, o.target.order))
        return hits

    def find(self, scan_lines: Iterable[ScanLine], *, file: str = "") -> Iterator[Occurrence]:
        """Lazily yield occurrences line by line, left to right within a line."""
        for scan_line in scan_lines:
            yield from self.find_in_line(scan_line, file=file)


_matchers: "weakref.WeakKeyDictionary[TargetIndex, Matcher]" = weakref.WeakKeyDictionary()
_matchers_lock = threading.Lock()


def matcher_for(index: TargetIndex) -> Matcher:
    """Return the (shared) matcher for *index*, building its automaton once."""
    with _matchers_lock:
        matcher = _matchers.get(index)
        if matcher is None:
            matcher = Matcher(index)
            _matchers[index] = matcher
        return matcher


def find_occurrences(scan_lines: Iterable[ScanLine], index: TargetIndex, *, file: str = "") -> Iterator[Occurrence]:
    return matcher_for(index).find(scan_lines, file=file)
