"""TargetIndex: every linkable string in the vault and the notes it names."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

from vaultknife.note import Note


def fold(text: str) -> str:
    """Lower-case *text* without changing its length.

    ``str.lower`` can grow a string (``"İ"`` lowers to two code points), which
    would shift every column after it.  Such characters are kept as-is, so a
    title holding one (``"İzmir"``) only matches prose that spells that
    character the same way; ``"izmir"`` in prose is not a mention of it.
    """
    lowered = text.lower()
    if len(lowered) == len(text):
        return lowered
    return "".join(ch.lower() if len(ch.lower()) == 1 else ch for ch in text)


@dataclass
class LinkTarget:
    """A linkable string and the notes it resolves to."""

    key: str  # folded lookup key
    text: str  # first-registered original casing
    order: int  # registration ordinal, used as the last tie-break
    notes: list[Note] = field(default_factory=list)

    @property
    def is_ambiguous(self) -> bool:
        return len(self.notes) > 1

    @property
    def paths(self) -> tuple[str, ...]:
        return tuple(note.path for note in self.notes)

    def owns(self, note: Note) -> bool:
        return any(n.path == note.path for n in self.notes)


class TargetIndex:
    """Read-only mapping from folded title/alias strings to :class:`LinkTarget`.

    Build it once per run with :func:`build_index`; it is then shared by every
    worker thread without locking.
    """

    def __init__(self) -> None:
        self._targets: dict[str, LinkTarget] = {}

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    def register(self, text: str, note: Note) -> None:
        text = text.strip()
        if not text:
            return
        key = fold(text)
        target = self._targets.get(key)
        if target is None:
            target = LinkTarget(key=key, text=text, order=len(self._targets))
            self._targets[key] = target
        if not target.owns(note):
            target.notes.append(note)

    # ------------------------------------------------------------------
    # Query helpers
    # ------------------------------------------------------------------

    def lookup(self, text: str) -> LinkTarget | None:
        return self._targets.get(fold(text.strip()))

    def targets(self) -> list[LinkTarget]:
        return list(self._targets.values())

    def ambiguous(self) -> list[LinkTarget]:
        return [t for t in self._targets.values() if t.is_ambiguous]

    def __len__(self) -> int:
        return len(self._targets)

    def __iter__(self) -> Iterator[LinkTarget]:
        return iter(self._targets.values())

    def __contains__(self, text: object) -> bool:
        return isinstance(text, str) and fold(text.strip()) in self._targets


def build_index(notes: Iterable[Note], *, learn_from_links: bool = True) -> TargetIndex:
    """Register every note's title and aliases, in the order the notes are given.

    With *learn_from_links*, the display text of each aliased ``[[Target|display]]``
    link is also registered under the note it points at, provided that note
    exists.  Those are registered after all titles and aliases so they never
    change the registration order of a note's own names.
    """
    notes = list(notes)
    index = TargetIndex()
    for note in notes:
        for name in note.names:
            index.register(name, note)

    if learn_from_links:
        by_title: dict[str, Note] = {}
        for note in notes:
            by_title.setdefault(fold(note.title), note)
        for note in notes:
            for link in note.links:
                if not link.is_alias:
                    continue
                linked = by_title.get(fold(link.target))
                if linked is not None:
                    index.register(link.display, linked)
    return index
