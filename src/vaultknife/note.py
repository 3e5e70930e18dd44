"""Core Note and Wikilink dataclasses."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Wikilink:
    """An outbound ``[[target]]`` or ``[[target|display]]`` link."""

    target: str
    display: str

    @property
    def is_alias(self) -> bool:
        return self.display != self.target


@dataclass
class Note:
    """A single markdown note in the vault."""

    #: Vault-relative posix path; the note's identity.
    path: str
    title: str
    lines: list[str] = field(default_factory=list)
    aliases: list[str] = field(default_factory=list)
    #: Per-note override of the global do-not-back-populate list.
    do_not_back_populate: list[str] = field(default_factory=list)
    links: list[Wikilink] = field(default_factory=list)
    frontmatter: dict[str, Any] = field(default_factory=dict)
    frontmatter_line_count: int = 0

    @property
    def content(self) -> str:
        """Full file content; ``"\\n".join`` is the exact inverse of the split."""
        return "\n".join(self.lines)

    @property
    def names(self) -> list[str]:
        """Title followed by aliases: every string this note answers to."""
        return [self.title, *self.aliases]

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "title": self.title,
            "aliases": self.aliases,
            "links": [link.target for link in self.links],
            "do_not_back_populate": self.do_not_back_populate,
        }
