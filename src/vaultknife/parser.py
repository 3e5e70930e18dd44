"""WikiLink and YAML-frontmatter parser."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

import yaml

from vaultknife.errors import NoteReadError
from vaultknife.note import Note, Wikilink

# [[Target]], [[Target|Alias]], [[Target#Heading|Alias]]; ![[embeds]] are images, not links
_WIKILINK_RE = re.compile(r"(?<!!)\[\[([^\]|#]+)(?:#[^\]|]*)?(?:\|([^\]]*))?\]\]")
# YAML front-matter block; the closing delimiter may end the file
_FRONTMATTER_RE = re.compile(r"\A---[ \t]*\r?\n(?:(.*?)\r?\n)??---[ \t]*(?:\r?\n|\Z)", re.DOTALL)

_MD_SUFFIX = ".md"


def _frontmatter_match(content: str) -> re.Match[str] | None:
    return _FRONTMATTER_RE.match(content)


def parse_frontmatter(content: str) -> tuple[dict[str, Any], str]:
    """Split YAML front-matter from body text.

    Returns ``(metadata_dict, body)``; ``metadata_dict`` is empty when there
    is no front-matter block or when it does not hold a YAML mapping.
    """
    match = _frontmatter_match(content)
    if not match:
        return {}, content
    try:
        meta = yaml.safe_load(match.group(1) or "") or {}
    except yaml.YAMLError:
        meta = {}
    if not isinstance(meta, dict):
        meta = {}
    return meta, content[match.end() :]


def frontmatter_line_count(content: str) -> int:
    """Number of lines the front-matter block occupies, delimiters included."""
    match = _frontmatter_match(content)
    if not match:
        return 0
    block = match.group(0)
    return block.count("\n") + (0 if block.endswith("\n") else 1)


def strip_md_suffix(name: str) -> str:
    return name[: -len(_MD_SUFFIX)] if name.lower().endswith(_MD_SUFFIX) else name


def parse_wikilinks(text: str) -> list[Wikilink]:
    """Return all ``[[WikiLink]]`` references found in *text* (de-duped, ordered)."""
    seen: set[Wikilink] = set()
    result: list[Wikilink] = []
    for m in _WIKILINK_RE.finditer(text):
        target = strip_md_suffix(m.group(1).strip())
        if not target:
            continue
        display = (m.group(2) or "").strip() or target
        link = Wikilink(target=target, display=display)
        if link not in seen:
            seen.add(link)
            result.append(link)
    return result


def string_list(value: Any) -> list[str]:
    """Coerce a frontmatter value into an ordered, de-duplicated list of strings.

    Accepts a YAML list or a comma-separated string; blank entries are dropped.
    """
    if value is None:
        return []
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = [str(v) for v in value if v is not None]
    else:
        items = [str(value)]
    return list(dict.fromkeys(item.strip() for item in items if item.strip()))


def read_note_text(path: Path) -> str:
    """Read a note as UTF-8, raising :class:`NoteReadError` on any failure."""
    try:
        return path.read_bytes().decode("utf-8")
    except UnicodeDecodeError as exc:
        raise NoteReadError(str(path), f"not valid UTF-8 ({exc.reason})") from exc
    except OSError as exc:
        raise NoteReadError(str(path), exc.strerror or str(exc)) from exc


def parse_note(path: Path, vault_root: Path) -> Note:
    """Read a ``.md`` file and return a fully-populated :class:`Note`."""
    content = read_note_text(path)
    frontmatter, body = parse_frontmatter(content)

    return Note(
        path=path.relative_to(vault_root).as_posix(),
        title=path.stem,
        lines=content.split("\n"),
        aliases=string_list(frontmatter.get("aliases")),
        do_not_back_populate=string_list(frontmatter.get("do_not_back_populate")),
        links=parse_wikilinks(body),
        frontmatter=frontmatter,
        frontmatter_line_count=frontmatter_line_count(content),
    )
