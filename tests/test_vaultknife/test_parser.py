"""Unit tests for vaultknife.parser."""

import textwrap
from pathlib import Path

import pytest

from vaultknife.errors import NoteReadError
from vaultknife.note import Wikilink
from vaultknife.parser import (
    frontmatter_line_count,
    parse_frontmatter,
    parse_note,
    parse_wikilinks,
    string_list,
)

# ---------------------------------------------------------------------------
# parse_frontmatter
# ---------------------------------------------------------------------------


class TestParseFrontmatter:
    def test_no_frontmatter_returns_empty_dict(self):
        meta, body = parse_frontmatter("Just some text.")
        assert meta == {}
        assert body == "Just some text."

    def test_basic_frontmatter(self):
        raw = textwrap.dedent("""\
            ---
            aliases: [brown sugar, white sugar]
            ---
            Body here.
        """)
        meta, body = parse_frontmatter(raw)
        assert meta["aliases"] == ["brown sugar", "white sugar"]
        assert body == "Body here.\n"

    def test_frontmatter_not_at_start_is_ignored(self):
        meta, _ = parse_frontmatter("Intro\n---\ntitle: Nope\n---\nMore text.")
        assert meta == {}

    def test_empty_frontmatter_block(self):
        meta, body = parse_frontmatter("---\n---\nBody.")
        assert meta == {}
        assert body == "Body."

    def test_invalid_yaml_returns_empty_dict(self):
        meta, _ = parse_frontmatter("---\n: broken: yaml:\n---\nBody.")
        # Should not raise; returns a mapping
        assert isinstance(meta, dict)

    def test_non_mapping_yaml_returns_empty_dict(self):
        meta, _ = parse_frontmatter("---\n- a\n- b\n---\nBody.")
        assert meta == {}


class TestFrontmatterLineCount:
    def test_absent(self):
        assert frontmatter_line_count("no frontmatter\n") == 0

    def test_counts_delimiters(self):
        assert frontmatter_line_count("---\na: 1\nb: 2\n---\nbody") == 4

    def test_block_ending_the_file(self):
        assert frontmatter_line_count("---\na: 1\n---") == 3


# ---------------------------------------------------------------------------
# parse_wikilinks
# ---------------------------------------------------------------------------


class TestParseWikilinks:
    def test_single_link(self):
        assert parse_wikilinks("See [[Getting Started]] for details.") == [
            Wikilink("Getting Started", "Getting Started")
        ]

    def test_link_with_alias(self):
        links = parse_wikilinks("See [[index|Home Page]] here.")
        assert links == [Wikilink("index", "Home Page")]
        assert links[0].is_alias

    def test_link_with_heading(self):
        assert parse_wikilinks("Jump to [[guide#Interaction]].") == [Wikilink("guide", "guide")]

    def test_md_suffix_stripped(self):
        assert parse_wikilinks("[[Note.md]]")[0].target == "Note"

    def test_embeds_are_not_links(self):
        assert parse_wikilinks("![[photo.png]] and [[Real]]") == [Wikilink("Real", "Real")]

    def test_deduplication(self):
        assert parse_wikilinks("[[A]] then [[A]] again") == [Wikilink("A", "A")]


class TestStringList:
    def test_list(self):
        assert string_list(["a", " b ", "a", ""]) == ["a", "b"]

    def test_comma_string(self):
        assert string_list("x, y ,z") == ["x", "y", "z"]

    def test_none(self):
        assert string_list(None) == []


# ---------------------------------------------------------------------------
# parse_note
# ---------------------------------------------------------------------------


class TestParseNote:
    def test_full_note(self, tmp_path: Path):
        (tmp_path / "people").mkdir()
        path = tmp_path / "people" / "Ed Smith.md"
        content = textwrap.dedent("""\
            ---
            aliases:
              - Ed
            do_not_back_populate: [Smithy]
            ---
            Works with [[Ed Jones|Jonesy]].
        """)
        path.write_text(content, encoding="utf-8")
        note = parse_note(path, tmp_path)
        assert note.path == "people/Ed Smith.md"
        assert note.title == "Ed Smith"
        assert note.aliases == ["Ed"]
        assert note.do_not_back_populate == ["Smithy"]
        assert note.links == [Wikilink("Ed Jones", "Jonesy")]
        assert note.frontmatter_line_count == 5
        assert note.content == content

    def test_lines_round_trip_without_trailing_newline(self, tmp_path: Path):
        path = tmp_path / "a.md"
        path.write_bytes(b"one\r\ntwo")
        note = parse_note(path, tmp_path)
        assert note.content == "one\r\ntwo"

    def test_invalid_utf8_raises(self, tmp_path: Path):
        path = tmp_path / "bad.md"
        path.write_bytes(b"\xff\xfe\x00bad")
        with pytest.raises(NoteReadError):
            parse_note(path, tmp_path)
