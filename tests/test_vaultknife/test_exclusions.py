"""Unit tests for vaultknife.exclusions (the plain-text scan domain)."""

from vaultknife.exclusions import excluded_ranges, plain_spans, scan_domain


def _plain(line: str) -> list[str]:
    return [line[s:e] for s, e in plain_spans(line)]


# ---------------------------------------------------------------------------
# Line level
# ---------------------------------------------------------------------------


class TestPlainSpans:
    def test_whole_line_is_plain(self):
        assert plain_spans("just prose") == ((0, 10),)

    def test_inline_code_excluded(self):
        assert _plain("use `Sugar` here") == ["use ", " here"]

    def test_double_backtick_code_excluded(self):
        assert _plain("a ``x ` y`` b") == ["a ", " b"]

    def test_wikilink_and_embed_excluded(self):
        assert _plain("see [[Sugar|sweet]] and ![[a.png]] ok") == ["see ", " and ", " ok"]

    def test_markdown_link_excluded(self):
        assert _plain("read [Sugar](https://x.org/sugar) now") == ["read ", " now"]

    def test_url_email_and_tag_excluded(self):
        line = "http://sugar.io mail ed@sugar.io #sugar/brown end"
        assert _plain(line) == [" mail ", " ", " end"]

    def test_heading_hash_is_not_a_tag(self):
        assert _plain("# Sugar") == ["# Sugar"]

    def test_ranges_are_merged(self):
        assert excluded_ranges("[[a]]`b`") == [(0, 8)]

    def test_line_of_only_links_has_no_spans(self):
        assert plain_spans("[[a]]") == ()


# ---------------------------------------------------------------------------
# File level
# ---------------------------------------------------------------------------


class TestScanDomain:
    def test_skips_frontmatter_fences_and_blank_lines(self):
        lines = [
            "---",
            "aliases: [Sugar]",
            "---",
            "Sugar one",
            "",
            "```python",
            "Sugar in code",
            "```",
            "Sugar two",
        ]
        domain = scan_domain(lines, frontmatter_line_count=3)
        assert [(s.index, s.text) for s in domain] == [(3, "Sugar one"), (8, "Sugar two")]

    def test_unterminated_fence_hides_rest_of_file(self):
        domain = scan_domain(["a", "```", "b", "c"])
        assert [s.index for s in domain] == [0]

    def test_indented_fence(self):
        domain = scan_domain(["  ```", "hidden", "  ```", "shown"])
        assert [s.text for s in domain] == ["shown"]

    def test_line_made_only_of_links_omitted(self):
        assert scan_domain(["[[Sugar]]", "Sugar"])[0].index == 1
