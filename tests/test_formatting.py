"""Tests for ownly_headless.channels.formatting — markup → minimal HTML."""

from __future__ import annotations

from ownly_headless.channels.formatting import (
    markdown_to_html,
    render_inline,
    strip_html_tags,
)


class TestRenderInline:
    def test_escapes_html(self) -> None:
        assert render_inline("<script>x</script>") == "&lt;script&gt;x&lt;/script&gt;"

    def test_bold_and_italic(self) -> None:
        assert render_inline("**b** and *i*") == "<strong>b</strong> and <em>i</em>"

    def test_underscore_italic(self) -> None:
        assert render_inline("_i_") == "<em>i</em>"

    def test_snake_case_untouched(self) -> None:
        assert render_inline("some_var_name") == "some_var_name"

    def test_code_span_protected(self) -> None:
        assert render_inline("`**a** <b>`") == "<code>**a** &lt;b&gt;</code>"


class TestMarkdownToHtml:
    def test_headings(self) -> None:
        assert markdown_to_html("# One\n## Two\n###### Six") == (
            "<h1>One</h1>\n<h2>Two</h2>\n<h6>Six</h6>"
        )

    def test_bullet_list(self) -> None:
        assert markdown_to_html("- a\n* b\n+ c") == "<ul><li>a</li><li>b</li><li>c</li></ul>"

    def test_numbered_list(self) -> None:
        assert markdown_to_html("1. a\n2) b") == "<ol><li>a</li><li>b</li></ol>"

    def test_list_type_switch(self) -> None:
        assert markdown_to_html("- a\n1. b") == "<ul><li>a</li></ul>\n<ol><li>b</li></ol>"

    def test_paragraph_lines_joined(self) -> None:
        assert markdown_to_html("line one\nline two\n\nnext") == (
            "<p>line one<br>\nline two</p>\n<p>next</p>"
        )

    def test_no_raw_html_passes_through(self) -> None:
        html = markdown_to_html('<img src=x onerror="alert(1)">')
        assert "<img" not in html
        assert "&lt;img" in html

    def test_hash_without_space_is_text(self) -> None:
        assert markdown_to_html("#hashtag") == "<p>#hashtag</p>"

    def test_crlf_input(self) -> None:
        assert markdown_to_html("# A\r\ntext") == "<h1>A</h1>\n<p>text</p>"

    def test_empty(self) -> None:
        assert markdown_to_html("") == ""


class TestStripHtmlTags:
    def test_strips_and_unescapes(self) -> None:
        assert strip_html_tags("<p>a &amp; <b>b</b></p>") == "a & b"
