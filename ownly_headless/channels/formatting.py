"""
Lightweight markup → minimal HTML for digest mail bodies.

Workspace documents are written in a small markdown dialect.  Mail clients
get a deliberately small HTML subset: headings, bullet/numbered lists,
paragraphs, bold, italic and inline code.  Everything else is HTML-escaped,
so no markup in a document can inject tags or scripts into the mail.
"""

from __future__ import annotations

import html as _html_mod
import re
from typing import cast

# ── Block-level patterns ─────────────────────────────────────────────────────

_HEADING_RE = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")
_BULLET_RE = re.compile(r"^\s*[-*+]\s+(.+)$")
_NUMBERED_RE = re.compile(r"^\s*\d+[.)]\s+(.+)$")

# ── Inline patterns (applied after HTML-escaping) ────────────────────────────

_INLINE_CODE_RE = re.compile(r"`([^`\n]+)`")
_BOLD_RE = re.compile(r"(\*\*|__)(.+?)\1")
_ITALIC_STAR_RE = re.compile(r"(?<![*\w])\*([^*\n]+)\*(?![*\w])")
_ITALIC_UNDERSCORE_RE = re.compile(r"(?<![_\w])_([^_\n]+)_(?![_\w])")

# Tag-stripping regex for the plain-text alternative of a mail.
_HTML_TAG_RE = re.compile(r"<[^>]+>")


def render_inline(text: str) -> str:
    """Escape *text* and convert inline emphasis and code spans.

    Code spans are swapped out for sentinels (\\x02N\\x03) before escaping so
    their contents are never touched by the emphasis passes.
    """
    protected: dict[str, str] = {}

    def _code_repl(m: re.Match) -> str:
        key = f"\x02{len(protected)}\x03"
        protected[key] = f"<code>{_html_mod.escape(m.group(1))}</code>"
        return key

    text = _INLINE_CODE_RE.sub(_code_repl, text)
    text = _html_mod.escape(text)
    # Bold before italic so **bold *and italic*** nests correctly.
    text = _BOLD_RE.sub(lambda m: f"<strong>{m.group(2)}</strong>", text)
    text = _ITALIC_STAR_RE.sub(lambda m: f"<em>{m.group(1)}</em>", text)
    text = _ITALIC_UNDERSCORE_RE.sub(lambda m: f"<em>{m.group(1)}</em>", text)
    for key, span in protected.items():
        text = text.replace(key, span)
    return text


def markdown_to_html(text: str) -> str:
    """
    Convert lightweight markup to a minimal HTML fragment.

    Processing is line-oriented:
      1. ``#``..``######`` headings → <h1>..<h6>
      2. runs of ``-``/``*``/``+`` items → <ul><li>…</li></ul>
      3. runs of ``1.``/``1)`` items → <ol><li>…</li></ol>
      4. other consecutive non-blank lines → one <p>, lines joined by <br>
    Blank lines close the current paragraph or list.
    """
    out: list[str] = []
    paragraph: list[str] = []
    list_tag: str | None = None
    items: list[str] = []

    def _flush_paragraph() -> None:
        if paragraph:
            out.append("<p>" + "<br>\n".join(paragraph) + "</p>")
            paragraph.clear()

    def _flush_list() -> None:
        nonlocal list_tag
        if list_tag is not None:
            body = "".join(f"<li>{item}</li>" for item in items)
            out.append(f"<{list_tag}>{body}</{list_tag}>")
            items.clear()
            list_tag = None

    for line in text.replace("\r\n", "\n").split("\n"):
        if not line.strip():
            _flush_paragraph()
            _flush_list()
            continue

        heading = _HEADING_RE.match(line)
        if heading:
            _flush_paragraph()
            _flush_list()
            level = len(heading.group(1))
            out.append(f"<h{level}>{render_inline(heading.group(2))}</h{level}>")
            continue

        bullet = _BULLET_RE.match(line)
        numbered = None if bullet else _NUMBERED_RE.match(line)
        if bullet or numbered:
            _flush_paragraph()
            tag = "ul" if bullet else "ol"
            if list_tag != tag:
                _flush_list()
                list_tag = tag
            match = cast(re.Match[str], bullet or numbered)
            items.append(render_inline(match.group(1)))
            continue

        _flush_list()
        paragraph.append(render_inline(line.strip()))

    _flush_paragraph()
    _flush_list()
    return "\n".join(out)


def strip_html_tags(text: str) -> str:
    """Remove HTML tags and unescape entities for plain-text mail parts."""
    return _html_mod.unescape(_HTML_TAG_RE.sub("", text))
