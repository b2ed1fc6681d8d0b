"""
Source-Mapped Markdown Converter
================================

Convert Markdown into an HTML body where every block-level element carries a
``data-source-line`` attribute holding the 1-based line its source span starts on.

markdown-it-py does the parsing; its render rules are the per-block hooks.
A fresh ``SourceLineCounter`` is threaded through each render call via the
markdown-it ``env`` mapping, so concurrent conversions never share state.
"""

import re
from typing import Any, Dict, List, Optional, Sequence

from markdown_it import MarkdownIt
from markdown_it.common.utils import escapeHtml, unescapeAll
from markdown_it.token import Token

from mdbuf.config.logging import get_logger

logger = get_logger(__name__)

SOURCE_LINE_ATTR = "data-source-line"
DIAGRAM_LANGUAGE = "mermaid"
DIAGRAM_CLASS = "mermaid"

_ENV_KEY = "source_line_counter"
_NEWLINES_RE = re.compile(r"\r\n?")

# Blocks whose children are converted recursively; their span is consumed on close.
CONTAINER_BLOCKS = ("bullet_list", "ordered_list", "blockquote", "table")
# Blocks whose whole span is consumed when they are emitted.
LEAF_BLOCKS = ("paragraph", "heading")


class SourceLineCounter:
    """Line counter for a single conversion pass.

    Starts at 1 and only moves forward, by the number of newlines in each raw
    source span consumed. Blank lines between blocks are consumed without being
    annotated.
    """

    def __init__(self, source: str):
        self._source = source
        # Offset of the first character of every line.
        self._line_offsets = [0] + [m.end() for m in re.finditer("\n", source)]
        self._open_spans: List[int] = []
        self.line = 1

    def _offset(self, line_index: int) -> int:
        if line_index < len(self._line_offsets):
            return self._line_offsets[line_index]
        return len(self._source)

    def raw_span(self, begin: int, end: int) -> str:
        """Source text of 0-based lines ``[begin, end)``."""
        return self._source[self._offset(begin) : self._offset(end)]

    def _consume(self, begin: int, end: int) -> None:
        if end > begin:
            self.line += self.raw_span(begin, end).count("\n")

    def _skip_to(self, begin: int) -> None:
        # Lines before ``begin`` that no block claimed (blank separators).
        self._consume(self.line - 1, begin)

    def claim(self, token: Token) -> int:
        """Read the start line of a leaf block and consume its span."""
        line = self.line
        if token.map:
            begin, end = token.map
            self._skip_to(begin)
            line = self.line
            self._consume(max(begin, line - 1), end)
        return line

    def open(self, token: Token) -> int:
        """Read the start line of a container block; its span is consumed on close."""
        if token.map:
            begin, end = token.map
            self._skip_to(begin)
            self._open_spans.append(end)
        else:
            self._open_spans.append(-1)
        return self.line

    def close(self) -> None:
        """Consume whatever remains of the innermost open container."""
        end = self._open_spans.pop() if self._open_spans else -1
        if end >= 0:
            self._skip_to(end)


def escape_code(text: str) -> str:
    """Escape code block text, ``&`` first so generated entities are left alone."""
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
    )


def _counter(env: Dict[str, Any]) -> SourceLineCounter:
    counter = env.get(_ENV_KEY)
    if counter is None:
        raise RuntimeError("Render environment has no source line counter")
    return counter


def _annotate(token: Token, line: int) -> None:
    if not token.hidden:
        token.attrSet(SOURCE_LINE_ATTR, str(line))


def _render_leaf_open(
    self: Any, tokens: Sequence[Token], idx: int, options: Any, env: Dict[str, Any]
) -> str:
    token = tokens[idx]
    _annotate(token, _counter(env).claim(token))
    return self.renderToken(tokens, idx, options, env)


def _render_container_open(
    self: Any, tokens: Sequence[Token], idx: int, options: Any, env: Dict[str, Any]
) -> str:
    token = tokens[idx]
    _annotate(token, _counter(env).open(token))
    return self.renderToken(tokens, idx, options, env)


def _render_container_close(
    self: Any, tokens: Sequence[Token], idx: int, options: Any, env: Dict[str, Any]
) -> str:
    _counter(env).close()
    return self.renderToken(tokens, idx, options, env)


def _render_hr(
    self: Any, tokens: Sequence[Token], idx: int, options: Any, env: Dict[str, Any]
) -> str:
    token = tokens[idx]
    line = _counter(env).claim(token)
    return f'<hr {SOURCE_LINE_ATTR}="{line}" />\n'


def _render_code(
    self: Any, tokens: Sequence[Token], idx: int, options: Any, env: Dict[str, Any]
) -> str:
    """Render fenced and indented code blocks."""
    token = tokens[idx]
    line = _counter(env).claim(token)

    info = unescapeAll(token.info).strip() if token.info else ""
    language = info.split(maxsplit=1)[0] if info else ""

    # Diagram source stays raw so the Mermaid script can parse it after load
    if language == DIAGRAM_LANGUAGE:
        return f'<pre class="{DIAGRAM_CLASS}" {SOURCE_LINE_ATTR}="{line}">{token.content}</pre>\n'

    code_class = f' class="language-{escapeHtml(language)}"' if language else ""
    return (
        f'<pre {SOURCE_LINE_ATTR}="{line}"><code{code_class}>'
        f"{escape_code(token.content)}</code></pre>\n"
    )


def create_markdown_parser() -> MarkdownIt:
    """Create a markdown-it parser with the source-mapping render rules installed."""
    md = MarkdownIt("commonmark", {"html": True, "breaks": False})
    md.enable(["table", "strikethrough"])

    for name in LEAF_BLOCKS:
        md.add_render_rule(f"{name}_open", _render_leaf_open)
    for name in CONTAINER_BLOCKS:
        md.add_render_rule(f"{name}_open", _render_container_open)
        md.add_render_rule(f"{name}_close", _render_container_close)
    md.add_render_rule("hr", _render_hr)
    md.add_render_rule("fence", _render_code)
    md.add_render_rule("code_block", _render_code)
    return md


class SourceMappedConverter:
    """Markdown to annotated HTML converter.

    The parser is shared between calls; all per-call state lives in the
    ``env`` mapping created by :meth:`convert`.
    """

    def __init__(self, parser: Optional[MarkdownIt] = None):
        self.parser = parser or create_markdown_parser()

    def convert(self, markdown: str) -> str:
        """
        Convert Markdown to an HTML body with source line annotations.

        Args:
            markdown: Markdown source text

        Returns:
            HTML body string
        """
        source = _NEWLINES_RE.sub("\n", markdown)
        counter = SourceLineCounter(source)
        html = self.parser.render(source, {_ENV_KEY: counter})

        logger.debug(
            "Markdown converted",
            source_length=len(source),
            html_length=len(html),
            last_line=counter.line,
        )
        return html


_default_converter: Optional[SourceMappedConverter] = None


def markdown_to_html(markdown: str) -> str:
    """Convert Markdown to annotated HTML using the shared converter."""
    global _default_converter
    if _default_converter is None:
        _default_converter = SourceMappedConverter()
    return _default_converter.convert(markdown)
