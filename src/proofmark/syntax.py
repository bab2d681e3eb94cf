"""Lossless parser for Typst-flavoured markup.

The tree is only as detailed as prose extraction needs: markup constructs are
recognised, code expressions are kept opaque apart from the content blocks
they carry. Every character of the input ends up in exactly one leaf, so
``parse(text).full_text == text`` for any input.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum


class SyntaxKind(str, Enum):
    MARKUP = "markup"
    TEXT = "text"
    SPACE = "space"
    PARBREAK = "parbreak"
    LINEBREAK = "linebreak"
    ESCAPE = "escape"
    SHORTHAND = "shorthand"
    STRONG = "strong"
    EMPH = "emph"
    HEADING = "heading"
    HEADING_MARKER = "heading_marker"
    LIST_ITEM = "list_item"
    ENUM_ITEM = "enum_item"
    LIST_MARKER = "list_marker"
    RAW = "raw"
    EQUATION = "equation"
    CODE = "code"
    CODE_HEAD = "code_head"
    CONTENT_BLOCK = "content_block"
    BRACKET = "bracket"
    LABEL = "label"
    REF = "ref"
    LINK = "link"
    LINE_COMMENT = "line_comment"
    BLOCK_COMMENT = "block_comment"
    DELIMITER = "delimiter"


CONTAINER_KINDS = frozenset(
    {
        SyntaxKind.MARKUP,
        SyntaxKind.STRONG,
        SyntaxKind.EMPH,
        SyntaxKind.HEADING,
        SyntaxKind.LIST_ITEM,
        SyntaxKind.ENUM_ITEM,
        SyntaxKind.CODE,
        SyntaxKind.CONTENT_BLOCK,
    }
)


@dataclass
class SyntaxNode:
    kind: SyntaxKind
    text: str = ""
    children: list[SyntaxNode] = field(default_factory=list)
    # Callee name for code nodes (``#footnote[...]`` -> "footnote").
    name: str = ""

    @property
    def is_leaf(self) -> bool:
        return not self.children

    @property
    def full_text(self) -> str:
        if self.is_leaf:
            return self.text
        return "".join(leaf.text for leaf in self.leaves())

    def leaves(self) -> Iterator[SyntaxNode]:
        if self.is_leaf:
            yield self
            return
        for child in self.children:
            yield from child.leaves()

    def __len__(self) -> int:
        if self.is_leaf:
            return len(self.text)
        return sum(len(child) for child in self.children)


_SHORTHANDS = {"---": "—", "--": "–", "-?": "", "~": " ", "...": "…"}
_SHORTHAND_RE = re.compile(r"---|--|-\?|~|\.\.\.")
_KEYWORDS = frozenset(
    {"let", "set", "show", "import", "include", "if", "for", "while", "return", "context", "break", "continue"}
)

_WHITESPACE_RE = re.compile(r"\s+")
_PLAIN_RE = re.compile(r"(?:(?!https?://)[^\s\\*_`$#<@/\[\]\-~.])+")
_IDENT_RE = re.compile(r"[A-Za-z_][\w-]*(?:\.[A-Za-z_][\w-]*)*")
_HEADING_RE = re.compile(r"=+(?=[ \t])")
_LIST_RE = re.compile(r"-(?=[ \t])")
_ENUM_RE = re.compile(r"(?:\+|\d+\.)(?=[ \t])")
_LABEL_RE = re.compile(r"<[\w\-:.]+>")
_REF_RE = re.compile(r"@[\w\-]+(?:[:.][\w\-]+)*")
_LINK_RE = re.compile(r"https?://[^\s<>\[\]()\"'`]+")
_BACKTICKS_RE = re.compile(r"`+")


def denote(node: SyntaxNode) -> str:
    """Character an escape or shorthand leaf stands for."""
    if node.kind == SyntaxKind.SHORTHAND:
        return _SHORTHANDS.get(node.text, node.text)
    if node.kind == SyntaxKind.ESCAPE:
        body = node.text[1:]
        if body.startswith("u{") and body.endswith("}"):
            try:
                return chr(int(body[2:-1], 16))
            except ValueError:
                return ""
        return body
    return node.text


def _leaf(kind: SyntaxKind, text: str) -> SyntaxNode:
    return SyntaxNode(kind=kind, text=text)


def _merge_text(nodes: list[SyntaxNode]) -> list[SyntaxNode]:
    out: list[SyntaxNode] = []
    for node in nodes:
        if out and node.kind == SyntaxKind.TEXT and out[-1].kind == SyntaxKind.TEXT and out[-1].is_leaf:
            out[-1] = _leaf(SyntaxKind.TEXT, out[-1].text + node.text)
        else:
            out.append(node)
    return out


class _Parser:
    def __init__(self, text: str) -> None:
        self.text = text
        self.pos = 0
        self.end = len(text)

    def _at_line_start(self) -> bool:
        i = self.pos - 1
        while i >= 0 and self.text[i] in " \t":
            i -= 1
        return i < 0 or self.text[i] == "\n"

    def _delimiter_allowed(self) -> bool:
        return self.pos == 0 or not self.text[self.pos - 1].isalnum()

    def parse_markup(self, stops: str = "", *, line_mode: bool = False, inline: bool = False) -> list[SyntaxNode]:
        nodes: list[SyntaxNode] = []
        depth = 0
        text = self.text
        while self.pos < self.end:
            ch = text[self.pos]
            if ch == "]" and depth > 0:
                depth -= 1
                nodes.append(_leaf(SyntaxKind.TEXT, ch))
                self.pos += 1
                continue
            if ch in stops:
                break

            if ch.isspace():
                m = _WHITESPACE_RE.match(text, self.pos)
                run = m.group(0)
                newlines = run.count("\n")
                if newlines and line_mode:
                    break
                if newlines >= 2 and inline:
                    break
                nodes.append(_leaf(SyntaxKind.PARBREAK if newlines >= 2 else SyntaxKind.SPACE, run))
                self.pos = m.end()
                continue

            if not line_mode and not inline and self._at_line_start():
                block = self._parse_block_item(stops)
                if block is not None:
                    nodes.append(block)
                    continue

            node = self._parse_inline(ch, stops, line_mode)
            if node is not None:
                nodes.append(node)
                continue

            if ch == "[" and "]" in stops:
                depth += 1
            m = _PLAIN_RE.match(text, self.pos)
            if m is not None and m.end() > self.pos:
                nodes.append(_leaf(SyntaxKind.TEXT, m.group(0)))
                self.pos = m.end()
            else:
                nodes.append(_leaf(SyntaxKind.TEXT, ch))
                self.pos += 1
        return _merge_text(nodes)

    def _parse_block_item(self, stops: str) -> SyntaxNode | None:
        for pattern, kind, marker_kind in (
            (_HEADING_RE, SyntaxKind.HEADING, SyntaxKind.HEADING_MARKER),
            (_LIST_RE, SyntaxKind.LIST_ITEM, SyntaxKind.LIST_MARKER),
            (_ENUM_RE, SyntaxKind.ENUM_ITEM, SyntaxKind.LIST_MARKER),
        ):
            m = pattern.match(self.text, self.pos)
            if m is None:
                continue
            self.pos = m.end()
            marker = _leaf(marker_kind, m.group(0))
            body = self.parse_markup(stops, line_mode=True, inline=True)
            return SyntaxNode(kind=kind, children=[marker, *body])
        return None

    def _parse_inline(self, ch: str, stops: str, line_mode: bool) -> SyntaxNode | None:
        text = self.text
        pos = self.pos
        if ch == "\\":
            nxt = text[pos + 1] if pos + 1 < self.end else ""
            if not nxt or nxt.isspace():
                return self._take(SyntaxKind.LINEBREAK, pos + 1)
            if text.startswith("u{", pos + 1):
                close = text.find("}", pos)
                if close >= 0:
                    return self._take(SyntaxKind.ESCAPE, close + 1)
            return self._take(SyntaxKind.ESCAPE, pos + 2)
        if ch in "*_" and self._delimiter_allowed():
            kind = SyntaxKind.STRONG if ch == "*" else SyntaxKind.EMPH
            return self._parse_delimited(kind, ch, stops, line_mode)
        if ch == "`":
            return self._parse_raw()
        if ch == "$":
            return self._parse_equation()
        if ch == "#":
            return self._parse_code()
        if ch == "<":
            m = _LABEL_RE.match(text, pos)
            return self._take(SyntaxKind.LABEL, m.end()) if m else None
        if ch == "@":
            m = _REF_RE.match(text, pos)
            return self._take(SyntaxKind.REF, m.end()) if m else None
        if ch == "h" and self._delimiter_allowed():
            m = _LINK_RE.match(text, pos)
            if m is None:
                return None
            end = m.end()
            while end > pos and text[end - 1] in ".,;:!?":
                end -= 1
            return self._take(SyntaxKind.LINK, end)
        if ch == "/":
            if text.startswith("//", pos):
                newline = text.find("\n", pos)
                return self._take(SyntaxKind.LINE_COMMENT, self.end if newline < 0 else newline)
            if text.startswith("/*", pos):
                return self._take(SyntaxKind.BLOCK_COMMENT, self._block_comment_end(pos))
            return None
        m = _SHORTHAND_RE.match(text, pos)
        if m is not None:
            return self._take(SyntaxKind.SHORTHAND, m.end())
        return None

    def _take(self, kind: SyntaxKind, end: int) -> SyntaxNode:
        node = _leaf(kind, self.text[self.pos : end])
        self.pos = end
        return node

    def _parse_delimited(self, kind: SyntaxKind, delimiter: str, stops: str, line_mode: bool) -> SyntaxNode:
        children = [self._take(SyntaxKind.DELIMITER, self.pos + 1)]
        children.extend(self.parse_markup(stops + delimiter, line_mode=line_mode, inline=True))
        if self.pos < self.end and self.text[self.pos] == delimiter:
            children.append(self._take(SyntaxKind.DELIMITER, self.pos + 1))
        return SyntaxNode(kind=kind, children=children)

    def _parse_raw(self) -> SyntaxNode:
        ticks = len(_BACKTICKS_RE.match(self.text, self.pos).group(0))
        if ticks == 2:
            return self._take(SyntaxKind.RAW, self.pos + 2)
        fence = "`" * ticks if ticks >= 3 else "`"
        close = self.text.find(fence, self.pos + ticks)
        return self._take(SyntaxKind.RAW, self.end if close < 0 else close + len(fence))

    def _parse_equation(self) -> SyntaxNode:
        i = self.pos + 1
        while i < self.end:
            if self.text[i] == "\\":
                i += 2
                continue
            if self.text[i] == "$":
                return self._take(SyntaxKind.EQUATION, i + 1)
            i += 1
        return self._take(SyntaxKind.EQUATION, self.end)

    def _block_comment_end(self, pos: int) -> int:
        depth = 0
        i = pos
        while i < self.end:
            if self.text.startswith("/*", i):
                depth += 1
                i += 2
            elif self.text.startswith("*/", i):
                depth -= 1
                i += 2
                if depth == 0:
                    return i
            else:
                i += 1
        return self.end

    def _skip_string(self, pos: int) -> int:
        i = pos + 1
        while i < self.end:
            if self.text[i] == "\\":
                i += 2
                continue
            if self.text[i] == '"':
                return i + 1
            i += 1
        return self.end

    def _skip_balanced(self, pos: int) -> int:
        """Index after the bracket group opening at ``pos`` (strings respected)."""
        depth = 0
        i = pos
        while i < self.end:
            ch = self.text[i]
            if ch == '"':
                i = self._skip_string(i)
                continue
            if ch in "([{":
                depth += 1
            elif ch in ")]}":
                depth -= 1
                if depth == 0:
                    return i + 1
            i += 1
        return self.end

    def _statement_end(self, pos: int) -> int:
        i = pos
        while i < self.end:
            ch = self.text[i]
            if ch == "\n":
                return i
            if ch == '"':
                i = self._skip_string(i)
            elif ch in "([{":
                i = self._skip_balanced(i)
            else:
                i += 1
        return self.end

    def _parse_code(self) -> SyntaxNode | None:
        start = self.pos
        text = self.text
        m = _IDENT_RE.match(text, start + 1)
        if m is None:
            if start + 1 < self.end and text[start + 1] in "({":
                end = self._skip_balanced(start + 1)
                return SyntaxNode(kind=SyntaxKind.CODE, children=[self._take(SyntaxKind.CODE_HEAD, end)])
            return None
        name = m.group(0)
        if name in _KEYWORDS:
            end = self._statement_end(m.end())
            return SyntaxNode(kind=SyntaxKind.CODE, children=[self._take(SyntaxKind.CODE_HEAD, end)], name=name)

        children: list[SyntaxNode] = []
        self.pos = m.end()
        head_start = start
        while self.pos < self.end and text[self.pos] in "([":
            if text[self.pos] == "(":
                self.pos = self._skip_balanced(self.pos)
                continue
            if self.pos > head_start:
                children.append(_leaf(SyntaxKind.CODE_HEAD, text[head_start : self.pos]))
            children.append(self._parse_content_block())
            head_start = self.pos
        if self.pos > head_start:
            children.append(_leaf(SyntaxKind.CODE_HEAD, text[head_start : self.pos]))
        return SyntaxNode(kind=SyntaxKind.CODE, children=children, name=name)

    def _parse_content_block(self) -> SyntaxNode:
        children = [self._take(SyntaxKind.BRACKET, self.pos + 1)]
        body = self.parse_markup("]")
        if body:
            children.append(SyntaxNode(kind=SyntaxKind.MARKUP, children=body))
        if self.pos < self.end and self.text[self.pos] == "]":
            children.append(self._take(SyntaxKind.BRACKET, self.pos + 1))
        return SyntaxNode(kind=SyntaxKind.CONTENT_BLOCK, children=children)


def parse(text: str) -> SyntaxNode:
    """Parse markup into a lossless tree rooted at a MARKUP node."""
    parser = _Parser(text)
    children = parser.parse_markup()
    # Unbalanced closing brackets at top level stop nothing; the loop always finishes the input.
    return SyntaxNode(kind=SyntaxKind.MARKUP, children=children)
