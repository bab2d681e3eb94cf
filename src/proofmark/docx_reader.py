from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Any

from docx.document import Document as DocxDocument
from docx.table import Table, _Cell
from docx.text.hyperlink import Hyperlink
from docx.text.paragraph import Paragraph
from docx.text.run import Run

from .syntax import SyntaxKind, SyntaxNode

_logger = logging.getLogger(__name__)


def _parent_element(parent: Any):
    if isinstance(parent, _Cell):
        return parent._tc
    # Document / Header / Footer
    return parent._element.body if hasattr(parent._element, "body") else parent._element


def iter_block_items(parent: Any) -> Iterator[Paragraph | Table]:
    """Yield Paragraph and Table objects in document order for the given parent.

    Parent can be a Document, _Cell, Header, Footer.
    """
    parent_elm = _parent_element(parent)

    for child in parent_elm.iterchildren():
        tag = child.tag.lower()
        if tag.endswith("}p"):
            yield Paragraph(child, parent)
        elif tag.endswith("}tbl"):
            yield Table(child, parent)


def iter_paragraphs(parent: Any) -> Iterator[Paragraph]:
    """Paragraphs in reading order, descending into table cells row by row."""
    for item in iter_block_items(parent):
        if isinstance(item, Paragraph):
            yield item
            continue
        for row in item.rows:
            seen: set[int] = set()
            for cell in row.cells:
                # Merged cells repeat the same <w:tc> across the grid.
                if id(cell._tc) in seen:
                    continue
                seen.add(id(cell._tc))
                yield from iter_paragraphs(cell)


def _text_nodes(text: str) -> list[SyntaxNode]:
    # python-docx renders <w:br/> as "\n" and <w:tab/> as "\t" in run text.
    nodes: list[SyntaxNode] = []
    for index, piece in enumerate(text.split("\n")):
        if index:
            nodes.append(SyntaxNode(kind=SyntaxKind.LINEBREAK, text="\n"))
        if piece:
            nodes.append(SyntaxNode(kind=SyntaxKind.TEXT, text=piece))
    return nodes


def _run_nodes(run: Run) -> list[SyntaxNode]:
    nodes = _text_nodes(run.text or "")
    if not nodes:
        return []
    if run.bold:
        nodes = [SyntaxNode(kind=SyntaxKind.STRONG, children=nodes)]
    if run.italic:
        nodes = [SyntaxNode(kind=SyntaxKind.EMPH, children=nodes)]
    return nodes


def paragraph_nodes(paragraph: Paragraph) -> list[SyntaxNode]:
    nodes: list[SyntaxNode] = []
    for item in paragraph.iter_inner_content():
        if isinstance(item, Hyperlink):
            nodes.extend(_text_nodes(item.text or ""))
        else:
            nodes.extend(_run_nodes(item))
    return nodes


def docx_to_tree(
    doc: DocxDocument,
    include_headers: bool = False,
    include_footers: bool = False,
) -> SyntaxNode:
    """Build a syntax tree whose text has one line per DOCX paragraph.

    Paragraphs are separated by a single ``"\\n"`` parbreak, so reported line
    numbers count paragraphs (plus manual line breaks). Bold and italic runs
    become strong/emph nodes without delimiters.
    """
    containers: list[Any] = [doc]
    for section in doc.sections:
        if include_headers and not section.header.is_linked_to_previous:
            containers.append(section.header)
        if include_footers and not section.footer.is_linked_to_previous:
            containers.append(section.footer)

    children: list[SyntaxNode] = []
    count = 0
    for container in containers:
        for paragraph in iter_paragraphs(container):
            if count:
                children.append(SyntaxNode(kind=SyntaxKind.PARBREAK, text="\n"))
            children.extend(paragraph_nodes(paragraph))
            count += 1
    _logger.debug(f"DOCX paragraphs: {count}")
    return SyntaxNode(kind=SyntaxKind.MARKUP, children=children)
