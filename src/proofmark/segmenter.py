from __future__ import annotations

from collections.abc import Iterator
from dataclasses import replace

from .models import Chunk, TextUnit, UnitKind
from .rules import Action, Rules
from .syntax import SyntaxKind, SyntaxNode, denote

DEFAULT_MAX_CHUNK_CHARS = 10000


def _code_units(node: SyntaxNode, rules: Rules) -> Iterator[TextUnit]:
    function = rules.function_rule(node.name) if node.name else None
    if function is None:
        yield TextUnit.markup(node.full_text)
        return

    units: list[TextUnit] = []
    for child in node.children:
        if child.kind == SyntaxKind.CONTENT_BLOCK:
            for part in child.children:
                if part.kind == SyntaxKind.MARKUP:
                    units.extend(iter_units(part, rules))
                else:
                    units.append(TextUnit.markup(part.full_text))
        else:
            units.append(TextUnit.markup(child.full_text))
    if not units:
        return
    first, last = units[0], units[-1]
    if first.kind == UnitKind.MARKUP:
        units[0] = replace(first, interpret_as=function.before + (first.interpret_as or ""))
    if last.kind == UnitKind.MARKUP and len(units) > 1:
        units[-1] = replace(last, interpret_as=(last.interpret_as or "") + function.after)
    elif function.after:
        units.append(TextUnit.markup("", function.after))
    yield from units


def iter_units(node: SyntaxNode, rules: Rules) -> Iterator[TextUnit]:
    """Text units for ``node`` in document order, covering every character once."""
    rule = rules.rule_for(node.kind)
    if rule.action == Action.DESCEND and not node.is_leaf:
        if node.kind == SyntaxKind.CODE:
            yield from _code_units(node, rules)
            return
        for child in node.children:
            yield from iter_units(child, rules)
        return

    source = node.full_text
    if rule.action in (Action.INCLUDE, Action.DESCEND):
        if source:
            yield TextUnit(source)
    elif rule.action == Action.EXCLUDE:
        if source:
            yield TextUnit.markup(source)
    else:
        interpretation = rule.replacement if rule.replacement is not None else denote(node)
        if interpretation == source:
            if source:
                yield TextUnit(source)
        else:
            yield TextUnit.markup(source, interpretation)


class _ChunkBuilder:
    def __init__(self, max_chars: int) -> None:
        self.max_chars = max_chars
        self.current = Chunk()

    def push(self, unit: TextUnit) -> Chunk | None:
        closed: Chunk | None = None
        if len(unit) and self.current.total_length and self.current.total_length + len(unit) > self.max_chars:
            closed = self.current
            self.current = Chunk()
        units = self.current.units
        if units and units[-1].kind == unit.kind:
            units[-1] = units[-1].merge(unit)
        else:
            units.append(unit)
        self.current.total_length += len(unit)
        return closed

    def finish(self) -> Chunk | None:
        if not self.current.units:
            return None
        chunk, self.current = self.current, Chunk()
        return chunk


def segment(root: SyntaxNode, rules: Rules, max_chars: int = DEFAULT_MAX_CHUNK_CHARS) -> Iterator[Chunk]:
    """Split a parsed document into ordered chunks of at most ``max_chars`` characters.

    Chunks close on unit boundaries only; a single unit larger than the budget
    travels alone in an oversized chunk. The chunks' ``total_length`` values add
    up to the document length.
    """
    if max_chars < 1:
        raise ValueError(f"max_chars must be >= 1, got {max_chars}")
    return _segment(root, rules, max_chars)


def _segment(root: SyntaxNode, rules: Rules, max_chars: int) -> Iterator[Chunk]:
    builder = _ChunkBuilder(max_chars)
    for unit in iter_units(root, rules):
        closed = builder.push(unit)
        if closed is not None:
            yield closed
    last = builder.finish()
    if last is not None:
        yield last
