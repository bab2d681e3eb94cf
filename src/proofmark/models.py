from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

# Column units understood by LSP clients ("utf-32" counts code points).
POSITION_ENCODINGS = ("utf-16", "utf-32")


class Severity(str, Enum):
    ERROR = "error"
    WARN = "warn"
    INFO = "info"
    HINT = "hint"

    @property
    def lsp_value(self) -> int:
        return {"error": 1, "warn": 2, "info": 3, "hint": 4}[self.value]


class UnitKind(str, Enum):
    TEXT = "text"
    MARKUP = "markup"


@dataclass(frozen=True)
class TextUnit:
    """A span of document text and how the checker should treat it.

    ``text`` is always the verbatim source slice, so unit lengths add up to the
    number of document characters they cover. Markup units are skipped by the
    checker and read as ``interpret_as`` for grammar purposes.
    """

    text: str
    kind: UnitKind = UnitKind.TEXT
    interpret_as: Optional[str] = None

    @classmethod
    def markup(cls, text: str, interpret_as: str = "") -> TextUnit:
        return cls(text=text, kind=UnitKind.MARKUP, interpret_as=interpret_as)

    def __len__(self) -> int:
        return len(self.text)

    def merge(self, other: TextUnit) -> TextUnit:
        if self.kind != other.kind:
            raise ValueError(f"Cannot merge {self.kind.value} unit with {other.kind.value} unit")
        if self.kind == UnitKind.TEXT:
            return TextUnit(self.text + other.text)
        return TextUnit.markup(self.text + other.text, (self.interpret_as or "") + (other.interpret_as or ""))

    def to_annotation(self) -> dict[str, str]:
        if self.kind == UnitKind.TEXT:
            return {"text": self.text}
        return {"markup": self.text, "interpretAs": self.interpret_as or ""}


@dataclass
class Chunk:
    """Units submitted as one checker request.

    ``total_length`` counts every document character the chunk covers, markup
    included, so the position cursor can be advanced past the chunk whatever the
    checker returned for it.
    """

    units: list[TextUnit] = field(default_factory=list)
    total_length: int = 0

    @property
    def text(self) -> str:
        return "".join(unit.text for unit in self.units)


@dataclass(frozen=True)
class RuleInfo:
    id: str
    description: str = ""
    issue_type: str = ""
    category: str = ""
    urls: tuple[str, ...] = ()


@dataclass(frozen=True)
class Match:
    offset: int
    length: int
    message: str
    rule: RuleInfo = RuleInfo(id="")
    replacements: tuple[str, ...] = ()
    short_message: str = ""


@dataclass(frozen=True)
class CheckRequest:
    language: str
    units: tuple[TextUnit, ...]

    @property
    def text(self) -> str:
        return "".join(unit.text for unit in self.units)

    def data(self) -> dict[str, Any]:
        return {"annotation": [unit.to_annotation() for unit in self.units]}


@dataclass(frozen=True)
class CheckResponse:
    matches: tuple[Match, ...] = ()
    language: str | None = None


@dataclass(frozen=True, order=True)
class Point:
    """1-based line/column in document coordinates.

    Ordering uses (line, column); ``utf16_column`` and the absolute character
    ``offset`` ride along for protocol conversion and console context.
    """

    line: int
    column: int
    utf16_column: int = field(default=0, compare=False)
    offset: int = field(default=0, compare=False)

    def key(self, encoding: str = "utf-32") -> tuple[int, int]:
        if encoding == "utf-16":
            return (self.line, self.utf16_column or self.column)
        return (self.line, self.column)

    def to_lsp(self, encoding: str = "utf-16") -> dict[str, int]:
        line, column = self.key(encoding)
        return {"line": line - 1, "character": column - 1}

    @classmethod
    def from_lsp(cls, payload: dict[str, Any], encoding: str = "utf-16") -> Point:
        line = int(payload["line"]) + 1
        column = int(payload["character"]) + 1
        if encoding == "utf-16":
            return cls(line=line, column=column, utf16_column=column)
        return cls(line=line, column=column, utf16_column=0)


@dataclass(frozen=True)
class Range:
    start: Point
    end: Point

    def contains(self, point: Point, encoding: str = "utf-32") -> bool:
        """Half-open containment; an empty range contains only its start."""
        start = self.start.key(encoding)
        end = self.end.key(encoding)
        probe = point.key(encoding)
        if start == end:
            return probe == start
        return start <= probe < end

    def to_lsp(self, encoding: str = "utf-16") -> dict[str, Any]:
        return {"start": self.start.to_lsp(encoding), "end": self.end.to_lsp(encoding)}


@dataclass(frozen=True)
class TextEdit:
    range: Range
    new_text: str

    def to_lsp(self, encoding: str = "utf-16") -> dict[str, Any]:
        return {"range": self.range.to_lsp(encoding), "newText": self.new_text}


@dataclass(frozen=True)
class CodeAction:
    """Quick fix replacing one diagnostic range with one suggestion."""

    title: str
    uri: str
    edit: TextEdit
    is_preferred: bool = True

    def to_lsp(self, encoding: str = "utf-16") -> dict[str, Any]:
        return {
            "title": self.title,
            "kind": "quickfix",
            "isPreferred": self.is_preferred,
            "edit": {"changes": {self.uri: [self.edit.to_lsp(encoding)]}},
        }


@dataclass(frozen=True)
class Diagnostic:
    range: Range
    message: str
    severity: Severity = Severity.INFO
    code: str | None = None
    source: str = "proofmark"
    # The checker finding this diagnostic was built from (console rendering).
    match: Match | None = field(default=None, compare=False, repr=False)

    def to_lsp(self, encoding: str = "utf-16") -> dict[str, Any]:
        payload: dict[str, Any] = {
            "range": self.range.to_lsp(encoding),
            "message": self.message,
            "severity": self.severity.lsp_value,
            "source": self.source,
        }
        if self.code:
            payload["code"] = self.code
        if self.match is not None and self.match.rule.urls:
            payload["codeDescription"] = {"href": self.match.rule.urls[0]}
        return payload


Entry = tuple[Diagnostic, list[CodeAction]]
