from __future__ import annotations

from .models import Point


class PositionError(AssertionError):
    """The cursor was asked to move outside the document.

    Chunk lengths are computed from the same text the cursor walks, so this is a
    segmentation or mapping bug; it is never clamped.
    """


def utf16_length(text: str) -> int:
    return len(text) + sum(1 for ch in text if ord(ch) > 0xFFFF)


class Position:
    """Cursor over a document that turns character advances into line/column.

    Line and column are 1-based. ``column`` counts code points, ``utf16_column``
    counts UTF-16 code units for clients that address columns that way.
    """

    __slots__ = ("line", "column", "utf16_column", "_text", "_offset")

    def __init__(self, text: str) -> None:
        self.line = 1
        self.column = 1
        self.utf16_column = 1
        self._text = text
        self._offset = 0

    @property
    def offset(self) -> int:
        return self._offset

    @property
    def remaining(self) -> int:
        return len(self._text) - self._offset

    def advance(self, amount: int) -> None:
        if amount < 0:
            raise PositionError(f"Cannot advance by a negative amount ({amount}) at {self.line}:{self.column}")
        if amount > self.remaining:
            raise PositionError(
                f"Cannot advance by {amount} at {self.line}:{self.column}: only {self.remaining} characters remain"
            )
        if amount == 0:
            return
        end = self._offset + amount
        consumed = self._text[self._offset : end]
        newlines = consumed.count("\n")
        if newlines:
            self.line += newlines
            tail = consumed[consumed.rfind("\n") + 1 :]
            self.column = 1 + len(tail)
            self.utf16_column = 1 + utf16_length(tail)
        else:
            self.column += amount
            self.utf16_column += utf16_length(consumed)
        self._offset = end

    def copy(self) -> Position:
        clone = Position.__new__(Position)
        clone.line = self.line
        clone.column = self.column
        clone.utf16_column = self.utf16_column
        clone._text = self._text
        clone._offset = self._offset
        return clone

    __copy__ = copy

    def point(self) -> Point:
        return Point(line=self.line, column=self.column, utf16_column=self.utf16_column, offset=self._offset)

    def __repr__(self) -> str:
        return f"Position(line={self.line}, column={self.column}, offset={self._offset})"
