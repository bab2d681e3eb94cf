from __future__ import annotations

from collections.abc import Sequence

from .models import CheckResponse, CodeAction, Diagnostic, Entry, Match, Range, Severity, TextEdit
from .position import Position


class CheckAborted(RuntimeError):
    """A document pass was abandoned; nothing from it may be published."""


class ProtocolViolation(CheckAborted):
    """The checker answered with matches that cannot be mapped back."""


_ISSUE_SEVERITY = {
    "misspelling": Severity.ERROR,
    "grammar": Severity.WARN,
    "typographical": Severity.WARN,
    "style": Severity.INFO,
    "whitespace": Severity.HINT,
}


def severity_for(match: Match) -> Severity:
    return _ISSUE_SEVERITY.get(match.rule.issue_type.strip().lower(), Severity.INFO)


def validate_matches(matches: Sequence[Match], total_length: int) -> None:
    """Reject responses that would move the cursor backwards or past the chunk."""
    previous_end = 0
    previous_offset = -1
    for index, match in enumerate(matches):
        if match.offset < 0 or match.length < 0:
            raise ProtocolViolation(
                f"Match #{index} has negative offset/length ({match.offset}, {match.length})"
            )
        if match.offset < previous_offset:
            raise ProtocolViolation(f"Match #{index} at offset {match.offset} is out of order")
        if match.offset < previous_end:
            raise ProtocolViolation(
                f"Match #{index} at offset {match.offset} overlaps the previous match ending at {previous_end}"
            )
        if match.offset + match.length > total_length:
            raise ProtocolViolation(
                f"Match #{index} ({match.offset}+{match.length}) overruns the chunk length {total_length}"
            )
        previous_offset = match.offset
        previous_end = match.offset + match.length


def build_actions(uri: str, range_: Range, match: Match) -> list[CodeAction]:
    return [
        CodeAction(
            title=f"Replace with '{replacement}'",
            uri=uri,
            edit=TextEdit(range=range_, new_text=replacement),
        )
        for replacement in match.replacements
    ]


def map_response(position: Position, response: CheckResponse, total_length: int, uri: str) -> list[Entry]:
    """Map one chunk's matches to document ranges, consuming the chunk from ``position``.

    ``position`` must sit at the first character of the chunk and is left on the
    first character after it.
    """
    validate_matches(response.matches, total_length)
    entries: list[Entry] = []
    last = 0
    for match in response.matches:
        position.advance(match.offset - last)
        end = position.copy()
        end.advance(match.length)
        range_ = Range(start=position.point(), end=end.point())
        diagnostic = Diagnostic(
            range=range_,
            message=match.message,
            severity=severity_for(match),
            code=match.rule.id or None,
            match=match,
        )
        entries.append((diagnostic, build_actions(uri, range_, match)))
        last = match.offset
    position.advance(total_length - last)
    return entries
