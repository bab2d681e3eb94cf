from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

from rich.console import Console, Group
from rich.panel import Panel
from rich.text import Text

from .models import Entry, Severity

# Characters of context shown on either side of a finding.
PRETTY_RANGE = 20

_SEVERITY_STYLE = {
    Severity.ERROR: "bold red",
    Severity.WARN: "bold yellow",
    Severity.INFO: "bold cyan",
    Severity.HINT: "dim",
}


def format_plain(path: Path | str, entries: Sequence[Entry]) -> list[str]:
    """One line per finding: ``<file> <line>:<col>-<line>:<col> <severity> <message>``."""
    lines: list[str] = []
    for diagnostic, _ in entries:
        start, end = diagnostic.range.start, diagnostic.range.end
        lines.append(
            f"{path} {start.line}:{start.column}-{end.line}:{end.column} "
            f"{diagnostic.severity.value} {diagnostic.message}"
        )
    return lines


def _context(text: str, start: int, end: int) -> Text:
    lo = max(0, start - PRETTY_RANGE)
    hi = min(len(text), end + PRETTY_RANGE)
    snippet = Text()
    if lo > 0:
        snippet.append("…", style="dim")
    snippet.append(text[lo:start])
    snippet.append(text[start:end] or "␣", style="bold underline red")
    snippet.append(text[end:hi])
    if hi < len(text):
        snippet.append("…", style="dim")
    return snippet


def render_pretty(console: Console, path: Path | str, text: str, entries: Sequence[Entry]) -> None:
    for diagnostic, actions in entries:
        start, end = diagnostic.range.start, diagnostic.range.end
        match = diagnostic.match
        parts: list[Text] = [
            Text(f"{path}:{start.line}:{start.column}", style="dim"),
            _context(text, start.offset, end.offset),
        ]
        if match is not None and match.short_message:
            parts.append(Text(match.short_message, style="bold"))
        parts.append(Text(diagnostic.message, style=_SEVERITY_STYLE[diagnostic.severity]))
        for action in actions:
            parts.append(Text(f"help: {action.edit.new_text}", style="green"))
        if match is not None:
            for url in match.rule.urls:
                parts.append(Text(f"note: {url}", style="blue"))
        title = diagnostic.code or "finding"
        if match is not None and match.rule.category:
            title = f"{title} ({match.rule.category})"
        if match is not None and match.rule.description:
            title = f"{title}: {match.rule.description}"
        console.print(Panel(Group(*parts), title=title, title_align="left", expand=False))
