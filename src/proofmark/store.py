from __future__ import annotations

from collections.abc import Iterable
from threading import Lock

from .models import CodeAction, Entry, Point


class DiagnosticsStore:
    """Latest diagnostics and quick fixes per document.

    Lists are stored as tuples and swapped whole under the lock, so a reader
    sees either the previous or the new list, never a mix. Revisions registered
    with ``begin`` gate ``put``: a pass started for an older revision than the
    newest known one is discarded when it finishes.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._entries: dict[str, tuple[Entry, ...]] = {}
        self._revisions: dict[str, int] = {}

    def begin(self, uri: str, revision: int) -> None:
        with self._lock:
            latest = self._revisions.get(uri)
            if latest is None or revision >= latest:
                self._revisions[uri] = int(revision)

    def latest_revision(self, uri: str) -> int | None:
        with self._lock:
            return self._revisions.get(uri)

    def put(self, uri: str, entries: Iterable[Entry], revision: int | None = None) -> bool:
        snapshot = tuple(entries)
        with self._lock:
            if revision is not None:
                latest = self._revisions.get(uri)
                # Unknown here means the document was closed while the pass ran.
                if latest is None or revision < latest:
                    return False
            self._entries[uri] = snapshot
        return True

    def all(self, uri: str) -> tuple[Entry, ...]:
        with self._lock:
            return self._entries.get(uri, ())

    def actions_covering(self, uri: str, point: Point, encoding: str = "utf-32") -> list[CodeAction]:
        entries = self.all(uri)
        return [
            action
            for diagnostic, actions in entries
            if diagnostic.range.contains(point, encoding)
            for action in actions
        ]

    def drop(self, uri: str) -> None:
        with self._lock:
            self._entries.pop(uri, None)
            self._revisions.pop(uri, None)

    def __contains__(self, uri: object) -> bool:
        with self._lock:
            return uri in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
