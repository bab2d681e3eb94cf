from __future__ import annotations

import threading

from proofmark.models import CodeAction, Diagnostic, Point, Range, TextEdit
from proofmark.store import DiagnosticsStore

URI = "file:///a.typ"


def _entry(start: tuple[int, int], end: tuple[int, int], fix: str = "x"):
    range_ = Range(Point(*start), Point(*end))
    action = CodeAction(title=f"Replace with '{fix}'", uri=URI, edit=TextEdit(range_, fix))
    return Diagnostic(range=range_, message=fix), [action]


def test_put_replaces_whole_list():
    store = DiagnosticsStore()
    store.put(URI, [_entry((1, 1), (1, 3), "a"), _entry((2, 1), (2, 2), "b")])
    store.put(URI, [_entry((3, 1), (3, 2), "c")])
    assert [d.message for d, _ in store.all(URI)] == ["c"]
    assert URI in store
    assert len(store) == 1


def test_actions_covering_is_half_open():
    store = DiagnosticsStore()
    store.put(URI, [_entry((1, 2), (1, 5), "fix")])
    assert store.actions_covering(URI, Point(1, 1)) == []
    assert [a.edit.new_text for a in store.actions_covering(URI, Point(1, 2))] == ["fix"]
    assert [a.edit.new_text for a in store.actions_covering(URI, Point(1, 4))] == ["fix"]
    assert store.actions_covering(URI, Point(1, 5)) == []
    assert store.actions_covering("file:///other.typ", Point(1, 2)) == []


def test_empty_range_covers_its_start():
    store = DiagnosticsStore()
    store.put(URI, [_entry((2, 3), (2, 3), "ins")])
    assert len(store.actions_covering(URI, Point(2, 3))) == 1
    assert store.actions_covering(URI, Point(2, 4)) == []


def test_multiline_range():
    store = DiagnosticsStore()
    store.put(URI, [_entry((1, 8), (3, 2))])
    assert len(store.actions_covering(URI, Point(2, 40))) == 1
    assert store.actions_covering(URI, Point(3, 2)) == []


def test_utf16_lookup_uses_utf16_columns():
    store = DiagnosticsStore()
    range_ = Range(Point(1, 2, utf16_column=3), Point(1, 4, utf16_column=5))
    action = CodeAction(title="t", uri=URI, edit=TextEdit(range_, "y"))
    store.put(URI, [(Diagnostic(range=range_, message="m"), [action])])
    assert store.actions_covering(URI, Point(1, 2, utf16_column=2), "utf-16") == []
    assert store.actions_covering(URI, Point(1, 3, utf16_column=3), "utf-16") == [action]


def test_stale_revision_is_discarded():
    store = DiagnosticsStore()
    store.begin(URI, 1)
    store.begin(URI, 2)
    assert store.put(URI, [_entry((1, 1), (1, 2), "old")], revision=1) is False
    assert store.all(URI) == ()
    assert store.put(URI, [_entry((1, 1), (1, 2), "new")], revision=2) is True
    assert [d.message for d, _ in store.all(URI)] == ["new"]
    store.begin(URI, 1)
    assert store.latest_revision(URI) == 2


def test_drop_forgets_document_and_rejects_late_results():
    store = DiagnosticsStore()
    store.begin(URI, 1)
    store.put(URI, [_entry((1, 1), (1, 2))], revision=1)
    store.drop(URI)
    assert URI not in store
    assert store.put(URI, [_entry((1, 1), (1, 2))], revision=1) is False
    assert store.all(URI) == ()


def test_readers_never_see_partial_lists():
    store = DiagnosticsStore()
    small = [_entry((1, 1), (1, 2), "s")]
    large = [_entry((n, 1), (n, 2), "l") for n in range(1, 200)]
    seen: set[int] = set()
    stop = threading.Event()

    def writer():
        for i in range(300):
            store.put(URI, small if i % 2 else large)
        stop.set()

    def reader():
        while not stop.is_set():
            seen.add(len(store.all(URI)))

    threads = [threading.Thread(target=writer), threading.Thread(target=reader)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert seen <= {0, 1, 199}
