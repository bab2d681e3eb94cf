from __future__ import annotations

import io
import json
import threading
import time

from proofmark.config import AppConfig, ServerConfig
from proofmark.models import CheckRequest, CheckResponse, Match, RuleInfo
from proofmark.server import METHOD_NOT_FOUND, JsonRpcStream, LanguageServer
from proofmark.store import DiagnosticsStore

URI = "file:///doc.typ"


class _TypoClient:
    def __init__(self, delays: dict[str, float] | None = None) -> None:
        self.delays = delays or {}

    def check(self, request: CheckRequest) -> CheckResponse:
        text = request.text
        time.sleep(self.delays.get(text, 0.0))
        offset = text.find("Helo")
        if offset < 0:
            return CheckResponse()
        return CheckResponse(
            matches=(
                Match(
                    offset=offset,
                    length=4,
                    message="Spelling",
                    rule=RuleInfo(id="TYPO", issue_type="misspelling", urls=("https://example.org/t",)),
                    replacements=("Hello",),
                ),
            )
        )


def _frame(payload: dict) -> bytes:
    body = json.dumps(payload).encode("utf-8")
    return b"Content-Length: " + str(len(body)).encode("ascii") + b"\r\n\r\n" + body


def _read_all(data: bytes) -> list[dict]:
    stream = JsonRpcStream(io.BytesIO(data), io.BytesIO())
    messages = []
    while True:
        message = stream.read_message()
        if message is None:
            return messages
        messages.append(message)


def _open(text: str, version: int = 1) -> dict:
    return {
        "jsonrpc": "2.0",
        "method": "textDocument/didOpen",
        "params": {"textDocument": {"uri": URI, "languageId": "typst", "version": version, "text": text}},
    }


def _initialize(encodings: list[str] | None = None) -> dict:
    capabilities = {"general": {"positionEncodings": encodings}} if encodings else {}
    return {"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {"capabilities": capabilities}}


_SHUTDOWN = {"jsonrpc": "2.0", "id": 99, "method": "shutdown"}
_EXIT = {"jsonrpc": "2.0", "method": "exit"}


def _run(messages: list[dict], client=None, config: AppConfig | None = None) -> tuple[int, list[dict]]:
    out = io.BytesIO()
    stream = JsonRpcStream(io.BytesIO(b"".join(_frame(m) for m in messages)), out)
    server = LanguageServer(stream, client=client or _TypoClient(), config=config)
    rc = server.serve()
    return rc, _read_all(out.getvalue())


def _published(messages: list[dict]) -> list[dict]:
    return [m["params"] for m in messages if m.get("method") == "textDocument/publishDiagnostics"]


def test_stream_round_trips_messages():
    out = io.BytesIO()
    JsonRpcStream(io.BytesIO(), out).write_message({"jsonrpc": "2.0", "method": "x", "params": {"t": "é"}})
    assert _read_all(out.getvalue()) == [{"jsonrpc": "2.0", "method": "x", "params": {"t": "é"}}]


def test_open_publishes_diagnostics_with_version():
    rc, messages = _run([_initialize(), _open("Helo world.", version=3), _SHUTDOWN, _EXIT])
    assert rc == 0

    init = next(m for m in messages if m.get("id") == 1)
    capabilities = init["result"]["capabilities"]
    assert capabilities["positionEncoding"] == "utf-16"
    assert capabilities["textDocumentSync"]["change"] == 1
    assert capabilities["codeActionProvider"] == {"codeActionKinds": ["quickfix"]}

    (published,) = _published(messages)
    assert published["uri"] == URI
    assert published["version"] == 3
    (diagnostic,) = published["diagnostics"]
    assert diagnostic["range"] == {"start": {"line": 0, "character": 0}, "end": {"line": 0, "character": 4}}
    assert diagnostic["severity"] == 1
    assert diagnostic["code"] == "TYPO"
    assert diagnostic["codeDescription"] == {"href": "https://example.org/t"}
    assert diagnostic["source"] == "proofmark"

    shutdown = next(m for m in messages if m.get("id") == 99)
    assert shutdown["result"] is None


def test_exit_without_shutdown_is_an_error_exit():
    rc, _ = _run([_initialize(), _EXIT])
    assert rc == 1


def test_position_encoding_negotiation():
    rc, messages = _run([_initialize(["utf-8", "utf-32", "utf-16"]), _SHUTDOWN, _EXIT])
    init = next(m for m in messages if m.get("id") == 1)
    assert init["result"]["capabilities"]["positionEncoding"] == "utf-32"

    config = AppConfig(server=ServerConfig(position_encoding="utf-16"))
    rc, messages = _run([_initialize(["utf-32"]), _SHUTDOWN, _EXIT], config=config)
    init = next(m for m in messages if m.get("id") == 1)
    assert init["result"]["capabilities"]["positionEncoding"] == "utf-16"


def test_utf16_columns_in_published_ranges():
    rc, messages = _run([_initialize(), _open("😀 Helo"), _SHUTDOWN, _EXIT])
    (published,) = _published(messages)
    assert published["diagnostics"][0]["range"]["start"] == {"line": 0, "character": 3}

    rc, messages = _run([_initialize(["utf-32"]), _open("😀 Helo"), _SHUTDOWN, _EXIT])
    (published,) = _published(messages)
    assert published["diagnostics"][0]["range"]["start"] == {"line": 0, "character": 2}


def test_unknown_request_and_requests_after_shutdown():
    rc, messages = _run(
        [
            _initialize(),
            {"jsonrpc": "2.0", "id": 2, "method": "textDocument/hover", "params": {}},
            _SHUTDOWN,
            {"jsonrpc": "2.0", "id": 3, "method": "textDocument/codeAction", "params": {}},
            _EXIT,
        ]
    )
    errors = {m["id"]: m["error"]["code"] for m in messages if "error" in m}
    assert errors[2] == METHOD_NOT_FOUND
    assert errors[3] == -32600


def test_code_action_returns_quick_fixes_covering_cursor():
    out = io.BytesIO()
    server = LanguageServer(JsonRpcStream(io.BytesIO(), out), client=_TypoClient())
    server.store.begin(URI, 1)
    assert server.run_pass(URI, "Say Helo.", 1) is True

    def _actions(character: int) -> list[dict]:
        return server.code_action(
            {
                "textDocument": {"uri": URI},
                "range": {"start": {"line": 0, "character": character}, "end": {"line": 0, "character": character}},
                "context": {"diagnostics": []},
            }
        )

    (action,) = _actions(5)
    assert action["title"] == "Replace with 'Hello'"
    assert action["kind"] == "quickfix"
    (edit,) = action["edit"]["changes"][URI]
    assert edit == {
        "range": {"start": {"line": 0, "character": 4}, "end": {"line": 0, "character": 8}},
        "newText": "Hello",
    }
    assert _actions(8) == []
    assert _actions(3) == []


def test_stale_pass_is_not_published():
    out = io.BytesIO()
    store = DiagnosticsStore()
    server = LanguageServer(JsonRpcStream(io.BytesIO(), out), client=_TypoClient(), store=store)
    store.begin(URI, 1)
    store.begin(URI, 2)
    assert server.run_pass(URI, "Helo old.", 1) is False
    assert server.run_pass(URI, "Fine now.", 2) is True
    assert [p["version"] for p in _published(_read_all(out.getvalue()))] == [2]
    assert store.all(URI) == ()


def test_slow_older_revision_never_overwrites_newer_one():
    change = {
        "jsonrpc": "2.0",
        "method": "textDocument/didChange",
        "params": {"textDocument": {"uri": URI, "version": 2}, "contentChanges": [{"text": "All fine."}]},
    }
    client = _TypoClient(delays={"Helo slow.": 0.3})
    rc, messages = _run([_initialize(), _open("Helo slow.", version=1), change, _SHUTDOWN, _EXIT], client=client)
    published = _published(messages)
    assert [p["version"] for p in published] == [2]
    assert published[0]["diagnostics"] == []


def test_aborted_pass_keeps_previous_results():
    class _Broken:
        def check(self, request):
            return CheckResponse(matches=(Match(offset=0, length=500, message="overrun"),))

    out = io.BytesIO()
    server = LanguageServer(JsonRpcStream(io.BytesIO(), out), client=_TypoClient())
    server.store.begin(URI, 1)
    server.run_pass(URI, "Helo.", 1)
    before = server.store.all(URI)

    server.client = _Broken()
    server.store.begin(URI, 2)
    assert server.run_pass(URI, "Helo again.", 2) is False
    assert server.store.all(URI) == before

    messages = _read_all(out.getvalue())
    shown = [m["params"] for m in messages if m.get("method") == "window/showMessage"]
    assert shown and shown[-1]["type"] == 2
    assert len(_published(messages)) == 1


def test_close_clears_published_diagnostics():
    close = {"jsonrpc": "2.0", "method": "textDocument/didClose", "params": {"textDocument": {"uri": URI}}}
    out = io.BytesIO()
    server = LanguageServer(JsonRpcStream(io.BytesIO(), out), client=_TypoClient())
    server.store.begin(URI, 1)
    server.run_pass(URI, "Helo.", 1)
    server.dispatch(close)
    assert URI not in server.store
    assert _published(_read_all(out.getvalue()))[-1] == {"uri": URI, "diagnostics": []}


def test_malformed_notification_does_not_stop_the_server():
    bad_open = {"jsonrpc": "2.0", "method": "textDocument/didOpen", "params": {}}
    rc, messages = _run([_initialize(), bad_open, _open("Helo."), _SHUTDOWN, _EXIT])
    assert rc == 0
    assert len(_published(messages)) == 1


def test_write_message_is_safe_across_threads():
    out = io.BytesIO()
    stream = JsonRpcStream(io.BytesIO(), out)

    def _send(n: int) -> None:
        for i in range(50):
            stream.write_message({"jsonrpc": "2.0", "method": "m", "params": {"n": n, "i": i}})

    threads = [threading.Thread(target=_send, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(_read_all(out.getvalue())) == 200


def test_server_keeps_the_store_it_is_given():
    store = DiagnosticsStore()
    config = AppConfig(server=ServerConfig(workers=1))
    stream = JsonRpcStream(io.BytesIO(), io.BytesIO())
    server = LanguageServer(stream, client=_TypoClient(), config=config, store=store)
    store.begin(URI, 1)
    assert server.store is store
    assert server.config is config
    assert server.run_pass(URI, "Helo.", 1) is True
    assert len(store.all(URI)) == 1


def test_pass_overtaken_after_commit_does_not_publish():
    class _OvertakingStore(DiagnosticsStore):
        def put(self, uri, entries, revision=None):
            committed = super().put(uri, entries, revision)
            if revision == 1:
                # Revision 2 finishes between this commit and the publish.
                self.begin(uri, 2)
                super().put(uri, [], 2)
            return committed

    out = io.BytesIO()
    store = _OvertakingStore()
    server = LanguageServer(JsonRpcStream(io.BytesIO(), out), client=_TypoClient(), store=store)
    store.begin(URI, 1)
    assert server.run_pass(URI, "Helo.", 1) is False
    assert _published(_read_all(out.getvalue())) == []
    assert store.all(URI) == ()


def test_publish_sends_the_entries_of_its_own_pass():
    out = io.BytesIO()
    store = DiagnosticsStore()
    server = LanguageServer(JsonRpcStream(io.BytesIO(), out), client=_TypoClient(), store=store)
    store.begin(URI, 1)
    server.run_pass(URI, "Helo.", 1)
    store.begin(URI, 2)
    store.put(URI, [], revision=2)
    server.publish(URI, [], 2)
    published = _published(_read_all(out.getvalue()))
    assert [(p["version"], len(p["diagnostics"])) for p in published] == [(1, 1), (2, 0)]
