"""Language server speaking JSON-RPC 2.0 over stdio.

Edits arrive as full-text syncs; every change triggers a complete pass in a
worker thread. Code action requests are answered from the diagnostics store
while passes run.
"""

from __future__ import annotations

import json
import logging
import sys
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, BinaryIO

from . import __version__
from .config import AppConfig
from .coordinator import check_text
from .languagetool import CheckerClient
from .mapper import CheckAborted
from .models import Entry, Point
from .position import PositionError
from .store import DiagnosticsStore

_logger = logging.getLogger(__name__)

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INTERNAL_ERROR = -32603

# window/showMessage types
MESSAGE_ERROR = 1
MESSAGE_WARNING = 2
MESSAGE_INFO = 3

TEXT_DOCUMENT_SYNC_FULL = 1


class JsonRpcStream:
    """``Content-Length`` framed JSON messages over a pair of binary streams."""

    def __init__(self, reader: BinaryIO, writer: BinaryIO) -> None:
        self.reader = reader
        self.writer = writer
        self._write_lock = threading.Lock()

    def read_message(self) -> dict[str, Any] | None:
        """Next message, or None at end of stream. Raises ValueError on a bad frame."""
        length: int | None = None
        while True:
            line = self.reader.readline()
            if not line:
                return None
            line = line.strip()
            if not line:
                if length is None:
                    continue
                break
            name, _, value = line.decode("ascii", errors="replace").partition(":")
            if name.strip().lower() == "content-length":
                length = int(value.strip())
        body = self.reader.read(length)
        if len(body) < length:
            return None
        payload = json.loads(body.decode("utf-8"))
        if not isinstance(payload, dict):
            raise ValueError("JSON-RPC message must be an object")
        return payload

    def write_message(self, payload: dict[str, Any]) -> None:
        body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        with self._write_lock:
            self.writer.write(f"Content-Length: {len(body)}\r\n\r\n".encode("ascii"))
            self.writer.write(body)
            self.writer.flush()


class LanguageServer:
    def __init__(
        self,
        stream: JsonRpcStream,
        *,
        client: CheckerClient,
        config: AppConfig | None = None,
        store: DiagnosticsStore | None = None,
    ) -> None:
        self.stream = stream
        self.client = client
        self.config = config if config is not None else AppConfig()
        self.store = store if store is not None else DiagnosticsStore()
        self.position_encoding = "utf-16"
        self.shutdown_requested = False
        self._executor = ThreadPoolExecutor(max_workers=self.config.server.workers, thread_name_prefix="proofmark")
        self._requests: dict[str, Callable[[dict[str, Any]], Any]] = {
            "initialize": self.initialize,
            "shutdown": self.shutdown,
            "textDocument/codeAction": self.code_action,
        }
        self._notifications: dict[str, Callable[[dict[str, Any]], None]] = {
            "initialized": self.initialized,
            "textDocument/didOpen": self.did_open,
            "textDocument/didChange": self.did_change,
            "textDocument/didSave": self.did_save,
            "textDocument/didClose": self.did_close,
            "workspace/didChangeConfiguration": self._log_event("configuration changed"),
            "workspace/didChangeWorkspaceFolders": self._log_event("workspace folders changed"),
            "workspace/didChangeWatchedFiles": self._log_event("watched files changed"),
        }

    # Transport

    def send_notification(self, method: str, params: dict[str, Any]) -> None:
        self.stream.write_message({"jsonrpc": "2.0", "method": method, "params": params})

    def _send_result(self, msg_id: Any, result: Any) -> None:
        self.stream.write_message({"jsonrpc": "2.0", "id": msg_id, "result": result})

    def _send_error(self, msg_id: Any, code: int, message: str) -> None:
        self.stream.write_message({"jsonrpc": "2.0", "id": msg_id, "error": {"code": code, "message": message}})

    def show_message(self, kind: int, message: str) -> None:
        self.send_notification("window/showMessage", {"type": kind, "message": message})

    def log_message(self, kind: int, message: str) -> None:
        self.send_notification("window/logMessage", {"type": kind, "message": message})

    def serve(self) -> int:
        """Run until ``exit``; returns the process exit code."""
        try:
            while True:
                try:
                    message = self.stream.read_message()
                except (ValueError, UnicodeDecodeError) as e:
                    _logger.warning(f"Dropping malformed message: {e}")
                    self._send_error(None, PARSE_ERROR, f"Parse error: {e}")
                    continue
                if message is None:
                    _logger.info("Input stream closed")
                    return 0 if self.shutdown_requested else 1
                if message.get("method") == "exit":
                    return 0 if self.shutdown_requested else 1
                self.dispatch(message)
        finally:
            self._executor.shutdown(wait=True)

    def dispatch(self, message: dict[str, Any]) -> None:
        method = message.get("method")
        params = message.get("params") or {}
        if "id" not in message:
            handler = self._notifications.get(str(method))
            if handler is None:
                _logger.debug(f"Ignoring notification {method}")
                return
            try:
                handler(params)
            except (KeyError, TypeError, ValueError):
                _logger.exception(f"Notification {method} has malformed params")
            return

        msg_id = message["id"]
        if method is None:
            # A response to a server-initiated request; nothing is waiting on those.
            return
        if self.shutdown_requested and method != "shutdown":
            self._send_error(msg_id, INVALID_REQUEST, "Server is shutting down")
            return
        handler = self._requests.get(str(method))
        if handler is None:
            self._send_error(msg_id, METHOD_NOT_FOUND, f"Method not found: {method}")
            return
        try:
            result = handler(params)
        except (KeyError, TypeError, ValueError) as e:
            _logger.exception(f"Request {method} failed")
            self._send_error(msg_id, INTERNAL_ERROR, f"{method} failed: {e}")
            return
        self._send_result(msg_id, result)

    # Lifecycle

    def _negotiate_encoding(self, params: dict[str, Any]) -> str:
        configured = self.config.server.position_encoding
        if configured != "auto":
            return configured
        offered = ((params.get("capabilities") or {}).get("general") or {}).get("positionEncodings") or []
        return "utf-32" if "utf-32" in offered else "utf-16"

    def initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        self.position_encoding = self._negotiate_encoding(params)
        _logger.info(f"Client initialized; position encoding {self.position_encoding}")
        return {
            "capabilities": {
                "positionEncoding": self.position_encoding,
                "textDocumentSync": {
                    "openClose": True,
                    "change": TEXT_DOCUMENT_SYNC_FULL,
                    "save": {"includeText": False},
                },
                "codeActionProvider": {"codeActionKinds": ["quickfix"]},
                "workspace": {
                    "workspaceFolders": {"supported": True, "changeNotifications": True},
                },
            },
            "serverInfo": {"name": "proofmark", "version": __version__},
        }

    def initialized(self, params: dict[str, Any]) -> None:
        self.log_message(MESSAGE_INFO, "proofmark initialized")

    def shutdown(self, params: dict[str, Any]) -> None:
        self.shutdown_requested = True
        return None

    def _log_event(self, label: str) -> Callable[[dict[str, Any]], None]:
        def _handler(params: dict[str, Any]) -> None:
            _logger.info(label)

        return _handler

    # Documents

    def did_open(self, params: dict[str, Any]) -> None:
        doc = params["textDocument"]
        self.on_change(str(doc["uri"]), str(doc.get("text") or ""), int(doc.get("version") or 0))

    def did_change(self, params: dict[str, Any]) -> None:
        doc = params["textDocument"]
        changes = params.get("contentChanges") or []
        if not changes:
            return
        # Full sync: the last change carries the whole document.
        self.on_change(str(doc["uri"]), str(changes[-1].get("text") or ""), int(doc.get("version") or 0))

    def did_save(self, params: dict[str, Any]) -> None:
        _logger.debug(f"Saved {params.get('textDocument', {}).get('uri')}")

    def did_close(self, params: dict[str, Any]) -> None:
        uri = str(params["textDocument"]["uri"])
        self.store.drop(uri)
        self.send_notification("textDocument/publishDiagnostics", {"uri": uri, "diagnostics": []})

    def on_change(self, uri: str, text: str, version: int) -> None:
        self.store.begin(uri, version)
        future = self._executor.submit(self.run_pass, uri, text, version)
        future.add_done_callback(self._report_crash)

    def _report_crash(self, future: Future[bool]) -> None:
        exc = future.exception()
        if exc is not None:
            _logger.error("Check pass crashed", exc_info=exc)
            self.show_message(MESSAGE_ERROR, f"proofmark: check crashed ({exc})")

    def run_pass(self, uri: str, text: str, version: int) -> bool:
        """Check one revision and publish it unless a newer revision exists."""
        cfg = self.config
        try:
            result = check_text(text, uri=uri, client=self.client, rules=cfg.rules, cfg=cfg.checker)
        except CheckAborted as e:
            _logger.warning(f"Check of {uri} (version {version}) aborted: {e}")
            self.show_message(MESSAGE_WARNING, f"proofmark: check aborted, previous results kept ({e})")
            return False
        except PositionError as e:
            _logger.exception(f"Position mapping failed for {uri} (version {version})")
            self.show_message(MESSAGE_ERROR, f"proofmark: internal position error ({e})")
            return False

        for warning in result.warnings:
            self.log_message(MESSAGE_WARNING, warning)
        if not self.store.put(uri, result.entries, revision=version):
            _logger.info(f"Discarding stale results for {uri} (version {version})")
            return False
        if self.store.latest_revision(uri) != version:
            # A newer revision committed meanwhile and publishes its own list.
            return False
        self.publish(uri, result.entries, version)
        return True

    def publish(self, uri: str, entries: Sequence[Entry], version: int | None = None) -> None:
        diagnostics = [diagnostic.to_lsp(self.position_encoding) for diagnostic, _ in entries]
        params: dict[str, Any] = {"uri": uri, "diagnostics": diagnostics}
        if version is not None:
            params["version"] = version
        self.send_notification("textDocument/publishDiagnostics", params)

    def code_action(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        uri = str(params["textDocument"]["uri"])
        point = Point.from_lsp(params["range"]["start"], self.position_encoding)
        actions = self.store.actions_covering(uri, point, self.position_encoding)
        return [action.to_lsp(self.position_encoding) for action in actions]


def serve_stdio(*, client: CheckerClient, config: AppConfig | None = None) -> int:
    server = LanguageServer(JsonRpcStream(sys.stdin.buffer, sys.stdout.buffer), client=client, config=config)
    return server.serve()
