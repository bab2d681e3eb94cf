from __future__ import annotations

from pathlib import Path

import pytest
from docx import Document

from proofmark import cli
from proofmark.models import CheckRequest, CheckResponse, Match, RuleInfo

_TYPOS = {"Helo": "Hello", "are": "is"}


class _TypoClient:
    def __init__(self) -> None:
        self.requests: list[CheckRequest] = []

    def check(self, request: CheckRequest) -> CheckResponse:
        self.requests.append(request)
        text = request.text
        matches = []
        for word, fix in _TYPOS.items():
            offset = text.find(f"{word} ")
            if offset >= 0:
                matches.append(
                    Match(
                        offset=offset,
                        length=len(word),
                        message=f"Did you mean '{fix}'?",
                        rule=RuleInfo(id="TYPO", issue_type="misspelling"),
                        replacements=(fix,),
                    )
                )
        return CheckResponse(matches=tuple(sorted(matches, key=lambda m: m.offset)))


def _write(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


def test_cli_check_with_mock_provider_reports_nothing(tmp_path, capsys):
    doc = _write(tmp_path / "doc.typ", "= Title\nHelo world.\n")
    rc = cli.main(["check", str(doc), "--provider", "mock"])
    assert rc == 0
    assert capsys.readouterr().out == ""


def test_cli_check_prints_plain_findings(tmp_path, capsys, monkeypatch):
    client = _TypoClient()
    monkeypatch.setattr(cli, "_client_for", lambda cfg: client)
    doc = _write(tmp_path / "doc.typ", "Helo world.\nThis are bad.")

    rc = cli.main(["check", str(doc)])
    assert rc == 1
    lines = capsys.readouterr().out.splitlines()
    assert lines == [
        f"{doc} 1:1-1:5 error Did you mean 'Hello'?",
        f"{doc} 2:6-2:9 error Did you mean 'is'?",
    ]


def test_cli_overrides_reach_checker_config(tmp_path, monkeypatch):
    seen = {}

    def _fake_client_for(cfg):
        seen["cfg"] = cfg
        return _TypoClient()

    monkeypatch.setattr(cli, "_client_for", _fake_client_for)
    config_path = _write(tmp_path / "config.yaml", "checker:\n  language: en-US\n  concurrency: 3\n")
    doc = _write(tmp_path / "doc.typ", "one two three")

    rc = cli.main(
        [
            "check",
            str(doc),
            "--config",
            str(config_path),
            "--language",
            "de-DE",
            "--max-chunk-chars",
            "4",
        ]
    )
    assert rc == 0
    cfg = seen["cfg"]
    assert cfg.checker.language == "de-DE"
    assert cfg.checker.max_chunk_chars == 4
    assert cfg.checker.concurrency == 3


def test_cli_rejects_zero_chunk_budget(tmp_path):
    doc = _write(tmp_path / "doc.typ", "text")
    with pytest.raises(ValueError):
        cli.main(["check", str(doc), "--provider", "mock", "--max-chunk-chars", "0"])


def test_cli_check_reads_docx(tmp_path, capsys, monkeypatch):
    monkeypatch.setattr(cli, "_client_for", lambda cfg: _TypoClient())
    document = Document()
    document.add_paragraph("Intro line.")
    paragraph = document.add_paragraph("This ")
    paragraph.add_run("are").bold = True
    paragraph.add_run(" bad.")
    path = tmp_path / "report.docx"
    document.save(str(path))

    rc = cli.main(["check", str(path)])
    assert rc == 1
    assert capsys.readouterr().out.splitlines() == [f"{path} 2:6-2:9 error Did you mean 'is'?"]


def test_cli_check_aborts_on_unmappable_response(tmp_path, capsys, monkeypatch):
    class _Broken:
        def check(self, request):
            return CheckResponse(matches=(Match(offset=0, length=999, message="bad"),))

    monkeypatch.setattr(cli, "_client_for", lambda cfg: _Broken())
    doc = _write(tmp_path / "doc.typ", "short text")
    rc = cli.main(["check", str(doc)])
    assert rc == 2
    assert "check aborted" in capsys.readouterr().err


def test_cli_pretty_output_shows_suggestion(tmp_path, capsys, monkeypatch):
    monkeypatch.setattr(cli, "_client_for", lambda cfg: _TypoClient())
    doc = _write(tmp_path / "doc.typ", "Helo world.")
    rc = cli.main(["check", str(doc), "--format", "pretty"])
    assert rc == 1
    out = capsys.readouterr().out
    assert "help: Hello" in out
    assert "TYPO" in out
