from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from docx import Document
from rich.console import Console
from tqdm import tqdm

from .config import AppConfig, load_config
from .coordinator import CheckPass, check_tree
from .docx_reader import docx_to_tree
from .languagetool import CheckerClient, build_checker_client
from .logging_utils import setup_logging
from .mapper import CheckAborted
from .output import format_plain, render_pretty
from .server import serve_stdio
from .syntax import SyntaxNode, parse


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="proofmark", description="Grammar and style checks for markup documents.")
    sub = p.add_subparsers(dest="cmd", required=True)

    c = sub.add_parser("check", help="Check files and print findings.")
    c.add_argument("paths", nargs="+", help="Markup (.typ, .txt, ...) or .docx files")
    c.add_argument("--config", "-c", default=None, help="Path to YAML config")
    c.add_argument("--format", choices=["plain", "pretty"], default="plain", help="Output style.")
    c.add_argument("--language", "-l", default=None, help="Override checker language (default: auto).")
    c.add_argument("--provider", choices=["languagetool", "mock"], default=None, help="Override checker provider.")
    c.add_argument("--base-url", default=None, help="Override LanguageTool server URL.")
    c.add_argument("--max-chunk-chars", type=int, default=None, help="Override character budget per request.")
    c.add_argument("--concurrency", type=int, default=None, help="Override parallel requests per document.")
    c.add_argument("--include-headers", action="store_true", help="Also check DOCX headers.")
    c.add_argument("--include-footers", action="store_true", help="Also check DOCX footers.")
    c.add_argument("--log", default=None, help="Also write logs to this file.")
    c.add_argument("--verbose", "-v", action="store_true", help="Log pass details.")

    s = sub.add_parser("serve", help="Run the language server on stdio.")
    s.add_argument("--config", "-c", default=None, help="Path to YAML config")
    s.add_argument("--log", default=None, help="Override server log path.")
    return p


def _apply_overrides(cfg: AppConfig, args: argparse.Namespace) -> AppConfig:
    checker = cfg.checker
    if args.language is not None:
        checker = checker.__class__(**{**checker.__dict__, "language": str(args.language)})
    if args.provider is not None:
        checker = checker.__class__(**{**checker.__dict__, "provider": str(args.provider)})
    if args.base_url is not None:
        checker = checker.__class__(**{**checker.__dict__, "base_url": str(args.base_url)})
    if args.max_chunk_chars is not None:
        if args.max_chunk_chars < 1:
            raise ValueError(f"--max-chunk-chars must be >= 1, got {args.max_chunk_chars}")
        checker = checker.__class__(**{**checker.__dict__, "max_chunk_chars": int(args.max_chunk_chars)})
    if args.concurrency is not None:
        checker = checker.__class__(**{**checker.__dict__, "concurrency": max(1, int(args.concurrency))})
    return cfg.__class__(**{**cfg.__dict__, "checker": checker})


def _client_for(cfg: AppConfig) -> CheckerClient:
    return build_checker_client(
        cfg.checker.provider,
        base_url=cfg.checker.base_url,
        timeout_s=cfg.checker.timeout_s,
        offset_encoding=cfg.checker.offset_encoding,
        disabled_rules=cfg.checker.disabled_rules,
        username=cfg.checker.username,
        api_key=cfg.checker.api_key,
    )


def read_document(
    path: Path,
    *,
    include_headers: bool = False,
    include_footers: bool = False,
) -> tuple[SyntaxNode, str]:
    if path.suffix.lower() == ".docx":
        root = docx_to_tree(Document(str(path)), include_headers=include_headers, include_footers=include_footers)
        return root, root.full_text
    text = path.read_text(encoding="utf-8")
    return parse(text), text


def run_check(args: argparse.Namespace) -> int:
    cfg = _apply_overrides(load_config(args.config), args)
    client = _client_for(cfg)
    console = Console()
    paths = [Path(raw) for raw in args.paths]
    found = 0
    aborted = 0
    for path in tqdm(paths, desc="Check", unit="file", disable=len(paths) < 2):
        root, text = read_document(
            path,
            include_headers=bool(args.include_headers),
            include_footers=bool(args.include_footers),
        )
        try:
            result: CheckPass = check_tree(
                root,
                text,
                uri=path.resolve().as_uri(),
                client=client,
                rules=cfg.rules,
                cfg=cfg.checker,
            )
        except CheckAborted as e:
            print(f"{path}: check aborted: {e}", file=sys.stderr)
            aborted += 1
            continue
        found += len(result.entries)
        if args.format == "pretty":
            render_pretty(console, path, text, result.entries)
        else:
            for line in format_plain(path, result.entries):
                print(line)
    if aborted:
        return 2
    return 1 if found else 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.cmd == "check":
        setup_logging(
            Path(args.log) if args.log else None,
            level=logging.INFO if args.verbose else logging.WARNING,
        )
        return run_check(args)

    if args.cmd == "serve":
        cfg = load_config(args.config)
        log_path = args.log or cfg.server.log_path
        setup_logging(Path(log_path) if log_path else None)
        return serve_stdio(client=_client_for(cfg), config=cfg)

    print(f"Unknown command: {args.cmd}", file=sys.stderr)
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
