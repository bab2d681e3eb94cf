from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .models import POSITION_ENCODINGS
from .rules import Rules, rules_from_dict


@dataclass(frozen=True)
class CheckerConfig:
    provider: str = "languagetool"  # 'languagetool' | 'mock'
    base_url: str = "http://127.0.0.1:8081"
    language: str = "auto"
    timeout_s: float = 60.0
    # Character budget per request; LanguageTool servers reject very large payloads.
    max_chunk_chars: int = 10000
    # Parallel requests per document; results are still mapped in document order.
    concurrency: int = 4
    # Unit of the offsets the service reports: 'utf-16' (LanguageTool/Java) | 'codepoint'
    offset_encoding: str = "utf-16"
    disabled_rules: tuple[str, ...] = ()
    username: str | None = None
    api_key: str | None = None


@dataclass(frozen=True)
class ServerConfig:
    # 'auto' picks utf-32 when the client offers it, else utf-16.
    position_encoding: str = "auto"  # 'auto' | 'utf-16' | 'utf-32'
    workers: int = 2
    log_path: str | None = None


@dataclass(frozen=True)
class AppConfig:
    checker: CheckerConfig = CheckerConfig()
    server: ServerConfig = ServerConfig()
    rules: Rules = Rules()


def _normalize_choice(value: Any, *, field_name: str, allowed: set[str], default: str) -> str:
    raw = str(default if value is None else value).strip().lower()
    if raw not in allowed:
        allowed_list = ", ".join(sorted(allowed))
        raise ValueError(f"Invalid value for {field_name}: {raw!r}. Allowed: {allowed_list}")
    return raw


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    raw = str(value).strip()
    return raw or None


def _resolve_optional_path(base_dir: Path, value: Any) -> str | None:
    raw = _optional_str(value)
    if raw is None:
        return None
    path = Path(raw)
    if not path.is_absolute():
        path = (base_dir / path).resolve()
    return str(path)


def config_from_dict(data: dict[str, Any], *, base_dir: Path | None = None) -> AppConfig:
    base_dir = base_dir or Path.cwd()
    checker_data = data.get("checker", {}) or {}
    server_data = data.get("server", {}) or {}

    max_chunk_chars = int(checker_data.get("max_chunk_chars", 10000))
    if max_chunk_chars < 1:
        raise ValueError(f"checker.max_chunk_chars must be >= 1, got {max_chunk_chars}")
    disabled_rules = checker_data.get("disabled_rules", []) or []
    if isinstance(disabled_rules, str):
        disabled_rules = disabled_rules.split(",")

    checker = CheckerConfig(
        provider=_normalize_choice(
            checker_data.get("provider", "languagetool"),
            field_name="checker.provider",
            allowed={"languagetool", "mock"},
            default="languagetool",
        ),
        base_url=str(checker_data.get("base_url", "http://127.0.0.1:8081")),
        language=str(checker_data.get("language", "auto")).strip() or "auto",
        timeout_s=float(checker_data.get("timeout_s", 60.0)),
        max_chunk_chars=max_chunk_chars,
        concurrency=max(1, int(checker_data.get("concurrency", 4))),
        offset_encoding=_normalize_choice(
            checker_data.get("offset_encoding", "utf-16"),
            field_name="checker.offset_encoding",
            allowed={"utf-16", "codepoint"},
            default="utf-16",
        ),
        disabled_rules=tuple(str(item).strip() for item in disabled_rules if str(item).strip()),
        username=_optional_str(checker_data.get("username")),
        api_key=_optional_str(checker_data.get("api_key")),
    )
    server = ServerConfig(
        position_encoding=_normalize_choice(
            server_data.get("position_encoding", "auto"),
            field_name="server.position_encoding",
            allowed={"auto", *POSITION_ENCODINGS},
            default="auto",
        ),
        workers=max(1, int(server_data.get("workers", 2))),
        log_path=_resolve_optional_path(base_dir, server_data.get("log_path")),
    )
    return AppConfig(checker=checker, server=server, rules=rules_from_dict(data.get("rules")))


def load_config(path: str | Path | None = None) -> AppConfig:
    if path is None:
        return AppConfig()
    cfg_path = Path(path)
    data = yaml.safe_load(cfg_path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config {cfg_path} must contain a mapping at top level")
    return config_from_dict(data, base_dir=cfg_path.parent)
