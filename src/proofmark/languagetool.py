from __future__ import annotations

import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any, Protocol

from .models import CheckRequest, CheckResponse, Match, RuleInfo

_logger = logging.getLogger(__name__)


class CheckerError(RuntimeError):
    """The checking service failed or answered with something unusable."""


class CheckerClient(Protocol):
    def check(self, request: CheckRequest) -> CheckResponse: ...


def _utf16_to_codepoint_map(text: str) -> list[int] | None:
    """Map UTF-16 offsets to code point offsets; None when they coincide."""
    if all(ord(ch) <= 0xFFFF for ch in text):
        return None
    mapping: list[int] = []
    for index, ch in enumerate(text):
        mapping.append(index)
        if ord(ch) > 0xFFFF:
            # Offsets pointing between a surrogate pair fall back to the pair start.
            mapping.append(index)
    mapping.append(len(text))
    return mapping


def _convert_offsets(offset: int, length: int, mapping: list[int] | None) -> tuple[int, int]:
    if mapping is None:
        return offset, length
    last = len(mapping) - 1
    if offset < 0 or length < 0 or offset + length > last:
        # Left as reported so the mapper rejects it.
        return offset, length
    start = mapping[offset]
    end = mapping[offset + length]
    return start, end - start


def _parse_match(item: Any, mapping: list[int] | None) -> Match:
    if not isinstance(item, dict):
        raise CheckerError(f"Unexpected match entry: {item!r}")
    try:
        offset = int(item["offset"])
        length = int(item["length"])
        message = str(item.get("message") or "")
        rule_data = item.get("rule") or {}
        urls = tuple(
            str(url.get("value") if isinstance(url, dict) else url)
            for url in (rule_data.get("urls") or [])
            if url
        )
        category = rule_data.get("category") or {}
        rule = RuleInfo(
            id=str(rule_data.get("id") or ""),
            description=str(rule_data.get("description") or ""),
            issue_type=str(rule_data.get("issueType") or ""),
            category=str(category.get("id") or "") if isinstance(category, dict) else "",
            urls=urls,
        )
        replacements = tuple(
            str(rep.get("value") if isinstance(rep, dict) else rep)
            for rep in (item.get("replacements") or [])
            if rep is not None
        )
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise CheckerError(f"Malformed match in checker response: {item!r}") from e
    offset, length = _convert_offsets(offset, length, mapping)
    return Match(
        offset=offset,
        length=length,
        message=message,
        rule=rule,
        replacements=replacements,
        short_message=str(item.get("shortMessage") or ""),
    )


def parse_check_response(payload: Any, *, utf16_text: str | None = None) -> CheckResponse:
    """Turn a LanguageTool ``/v2/check`` payload into a CheckResponse.

    When ``utf16_text`` is given, offsets are read as UTF-16 code units into that
    text and converted to code points.
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("matches"), list):
        raise CheckerError(f"Unexpected checker response schema: {str(payload)[:300]}")
    mapping = _utf16_to_codepoint_map(utf16_text) if utf16_text is not None else None
    matches = tuple(_parse_match(item, mapping) for item in payload["matches"])
    language = payload.get("language")
    detected = None
    if isinstance(language, dict):
        detected_data = language.get("detectedLanguage") or {}
        detected = str(detected_data.get("code") or language.get("code") or "") or None
    return CheckResponse(matches=matches, language=detected)


@dataclass(frozen=True)
class LanguageToolClient:
    """Client for the HTTP API of a LanguageTool server.

    A premium account can be used through ``username``/``api_key``.
    """

    base_url: str = "http://127.0.0.1:8081"
    timeout_s: float = 60.0
    offset_encoding: str = "utf-16"
    disabled_rules: tuple[str, ...] = ()
    username: str | None = None
    api_key: str | None = None

    def _form(self, request: CheckRequest) -> dict[str, str]:
        form = {
            "language": request.language,
            "data": json.dumps(request.data(), ensure_ascii=False),
        }
        if self.disabled_rules:
            form["disabledRules"] = ",".join(self.disabled_rules)
        if self.username and self.api_key:
            form["username"] = self.username
            form["apiKey"] = self.api_key
        return form

    def check(self, request: CheckRequest) -> CheckResponse:
        url = f"{self.base_url.rstrip('/')}/v2/check"
        req = urllib.request.Request(
            url=url,
            data=urllib.parse.urlencode(self._form(request)).encode("utf-8"),
            headers={
                "Content-Type": "application/x-www-form-urlencoded",
                "Accept": "application/json",
            },
            method="POST",
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_s) as resp:
                raw = resp.read().decode("utf-8")
        except urllib.error.HTTPError as e:
            body = e.read().decode("utf-8", errors="replace") if hasattr(e, "read") else ""
            raise CheckerError(f"LanguageTool HTTPError {e.code}: {body.strip()[:300]}") from e
        except (urllib.error.URLError, OSError) as e:
            raise CheckerError(f"LanguageTool request failed: {e}") from e

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as e:
            raise CheckerError("LanguageTool response is not valid JSON") from e
        utf16_text = request.text if self.offset_encoding == "utf-16" else None
        response = parse_check_response(payload, utf16_text=utf16_text)
        _logger.debug(f"LanguageTool: {len(response.matches)} matches for {len(request.text)} chars")
        return response


class MockCheckerClient:
    """Offline client: never reports anything."""

    def check(self, request: CheckRequest) -> CheckResponse:
        return CheckResponse(matches=(), language=request.language)


def build_checker_client(
    provider: str,
    *,
    base_url: str | None = None,
    timeout_s: float = 60.0,
    offset_encoding: str = "utf-16",
    disabled_rules: tuple[str, ...] = (),
    username: str | None = None,
    api_key: str | None = None,
) -> CheckerClient:
    provider_norm = provider.strip().lower()
    if provider_norm == "mock":
        return MockCheckerClient()
    if provider_norm == "languagetool":
        return LanguageToolClient(
            base_url=base_url or "http://127.0.0.1:8081",
            timeout_s=timeout_s,
            offset_encoding=offset_encoding,
            disabled_rules=tuple(disabled_rules),
            username=username,
            api_key=api_key,
        )
    raise ValueError(f"Unknown checker provider: {provider}")
