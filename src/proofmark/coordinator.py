from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field

from .config import CheckerConfig
from .languagetool import CheckerClient, CheckerError
from .mapper import map_response
from .models import CheckRequest, CheckResponse, Chunk, Diagnostic, Entry
from .position import Position, PositionError
from .rules import Rules
from .segmenter import segment
from .syntax import SyntaxNode, parse

_logger = logging.getLogger(__name__)

Outcome = CheckResponse | CheckerError


@dataclass
class CheckPass:
    """Everything one document pass produced, ready to be committed."""

    uri: str
    entries: list[Entry] = field(default_factory=list)
    chunks: int = 0
    # One message per chunk whose findings were dropped.
    warnings: list[str] = field(default_factory=list)
    # Language the checker reported for the first chunk it answered.
    language: str | None = None

    @property
    def diagnostics(self) -> list[Diagnostic]:
        return [diagnostic for diagnostic, _ in self.entries]


def build_request(chunk: Chunk, language: str = "auto") -> CheckRequest:
    return CheckRequest(language=language, units=tuple(chunk.units))


def _fetch(client: CheckerClient, request: CheckRequest) -> Outcome:
    try:
        return client.check(request)
    except CheckerError as e:
        return e
    except OSError as e:
        return CheckerError(f"Checker request failed: {e}")


def _sequential(chunks: Iterable[Chunk], client: CheckerClient, language: str) -> Iterator[tuple[Chunk, Outcome]]:
    for chunk in chunks:
        yield chunk, _fetch(client, build_request(chunk, language))


def _concurrent(
    chunks: list[Chunk], client: CheckerClient, language: str, workers: int
) -> Iterator[tuple[Chunk, Outcome]]:
    with ThreadPoolExecutor(max_workers=workers) as ex:
        futures: list[Future[Outcome]] = [
            ex.submit(_fetch, client, build_request(chunk, language)) for chunk in chunks
        ]
        try:
            # Results are consumed in submission order, which is document order.
            for chunk, fut in zip(chunks, futures):
                yield chunk, fut.result()
        finally:
            for fut in futures:
                fut.cancel()


def check_tree(
    root: SyntaxNode,
    text: str,
    *,
    uri: str,
    client: CheckerClient,
    rules: Rules,
    cfg: CheckerConfig,
) -> CheckPass:
    """Check an already parsed document and map every finding onto ``text``.

    Raises CheckAborted when the checker response for some chunk cannot be
    mapped; in that case nothing from the pass is returned.
    """
    chunks = segment(root, rules, cfg.max_chunk_chars)
    if cfg.concurrency > 1:
        chunks = list(chunks)
        outcomes = _concurrent(chunks, client, cfg.language, min(cfg.concurrency, max(1, len(chunks))))
    else:
        outcomes = _sequential(chunks, client, cfg.language)

    result = CheckPass(uri=uri)
    position = Position(text)
    try:
        for index, (chunk, outcome) in enumerate(outcomes):
            result.chunks += 1
            if isinstance(outcome, CheckerError):
                message = f"Chunk {index + 1} of {uri} skipped: {outcome}"
                _logger.warning(message)
                result.warnings.append(message)
                position.advance(chunk.total_length)
                continue
            result.entries.extend(map_response(position, outcome, chunk.total_length, uri))
            if result.language is None:
                result.language = outcome.language
    finally:
        outcomes.close()

    if position.remaining:
        raise PositionError(f"{position.remaining} characters of {uri} were not covered by any chunk")
    _logger.info(
        f"Checked {uri}: language={result.language or '-'}; chunks={result.chunks}; "
        f"diagnostics={len(result.entries)}; skipped={len(result.warnings)}"
    )
    return result


def check_text(
    text: str,
    *,
    uri: str,
    client: CheckerClient,
    rules: Rules,
    cfg: CheckerConfig,
) -> CheckPass:
    return check_tree(parse(text), text, uri=uri, client=client, rules=rules, cfg=cfg)
