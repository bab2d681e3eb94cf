from __future__ import annotations

import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler


def setup_logging(log_path: Path | None = None, level: int = logging.INFO, *, stderr: bool = True) -> logging.Logger:
    """Configure root logger with rich console handler and optional file handler.

    The console goes to stderr by default: stdout carries check results and, in
    server mode, the protocol stream.
    """
    handlers: list[logging.Handler] = [
        RichHandler(
            console=Console(stderr=stderr),
            rich_tracebacks=True,
            show_path=False,
            show_time=True,
            show_level=True,
        )
    ]
    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_path, encoding="utf-8")
        fh.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s", "%Y-%m-%d %H:%M:%S")
        )
        handlers.append(fh)

    logging.basicConfig(level=level, handlers=handlers, format="%(message)s", force=True)
    return logging.getLogger("proofmark")
