from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path

from rich.logging import RichHandler

_PLAIN_FMT = "%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s"


@dataclass(frozen=True)
class LogConfig:
    level: str = "INFO"
    no_color: bool = False
    # Long-running `watch` sessions usually want a file next to the console.
    log_file: str = ""


def setup_logging(cfg: LogConfig) -> None:
    level = getattr(logging, cfg.level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()

    root.addHandler(_console_handler(cfg, level))
    if cfg.log_file:
        path = Path(cfg.log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(path, encoding="utf-8")
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(_PLAIN_FMT))
        root.addHandler(fh)


def _console_handler(cfg: LogConfig, level: int) -> logging.Handler:
    force_no_color = cfg.no_color or os.getenv("NO_COLOR") is not None
    is_tty = sys.stderr.isatty()

    if (not force_no_color) and is_tty:
        handler: logging.Handler = RichHandler(rich_tracebacks=True, show_time=True, show_level=True, show_path=False)
        fmt = "%(message)s"
    else:
        handler = logging.StreamHandler()
        fmt = _PLAIN_FMT

    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt))
    return handler


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
