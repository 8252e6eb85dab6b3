from __future__ import annotations

import logging
import time
from collections import deque
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler

from .config import InstallerConfig
from .errors import ConfigError

LOGGER_NAME = "packsync"
FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class LogError(ConfigError):
    pass


def configure_logging(cfg: InstallerConfig, verbose: bool = False, console: Console | None = None) -> logging.Logger:
    """Send ``packsync`` records to the terminal (rich) and to ``cfg.log_file``."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    rich_handler = RichHandler(console=console, show_path=False, markup=False)
    rich_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    logger.addHandler(rich_handler)

    log_path: Path = cfg.log_file
    log_path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
    logger.addHandler(file_handler)

    logger.propagate = False
    return logger


def tail_logs(cfg: InstallerConfig, lines: int = 50, follow: bool = False, poll_interval: float = 0.5) -> None:
    """Echo the last ``lines`` lines of the installer log, then optionally keep following it."""
    log_path: Path = cfg.log_file
    if not log_path.is_file():
        raise LogError(f"No installer log at {log_path}; run an install first.")

    with log_path.open("r", encoding="utf-8", errors="replace") as handle:
        for entry in deque(handle, maxlen=max(lines, 0)):
            typer.echo(entry.rstrip("\n"))
        if not follow:
            return

        while True:
            entry = handle.readline()
            if entry:
                typer.echo(entry.rstrip("\n"))
                continue
            # truncated
            if log_path.stat().st_size < handle.tell():
                handle.seek(0)
            time.sleep(poll_interval)
