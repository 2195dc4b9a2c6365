"""Logging setup for the exporter process."""

import logging

from rich.console import Console
from rich.logging import RichHandler

# LOG_LEVEL also accepts the short trace/warn spellings
LEVEL_ALIASES = {
    "trace": logging.DEBUG,
    "warn": logging.WARNING,
}


def parse_level(name: str) -> int:
    """Map a LOG_LEVEL string to a logging level, defaulting to INFO."""
    name = name.strip().lower()
    if name in LEVEL_ALIASES:
        return LEVEL_ALIASES[name]
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logging(level_name: str = "info", console: Console | None = None) -> int:
    """Route all log records through rich. Returns the numeric level."""
    level = parse_level(level_name)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%Y-%m-%d %H:%M:%S]",
        handlers=[RichHandler(console=console or Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if level <= logging.DEBUG else logging.WARNING)
    return level
