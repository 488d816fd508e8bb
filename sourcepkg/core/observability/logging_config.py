"""
Logging setup for the CLI.

Stage outcomes are logged by the controller under ``sourcepkg.*`` at
INFO; state serialisation and adapter dispatch at DEBUG. The console
level comes from the CLI flags, then ``SOURCEPKG_LOG_LEVEL``, then
WARNING. ``SOURCEPKG_LOG_FILE`` adds a file log with its own level.
"""

from __future__ import annotations

import logging
import os
import sys

LOG_LEVEL_ENV = "SOURCEPKG_LOG_LEVEL"
LOG_FILE_ENV = "SOURCEPKG_LOG_FILE"
LOG_FILE_LEVEL_ENV = "SOURCEPKG_LOG_FILE_LEVEL"

# level threshold -> (format, datefmt); WARNING and up print the bare message
_CONSOLE_FORMATS: dict[int, tuple[str, str | None]] = {
    logging.DEBUG: ("%(asctime)s %(levelname)-5s %(name)s:%(lineno)d  %(message)s", "%H:%M:%S"),
    logging.INFO: ("%(asctime)s [%(name)s] %(message)s", "%H:%M:%S"),
}
_FILE_FORMAT = ("%(asctime)s %(levelname)-5s %(name)s:%(lineno)d  %(message)s", "%Y-%m-%d %H:%M:%S")


def resolve_level(debug: bool = False, verbose: bool = False, quiet: bool = False) -> str:
    """Console level name from CLI flags, falling back to the environment."""
    if debug:
        return "DEBUG"
    if verbose:
        return "INFO"
    if quiet:
        return "ERROR"
    return os.environ.get(LOG_LEVEL_ENV, "WARNING")


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
) -> None:
    """Replace the root handlers with a stderr handler and an optional file.

    ``log_file_level`` defaults to ``level``. The root logger is set to the
    lower of the two so the file can capture more than the console shows.
    """
    console_level = _parse_level(level)
    fmt, datefmt = _console_format(console_level)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(logging.Formatter(fmt, datefmt=datefmt))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)
    root_level = console_level

    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else console_level
        handler = logging.FileHandler(log_file, encoding="utf-8")
        handler.setLevel(file_level)
        handler.setFormatter(logging.Formatter(*_FILE_FORMAT))
        root.addHandler(handler)
        root_level = min(root_level, file_level)

    root.setLevel(root_level)
    logging.raiseExceptions = False


def _console_format(level: int) -> tuple[str, str | None]:
    for threshold in sorted(_CONSOLE_FORMATS):
        if level <= threshold:
            return _CONSOLE_FORMATS[threshold]
    return "%(message)s", None


def _parse_level(level: str | None) -> int:
    """Level name to its numeric value; unknown names mean WARNING."""
    numeric = getattr(logging, (level or "").upper(), None)
    return numeric if isinstance(numeric, int) else logging.WARNING
