"""
Handlers of the ``sphsys`` logger for command line runs: a console stream
and an optional run log next to the scene output.
"""
import logging
import sys
from pathlib import Path
from typing import Optional, Union

from sphsys.core.errors import ConfigurationError

PACKAGE_LOGGER = "sphsys"
CONSOLE_FORMAT = "%(asctime)s %(levelname)-7s %(message)s"
RUN_LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s: %(message)s"


def resolve_level(level: Union[int, str]) -> int:
    if isinstance(level, str):
        value = logging.getLevelName(level.upper())
        if not isinstance(value, int):
            raise ConfigurationError(f"unknown log level: {level!r}")
        return value
    return int(level)


def setup_logging(level: Union[int, str] = logging.INFO, log_file: Optional[str] = None) -> logging.Logger:
    """
    Route the package logger to stdout and, with `log_file`, to a run log.

    The console shows `level` and above. The run log keeps DEBUG records as
    well, so per-step diagnostics stay available under a quiet console.
    Handlers installed by an earlier call are closed and replaced.
    """
    console_level = resolve_level(level)
    logger = logging.getLogger(PACKAGE_LOGGER)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(console_level)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt="%H:%M:%S"))
    logger.addHandler(console)
    logger.setLevel(console_level)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        run_log = logging.FileHandler(path, mode="w", encoding="utf-8")
        run_log.setLevel(logging.DEBUG)
        run_log.setFormatter(logging.Formatter(RUN_LOG_FORMAT))
        logger.addHandler(run_log)
        logger.setLevel(min(console_level, logging.DEBUG))

    logger.debug("logging to console at %s%s", logging.getLevelName(console_level),
                 f" and to {log_file}" if log_file else "")
    return logger
