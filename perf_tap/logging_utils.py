from __future__ import annotations

import logging

from colorlog import ColoredFormatter

TRACE_LEVEL = 5
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def _trace(self: logging.Logger, message: str, *args: object, **kwargs: object) -> None:
    if self.isEnabledFor(TRACE_LEVEL):
        self._log(TRACE_LEVEL, message, args, **kwargs)


def configure_logging(level: int, log_file: str | None = None) -> None:
    """Colored console logging, plus a plain log file when `log_file` is set."""
    logging.addLevelName(TRACE_LEVEL, "TRACE")
    setattr(logging.Logger, "trace", _trace)

    console = logging.StreamHandler()
    console.setFormatter(
        ColoredFormatter(
            f"%(log_color)s{LOG_FORMAT}",
            log_colors={
                "TRACE": "cyan",
                "DEBUG": "blue",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "red,bg_white",
            },
        )
    )
    handlers: list[logging.Handler] = [console]

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handlers.append(file_handler)

    logging.basicConfig(level=level, handlers=handlers, force=True)


def resolve_log_level(verbosity: int, fallback: str) -> int:
    if verbosity >= 2:
        return TRACE_LEVEL
    if verbosity == 1:
        return logging.DEBUG
    level = logging.getLevelName(fallback.upper())
    return level if isinstance(level, int) else logging.INFO
