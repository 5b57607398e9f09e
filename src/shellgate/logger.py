"""Structured logging for the server process.

Reads LOG_LEVEL from os.environ directly so logging works before Settings
are loaded (startup errors in config parsing must still be reported).
:func:`set_level` applies ``logging.level`` from Settings afterwards.
"""

from __future__ import annotations

import logging
import os
import sys

import structlog

# asyncssh logs every channel open and close at INFO
_NOISY_LIBRARIES = ("asyncssh",)


def _apply_level(level: int) -> None:
    # structlog's filter_by_level consults the stdlib root logger
    logging.getLogger().setLevel(level)
    for name in _NOISY_LIBRARIES:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def _setup_logging() -> structlog.stdlib.BoundLogger:
    level = getattr(logging, os.environ.get("LOG_LEVEL", "INFO").upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout)
    _apply_level(level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    return structlog.get_logger("shellgate")


logger = _setup_logging()


def set_level(level_name: str) -> None:
    _apply_level(getattr(logging, level_name.upper(), logging.INFO))


def _log_uncaught(
    exc_type: type[BaseException],
    exc_value: BaseException,
    exc_tb: object,
) -> None:
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_tb)  # type: ignore[arg-type]
        return
    logger.critical("Uncaught exception", exc_info=(exc_type, exc_value, exc_tb))
    sys.exit(1)


sys.excepthook = _log_uncaught
