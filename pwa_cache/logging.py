from __future__ import annotations

import logging as py_logging
from typing import Optional

import structlog

from pwa_cache.config import LoggingConfig, app_config

# Library loggers that would otherwise log every upstream request and job run.
_CHATTY_LOGGERS = ("httpx", "httpcore", "apscheduler.executors.default")

_configured = False


def _renderer(config: LoggingConfig):
    if config.json:
        return structlog.processors.JSONRenderer(sort_keys=True)
    return structlog.dev.ConsoleRenderer()


def setup_logging(config: Optional[LoggingConfig] = None) -> None:
    """Configure structlog once per process from the ``logging`` config section."""
    global _configured
    if _configured:
        return

    config = config or app_config.logging
    level = getattr(py_logging, str(config.level).upper(), py_logging.INFO)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _renderer(config),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    py_logging.basicConfig(level=level, format="%(message)s")
    for name in _CHATTY_LOGGERS:
        py_logging.getLogger(name).setLevel(max(level, py_logging.WARNING))
    _configured = True


def get_logger(name: str = __name__):
    if not _configured:
        setup_logging()
    return structlog.get_logger(name)


def bind_request_context(**values: object) -> None:
    """Attach per-request fields (trace id, method, url) to every log line."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**values)
