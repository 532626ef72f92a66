"""JSON log lines on stderr via structlog.

One line per event, keys sorted, timestamp under ``ts``. Every logger
carries a ``component`` field naming the part of the controller it
belongs to (``watcher``, ``controller.reconciler``, ...).
"""

from __future__ import annotations

import logging
import sys
from typing import cast

import structlog
from structlog.typing import FilteringBoundLogger, Processor

_PROCESSORS: list[Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.processors.add_log_level,
    structlog.processors.StackInfoRenderer(),
    structlog.dev.set_exc_info,
    structlog.processors.format_exc_info,
    structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
    structlog.processors.JSONRenderer(sort_keys=True),
]


def _level_number(name: str) -> int:
    # load_config rejects unknown names before this runs
    return logging.getLevelNamesMapping().get(name.upper(), logging.INFO)


def setup_logging(level: str = "info") -> None:
    """Route all structlog output to stderr at *level* and above."""
    structlog.configure(
        processors=_PROCESSORS,
        wrapper_class=structlog.make_filtering_bound_logger(_level_number(level)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(component: str, **initial: object) -> FilteringBoundLogger:
    """Logger for *component*, with any *initial* fields already bound."""
    return cast(FilteringBoundLogger, structlog.get_logger(component=component, **initial))
