"""Structlog-based logging for the family graph engine.

The service, cache, SQLite store and CLI log structured events named
``<subject>.<event>`` (``edge.created``, ``union_child.member_skipped``,
``pedigree.cache_hit``). The initial level comes from
``FAMILY_GRAPH_LOG_LEVEL``; request context bound with
``structlog.contextvars.bind_contextvars`` (the CLI binds the command name)
is merged into every event.

Usage:
    from family_graph.logging import configure_logging, get_logger

    configure_logging("DEBUG")
    log = get_logger(__name__)
    log.info("edge.created", parent_id=str(parent_id), child_id=str(child_id))
"""
from __future__ import annotations

import logging
from typing import Literal, get_args

import structlog

from .config import CONFIG

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def configure_logging(level: LogLevel = "INFO") -> None:
    """Configure structlog with JSON output at the given level."""
    logging.basicConfig(format="%(message)s", level=getattr(logging, level))
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level)),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = "family_graph"):
    return structlog.get_logger(name)


configure_logging(CONFIG.log_level if CONFIG.log_level in get_args(LogLevel) else "INFO")
