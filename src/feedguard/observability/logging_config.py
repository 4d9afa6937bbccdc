"""Structlog setup for processes embedding FeedGuard.

Every module logs through ``structlog.get_logger(__name__)``; the host process
calls ``configure_logging()`` (or ``configure_from_settings()``) once at
startup. Raw URLs passed under a ``url`` key are replaced by their hash before
rendering, and stdlib records from ``httpx``/``httpcore`` share the pipeline.
"""
from __future__ import annotations

import logging
import sys
from typing import IO, Any

import structlog

from feedguard.config import LoggingSettings
from feedguard.observability.audit import hash_url

_URL_KEYS = ("url", "location", "redirect_url")


def redact_urls(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Replace URL-valued keys with ``<key>_hash``."""
    for key in _URL_KEYS:
        value = event_dict.pop(key, None)
        if value is not None:
            event_dict[f"{key}_hash"] = hash_url(str(value))
    return event_dict


def _pre_chain() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_urls,
    ]


def configure_logging(
    *,
    json_output: bool = False,
    log_level: str = "INFO",
    stream: IO[str] | None = None,
) -> None:
    """Route structlog and stdlib logging through one handler.

    Parameters
    ----------
    json_output:
        Render one JSON object per line for log shipping; otherwise use the
        console renderer.
    log_level:
        Root level name. Unknown names fall back to INFO.
    stream:
        Destination, ``sys.stdout`` by default.
    """
    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )
    final_processors: list = [structlog.stdlib.ProcessorFormatter.remove_processors_meta]
    if json_output:
        final_processors.append(structlog.processors.format_exc_info)
    final_processors.append(renderer)

    structlog.configure(
        processors=[*_pre_chain(), structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_pre_chain(),
            processors=final_processors,
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # httpx logs full request URLs at INFO.
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)


def configure_from_settings(settings: LoggingSettings) -> None:
    configure_logging(json_output=settings.json_output, log_level=settings.level)
