"""structlog setup for the tailing daemon and its CLI commands.

``configure_logging()`` runs once per process (the CLI callback does it).
Every event then passes through:

  merge_contextvars  → run_id and anything else bound for this run
  add_log_level      → level="info" / "warning" / …
  TimeStamper        → UTC ISO-8601 timestamp
  renderer           → one JSON object per line (format=json)
                       or coloured key=value pairs (format=text)

Output goes to stderr; stdout is reserved for the ``stdout`` sink.

Components that tail a location take their logger as an argument instead of
fetching a module-level one, normally built with ``source_logger()`` so each
event says which file or directory it concerns::

    run_id = configure_logging()
    log = source_logger("logtail.run", "/var/log/app")
    log.info("start processing file", path="/var/log/app/app-3.log", offset=0)
    # {"source": "/var/log/app", "path": "/var/log/app/app-3.log", "offset": 0,
    #  "event": "start processing file", "run_id": "5c0e91d2", "level": "info",
    #  "timestamp": "…"}
"""

import logging as _stdlib
import sys
import uuid
from pathlib import Path

import structlog
from structlog.typing import Processor

from logtail.config import Settings, get_settings


def _renderer(fmt: str) -> Processor:
    if fmt == "text":
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer()


def configure_logging(settings: Settings | None = None) -> str:
    """Install the processor pipeline and bind a new ``run_id``.

    Safe to call more than once; each call replaces the pipeline and the
    run_id.

    Args:
        settings: Resolved settings; ``get_settings()`` is used when omitted.

    Returns:
        The run_id (8 hex characters) attached to every event from now on.
    """
    cfg = (settings if settings is not None else get_settings()).logging
    threshold = _stdlib.getLevelName(cfg.level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            _renderer(cfg.format),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(threshold),
        context_class=dict,
        # Not cached: CliRunner swaps sys.stderr per invocation.
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )

    run_id = uuid.uuid4().hex[:8]
    structlog.contextvars.bind_contextvars(run_id=run_id)
    return run_id


def get_logger(name: str = "logtail") -> structlog.BoundLogger:
    """Module logger; pass ``__name__``."""
    return structlog.get_logger(name)


def source_logger(name: str, location: Path | str) -> structlog.BoundLogger:
    """Logger for *name* with the tailed *location* bound as ``source``."""
    return get_logger(name).bind(source=str(location))
