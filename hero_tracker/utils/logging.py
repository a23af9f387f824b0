"""
Logging setup for the Hero Rate Tracker.

Call ``configure_logging(config)`` once at CLI entry. Library modules only use
``logging.getLogger(__name__)``.

Scrape log lines carry run context through ``extra=``: ``run_slug`` (the run
being executed) and ``combination`` (the combination label being processed).
Both output formats surface that context:

  Text::

    2026-10-19T07:00:01Z [INFO] hero_tracker.pipeline.orchestrator [run=3f2a9c1e combo=competitive/PC/Europe/Gold/all-maps]: ...

  JSON (``json_format = true`` in [logging])::

    {"ts": "2026-10-19T07:00:01Z", "level": "INFO", "logger": "...",
     "msg": "...", "run_slug": "3f2a9c1e-...", "combination": "competitive/..."}
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from hero_tracker.config import LoggingConfig

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s%(run_context)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

CONTEXT_FIELDS = ("run_slug", "combination")
SLUG_DISPLAY_LEN = 8


def run_context(run_slug: str, combination: Optional[str] = None) -> dict[str, Any]:
    """Build the ``extra=`` mapping for a scrape log call."""
    ctx: dict[str, Any] = {"run_slug": run_slug}
    if combination is not None:
        ctx["combination"] = combination
    return ctx


class RunContextFilter(logging.Filter):
    """Render ``run_slug`` / ``combination`` extras as ``record.run_context``.

    Records without context get an empty string so ``LOG_FORMAT`` always
    resolves.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        parts = []
        slug = getattr(record, "run_slug", None)
        if slug:
            parts.append(f"run={slug[:SLUG_DISPLAY_LEN]}")
        combination = getattr(record, "combination", None)
        if combination:
            parts.append(f"combo={combination}")
        record.run_context = f" [{' '.join(parts)}]" if parts else ""
        return True


class _JsonFormatter(logging.Formatter):
    """One JSON object per line: ``ts``, ``level``, ``logger``, ``msg``, and
    any run context fields present on the record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).strftime(
                LOG_DATE_FORMAT
            ),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(config: "LoggingConfig") -> None:
    """Configure the root logger from a ``LoggingConfig``.

    Console output goes to stdout; ``config.log_file`` (when non-empty) adds
    a UTF-8 file handler with the same format.
    """
    level = getattr(logging, config.level.upper(), logging.INFO)

    formatter: logging.Formatter
    if config.json_format:
        formatter = _JsonFormatter()
    else:
        formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if config.log_file:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    context_filter = RunContextFilter()
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(context_filter)

    logging.basicConfig(level=level, handlers=handlers, force=True)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
