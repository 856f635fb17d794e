"""Logging for orgdocs runs.

Every record can carry a run context (``command`` and ``run_id``) and a
``repository``/``stage`` pair. Orchestrated runs bind the run context once and
components bind the repository they are working on, so a failing clone shows
up as ``[orgdocs] WARNING beta (sync): ...`` on the console and with all four
fields in the log file.
"""

from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Any, MutableMapping, Tuple

_LOGGER_NAME = "orgdocs"
_CONTEXT_FIELDS = ("command", "run_id", "repository", "stage")
_UNSET = "-"

CONSOLE_FORMAT = "[orgdocs] %(levelname)s %(scope)s%(message)s"
FILE_FORMAT = (
    "%(asctime)s %(levelname)s %(name)s "
    "run=%(run_id)s command=%(command)s repository=%(repository)s stage=%(stage)s: %(message)s"
)


class ContextAdapter(logging.LoggerAdapter):
    """Logger adapter that merges bound context into each record's ``extra``."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> Tuple[Any, MutableMapping[str, Any]]:
        extra = dict(self.extra or {})
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return msg, kwargs

    def bind(self, **fields: str) -> "ContextAdapter":
        merged = dict(self.extra or {})
        merged.update(fields)
        return ContextAdapter(self.logger, merged)


class _ContextFilter(logging.Filter):
    """Fills in missing context fields and the console ``scope`` prefix."""

    def filter(self, record: logging.LogRecord) -> bool:
        for field in _CONTEXT_FIELDS:
            if getattr(record, field, None) in (None, ""):
                setattr(record, field, _UNSET)
        scope = ""
        if record.repository != _UNSET:
            scope = record.repository
            if record.stage != _UNSET:
                scope = f"{scope} ({record.stage})"
            scope = f"{scope}: "
        record.scope = scope
        return True


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a module-scoped logger under the orgdocs hierarchy."""
    full_name = f"{_LOGGER_NAME}.{name}" if name else _LOGGER_NAME
    return logging.getLogger(full_name)


def bind(logger: logging.Logger | ContextAdapter, **fields: str) -> ContextAdapter:
    """Attach context fields to ``logger``, keeping any already bound."""
    if isinstance(logger, ContextAdapter):
        return logger.bind(**fields)
    return ContextAdapter(logger, dict(fields))


def new_run_id() -> str:
    return uuid.uuid4().hex[:12]


def configure_logging(
    *, verbose: bool = False, log_file: Path | None = None
) -> logging.Logger:
    """Configure the orgdocs logger with console output and an optional file sink."""
    level = logging.DEBUG if verbose else logging.INFO
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    context = _ContextFilter()
    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(level)
    stream_handler.addFilter(context)
    stream_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    logger.addHandler(stream_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.addFilter(context)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        logger.addHandler(file_handler)

    return logger


__all__ = ["ContextAdapter", "bind", "configure_logging", "get_logger", "new_run_id"]
