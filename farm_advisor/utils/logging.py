"""
Root logger setup for CLI runs.

``configure_logging(config.logging)`` is called once by each CLI command.
Library modules only ever do ``logger = logging.getLogger(__name__)``.

With ``json_format = true`` every record becomes one JSON object per line, and
anything passed through ``extra=`` lands as a top-level key::

    {"ts": "2026-04-15T08:00:00Z", "level": "WARNING",
     "logger": "farm_advisor.engine.rules_engine",
     "msg": "Rule 'MAIZE_TOPDRESS_WINDOW' failed ...", "rule_code": "MAIZE_TOPDRESS_WINDOW"}
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from farm_advisor.config import LoggingConfig

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

# Keys every LogRecord carries; the rest came from ``extra=``.
_STANDARD_KEYS: frozenset[str] = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

_NOISY_LOGGERS = ("httpx", "httpcore")


class JsonLineFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: dict = {
            "ts": stamp.strftime(LOG_DATE_FORMAT),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        payload.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _STANDARD_KEYS and not key.startswith("_")
        )
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(config: "LoggingConfig") -> None:
    """Install stderr (and optionally file) handlers on the root logger.

    stderr keeps stdout free for the CLI's ``--json`` output.  The log file's
    parent directory is created on demand.
    """
    level = logging.getLevelName(config.level.upper())
    formatter = (
        JsonLineFormatter()
        if config.json_format
        else logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    )

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if config.log_file:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
    logging.basicConfig(level=level, handlers=handlers, force=True)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
