"""
Logging Configuration

Diagnostics for the reporter itself. Service messages may share stdout with
the test run, so nothing configured here writes to stdout by default.

Provides:
- JsonFormatter: one JSON object per record, for agents that ship build logs
- setup_logging: YAML dictConfig with environment substitution
"""

import json
import logging
import logging.config
import os
import string
import sys
from datetime import datetime, timezone

import yaml

DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# LogRecord attributes that are not caller-supplied `extra` fields.
_STANDARD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """
    JSON formatter for reporter diagnostics.

    Fields:
      - _time: ISO8601 timestamp (millisecond precision, UTC)
      - level: Log level
      - logger: Logger name (e.g. teamcity_reporter.listener)
      - message: Log message
      - any `extra` fields passed by the caller (message_type, flow_id, ...)
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "_time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(
                timespec="milliseconds"
            ),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(config_path: str = "", level: str | None = None) -> None:
    """
    Load the YAML config, substitute environment variables, and initialize logging.
    Falls back to a stderr handler at `level` (or LOG_LEVEL) when no file is given.
    """
    level_name = (level or os.environ.get("LOG_LEVEL") or "WARNING").upper()
    if not config_path or not os.path.exists(config_path):
        logging.basicConfig(level=level_name, format=DEFAULT_FORMAT, stream=sys.stderr)
        return

    with open(config_path, "r", encoding="utf-8") as f:
        # Supports ${LOG_LEVEL} style placeholders.
        template = string.Template(f.read())

    mapping = os.environ.copy()
    mapping.setdefault("LOG_LEVEL", level_name)
    content = template.safe_substitute(mapping)
    config = yaml.safe_load(content)
    logging.config.dictConfig(config)
