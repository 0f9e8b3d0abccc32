"""
Logging setup for the powerstats service.

Installs a single stderr handler on the root logger. The default format is
one JSON object per line; ``console`` gives human-readable lines for local
runs. Modules log through ``logging.getLogger(__name__)``.

CHANGELOG:
- 2026-02-28: Initial creation (STORY-103)

TODO:
- None
"""

import json
import logging
import sys
from datetime import UTC, datetime

_CONSOLE_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

# Marks handlers installed here so reconfiguring replaces only those.
_HANDLER_MARK = "_powerstats_handler"


class JsonFormatter(logging.Formatter):
    """Minimal JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


def configure_logging(level: str = "INFO", fmt: str = "json") -> None:
    """Configure root logging.

    Args:
        level: Log level name (DEBUG, INFO, ...). Unknown names fall back
            to INFO.
        fmt: ``json`` or ``console``.
    """
    handler = logging.StreamHandler(sys.stderr)
    if fmt == "console":
        handler.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
    else:
        handler.setFormatter(JsonFormatter())

    root = logging.getLogger()
    for existing in [h for h in root.handlers if getattr(h, _HANDLER_MARK, False)]:
        root.removeHandler(existing)
    setattr(handler, _HANDLER_MARK, True)
    root.addHandler(handler)
    resolved = logging.getLevelName(level.upper())
    root.setLevel(resolved if isinstance(resolved, int) else logging.INFO)
