from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from common.utils import to_iso_z


# attribute set on the root logger once our handler is installed
_CONFIGURED_FLAG = "_imagery_configured"


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line:
      { "t": 169..., "ts": "2024-01-08T12:00:00.123Z", "lvl": "INFO",
        "name": "imagery.gibs", "msg": "text", "extra": {...} }

    Structured fields travel in `extra={"extra": {...}}` (see log_event()).
    Dates and other non-JSON values are stringified.
    """

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "t": int(record.created * 1000),
            "ts": to_iso_z(datetime.fromtimestamp(record.created, tz=timezone.utc)),
            "lvl": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        fields = getattr(record, "extra", None)
        if isinstance(fields, dict):
            payload["extra"] = fields
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def _level(name: Optional[str]) -> int:
    lvl = logging.getLevelName((name or os.environ.get("LOG_LEVEL") or "INFO").upper())
    return lvl if isinstance(lvl, int) else logging.INFO


def setup_logging(level: Optional[str] = None, *, force: bool = False) -> None:
    """
    Install the JSON stdout handler on the root logger.

    Level precedence: explicit `level`, env LOG_LEVEL, INFO. Later calls are
    no-ops unless `force=True` (used once config/params.yaml has been read).
    """
    root = logging.getLogger()
    if getattr(root, _CONFIGURED_FLAG, False) and not force:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(_level(level))
    setattr(root, _CONFIGURED_FLAG, True)


def get_logger(name: str) -> logging.Logger:
    """Module logger; ensures root is configured."""
    setup_logging()
    return logging.getLogger(name)


def log_event(logger: logging.Logger, msg: str, *, level: int = logging.INFO, **fields: Any) -> None:
    """Log `msg` with `fields` attached as the JSON `extra` object."""
    logger.log(level, msg, extra={"extra": fields})
