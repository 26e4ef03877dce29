"""Logging setup for the `wamux` command. The library itself never configures logging."""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any

_PLAIN_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"

# Log lines are written as `event=name phone=628... status=...`.
_FIELD_RE = re.compile(r"(?:^|\s)([a-z_]+)=(\S+)")


def event_fields(message: str) -> dict[str, str]:
    return {k: v for k, v in _FIELD_RE.findall(message)}


class JsonFormatter(logging.Formatter):
    """
    One JSON object per record.

    `key=value` pairs in the message are lifted to top-level keys so the
    stream can be filtered by `event` or `phone` without parsing text. A field
    never overwrites one of the fixed keys.
    """

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": message,
        }
        for key, value in event_fields(message).items():
            payload.setdefault(key, value)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, separators=(",", ":"))


def configure_logging(level: int | str = logging.INFO, *, json_lines: bool = False) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter() if json_lines else logging.Formatter(_PLAIN_FORMAT))

    root = logging.getLogger("wamux")
    root.setLevel(level)
    root.handlers[:] = [handler]
    root.propagate = False
