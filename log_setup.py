from __future__ import annotations

import json
import logging
import sys
from typing import Any


def setup_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))

    root.handlers.clear()
    root.addHandler(handler)


def log_event(logger: logging.Logger, event_type: str, level: int = logging.INFO, **fields: Any) -> None:
    data: dict[str, Any] = {"type": event_type}
    data.update(fields)
    logger.log(level, json.dumps(data, separators=(",", ":"), default=str))
