"""Logging setup and the mutation observer hook.

Mutation logs carry the ``MutationEvent`` itself under the ``mutation`` extra,
and error logs carry the ``KanbanError`` under ``error``. The JSON formatter
flattens both into the record, so a board's history can be followed in the
logs by ``board_id``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Callable, Optional


@dataclass(frozen=True)
class MutationEvent:
    operation: str
    board_id: Optional[str]
    user_id: Optional[str]
    activity: Optional[str] = None
    attempts: int = 1


Observer = Callable[[MutationEvent], None]


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        event = getattr(record, "mutation", None)
        if isinstance(event, MutationEvent):
            log.update((k, v) for k, v in asdict(event).items() if v is not None)
        error = getattr(record, "error", None)
        if error is not None:
            log["error_code"] = error.code
            log["error_kind"] = error.kind.value
        if record.exc_info:
            log["exception"] = self.formatException(record.exc_info)
        return json.dumps(log, ensure_ascii=False)


_handler: Optional[logging.Handler] = None


def setup_logging(level: str = "INFO", fmt: str = "text") -> None:
    """Install the root handler, replacing one installed by an earlier call."""
    global _handler
    handler = logging.StreamHandler()
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    if _handler is not None:
        logging.root.removeHandler(_handler)
    logging.root.addHandler(handler)
    logging.root.setLevel(getattr(logging, level.upper(), logging.INFO))
    _handler = handler


def log_observer(logger: logging.Logger) -> Observer:
    """Observer that logs each completed mutation at INFO."""

    def observe(event: MutationEvent) -> None:
        if event.activity:
            logger.info("%s: %s", event.operation, event.activity, extra={"mutation": event})
        else:
            logger.info("%s completed", event.operation, extra={"mutation": event})

    return observe
