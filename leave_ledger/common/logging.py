"""Logging setup: JSON lines in deployed environments, plain text otherwise."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from pythonjsonlogger import jsonlogger

PLAIN_FORMAT = "%(asctime)s [%(levelname)s] %(name)s — %(message)s"


class LedgerJsonFormatter(jsonlogger.JsonFormatter):
    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        if not log_record.get("timestamp"):
            log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["logger"] = record.name


def setup_logging(level: str = "info", *, json_output: bool = True) -> None:
    """Configure the root logger once; repeated calls only adjust the level."""
    root = logging.getLogger()
    root.setLevel(level.upper())

    if not any(getattr(h, "_leave_ledger", False) for h in root.handlers):
        handler = logging.StreamHandler()
        if json_output:
            handler.setFormatter(LedgerJsonFormatter("%(timestamp) %(level) %(logger) %(message)"))
        else:
            handler.setFormatter(
                logging.Formatter(PLAIN_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
            )
        handler._leave_ledger = True  # type: ignore[attr-defined]
        root.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
