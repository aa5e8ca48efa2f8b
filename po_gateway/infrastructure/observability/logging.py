"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict

from pythonjsonlogger import jsonlogger

from po_gateway.domain.models import SyncSession
from po_gateway.utils.date_utils import to_iso


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = "po-gateway"


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_sync_session(session: SyncSession) -> None:
    """Audit record for a finished sync session"""
    duration_ms = session.end_time - session.start_time if session.end_time else None
    logging.info(
        "SyncSession recorded",
        extra={
            "session_id": session.session_id,
            "step": "sync_finished",
            "status": session.status.value,
            "mode": session.mode.value,
            "start_time": to_iso(session.start_time),
            "end_time": to_iso(session.end_time),
            "duration_ms": duration_ms,
            "operations_imported_count": session.operations_imported_count,
            "pages_fetched": session.pages_fetched,
            "retry_attempts": session.retry_attempts,
            "sync_error": session.error,
        },
    )
