"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from pythonjsonlogger import jsonlogger

from epulsaku.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging on the root logger"""
    logger = logging.getLogger()
    logger.setLevel(level)

    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_status_change(
    ref_id: str,
    provider: str,
    old_status: str,
    new_status: str,
    source: str,
    transacted_by: Optional[str] = None,
) -> None:
    """Log a transaction leaving Pending, tagged with what drove it (auto_update, webhook, manual)"""
    logging.getLogger("epulsaku.status").info(
        "Transaction status changed",
        extra={
            "ref_id": ref_id,
            "provider": provider,
            "step": "status_change",
            "old_status": old_status,
            "new_status": new_status,
            "source": source,
            "transacted_by": transacted_by,
        },
    )
