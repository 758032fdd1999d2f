"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict

from pythonjsonlogger import jsonlogger


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = "esnad-servicing"


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


def log_sweep(
    as_of: str,
    transitioned: int,
    goals_updated: int,
    notices: int,
    skipped: int,
    duration_ms: float,
) -> None:
    """Log structured overdue sweep outcome for analysis"""
    logging.info(
        "Overdue sweep completed",
        extra={
            "as_of": as_of,
            "step": "sweep_complete",
            "transitioned": transitioned,
            "goals_updated": goals_updated,
            "notices": notices,
            "skipped": skipped,
            "duration_ms": duration_ms,
        },
    )


def log_transition(faid: str, deal_aid: str, from_status: str, to_status: str, source: str) -> None:
    """Log a single installment status change"""
    logging.info(
        "Installment status changed",
        extra={
            "faid": faid,
            "deal_aid": deal_aid,
            "step": "status_transition",
            "from_status": from_status,
            "to_status": to_status,
            "source": source,
        },
    )
