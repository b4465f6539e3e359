"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict
from pythonjsonlogger import jsonlogger


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter adding timestamp, level and service name to every record"""

    def __init__(self, *args: Any, service_name: str = "dentalflow-finance", **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.service_name = service_name

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = self.service_name


def setup_logging(level: str = "INFO", service_name: str = "dentalflow-finance") -> None:
    """Route all logging through a single JSON handler on stdout"""
    logger = logging.getLogger()
    logger.setLevel(level)

    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s", service_name=service_name)
    )
    logger.addHandler(handler)


def log_report(
    request_id: str,
    tenant_id: str,
    report: str,
    duration_ms: float,
    **fields: Any,
) -> None:
    """Log one structured line per completed report"""
    logging.getLogger("dentalflow_finance.reports").info(
        "Report completed",
        extra={
            "request_id": request_id,
            "tenant_id": tenant_id,
            "report": report,
            "step": "report_complete",
            "duration_ms": duration_ms,
            **fields,
        },
    )
